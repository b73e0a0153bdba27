from rich.tree import Tree

STATUS_SYMBOLS = {
    "pending": "[green dim]○[/green dim]",
    "running": "[cyan]○[/cyan]",
    "done": "[green]●[/green]",
    "error": "[red]●[/red]",
    "skipped": "[yellow]○[/yellow]",
}


class StepTracker:
    """Track and render pipeline steps as a tree.

    A step's label may change while it runs (estimated duration, live package
    count); its key never does. Supports live auto-refresh via an attached
    refresh callback.
    """

    def __init__(self, title: str):
        self.title = title
        self.steps = []  # list of dicts: {key, label, status, detail}
        self._refresh_cb = None

    def attach_refresh(self, cb):
        self._refresh_cb = cb

    def add(self, key: str, label: str):
        if key not in [s["key"] for s in self.steps]:
            self.steps.append({"key": key, "label": label, "status": "pending", "detail": ""})
            self._maybe_refresh()

    def start(self, key: str, detail: str = ""):
        self._update(key, status="running", detail=detail)

    def complete(self, key: str, detail: str = ""):
        self._update(key, status="done", detail=detail)

    def error(self, key: str, detail: str = ""):
        self._update(key, status="error", detail=detail)

    def skip(self, key: str, detail: str = ""):
        self._update(key, status="skipped", detail=detail)

    def set_label(self, key: str, label: str):
        self._update(key, label=label)

    def set_detail(self, key: str, detail: str):
        self._update(key, detail=detail)

    def get(self, key: str) -> dict:
        for s in self.steps:
            if s["key"] == key:
                return s
        raise KeyError(key)

    def _update(self, key: str, status: str = None, detail: str = "", label: str = None):
        for s in self.steps:
            if s["key"] == key:
                if status:
                    s["status"] = status
                if detail:
                    s["detail"] = detail
                if label:
                    s["label"] = label
                self._maybe_refresh()
                return
        self.steps.append({"key": key, "label": label or key, "status": status or "pending", "detail": detail})
        self._maybe_refresh()

    def _maybe_refresh(self):
        if self._refresh_cb:
            self._refresh_cb()

    def render(self) -> Tree:
        tree = Tree(f"[cyan]{self.title}[/cyan]", guide_style="grey50")
        for step in self.steps:
            symbol = STATUS_SYMBOLS.get(step["status"], " ")
            detail = (step["detail"] or "").strip()
            if step["status"] == "pending":
                text = f"{step['label']} ({detail})" if detail else step["label"]
                tree.add(f"{symbol} [bright_black]{text}[/bright_black]")
                continue
            suffix = f" [bright_black]({detail})[/bright_black]" if detail else ""
            tree.add(f"{symbol} [white]{step['label']}[/white]{suffix}")
        return tree
