"""Interactive terminal input: arrow-key menus and validated text prompts."""

import re
from typing import Optional, Pattern, Union

import readchar
import typer
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

console = Console()

_KEY_NAMES = {
    readchar.key.UP: "up",
    readchar.key.DOWN: "down",
    readchar.key.HOME: "first",
    readchar.key.END: "last",
    readchar.key.ENTER: "enter",
    readchar.key.CR: "enter",
    readchar.key.ESC: "escape",
}


def get_key() -> str:
    """Read one keypress and name the navigation keys; anything else is returned as typed."""
    key = readchar.readkey()
    if key == readchar.key.CTRL_C:
        raise KeyboardInterrupt
    return _KEY_NAMES.get(key, key)


def _cancel() -> None:
    console.print("\n[yellow]Selection cancelled[/yellow]")
    raise typer.Exit(1)


def select_with_arrows(options: dict, prompt_text: str = "Select an option", default_key: Optional[str] = None) -> str:
    """Let the user pick one of ``options`` (key -> label) and return its key.

    Arrow keys move, Enter picks, digits 1-9 pick directly. Esc and Ctrl-C
    exit with status 1, as does an empty ``options``.
    """
    keys = list(options)
    if not keys:
        console.print(f"\n[red]Nothing to choose from:[/red] {prompt_text}")
        raise typer.Exit(1)
    index = keys.index(default_key) if default_key in options else 0

    def panel() -> Panel:
        table = Table.grid(padding=(0, 1))
        table.add_column(width=2)
        table.add_column()
        for i, key in enumerate(keys):
            if i == index:
                table.add_row("[cyan]▶[/cyan]", f"[bold cyan]{options[key]}[/bold cyan]")
            else:
                table.add_row("", f"[white]{options[key]}[/white]")
        table.add_row("", "")
        table.add_row("", "[dim]↑/↓ move · Enter select · 1-9 jump · Esc cancel[/dim]")
        return Panel(table, title=f"[bold]{prompt_text}[/bold]", border_style="cyan", padding=(1, 2))

    console.print()
    with Live(panel(), console=console, transient=True, auto_refresh=False) as live:
        while True:
            try:
                key = get_key()
            except KeyboardInterrupt:
                _cancel()
            if key == "enter":
                break
            if key == "escape":
                _cancel()
            if key == "up":
                index = (index - 1) % len(keys)
            elif key == "down":
                index = (index + 1) % len(keys)
            elif key == "first":
                index = 0
            elif key == "last":
                index = len(keys) - 1
            elif key.isdigit() and 1 <= int(key) <= min(len(keys), 9):
                index = int(key) - 1
                break
            live.update(panel(), refresh=True)

    chosen = keys[index]
    console.print(f"[green]✔[/green] [dim]{prompt_text}[/dim] {options[chosen]}")
    return chosen


class TerminalPrompter:
    """Prompter backed by the real terminal."""

    def ask_text(
        self,
        message: str,
        *,
        pattern: Optional[Union[str, Pattern[str]]] = None,
        error: str = "Invalid value",
        default: Optional[str] = None,
        password: bool = False,
    ) -> str:
        """Ask until the answer matches ``pattern`` (full match). An empty answer is returned as is."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        while True:
            kwargs = {"console": console, "password": password}
            if default is not None:
                kwargs["default"] = default
            value = (Prompt.ask(f"[bold cyan]?[/bold cyan] {message}", **kwargs) or "").strip()
            if not value or regex is None or regex.fullmatch(value):
                return value
            console.print(f"[red]{error}[/red]")

    def select(self, options: dict, prompt_text: str, default_key: Optional[str] = None) -> str:
        return select_with_arrows(options, prompt_text, default_key)
