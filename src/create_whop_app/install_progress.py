"""
Package manager selection and live progress for ``<pm> install``.

Each package manager reports progress differently: bun prints one ``+ name@version``
line per installed package, while npm, pnpm and yarn print a line with a total
count. ``InstallProgressMonitor`` turns either style into the same label.
"""

import asyncio
import codecs
import logging
import os
import re
from collections import deque
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Pattern

logger = logging.getLogger(__name__)

ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")
READ_CHUNK_SIZE = 4096


class OutputStyle(str, Enum):
    MARKER = "marker"  # one line per installed package, counted cumulatively
    SUMMARY = "summary"  # a line carrying the total count


@dataclass(frozen=True)
class ManagerBehavior:
    install: tuple
    dev: tuple
    style: OutputStyle
    working: str
    estimate: str
    marker: str = ""
    summary_re: Optional[Pattern[str]] = None


class PackageManager(str, Enum):
    NPM = "npm"
    PNPM = "pnpm"
    YARN = "yarn"
    BUN = "bun"

    @property
    def behavior(self) -> ManagerBehavior:
        return _BEHAVIORS[self]

    @property
    def install_command(self) -> list[str]:
        return list(self.behavior.install)

    @property
    def dev_command(self) -> list[str]:
        return list(self.behavior.dev)


_ADDED_RE = re.compile(r"\badded (\d+)")

_BEHAVIORS = {
    PackageManager.NPM: ManagerBehavior(
        install=("npm", "install"),
        dev=("npm", "run", "dev"),
        style=OutputStyle.SUMMARY,
        working="resolving",
        estimate="~60s",
        summary_re=_ADDED_RE,
    ),
    PackageManager.PNPM: ManagerBehavior(
        install=("pnpm", "install"),
        dev=("pnpm", "dev"),
        style=OutputStyle.SUMMARY,
        working="resolving",
        estimate="~30s",
        summary_re=_ADDED_RE,
    ),
    PackageManager.YARN: ManagerBehavior(
        install=("yarn", "install"),
        dev=("yarn", "dev"),
        style=OutputStyle.SUMMARY,
        working="resolving",
        estimate="~45s",
        summary_re=re.compile(r"Saved (\d+) new dependenc"),
    ),
    PackageManager.BUN: ManagerBehavior(
        install=("bun", "install"),
        dev=("bun", "dev"),
        style=OutputStyle.MARKER,
        working="downloading",
        estimate="~10s",
        marker="+",
    ),
}


def detect_package_manager(user_agent: Optional[str] = None) -> PackageManager:
    """Pick the package manager that launched us, from ``npm_config_user_agent``."""
    if user_agent is None:
        user_agent = os.environ.get("npm_config_user_agent", "")
    agent = user_agent.strip().lower()
    for manager in (PackageManager.PNPM, PackageManager.YARN, PackageManager.BUN, PackageManager.NPM):
        if agent.startswith(manager.value):
            return manager
    return PackageManager.NPM


def progress_label(count: int) -> str:
    return f"Installing dependencies ({count} packages)"


class InstallProgressMonitor:
    """Parse streamed installer output into a progress label.

    ``feed`` accepts chunks of any size; only complete lines are inspected and
    a trailing partial line is kept until more output (or ``close``) arrives.
    Lines that match nothing are ignored.
    """

    def __init__(self, manager: PackageManager, on_label: Callable[[str], None]):
        self.manager = manager
        self.on_label = on_label
        self.count = 0
        self.label: Optional[str] = None
        self._buffer = ""
        self._signal_seen = False
        self._working_shown = False

    def begin(self) -> None:
        if self._working_shown or self._signal_seen:
            return
        self._working_shown = True
        self._render(f"Installing dependencies ({self.manager.behavior.working}...)")

    def feed(self, chunk: str) -> None:
        self.begin()
        self._buffer += chunk
        *lines, self._buffer = re.split(r"\r\n|\r|\n", self._buffer)
        for line in lines:
            self._handle_line(line)

    def close(self) -> None:
        if self._buffer:
            self._handle_line(self._buffer)
            self._buffer = ""

    def _handle_line(self, raw_line: str) -> None:
        line = ANSI_RE.sub("", raw_line).strip()
        if not line:
            return
        behavior = self.manager.behavior
        if behavior.style is OutputStyle.MARKER:
            if line.startswith(behavior.marker):
                self.count += 1
                self._signal_seen = True
                self._render(progress_label(self.count))
        else:
            match = behavior.summary_re.search(line)
            if match:
                self.count = int(match.group(1))
                self._signal_seen = True
                self._render(progress_label(self.count))

    def _render(self, label: str) -> None:
        if label == self.label:
            return
        self.label = label
        self.on_label(label)


class InstallError(RuntimeError):
    """The package manager exited with a non-zero status."""

    def __init__(self, returncode: Optional[int], command: list[str], output_tail: str = ""):
        self.returncode = returncode
        self.command = command
        self.output_tail = output_tail
        message = f"{' '.join(command)} exited with code {returncode}"
        if output_tail:
            message += f"\n{output_tail}"
        super().__init__(message)


async def run_install(manager: PackageManager, cwd: Path, on_label: Callable[[str], None]) -> int:
    """Run the install command in ``cwd``, reporting progress while it runs."""
    argv = manager.install_command
    monitor = InstallProgressMonitor(manager, on_label)
    monitor.begin()
    logger.info("CMD %s (cwd=%s)", " ".join(argv), cwd)

    env = dict(os.environ, NO_COLOR="1", FORCE_COLOR="0")
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd),
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )
    except FileNotFoundError as e:
        raise InstallError(None, argv, f"{argv[0]} not found on PATH") from e

    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    tail: deque = deque(maxlen=20)
    while True:
        chunk = await proc.stdout.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        text = decoder.decode(chunk)
        tail.extend(text.splitlines())
        monitor.feed(text)
    monitor.feed(decoder.decode(b"", final=True))
    monitor.close()

    returncode = await proc.wait()
    logger.info("%s exited with %s (%d packages reported)", argv[0], returncode, monitor.count)
    if returncode != 0:
        raise InstallError(returncode, argv, "\n".join(tail))
    return monitor.count
