import logging
from pathlib import Path
from typing import Optional

import platformdirs
from rich.console import Console
from rich.logging import RichHandler

LOG_FILENAME = "create-whop-app.log"


def default_log_path() -> Path:
    return Path(platformdirs.user_log_dir("create-whop-app")) / LOG_FILENAME


def configure_logging(debug: bool = False, log_path: Optional[Path] = None) -> Path:
    """Configure logging for a CLI run.

    Everything at INFO and above goes to a log file under the user's log
    directory (falling back to the working directory when it is not writable).
    With ``debug`` a RichHandler also prints DEBUG records to stderr.

    Returns the log file actually in use.
    """
    root = logging.getLogger()
    if getattr(root, "_create_whop_app_configured", False):
        return getattr(root, "_create_whop_app_log_path")

    root.setLevel(logging.DEBUG if debug else logging.INFO)
    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    chosen = Path(log_path) if log_path else default_log_path()
    try:
        chosen.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(chosen, encoding="utf-8")
    except OSError:
        chosen = Path.cwd() / LOG_FILENAME
        file_handler = logging.FileHandler(chosen, encoding="utf-8")
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    if debug:
        root.addHandler(RichHandler(level=logging.DEBUG, console=Console(stderr=True), show_path=False, rich_tracebacks=True))

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)

    setattr(root, "_create_whop_app_configured", True)
    setattr(root, "_create_whop_app_log_path", chosen)
    logging.getLogger(__name__).info("Logging initialized (debug=%s, file=%s)", debug, chosen)
    return chosen
