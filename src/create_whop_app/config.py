import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .auth import DEFAULT_SESSION_PATH
from .whop_client import DEFAULT_BASE_URL

PACKAGED_TEMPLATES = Path(__file__).resolve().parent / "templates"


def _env_path(name: str) -> Optional[Path]:
    """Return an expanded path from an environment variable, or None when unset/blank."""
    value = (os.getenv(name) or "").strip()
    return Path(value).expanduser() if value else None


@dataclass(frozen=True)
class Settings:
    api_base_url: str = DEFAULT_BASE_URL
    session_path: Path = DEFAULT_SESSION_PATH
    templates_dir: Path = PACKAGED_TEMPLATES
    user_agent: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_base_url=(os.getenv("WHOP_API_BASE_URL") or "").strip() or DEFAULT_BASE_URL,
            session_path=_env_path("WHOP_SESSION_PATH") or DEFAULT_SESSION_PATH,
            templates_dir=_env_path("WHOP_TEMPLATES_DIR") or PACKAGED_TEMPLATES,
            user_agent=os.getenv("npm_config_user_agent", ""),
        )
