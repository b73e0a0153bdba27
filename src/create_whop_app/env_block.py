"""
Parse environment variables pasted from the Whop dashboard.

The dashboard "Copy" button sometimes produces every ``KEY=value`` pair on a
single line with no separator. ``parse_env_block`` repairs that by inserting a
line break before the known Whop keys. This heuristic depends on the dashboard
export format and will need updating if new keys are concatenated the same way.
"""

import logging
import re
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)

REQUIRED_ENV_KEYS = (
    "WHOP_API_KEY",
    "NEXT_PUBLIC_WHOP_APP_ID",
    "NEXT_PUBLIC_WHOP_AGENT_USER_ID",
    "NEXT_PUBLIC_WHOP_COMPANY_ID",
)

# Keys that may appear glued to the end of the previous value.
SPLIT_KEYS = (
    "NEXT_PUBLIC_WHOP_APP_ID",
    "NEXT_PUBLIC_WHOP_AGENT_USER_ID",
    "NEXT_PUBLIC_WHOP_COMPANY_ID",
)

_SPLIT_RE = re.compile("(" + "|".join(re.escape(k) + "=" for k in SPLIT_KEYS) + ")")


class MissingEnvKeysError(ValueError):
    """Raised when a pasted block lacks required keys."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Missing required variables: {', '.join(self.missing)}")


def _split_concatenated(text: str) -> str:
    return _SPLIT_RE.sub(r"\n\1", text)


def parse_env_block(text: str) -> dict[str, str]:
    """Turn a pasted blob into a ``{key: value}`` mapping (no validation)."""
    parsed: dict[str, str] = {}
    for raw_line in _split_concatenated(text.strip()).split("\n"):
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue
        parsed[key] = value.strip()
    return parsed


def validate_env_block(mapping: Mapping[str, str], required: Iterable[str] = REQUIRED_ENV_KEYS) -> None:
    missing = [key for key in required if not mapping.get(key)]
    if missing:
        raise MissingEnvKeysError(missing)


def read_env_block(text: str, required: Iterable[str] = REQUIRED_ENV_KEYS) -> dict[str, str]:
    """Parse a pasted block and make sure every required key is present."""
    parsed = parse_env_block(text)
    validate_env_block(parsed, required)
    logger.debug("Parsed %d environment variables", len(parsed))
    return parsed


def render_env_block(mapping: Mapping[str, str]) -> str:
    return "".join(f"{key}={value}\n" for key, value in mapping.items())


def collect_pasted_block(lines: Iterable[str]) -> str:
    """Read pasted lines until an empty line follows some content.

    Leading empty lines are ignored so a stray Enter before pasting does not
    end the input.
    """
    collected: list[str] = []
    for line in lines:
        stripped = line.strip()
        if not stripped:
            if collected:
                break
            continue
        collected.append(stripped)
    return "\n".join(collected)
