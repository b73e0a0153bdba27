"""Records exchanged between the CLI, the Whop client and the pipeline."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class Session:
    """Persisted credential material for the Whop API."""

    token: str
    identity: str
    expiry: Optional[datetime] = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        if not self.token or not self.identity:
            return False
        if self.expiry is None:
            return True
        expiry = self.expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return expiry > now

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "identity": self.identity,
            "expiry": self.expiry.isoformat() if self.expiry else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        expiry = data.get("expiry")
        parsed_expiry = None
        if expiry:
            parsed_expiry = datetime.fromisoformat(expiry)
            if parsed_expiry.tzinfo is None:
                parsed_expiry = parsed_expiry.replace(tzinfo=timezone.utc)
        return cls(
            token=str(data.get("token") or ""),
            identity=str(data.get("identity") or ""),
            expiry=parsed_expiry,
        )


@dataclass(frozen=True)
class Organization:
    id: str
    title: str


@dataclass(frozen=True)
class App:
    id: str
    name: str
    company_id: str


@dataclass(frozen=True)
class AccessPass:
    id: str
    title: str
    default_plan_id: Optional[str] = None


@dataclass(frozen=True)
class Offer:
    """A hidden access pass and the plan users check out with."""

    access_pass_id: str
    plan_id: str


@dataclass(frozen=True)
class Credentials:
    api_key: str = field(repr=False)
    agent_user_id: str
