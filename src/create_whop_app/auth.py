"""
One-time-passcode login against Whop.

``AuthSession`` is an explicit state machine: every failure path ends in a
menu whose answer is a ``NextAction``, and the flow loops on that action
instead of calling itself again. A ticket returned by ``send_code`` stays valid
for any number of failed verifications and is only dropped when the user picks
a different email.
"""

import json
import logging
import re
from dataclasses import replace
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol

import httpx
import typer

from .models import Session
from .prompts import console
from .whop_client import AuthClient, WhopAPIError

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
CODE_RE = re.compile(r"^\d{6}$")

DEFAULT_SESSION_PATH = Path.home() / ".whoplabs" / "whop-session.json"


class AuthState(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    CODE_REQUESTED = "code_requested"
    SEND_FAILED = "send_failed"
    VERIFYING = "verifying"
    VERIFY_FAILED = "verify_failed"
    AUTHENTICATED = "authenticated"


class NextAction(str, Enum):
    RETRY_CODE = "code"
    RESTART_EMAIL = "email"
    EXIT = "exit"


SEND_FAILURE_CHOICES = {
    NextAction.RESTART_EMAIL.value: "Try a different email",
    NextAction.EXIT.value: "Exit",
}

VERIFY_FAILURE_CHOICES = {
    NextAction.RETRY_CODE.value: "Try another code",
    NextAction.RESTART_EMAIL.value: "Use a different email",
    NextAction.EXIT.value: "Exit",
}

RECOVERABLE_ERRORS = (WhopAPIError, httpx.HTTPError)


class Prompter(Protocol):
    def ask_text(self, message: str, *, pattern=None, error: str = "", default=None, password: bool = False) -> str:
        ...

    def select(self, options: dict, prompt_text: str, default_key: Optional[str] = None) -> str:
        ...


class SessionStore:
    """Reads and writes the session JSON file."""

    def __init__(self, path: Path = DEFAULT_SESSION_PATH):
        self.path = Path(path)

    def load(self) -> Optional[Session]:
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return None
        if not isinstance(data, dict):
            return None
        try:
            return Session.from_dict(data)
        except ValueError as e:
            logger.warning("Ignoring malformed session file %s: %s", self.path, e)
            return None

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(session.to_dict(), indent=2) + "\n", encoding="utf-8")
        try:
            self.path.chmod(0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", self.path)
        logger.info("Session saved to %s", self.path)

    def clear(self) -> bool:
        if self.path.exists():
            self.path.unlink()
            return True
        return False


class AuthSession:
    """Drives the email → code → verify exchange until a session exists."""

    def __init__(self, client: AuthClient, store: SessionStore, prompter: Prompter, session: Optional[Session] = None):
        self.client = client
        self.store = store
        self.prompter = prompter
        self.session = session
        self.state = AuthState.AUTHENTICATED if self.is_authenticated() else AuthState.UNAUTHENTICATED

    @classmethod
    def from_store(cls, client: AuthClient, store: SessionStore, prompter: Prompter) -> "AuthSession":
        return cls(client, store, prompter, session=store.load())

    def is_authenticated(self) -> bool:
        return self.session is not None and self.session.is_valid()

    def logout(self) -> bool:
        self.session = None
        self.state = AuthState.UNAUTHENTICATED
        return self.store.clear()

    async def ensure_authenticated(self) -> Session:
        if self.is_authenticated():
            return self.session

        console.print("[bold]Authentication Required[/bold]")
        console.print("[dim]Don't have a Whop account? Sign up at https://whop.com/signup[/dim]")
        console.print(f"[dim]Your session will be saved to {self.store.path}[/dim]")
        console.print()

        email: Optional[str] = None
        ticket: Optional[str] = None
        while True:
            if ticket is None:
                self.state = AuthState.UNAUTHENTICATED
                email = self._ask_email()
                ticket = await self._send_code(email)
                if ticket is None:
                    self._follow(self._choose(SEND_FAILURE_CHOICES, "What would you like to do?"))
                    continue

            code = self._ask_code()
            session = await self._verify(code, ticket, email)
            if session is None:
                action = self._choose(
                    VERIFY_FAILURE_CHOICES,
                    "The code was incorrect or expired. What would you like to do?",
                )
                self._follow(action)
                if action is NextAction.RESTART_EMAIL:
                    ticket = None
                continue

            self.session = session
            self.state = AuthState.AUTHENTICATED
            self.store.save(session)
            return session

    def _ask_email(self) -> str:
        email = self.prompter.ask_text(
            "Enter your Whop email:",
            pattern=EMAIL_RE,
            error="Please enter a valid email address",
        )
        if not email:
            console.print("[red]Email is required.[/red]")
            raise typer.Exit(1)
        return email

    def _ask_code(self) -> str:
        code = self.prompter.ask_text(
            "Enter the 6-digit code from your email:",
            pattern=CODE_RE,
            error="Please enter a 6-digit code",
            password=True,
        )
        if not code:
            console.print("[red]Code is required.[/red]")
            raise typer.Exit(1)
        return code

    async def _send_code(self, email: str) -> Optional[str]:
        with console.status("Sending OTP code...", spinner="dots"):
            try:
                ticket = await self.client.send_code(email)
            except RECOVERABLE_ERRORS as e:
                logger.debug("send_code failed: %s", e)
                self.state = AuthState.SEND_FAILED
                console.print("[red]✖ Failed to send code[/red]")
                console.print("[dim]This email may not be registered with Whop.[/dim]")
                return None
        self.state = AuthState.CODE_REQUESTED
        console.print("[green]✔[/green] [dim]Code sent to your email[/dim]")
        return ticket

    async def _verify(self, code: str, ticket: str, email: str) -> Optional[Session]:
        self.state = AuthState.VERIFYING
        with console.status("Verifying code...", spinner="dots"):
            try:
                session = await self.client.verify_code(code, ticket)
            except RECOVERABLE_ERRORS as e:
                logger.debug("verify_code failed: %s", e)
                session = None
        if session is not None and not session.identity:
            session = replace(session, identity=email)
        if session is None or not session.is_valid():
            self.state = AuthState.VERIFY_FAILED
            console.print("[red]✖ Verification failed[/red]")
            return None
        return session

    def _choose(self, choices: dict, prompt_text: str) -> NextAction:
        return NextAction(self.prompter.select(choices, prompt_text))

    def _follow(self, action: NextAction) -> None:
        if action is NextAction.EXIT:
            raise typer.Exit(0)
