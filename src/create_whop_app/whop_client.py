"""
Async client for the Whop API endpoints used while provisioning an app.

Only the handful of calls the CLI needs are wrapped here. Responses are turned
into the records in ``models``; any non-2xx response raises ``WhopAPIError``.
"""

import logging
import ssl
from datetime import datetime, timezone
from typing import Any, Optional, Protocol, Sequence

import httpx
import truststore

from .models import AccessPass, App, Credentials, Organization, Session

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.whop.com/api/v5"
DEFAULT_TIMEOUT = 30.0


class WhopAPIError(RuntimeError):
    """A Whop API call failed (transport error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthClient(Protocol):
    async def send_code(self, email: str) -> str:
        ...

    async def verify_code(self, code: str, ticket: str) -> Session:
        ...


class ProvisioningClient(Protocol):
    async def list_companies(self) -> Sequence[Organization]:
        ...

    async def create_app(self, company_id: str, name: str) -> App:
        ...

    async def update_app(self, app_id: str, *, name: str) -> App:
        ...

    async def install_app(self, app_id: str, company_id: str) -> None:
        ...

    async def get_app_url(self, app_id: str, company_id: str) -> str:
        ...

    async def create_access_pass(self, company_id: str, title: str, *, plan_type: str, visibility: str = "hidden") -> AccessPass:
        ...

    async def update_plan(self, plan_id: str, *, plan_type: str, **fields: Any) -> None:
        ...

    async def create_api_key(self, app_id: str, company_id: str) -> Credentials:
        ...


def build_ssl_context(skip_tls: bool = False):
    """Return the ``verify`` argument for httpx: system trust store unless TLS checks are skipped."""
    if skip_tls:
        return False
    return truststore.SSLContext(ssl.PROTOCOL_TLS_CLIENT)


def _parse_expiry(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as e:
        raise WhopAPIError(f"Unreadable session expiry: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require(data: dict, key: str, path: str) -> Any:
    value = data.get(key)
    if value in (None, ""):
        raise WhopAPIError(f"Response from {path} is missing '{key}'")
    return value


class WhopClient:
    """Thin async wrapper over ``httpx.AsyncClient``.

    Implements both ``AuthClient`` and ``ProvisioningClient``. Pass a
    ``Session`` (or call ``authorize`` after verifying a code) before making
    provisioning calls.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        session: Optional[Session] = None,
        verify=True,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._http = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            verify=verify,
            timeout=timeout,
            follow_redirects=True,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        if session is not None:
            self.authorize(session)

    async def __aenter__(self) -> "WhopClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    def authorize(self, session: Session) -> None:
        self._http.headers["Authorization"] = f"Bearer {session.token}"

    async def _request(self, method: str, path: str, *, json: Optional[dict] = None, params: Optional[dict] = None) -> Any:
        logger.debug("%s %s", method, path)
        try:
            response = await self._http.request(method, path, json=json, params=params)
        except httpx.HTTPError as e:
            raise WhopAPIError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            message = response.text[:400]
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                error = body.get("error")
                if isinstance(error, dict):
                    error = error.get("message")
                message = str(error or body.get("message") or message)
            logger.debug("%s %s returned %s", method, path, response.status_code)
            raise WhopAPIError(
                f"Whop API returned {response.status_code} for {path}: {message}",
                status_code=response.status_code,
            )

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError as e:
            raise WhopAPIError(f"Failed to parse response JSON from {path}: {e}") from e
        if not isinstance(data, dict):
            raise WhopAPIError(f"Unexpected response from {path}: expected an object, got {type(data).__name__}")
        return data

    # Authentication

    async def send_code(self, email: str) -> str:
        data = await self._request("POST", "/auth/otp/send", json={"email": email})
        return str(_require(data, "ticket", "/auth/otp/send"))

    async def verify_code(self, code: str, ticket: str) -> Session:
        data = await self._request("POST", "/auth/otp/verify", json={"code": code, "ticket": ticket})
        token = data.get("access_token") or data.get("token")
        if not token:
            raise WhopAPIError("Whop API did not return an access token")
        user = data.get("user")
        if not isinstance(user, dict):
            user = {}
        session = Session(
            token=str(token),
            identity=str(user.get("email") or user.get("id") or ""),
            expiry=_parse_expiry(data.get("expires_at")),
        )
        self.authorize(session)
        return session

    # Provisioning

    async def list_companies(self) -> list[Organization]:
        data = await self._request("GET", "/me/companies")
        companies = data.get("data") or []
        if not isinstance(companies, list) or not all(isinstance(c, dict) for c in companies):
            raise WhopAPIError("Unexpected company list from /me/companies")
        return [
            Organization(id=str(_require(c, "id", "/me/companies")), title=str(c.get("title") or c["id"]))
            for c in companies
        ]

    async def create_app(self, company_id: str, name: str) -> App:
        data = await self._request("POST", "/apps", json={"company_id": company_id, "name": name})
        return App(id=str(_require(data, "id", "/apps")), name=str(data.get("name", name)), company_id=company_id)

    async def update_app(self, app_id: str, *, name: str) -> App:
        data = await self._request("PATCH", f"/apps/{app_id}", json={"name": name})
        return App(id=app_id, name=str(data.get("name", name)), company_id=str(data.get("company_id", "")))

    async def install_app(self, app_id: str, company_id: str) -> None:
        await self._request("POST", f"/apps/{app_id}/installs", json={"company_id": company_id})

    async def get_app_url(self, app_id: str, company_id: str) -> str:
        data = await self._request("GET", f"/apps/{app_id}/url", params={"company_id": company_id})
        return str(data.get("url", ""))

    async def create_access_pass(self, company_id: str, title: str, *, plan_type: str, visibility: str = "hidden") -> AccessPass:
        data = await self._request(
            "POST",
            "/access_passes",
            json={"company_id": company_id, "title": title, "visibility": visibility, "plan_type": plan_type},
        )
        default_plan = data.get("default_plan")
        default_plan_id = data.get("default_plan_id") or (default_plan.get("id") if isinstance(default_plan, dict) else None)
        return AccessPass(id=str(_require(data, "id", "/access_passes")), title=str(data.get("title", title)), default_plan_id=default_plan_id)

    async def update_plan(self, plan_id: str, *, plan_type: str, **fields: Any) -> None:
        await self._request("PATCH", f"/plans/{plan_id}", json={"plan_type": plan_type, **fields})

    async def create_api_key(self, app_id: str, company_id: str) -> Credentials:
        data = await self._request("POST", f"/apps/{app_id}/api_keys", json={"company_id": company_id})
        path = f"/apps/{app_id}/api_keys"
        return Credentials(
            api_key=str(_require(data, "api_key", path)),
            agent_user_id=str(_require(data, "agent_user_id", path)),
        )
