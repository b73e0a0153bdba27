"""Shared fakes for the Whop client, the prompter and the template tree."""

import json
import re
from collections import deque

import pytest

from create_whop_app.models import AccessPass, App, Credentials, Organization, Session
from create_whop_app.whop_client import WhopAPIError


class ScriptedPrompter:
    """Answers prompts from queues and records which menus were shown."""

    def __init__(self, texts=(), choices=(), enforce_patterns=True):
        self.texts = deque(texts)
        self.choices = deque(choices)
        self.enforce_patterns = enforce_patterns
        self.rejected = []
        self.menus = []

    def ask_text(self, message, *, pattern=None, error="", default=None, password=False):
        while True:
            value = self.texts.popleft()
            if not value or not self.enforce_patterns or pattern is None or re.fullmatch(pattern, value):
                return value
            self.rejected.append(value)

    def select(self, options, prompt_text, default_key=None):
        self.menus.append(list(options))
        choice = self.choices.popleft()
        assert choice in options
        return choice


class FakeAuthClient:
    """Each queued result is either a value to return or an exception to raise."""

    def __init__(self, send_results=(), verify_results=()):
        self.send_results = deque(send_results)
        self.verify_results = deque(verify_results)
        self.send_calls = []
        self.verify_calls = []

    async def send_code(self, email):
        self.send_calls.append(email)
        result = self.send_results.popleft()
        if isinstance(result, Exception):
            raise result
        return result

    async def verify_code(self, code, ticket):
        self.verify_calls.append((code, ticket))
        result = self.verify_results.popleft()
        if isinstance(result, Exception):
            raise result
        return result


class FakeProvisioningClient:
    def __init__(self, *, fail_on=None, missing_plan=False):
        self.calls = []
        self.fail_on = fail_on
        self.missing_plan = missing_plan
        self._passes = 0

    def _record(self, name, *args):
        self.calls.append((name, *args))
        if self.fail_on == name:
            raise WhopAPIError(f"{name} exploded", status_code=500)

    async def list_companies(self):
        self._record("list_companies")
        return [Organization("biz_owner", "Owner Inc"), Organization("biz_other", "Other LLC")]

    async def create_app(self, company_id, name):
        self._record("create_app", company_id, name)
        return App(id="app_123", name=name, company_id=company_id)

    async def update_app(self, app_id, *, name):
        self._record("update_app", app_id, name)
        return App(id=app_id, name=name, company_id="")

    async def install_app(self, app_id, company_id):
        self._record("install_app", app_id, company_id)

    async def get_app_url(self, app_id, company_id):
        self._record("get_app_url", app_id, company_id)
        return f"https://whop.com/{company_id}/{app_id}"

    async def create_access_pass(self, company_id, title, *, plan_type, visibility="hidden"):
        self._record("create_access_pass", company_id, title, plan_type, visibility)
        self._passes += 1
        plan = None if self.missing_plan else f"plan_{self._passes}"
        return AccessPass(id=f"pass_{self._passes}", title=title, default_plan_id=plan)

    async def update_plan(self, plan_id, *, plan_type, **fields):
        self._record("update_plan", plan_id, plan_type)

    async def create_api_key(self, app_id, company_id):
        self._record("create_api_key", app_id, company_id)
        return Credentials(api_key="apik_secret", agent_user_id="user_agent")


@pytest.fixture
def session():
    return Session(token="tok_abc", identity="dev@example.com")


@pytest.fixture
def templates_dir(tmp_path):
    """A minimal template root: the base template and one addon."""
    root = tmp_path / "templates"
    base = root / "whop-next"
    (base / "src").mkdir(parents=True)
    (base / "src" / "index.ts").write_text("export {}\n")
    (base / ".gitignore").write_text(".env\n")
    (base / "package.json").write_text(
        json.dumps({"name": "app", "dependencies": {"next": "15.0.0", "zod": "3.0.0"}, "scripts": {"dev": "next dev"}})
    )

    addon = root / "addons" / "sqlite"
    (addon / "src" / "db").mkdir(parents=True)
    (addon / "src" / "db" / "index.ts").write_text("export const db = 1\n")
    (addon / "drizzle.config.ts").write_text("export default {}\n")
    (addon / "addon.json").write_text(
        json.dumps(
            {
                "name": "sqlite",
                "description": "SQLite",
                "files": ["drizzle.config.ts", "src/db/**", "missing.txt"],
                "dependencies": {"zod": "4.0.0", "drizzle-orm": "0.44.0"},
                "devDependencies": {"drizzle-kit": "0.31.0"},
                "scripts": {"db:push": "drizzle-kit push"},
            }
        )
    )
    return root
