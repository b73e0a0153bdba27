"""
The provisioning pipeline: an ordered list of steps sharing one context.

Steps run strictly one after another. The first failing step stops the run and
its error is raised to the caller wrapped in ``StepFailedError``. Nothing is
rolled back: if, say, the offers step fails, the app created by the first step
stays on Whop.
"""

import asyncio
import logging
import secrets
import shutil
import subprocess
from dataclasses import dataclass, field, fields, replace
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .addons import apply_addon
from .env_block import render_env_block, validate_env_block
from .install_progress import PackageManager, run_install
from .models import App, Credentials, Offer
from .tracker import StepTracker
from .whop_client import ProvisioningClient

logger = logging.getLogger(__name__)

BASE_TEMPLATE = "whop-next"
CREATE_APP_STEP = "create-app"
ADDONS_DIR = "addons"
TEMPLATE_IGNORE = shutil.ignore_patterns("node_modules", ".next", ".turbo", "*.pyc")

ONE_TIME_PASS_TITLE = "One-time purchase"
SUBSCRIPTION_PASS_TITLE = "Subscription"
ONE_TIME_PLAN = {"plan_type": "one_time", "initial_price": 10.0}
SUBSCRIPTION_PLAN = {"plan_type": "renewal", "renewal_price": 10.0, "billing_period": 30}


class ContextError(RuntimeError):
    """A step tried to overwrite a field another step already produced."""


class MissingPlanError(RuntimeError):
    pass


class StepSkipped(Exception):
    """Raised by a step action that decided there is nothing to do."""


class StepFailedError(RuntimeError):
    def __init__(self, step: str, title: str, cause: BaseException):
        self.step = step
        self.title = title
        self.cause = cause
        super().__init__(f"{title} failed: {cause}")


class FailurePolicy(str, Enum):
    ABORT = "abort"
    CONTINUE = "continue"


@dataclass
class ProvisioningContext:
    """State threaded through every step.

    Each field can be written once. The selections are filled in when the
    context is built; the rest is produced by exactly one step each.
    """

    project_name: str
    project_path: Path
    owner_company_id: str
    install_company_id: str
    package_manager: PackageManager
    database: Optional[str] = None
    app: Optional[App] = None
    app_url: Optional[str] = None
    one_time_offer: Optional[Offer] = None
    subscription_offer: Optional[Offer] = None
    credentials: Optional[Credentials] = None
    env_path: Optional[Path] = None

    def __setattr__(self, name, value):
        if name in _CONTEXT_FIELDS and getattr(self, name, None) is not None:
            raise ContextError(f"context.{name} is already set")
        super().__setattr__(name, value)


_CONTEXT_FIELDS = {f.name for f in fields(ProvisioningContext)}


class StepProgress:
    """Handle a running step uses to update how it is displayed."""

    def __init__(self, tracker: StepTracker, key: str):
        self._tracker = tracker
        self.key = key

    @property
    def title(self) -> str:
        return self._tracker.get(self.key)["label"]

    def set_title(self, title: str) -> None:
        self._tracker.set_label(self.key, title)

    def set_detail(self, detail: str) -> None:
        self._tracker.set_detail(self.key, detail)


StepAction = Callable[[ProvisioningContext, StepProgress], Awaitable[Optional[str]]]


@dataclass
class PipelineStep:
    name: str
    title: str
    action: StepAction
    failure_policy: FailurePolicy = field(default=FailurePolicy.ABORT)


class ProvisioningPipeline:
    def __init__(self, steps: list[PipelineStep], tracker: StepTracker):
        self.steps = list(steps)
        self.tracker = tracker

    async def run(self, context: ProvisioningContext) -> ProvisioningContext:
        for step in self.steps:
            self.tracker.add(step.name, step.title)

        for step in self.steps:
            progress = StepProgress(self.tracker, step.name)
            self.tracker.start(step.name)
            logger.info("Running step %s", step.name)
            try:
                detail = await step.action(context, progress)
            except StepSkipped as e:
                logger.info("Skipped step %s: %s", step.name, e)
                self.tracker.skip(step.name, str(e))
                continue
            except Exception as e:
                self.tracker.error(step.name, _short(e))
                if step.failure_policy is FailurePolicy.CONTINUE:
                    logger.warning("Step %s failed, continuing: %s", step.name, e)
                    continue
                logger.error("Step %s failed: %s", step.name, e)
                raise StepFailedError(step.name, progress.title, e) from e
            self.tracker.complete(step.name, detail or "")
            logger.info("Completed step %s", step.name)

        return context


def _short(exc: BaseException) -> str:
    text = str(exc).strip().splitlines()
    return text[0] if text else type(exc).__name__


# Steps


async def _create_offer(client: ProvisioningClient, company_id: str, title: str, plan: dict) -> Offer:
    access_pass = await client.create_access_pass(company_id, title, plan_type=plan["plan_type"], visibility="hidden")
    if not access_pass.default_plan_id:
        raise MissingPlanError(f"Access pass '{title}' ({access_pass.id}) has no default plan")
    extra = {k: v for k, v in plan.items() if k != "plan_type"}
    await client.update_plan(access_pass.default_plan_id, plan_type=plan["plan_type"], **extra)
    return Offer(access_pass_id=access_pass.id, plan_id=access_pass.default_plan_id)


def copy_template(template_dir: Path, dest: Path) -> None:
    dest.mkdir(parents=True)
    shutil.copytree(template_dir, dest, ignore=TEMPLATE_IGNORE, dirs_exist_ok=True)


def init_git_repo(project_path: Path) -> bool:
    """Initialize a git repository with an initial commit. Returns False when git is missing."""
    if not shutil.which("git"):
        return False
    for argv in (
        ["git", "init"],
        ["git", "add", "."],
        ["git", "commit", "-m", "Initial commit from create-whop-app"],
    ):
        subprocess.run(argv, cwd=project_path, check=True, capture_output=True)
    return True


def build_env(context: ProvisioningContext) -> dict[str, str]:
    env = {
        "WHOP_API_KEY": context.credentials.api_key,
        "NEXT_PUBLIC_WHOP_APP_ID": context.app.id,
        "NEXT_PUBLIC_WHOP_AGENT_USER_ID": context.credentials.agent_user_id,
        "NEXT_PUBLIC_WHOP_COMPANY_ID": context.owner_company_id,
        "ONE_TIME_PURCHASE_ACCESS_PASS_ID": context.one_time_offer.access_pass_id,
        "ONE_TIME_PURCHASE_ACCESS_PASS_PLAN_ID": context.one_time_offer.plan_id,
        "SUBSCRIPTION_PURCHASE_ACCESS_PASS_ID": context.subscription_offer.access_pass_id,
        "SUBSCRIPTION_PURCHASE_ACCESS_PASS_PLAN_ID": context.subscription_offer.plan_id,
    }
    validate_env_block(env, env.keys())
    return env


def build_provisioning_steps(client: ProvisioningClient, templates_dir: Path, *, git: bool = True) -> list[PipelineStep]:
    """The default step list for ``create-whop-app init``."""
    templates_dir = Path(templates_dir)

    async def create_app(ctx: ProvisioningContext, progress: StepProgress):
        # The chosen name may be a reserved platform keyword; create under a throwaway name, then rename.
        placeholder = f"tmp-{secrets.token_hex(4)}"
        app = await client.create_app(ctx.owner_company_id, placeholder)
        progress.set_detail(f"renaming {placeholder}")
        renamed = await client.update_app(app.id, name=ctx.project_name)
        ctx.app = replace(renamed, company_id=renamed.company_id or app.company_id)
        return ctx.app.id

    async def install_app(ctx: ProvisioningContext, progress: StepProgress):
        await client.install_app(ctx.app.id, ctx.install_company_id)
        ctx.app_url = await client.get_app_url(ctx.app.id, ctx.install_company_id)
        return ctx.install_company_id

    async def create_offers(ctx: ProvisioningContext, progress: StepProgress):
        # Independent calls: wait for both to settle before reporting the first failure.
        results = await asyncio.gather(
            _create_offer(client, ctx.owner_company_id, ONE_TIME_PASS_TITLE, ONE_TIME_PLAN),
            _create_offer(client, ctx.owner_company_id, SUBSCRIPTION_PASS_TITLE, SUBSCRIPTION_PLAN),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        one_time, subscription = results
        ctx.one_time_offer = one_time
        ctx.subscription_offer = subscription
        return "one-time + subscription"

    async def copy_files(ctx: ProvisioningContext, progress: StepProgress):
        await asyncio.to_thread(copy_template, templates_dir / BASE_TEMPLATE, ctx.project_path)
        if ctx.database:
            progress.set_title(f"Copy template files + {ctx.database}")
            await asyncio.to_thread(apply_addon, templates_dir / ADDONS_DIR / ctx.database, ctx.project_path)
        return str(ctx.project_path)

    async def install_deps(ctx: ProvisioningContext, progress: StepProgress):
        manager = ctx.package_manager
        progress.set_detail(f"{manager.value}, usually {manager.behavior.estimate}")
        count = await run_install(manager, ctx.project_path, progress.set_title)
        return f"{count} packages" if count else manager.value

    async def write_env(ctx: ProvisioningContext, progress: StepProgress):
        ctx.credentials = await client.create_api_key(ctx.app.id, ctx.owner_company_id)
        env_path = ctx.project_path / ".env"
        content = render_env_block(build_env(ctx))
        await asyncio.to_thread(env_path.write_text, content, encoding="utf-8")
        ctx.env_path = env_path
        return env_path.name

    async def git_init(ctx: ProvisioningContext, progress: StepProgress):
        if not await asyncio.to_thread(init_git_repo, ctx.project_path):
            raise StepSkipped("git not available")
        return "initialized"

    steps = [
        PipelineStep(CREATE_APP_STEP, "Create Whop app", create_app),
        PipelineStep("install-app", "Install app", install_app),
        PipelineStep("create-offers", "Create checkout offers", create_offers),
        PipelineStep("copy-template", "Copy template files", copy_files),
        PipelineStep("install-deps", "Installing dependencies", install_deps),
        PipelineStep("write-env", "Write environment file", write_env),
    ]
    if git:
        steps.append(PipelineStep("git", "Initialize git repository", git_init, FailurePolicy.CONTINUE))
    return steps
