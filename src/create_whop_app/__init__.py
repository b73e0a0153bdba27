#!/usr/bin/env python3
"""
create-whop-app - Scaffold a Whop app and provision it on Whop

Usage:
    create-whop-app init <project-name>
    create-whop-app init <project-name> --db sqlite
    create-whop-app env <project-dir>

Or run without installing:
    uvx create-whop-app init my-whop-app
"""

import asyncio
import logging
import subprocess
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.align import Align
from rich.live import Live
from rich.panel import Panel
from rich.text import Text
from typer.core import TyperGroup

from .addons import list_addons
from .auth import AuthSession, SessionStore
from .config import Settings
from .env_block import MissingEnvKeysError, collect_pasted_block, read_env_block, render_env_block
from .install_progress import PackageManager, detect_package_manager
from .logging_utils import configure_logging
from .models import Organization
from .pipeline import (
    ADDONS_DIR,
    BASE_TEMPLATE,
    CREATE_APP_STEP,
    ProvisioningContext,
    ProvisioningPipeline,
    StepFailedError,
    build_provisioning_steps,
)
from .prompts import TerminalPrompter, console, select_with_arrows
from .tracker import StepTracker
from .whop_client import WhopAPIError, WhopClient, build_ssl_context

logger = logging.getLogger(__name__)

BANNER = """
┌─┐┬─┐┌─┐┌─┐┌┬┐┌─┐  ┬ ┬┬ ┬┌─┐┌─┐  ┌─┐┌─┐┌─┐
│  ├┬┘├┤ ├─┤ │ ├┤───│││├─┤│ │├─┘───├─┤├─┘├─┘
└─┘┴└─└─┘┴ ┴ ┴ └─┘  └┴┘┴ ┴└─┘┴     ┴ ┴┴  ┴
"""

TAGLINE = "Build and ship Whop apps"
BANNER_STYLES = ("bright_yellow", "yellow", "orange1")
DEFAULT_PROJECT_NAME = "my-whop-app"
NO_DATABASE = "none"

DASHBOARD_STEPS = (
    "1. Go to https://whop.com/dashboard\n"
    "2. Open the \"Developer\" tab on the left sidebar at the bottom\n"
    "3. Choose your app\n"
    "4. Click the \"Copy\" icon next to \"Environment Variables\"\n"
    "5. Paste them below (press Enter on an empty line when done)"
)


class BannerGroup(TyperGroup):
    """Custom group that shows banner before help."""

    def format_help(self, ctx, formatter):
        show_banner()
        super().format_help(ctx, formatter)


app = typer.Typer(
    name="create-whop-app",
    help="Create a Whop app: provision it on Whop and scaffold the project locally",
    add_completion=False,
    invoke_without_command=True,
    cls=BannerGroup,
)


def show_banner():
    art = Text(justify="center")
    for line, style in zip(BANNER.strip().splitlines(), BANNER_STYLES):
        art.append(f"{line}\n", style=style)
    art.append(TAGLINE, style="italic bright_yellow")
    console.print(art)
    console.print()


@app.callback()
def callback(ctx: typer.Context):
    if ctx.invoked_subcommand is not None or ctx.resilient_parsing:
        return
    show_banner()
    console.print(Align.center("[dim]Try 'create-whop-app init my-whop-app' or 'create-whop-app --help'[/dim]"))


def fail(message: str, title: str = "Error") -> None:
    console.print()
    console.print(Panel(message, title=f"[red]{title}[/red]", border_style="red", padding=(1, 2)))
    raise typer.Exit(1)


def choose_organization(companies: list[Organization], prompt_text: str, default_id: Optional[str] = None) -> str:
    options = {c.id: f"{c.title} [dim]({c.id})[/dim]" for c in companies}
    if len(options) == 1:
        return next(iter(options))
    return select_with_arrows(options, prompt_text, default_id)


async def _provision(
    settings: Settings,
    tracker: StepTracker,
    *,
    project_name: str,
    project_path: Path,
    database: Optional[str],
    manager: PackageManager,
    git: bool,
    skip_tls: bool,
) -> ProvisioningContext:
    store = SessionStore(settings.session_path)
    async with WhopClient(settings.api_base_url, verify=build_ssl_context(skip_tls)) as client:
        auth = AuthSession.from_store(client, store, TerminalPrompter())
        session = await auth.ensure_authenticated()
        client.authorize(session)
        console.print(f"[green]✔[/green] [dim]Signed in as[/dim] {session.identity}")

        try:
            companies = list(await client.list_companies())
        except WhopAPIError as e:
            fail(f"Could not load your Whop companies:\n{e}", "Whop API Error")
        if not companies:
            fail(
                "Your Whop account has no companies yet.\n"
                "Create one at [cyan]https://whop.com/dashboard[/cyan] and run this command again.",
                "No Company Found",
            )

        owner_id = choose_organization(companies, "Which company should own the app?")
        install_id = choose_organization(companies, "Which company should the app be installed to?", owner_id)

        context = ProvisioningContext(
            project_name=project_name,
            project_path=project_path,
            owner_company_id=owner_id,
            install_company_id=install_id,
            package_manager=manager,
            database=database,
        )
        pipeline = ProvisioningPipeline(
            build_provisioning_steps(client, settings.templates_dir, git=git),
            tracker,
        )

        # transient so the live tree is replaced by the final static render
        with Live(tracker.render(), console=console, refresh_per_second=8, transient=True) as live:
            tracker.attach_refresh(lambda: live.update(tracker.render()))
            try:
                return await pipeline.run(context)
            finally:
                tracker.attach_refresh(None)


def start_dev_server(manager: PackageManager, project_path: Path) -> int:
    console.print()
    console.print("[cyan]Starting development server...[/cyan]")
    console.print()
    logger.info("CMD %s (cwd=%s)", " ".join(manager.dev_command), project_path)
    try:
        return subprocess.run(manager.dev_command, cwd=project_path).returncode
    except KeyboardInterrupt:
        return 0
    except FileNotFoundError:
        console.print(f"[red]{manager.value} not found on PATH[/red]")
        return 1


@app.command()
def init(
    project_name: str = typer.Argument(None, help="Name for your new project directory"),
    db: str = typer.Option(None, "--db", help="Database addon to include (e.g. sqlite, supabase, or none)"),
    pm: str = typer.Option(None, "--pm", help="Package manager: npm, pnpm, yarn or bun (default: detected)"),
    no_git: bool = typer.Option(False, "--no-git", help="Skip git repository initialization"),
    no_dev: bool = typer.Option(False, "--no-dev", help="Do not start the development server afterwards"),
    skip_tls: bool = typer.Option(False, "--skip-tls", help="Skip SSL/TLS verification (not recommended)"),
    debug: bool = typer.Option(False, "--debug", help="Show verbose diagnostic output"),
):
    """
    Create a new Whop app.

    This command will:
    1. Sign you in to Whop with a one-time code (the session is reused later)
    2. Create the app on Whop, install it to a company and create checkout offers
    3. Copy the Next.js template (plus an optional database addon)
    4. Install dependencies and write the .env file
    5. Start the development server

    Examples:
        create-whop-app init my-whop-app
        create-whop-app init my-whop-app --db sqlite
        create-whop-app init my-whop-app --pm pnpm --no-git
    """
    show_banner()
    log_path = configure_logging(debug)
    settings = Settings.from_env()

    if not project_name:
        project_name = TerminalPrompter().ask_text("Project name:", default=DEFAULT_PROJECT_NAME)
    project_name = (project_name or "").strip()
    if not project_name:
        console.print("[red]Invalid project name.[/red]")
        raise typer.Exit(1)

    project_path = Path(project_name).resolve()
    if project_path.exists():
        fail(
            f"Directory '[cyan]{project_name}[/cyan]' already exists\n"
            "Please choose a different project name or remove the existing directory.",
            "Directory Conflict",
        )

    template_dir = settings.templates_dir / BASE_TEMPLATE
    if not template_dir.is_dir():
        fail(f"Template not found at [cyan]{template_dir}[/cyan]", "Missing Template")

    if pm:
        try:
            manager = PackageManager(pm.lower())
        except ValueError:
            console.print(f"[red]Error:[/red] Invalid package manager '{pm}'. Choose from: {', '.join(m.value for m in PackageManager)}")
            raise typer.Exit(1)
    else:
        manager = detect_package_manager(settings.user_agent)

    addons = list_addons(settings.templates_dir / ADDONS_DIR)
    db_choices = {NO_DATABASE: "No database"}
    db_choices.update({name: addon.description or name for name, addon in addons.items()})
    if db:
        if db not in db_choices:
            console.print(f"[red]Error:[/red] Invalid database '{db}'. Choose from: {', '.join(db_choices)}")
            raise typer.Exit(1)
        selected_db = db
    elif len(db_choices) > 1 and sys.stdin.isatty():
        selected_db = select_with_arrows(db_choices, "Choose a database:", NO_DATABASE)
    else:
        selected_db = NO_DATABASE

    setup_lines = [
        "[cyan]Whop App Setup[/cyan]",
        "",
        f"{'Project':<17} [green]{project_path.name}[/green]",
        f"{'Target Path':<17} [dim]{project_path}[/dim]",
        f"{'Database':<17} {db_choices[selected_db]}",
        f"{'Package Manager':<17} {manager.value}",
    ]
    console.print(Panel("\n".join(setup_lines), border_style="cyan", padding=(1, 2)))

    tracker = StepTracker("Create Whop App")
    try:
        context = asyncio.run(
            _provision(
                settings,
                tracker,
                project_name=project_name,
                project_path=project_path,
                database=None if selected_db == NO_DATABASE else selected_db,
                manager=manager,
                git=not no_git,
                skip_tls=skip_tls,
            )
        )
    except StepFailedError as e:
        console.print(tracker.render())
        lines = [f"{e.title} failed:", f"[red]{e.cause}[/red]"]
        # every step after the first runs once the app exists on Whop
        if e.step != CREATE_APP_STEP:
            lines += ["", "[yellow]Resources already created on Whop were not removed.[/yellow]"]
        lines += ["", f"[dim]Log file: {log_path}[/dim]"]
        console.print(Panel("\n".join(lines), title="Failure", border_style="red", padding=(1, 2)))
        raise typer.Exit(1)

    console.print(tracker.render())
    console.print("\n[bold green]Project ready.[/bold green]")

    steps_lines = [f"1. Go to the project folder: [cyan]cd {project_name}[/cyan]"]
    steps_lines.append(f"2. Start the dev server: [cyan]{' '.join(manager.dev_command)}[/cyan]")
    if context.app_url:
        steps_lines.append(f"3. Open your app on Whop: [cyan]{context.app_url}[/cyan]")
    console.print()
    console.print(Panel("\n".join(steps_lines), title="Next Steps", border_style="cyan", padding=(1, 2)))

    if no_dev:
        return
    raise typer.Exit(start_dev_server(manager, project_path))


@app.command()
def env(
    project_dir: Path = typer.Argument(Path("."), help="Project directory to write the .env file into"),
    debug: bool = typer.Option(False, "--debug", help="Show verbose diagnostic output"),
):
    """Configure an existing project by pasting environment variables from the Whop dashboard."""
    configure_logging(debug)
    project_dir = project_dir.resolve()
    if not project_dir.is_dir():
        console.print(f"[red]Error:[/red] Directory not found: {project_dir}")
        raise typer.Exit(1)

    console.print("[cyan]Environment Setup[/cyan]")
    console.print(DASHBOARD_STEPS)
    console.print()
    console.print("[dim]Paste environment variables:[/dim]")

    stdin = typer.get_text_stream("stdin")
    pasted = collect_pasted_block(iter(stdin.readline, ""))
    if not pasted.strip():
        console.print("[red]No environment variables provided.[/red]")
        raise typer.Exit(1)

    try:
        values = read_env_block(pasted)
    except MissingEnvKeysError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    env_path = project_dir / ".env"
    env_path.write_text(render_env_block(values), encoding="utf-8")
    logger.info("Wrote %d variables to %s", len(values), env_path)
    console.print("[green]✓[/green] Environment variables configured")


@app.command()
def whoami():
    """Show the Whop account of the saved session."""
    session = SessionStore(Settings.from_env().session_path).load()
    if session is None or not session.is_valid():
        console.print("[yellow]Not signed in.[/yellow]")
        raise typer.Exit(1)
    console.print(f"Signed in as [cyan]{session.identity}[/cyan]")


@app.command()
def logout():
    """Remove the saved Whop session."""
    store = SessionStore(Settings.from_env().session_path)
    if store.clear():
        console.print(f"[green]✓[/green] Removed session at {store.path}")
    else:
        console.print("[dim]No saved session.[/dim]")


def main():
    app()


if __name__ == "__main__":
    main()
