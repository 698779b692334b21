"""Command records and their dispatch.

Click callbacks validate their input, build one of the frozen records below
and hand it to ``execute``. Everything else happens here, against an explicit
``AppContext``.
"""

import asyncio
import logging
import re
import signal
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from .activity import ActivityReporter
from .bootstrap import ApiFactory, AppContext, build_context
from .config import Config
from .errors import ExitCode
from .logging_utils import AuditLogger
from .logs import LogStreamer
from .models import Application
from .orchestrator import DeploymentOrchestrator
from .retry import RetryPolicy
from .ui.display import (
    DeployReporter,
    console,
    display_activity_table,
    display_app_status,
    display_domains,
    display_env,
    print_log_entry,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeployCommand:
    alias: Optional[str] = None
    branch: str = ""
    quiet: bool = False


@dataclass(frozen=True)
class CancelDeployCommand:
    alias: Optional[str] = None


@dataclass(frozen=True)
class LogCommand:
    alias: Optional[str] = None


@dataclass(frozen=True)
class ActivityCommand:
    alias: Optional[str] = None
    show_all: bool = False


@dataclass(frozen=True)
class LoginCommand:
    token: str
    url: Optional[str] = None


@dataclass(frozen=True)
class CreateCommand:
    name: str
    instance_type: str
    region: str = "par"
    org_id: Optional[str] = None
    alias: Optional[str] = None


@dataclass(frozen=True)
class LinkCommand:
    app_id: str
    org_id: Optional[str] = None
    alias: Optional[str] = None


@dataclass(frozen=True)
class UnlinkCommand:
    alias: str


@dataclass(frozen=True)
class EnvListCommand:
    alias: Optional[str] = None


@dataclass(frozen=True)
class EnvSetCommand:
    name: str
    value: str
    alias: Optional[str] = None


@dataclass(frozen=True)
class EnvRemoveCommand:
    name: str
    alias: Optional[str] = None


@dataclass(frozen=True)
class DomainListCommand:
    alias: Optional[str] = None


@dataclass(frozen=True)
class DomainAddCommand:
    fqdn: str
    alias: Optional[str] = None


@dataclass(frozen=True)
class DomainRemoveCommand:
    fqdn: str
    alias: Optional[str] = None


@dataclass(frozen=True)
class StopCommand:
    alias: Optional[str] = None


@dataclass(frozen=True)
class StatusCommand:
    alias: Optional[str] = None


Command = Union[
    DeployCommand,
    CancelDeployCommand,
    LogCommand,
    ActivityCommand,
    LoginCommand,
    CreateCommand,
    LinkCommand,
    UnlinkCommand,
    EnvListCommand,
    EnvSetCommand,
    EnvRemoveCommand,
    DomainListCommand,
    DomainAddCommand,
    DomainRemoveCommand,
    StopCommand,
    StatusCommand,
]


def slugify(name: str) -> str:
    """Default alias derived from an application name."""
    return re.sub(r'[^a-z0-9_-]+', '-', name.lower()).strip('-')


@contextmanager
def interrupt_handler(callback: Callable[[], None]) -> Iterator[None]:
    """Route SIGINT to ``callback`` on the running loop, where supported."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, callback)
    except (NotImplementedError, RuntimeError, ValueError) as e:
        logger.debug("Cannot install the interrupt handler: %s", e)
        installed = False
    else:
        installed = True

    try:
        yield
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)


async def run_deploy(ctx: AppContext, app: Application, command: DeployCommand) -> ExitCode:
    """Deploy ``app``; a first Ctrl+C cancels the deployment, a second one stops waiting."""
    reporter = DeployReporter(show_logs=not command.quiet)
    orchestrator = DeploymentOrchestrator(ctx.api, ctx.settings, reporter, ctx.audit)
    cancel_requested = asyncio.Event()
    task = asyncio.current_task()

    def on_interrupt() -> None:
        if cancel_requested.is_set():
            task.cancel()
            return
        cancel_requested.set()
        reporter.warning("Cancelling the deployment, press Ctrl+C again to stop waiting")

    with interrupt_handler(on_interrupt):
        try:
            outcome = await orchestrator.deploy(
                app,
                command.branch,
                follow_logs=not command.quiet,
                cancel_requested=cancel_requested,
            )
        except asyncio.CancelledError:
            console.print("\n[yellow]Stopped waiting; the deployment may still be running[/yellow]")
            return ExitCode.INTERRUPTED
    return outcome.exit_code


async def run_cancel(ctx: AppContext, app: Application) -> ExitCode:
    orchestrator = DeploymentOrchestrator(ctx.api, ctx.settings, DeployReporter(show_logs=False), ctx.audit)
    outcome = await orchestrator.cancel(app)
    return outcome.exit_code


async def run_logs(ctx: AppContext, app: Application) -> None:
    policy = RetryPolicy(
        max_attempts=ctx.settings.max_attempts,
        backoff_base=ctx.settings.backoff_base,
        backoff_max=ctx.settings.backoff_max,
    )
    streamer = LogStreamer(ctx.api, app, policy=policy, reorder_window=ctx.settings.reorder_window)
    async for entry in streamer.stream():
        print_log_entry(entry)


def login(config: Config, command: LoginCommand) -> ExitCode:
    audit = AuditLogger()
    config.set('token', command.token)
    audit.log_configuration_change('token')
    if command.url:
        config.set('url', command.url)
        audit.log_configuration_change('url')
    console.print("[green]Logged in[/green]")
    return ExitCode.SUCCESS


def dispatch(ctx: AppContext, command: Command) -> ExitCode:
    """Run ``command`` against ``ctx`` and return the process exit code."""
    logger.debug("Dispatching %s", command)

    match command:
        case DeployCommand(alias=alias):
            app = ctx.resolver.resolve(alias)
            return asyncio.run(run_deploy(ctx, app, command))

        case CancelDeployCommand(alias=alias):
            app = ctx.resolver.resolve(alias)
            return asyncio.run(run_cancel(ctx, app))

        case LogCommand(alias=alias):
            app = ctx.resolver.resolve(alias)
            asyncio.run(run_logs(ctx, app))
            return ExitCode.SUCCESS

        case ActivityCommand(alias=alias, show_all=show_all):
            app = ctx.resolver.resolve(alias)
            with console.status(f"[bold blue]Fetching activity of {app.label}..."):
                summaries = ActivityReporter(ctx.api).report(app, show_all)
            display_activity_table(summaries, app)
            return ExitCode.SUCCESS

        case CreateCommand(name=name, instance_type=instance_type, region=region, org_id=org_id, alias=alias):
            with console.status(f"[bold blue]Creating application {name}..."):
                app = ctx.api.create_application(name, instance_type, region, org_id)
            alias = alias or slugify(name) or app.id
            ctx.registry.bind(alias, app)
            ctx.audit.log_alias_change("bind", alias, app.id)
            console.print(f"[green]Created application {name} ({app.id}) as {alias}[/green]")
            return ExitCode.SUCCESS

        case LinkCommand(app_id=app_id, org_id=org_id, alias=alias):
            app = ctx.resolver.resolve(app_id=app_id, org_id=org_id)
            alias = alias or slugify(app.name) or app.id
            ctx.registry.bind(alias, app)
            ctx.audit.log_alias_change("bind", alias, app.id)
            console.print(f"[green]Linked {app.id} as {alias}[/green]")
            return ExitCode.SUCCESS

        case UnlinkCommand(alias=alias):
            app = ctx.registry.unbind(alias)
            ctx.audit.log_alias_change("unbind", alias, app.id)
            console.print(f"[green]Unlinked {alias} ({app.id})[/green]")
            return ExitCode.SUCCESS

        case EnvListCommand(alias=alias):
            app = ctx.resolver.resolve(alias)
            display_env(ctx.api.list_env(app))
            return ExitCode.SUCCESS

        case EnvSetCommand(name=name, value=value, alias=alias):
            app = ctx.resolver.resolve(alias)
            ctx.api.set_env(app, name, value)
            console.print(f"[green]Set {name} on {app.label}[/green]")
            return ExitCode.SUCCESS

        case EnvRemoveCommand(name=name, alias=alias):
            app = ctx.resolver.resolve(alias)
            ctx.api.remove_env(app, name)
            console.print(f"[green]Removed {name} from {app.label}[/green]")
            return ExitCode.SUCCESS

        case DomainListCommand(alias=alias):
            app = ctx.resolver.resolve(alias)
            display_domains(ctx.api.list_domains(app))
            return ExitCode.SUCCESS

        case DomainAddCommand(fqdn=fqdn, alias=alias):
            app = ctx.resolver.resolve(alias)
            ctx.api.add_domain(app, fqdn)
            console.print(f"[green]Added {fqdn} to {app.label}[/green]")
            return ExitCode.SUCCESS

        case DomainRemoveCommand(fqdn=fqdn, alias=alias):
            app = ctx.resolver.resolve(alias)
            ctx.api.remove_domain(app, fqdn)
            console.print(f"[green]Removed {fqdn} from {app.label}[/green]")
            return ExitCode.SUCCESS

        case StopCommand(alias=alias):
            app = ctx.resolver.resolve(alias)
            with console.status(f"[bold yellow]Stopping {app.label}..."):
                ctx.api.stop_application(app)
            ctx.audit.log_deployment_operation("stop", app.id, "SUCCESS")
            console.print(f"[green]Stopped {app.label}[/green]")
            return ExitCode.SUCCESS

        case StatusCommand(alias=alias):
            app = ctx.resolver.resolve(alias)
            display_app_status(app, ctx.api.get_application_status(app))
            return ExitCode.SUCCESS

        case LoginCommand():
            return login(ctx.config, command)

    raise TypeError(f"Unknown command: {command!r}")


def execute(
    command: Command,
    config: Optional[Config] = None,
    cwd: Optional[Path] = None,
    api_factory: Optional[ApiFactory] = None
) -> ExitCode:
    """Initialize the context for ``command`` and run it.

    ``login`` is the only command that runs without stored credentials.
    """
    config = config or Config()
    if isinstance(command, LoginCommand):
        return login(config, command)

    ctx = build_context(config, cwd, api_factory)
    try:
        return dispatch(ctx, command)
    finally:
        ctx.close()
