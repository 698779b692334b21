"""Display utilities for the Clever CLI."""

from typing import Any, Dict, List, Optional, Self

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ..models import Application, DeploymentState, DeploymentSummary, LogEntry, LogSource, RevisionHandle
from ..orchestrator import DeployObserver, DeployOutcome

console = Console()


def _get_status_style(status: str) -> str:
    """Get Rich style for a deployment or application state.

    Args:
        status: State name.

    Returns:
        Rich style string for the state.
    """
    status_styles = {
        'running': 'green',
        'ok': 'green',
        'queued': 'blue',
        'published': 'blue',
        'building': 'yellow',
        'deploying': 'yellow',
        'wip': 'yellow',
        'failed': 'bold red',
        'fail': 'bold red',
        'cancelled': 'magenta',
        'stopped': 'red',
    }
    return status_styles.get(status.lower(), 'white')


def _format_time(value: Any) -> str:
    if value is None:
        return "N/A"
    return value.strftime("%Y-%m-%d %H:%M:%S")


def display_activity_table(summaries: List[DeploymentSummary], app: Application) -> None:
    """Display deployments in a formatted table.

    Args:
        summaries: Deployments, most recent first.
        app: Application the deployments belong to.
    """
    if not summaries:
        console.print(f"[yellow]No deployments found for {escape(app.label)}.[/yellow]")
        return

    table = Table(title=f"Activity of {escape(app.label)}", show_header=True, header_style="bold magenta")
    table.add_column("Started", style="dim")
    table.add_column("State", justify="center")
    table.add_column("Revision", style="cyan", no_wrap=True)
    table.add_column("Deployment", style="blue")
    table.add_column("Cause")

    for summary in summaries:
        label = summary.state_label or "unknown"
        status_style = _get_status_style(label)
        table.add_row(
            _format_time(summary.started_at),
            f"[{status_style}]{escape(label)}[/{status_style}]",
            (summary.revision or "N/A")[:8],
            summary.id,
            escape(summary.cause or ""),
        )

    console.print(table)


def display_env(variables: Dict[str, str]) -> None:
    if not variables:
        console.print("[yellow]No environment variables.[/yellow]")
        return
    for name in sorted(variables):
        console.print(f"{name}={variables[name]}", markup=False, highlight=False)


def display_domains(domains: List[str]) -> None:
    if not domains:
        console.print("[yellow]No domain names.[/yellow]")
        return
    for domain in domains:
        console.print(domain, markup=False, highlight=False)


def display_app_status(app: Application, status: Dict[str, Any]) -> None:
    """Display the running state and instances of an application."""
    state = str(status.get('state', 'unknown'))
    style = _get_status_style(state)
    console.print(f"[bold]{escape(app.label)}[/bold] ({app.id}): [{style}]{escape(state)}[/{style}]")

    instances = status.get('instances') or []
    if not instances:
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Instance", style="cyan")
    table.add_column("State", justify="center")
    table.add_column("Commit", style="dim")
    for instance in instances:
        instance_state = str(instance.get('state', 'unknown'))
        instance_style = _get_status_style(instance_state)
        table.add_row(
            str(instance.get('id', 'N/A')),
            f"[{instance_style}]{escape(instance_state)}[/{instance_style}]",
            str(instance.get('commit', 'N/A'))[:8],
        )
    console.print(table)


def print_log_entry(entry: LogEntry) -> None:
    if entry.is_gap:
        console.print(f"[bold yellow]{escape(entry.message)}[/bold yellow]")
        return
    prefix = "[build] " if entry.source is LogSource.BUILD else ""
    stamp = f"{_format_time(entry.timestamp)} " if entry.timestamp else ""
    console.print(f"{stamp}{prefix}{entry.message}", markup=False, highlight=False)


class DeployReporter(DeployObserver):
    """Prints deployment progress to the terminal."""

    FINAL_MESSAGES = {
        DeploymentState.RUNNING: "[bold green]Deployment successful: application is running[/bold green]",
        DeploymentState.FAILED: "[bold red]Deployment failed[/bold red]",
        DeploymentState.CANCELLED: "[magenta]Deployment cancelled[/magenta]",
    }

    def __init__(self: Self, show_logs: bool = True) -> None:
        self.show_logs = show_logs

    def published(self: Self, app: Application, handle: RevisionHandle) -> None:
        console.print(
            f"[green]Pushed revision {handle.revision[:8]} to {escape(app.label)}[/green] "
            f"(deployment {handle.deployment_id})"
        )

    def state_changed(self: Self, state: DeploymentState) -> None:
        if state.is_terminal:
            return
        style = _get_status_style(state.value)
        console.print(f"Deployment [{style}]{state.value}[/{style}]")

    def log_entry(self: Self, entry: LogEntry) -> None:
        if self.show_logs:
            print_log_entry(entry)

    def warning(self: Self, message: str) -> None:
        console.print(f"[yellow]{escape(message)}[/yellow]")

    def finished(self: Self, outcome: DeployOutcome) -> None:
        if outcome.state is None:
            detail: Optional[str] = outcome.error.message if outcome.error else None
            console.print("[bold red]Lost contact with the platform; the deployment may still be running[/bold red]")
            if detail:
                console.print(f"[dim]{escape(detail)}[/dim]")
            return
        console.print(self.FINAL_MESSAGES.get(outcome.state, outcome.result))
        if outcome.error is not None:
            for suggestion in outcome.error.suggestions:
                console.print(f"  - {escape(suggestion)}")
