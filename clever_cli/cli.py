"""Main CLI interface for the Clever CLI."""

import sys
from typing import Callable, Optional

import click

from . import __version__
from .commands import (
    ActivityCommand,
    CancelDeployCommand,
    Command,
    CreateCommand,
    DeployCommand,
    DomainAddCommand,
    DomainListCommand,
    DomainRemoveCommand,
    EnvListCommand,
    EnvRemoveCommand,
    EnvSetCommand,
    LinkCommand,
    LogCommand,
    LoginCommand,
    StatusCommand,
    StopCommand,
    UnlinkCommand,
    execute,
)
from .config import Config
from .errors import CleverError, ErrorHandler, ExitCode, handle_keyboard_interrupt
from .logging_utils import setup_logging
from .validators import REGIONS, InputValidator

error_handler = ErrorHandler()

alias_option = click.option('--alias', '-a', help='Alias of the linked application')


def _run(ctx: click.Context, build: Callable[[], Command], context: Optional[str] = None) -> None:
    """Validate input, execute the command and exit with its code."""
    obj = ctx.find_root().obj or {}
    try:
        command = build()
        code = execute(command, obj.get('config'), obj.get('cwd'), obj.get('api_factory'))
    except CleverError as e:
        error_handler.display_error(e, context)
        sys.exit(ErrorHandler.exit_code_for(e))
    except KeyboardInterrupt:
        handle_keyboard_interrupt()
    sys.exit(int(code))


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Show debug output')
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Clever CLI - deploy and manage applications on Clever Cloud."""
    ctx.ensure_object(dict)
    try:
        if ctx.obj.get('config') is None:
            ctx.obj['config'] = Config()
        config = ctx.obj['config']
        setup_logging(verbose, config.config_dir / "logs")
    except (CleverError, OSError) as e:
        error_handler.display_error(e, "Initializing")
        sys.exit(ExitCode.USER_ERROR)


@main.command()
@alias_option
@click.option('--branch', '-b', default='', help='Branch to deploy (current branch by default)')
@click.option('--quiet', '-q', is_flag=True, help="Don't show the application logs while deploying")
@click.pass_context
def deploy(ctx: click.Context, alias: Optional[str], branch: str, quiet: bool) -> None:
    """Deploy the local source tree and follow the deployment."""
    _run(ctx, lambda: DeployCommand(
        alias=InputValidator.validate_alias(alias),
        branch=InputValidator.validate_git_branch(branch),
        quiet=quiet,
    ), "Deploying")


@main.command(name='cancel-deploy')
@alias_option
@click.pass_context
def cancel_deploy(ctx: click.Context, alias: Optional[str]) -> None:
    """Cancel the deployment in progress."""
    _run(ctx, lambda: CancelDeployCommand(alias=InputValidator.validate_alias(alias)), "Cancelling deployment")


@main.command()
@alias_option
@click.pass_context
def log(ctx: click.Context, alias: Optional[str]) -> None:
    """Follow the application logs (Ctrl+C to stop)."""
    _run(ctx, lambda: LogCommand(alias=InputValidator.validate_alias(alias)), "Following logs")


@main.command()
@alias_option
@click.option('--show-all', is_flag=True, help='Show the whole deployment history')
@click.pass_context
def activity(ctx: click.Context, alias: Optional[str], show_all: bool) -> None:
    """Show recent deployments."""
    _run(ctx, lambda: ActivityCommand(alias=InputValidator.validate_alias(alias), show_all=show_all))


@main.command()
@click.option('--token', prompt=True, hide_input=True, help='API authentication token')
@click.option('--url', help='API URL (e.g., https://api.clever-cloud.com/v2)')
@click.pass_context
def login(ctx: click.Context, token: str, url: Optional[str]) -> None:
    """Store the API credentials."""
    _run(ctx, lambda: LoginCommand(
        token=InputValidator.validate_api_token(token),
        url=InputValidator.validate_url(url) if url else None,
    ), "Logging in")


@main.command()
@click.argument('name')
@click.option('--type', '-t', 'instance_type', required=True, help='Instance type (node, python, docker...)')
@click.option('--region', default='par', type=click.Choice(REGIONS), help='Region')
@click.option('--orga', '-o', 'org_id', help='Organisation id')
@alias_option
@click.pass_context
def create(
    ctx: click.Context,
    name: str,
    instance_type: str,
    region: str,
    org_id: Optional[str],
    alias: Optional[str]
) -> None:
    """Create an application and link it to this directory."""
    _run(ctx, lambda: CreateCommand(
        name=InputValidator.validate_app_name(name),
        instance_type=instance_type,
        region=InputValidator.validate_region(region),
        org_id=org_id,
        alias=InputValidator.validate_alias(alias),
    ), "Creating application")


@main.command()
@click.argument('app_id')
@click.option('--orga', '-o', 'org_id', help='Organisation id')
@alias_option
@click.pass_context
def link(ctx: click.Context, app_id: str, org_id: Optional[str], alias: Optional[str]) -> None:
    """Link an existing application to this directory."""
    _run(ctx, lambda: LinkCommand(
        app_id=InputValidator.validate_app_id(app_id),
        org_id=org_id,
        alias=InputValidator.validate_alias(alias),
    ), "Linking application")


@main.command()
@click.argument('alias')
@click.pass_context
def unlink(ctx: click.Context, alias: str) -> None:
    """Remove a linked application from this directory."""
    _run(ctx, lambda: UnlinkCommand(alias=InputValidator.validate_alias(alias)))


@main.group(invoke_without_command=True)
@alias_option
@click.pass_context
def env(ctx: click.Context, alias: Optional[str]) -> None:
    """List or change environment variables."""
    if ctx.invoked_subcommand is None:
        _run(ctx, lambda: EnvListCommand(alias=InputValidator.validate_alias(alias)))


@env.command(name='set')
@click.argument('name')
@click.argument('value')
@click.pass_context
def env_set(ctx: click.Context, name: str, value: str) -> None:
    """Add or update an environment variable."""
    alias = ctx.parent.params.get('alias')
    _run(ctx, lambda: EnvSetCommand(
        name=InputValidator.validate_env_var_key(name),
        value=InputValidator.validate_env_var_value(value),
        alias=InputValidator.validate_alias(alias),
    ))


@env.command(name='rm')
@click.argument('name')
@click.pass_context
def env_rm(ctx: click.Context, name: str) -> None:
    """Remove an environment variable."""
    alias = ctx.parent.params.get('alias')
    _run(ctx, lambda: EnvRemoveCommand(
        name=InputValidator.validate_env_var_key(name),
        alias=InputValidator.validate_alias(alias),
    ))


@main.group(invoke_without_command=True)
@alias_option
@click.pass_context
def domain(ctx: click.Context, alias: Optional[str]) -> None:
    """List or change domain names."""
    if ctx.invoked_subcommand is None:
        _run(ctx, lambda: DomainListCommand(alias=InputValidator.validate_alias(alias)))


@domain.command(name='add')
@click.argument('fqdn')
@click.pass_context
def domain_add(ctx: click.Context, fqdn: str) -> None:
    """Attach a domain name."""
    alias = ctx.parent.params.get('alias')
    _run(ctx, lambda: DomainAddCommand(
        fqdn=InputValidator.validate_domain_name(fqdn),
        alias=InputValidator.validate_alias(alias),
    ))


@domain.command(name='rm')
@click.argument('fqdn')
@click.pass_context
def domain_rm(ctx: click.Context, fqdn: str) -> None:
    """Detach a domain name."""
    alias = ctx.parent.params.get('alias')
    _run(ctx, lambda: DomainRemoveCommand(
        fqdn=InputValidator.validate_domain_name(fqdn),
        alias=InputValidator.validate_alias(alias),
    ))


@main.command()
@alias_option
@click.pass_context
def stop(ctx: click.Context, alias: Optional[str]) -> None:
    """Stop the application."""
    _run(ctx, lambda: StopCommand(alias=InputValidator.validate_alias(alias)), "Stopping application")


@main.command()
@alias_option
@click.pass_context
def status(ctx: click.Context, alias: Optional[str]) -> None:
    """Show the application state and its instances."""
    _run(ctx, lambda: StatusCommand(alias=InputValidator.validate_alias(alias)))


if __name__ == '__main__':
    main()
