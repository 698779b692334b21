"""Error taxonomy and recovery suggestions for the Clever CLI.

Every error raised by the CLI derives from ``CleverError``, which carries a
message and an optional list of recovery suggestions. ``ErrorHandler`` renders
them as a panel and maps them onto process exit codes.
"""

import sys
from enum import IntEnum
from typing import Any, Dict, List, Optional, Self

from rich.console import Console
from rich.panel import Panel

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Process exit codes."""

    SUCCESS = 0
    REMOTE_FAILURE = 1
    USER_ERROR = 2
    TRANSPORT_FAILURE = 3
    CANCELLED = 4
    INTERRUPTED = 130


class CleverError(Exception):
    """Base exception class for Clever CLI errors."""

    exit_code = ExitCode.REMOTE_FAILURE

    def __init__(self: Self, message: str, suggestions: Optional[List[str]] = None) -> None:
        """Initialize Clever error.

        Args:
            message: The error message to display.
            suggestions: Optional list of recovery suggestions.
        """
        super().__init__(message)
        self.message = message
        self.suggestions = suggestions or []


class ConfigurationError(CleverError):
    """Raised when the CLI is not configured or the configuration is invalid."""

    exit_code = ExitCode.USER_ERROR


class ValidationError(CleverError):
    """Raised when user input fails validation."""

    exit_code = ExitCode.USER_ERROR


# Resolution

class ResolutionError(CleverError):
    """Raised when an alias cannot be resolved to an application."""

    exit_code = ExitCode.USER_ERROR


class UnresolvedAlias(ResolutionError):
    """No alias was given and no default application is linked."""
    pass


class UnknownAlias(ResolutionError):
    """A named alias has no registry entry."""
    pass


class AliasConflict(ResolutionError):
    """The alias is already bound to another application."""
    pass


# Publishing

class PublishError(CleverError):
    """Raised when source publication fails. No deployment is created."""
    pass


class PublishRejected(PublishError):
    """The platform refused the push."""
    pass


class PublishConflict(PublishError):
    """A deployment is already in flight for the application."""
    pass


# Transport

class TransportError(CleverError):
    """Transient network failure while talking to the platform."""

    exit_code = ExitCode.TRANSPORT_FAILURE


class DriverUnreachable(TransportError):
    """Status polling exceeded its retry ceiling.

    The remote deployment may still be in progress.
    """
    pass


class LogStreamUnreachable(TransportError):
    """The log feed could not be re-established."""
    pass


class ResumeRejected(CleverError):
    """The platform cannot resume the log feed from the requested token."""

    def __init__(self: Self, message: str, since: Optional[int] = None) -> None:
        super().__init__(message)
        self.since = since


# Remote state

class RemoteStateError(CleverError):
    """The platform reported an explicit deployment failure."""
    pass


class CancelError(CleverError):
    """Base class for cancellation errors."""
    pass


class InvalidCancelState(CancelError):
    """Cancellation requested outside of QUEUED, BUILDING or DEPLOYING."""

    exit_code = ExitCode.USER_ERROR


class CancelRequestFailed(CancelError):
    """The platform did not accept the cancellation request."""
    pass


class ReportUnavailable(CleverError):
    """Deployment activity could not be fetched."""

    exit_code = ExitCode.TRANSPORT_FAILURE


# Remote requests

class RemoteRequestError(CleverError):
    """The platform answered with an error."""

    def __init__(
        self: Self,
        message: str,
        status_code: Optional[int] = None,
        suggestions: Optional[List[str]] = None
    ) -> None:
        super().__init__(message, suggestions)
        self.status_code = status_code


class AuthenticationError(RemoteRequestError):
    """The API token was refused."""
    pass


class NotFoundError(RemoteRequestError):
    """The requested resource does not exist."""
    pass


class ErrorHandler:
    """Handles and displays errors with recovery suggestions."""

    def __init__(self: Self) -> None:
        """Initialize the error handler."""
        self.error_patterns: Dict[str, Dict[str, Any]] = {
            "connection_refused": {
                "keywords": ["connection refused", "connection error", "timeout", "timed out"],
                "suggestions": [
                    "Check your network connectivity to the platform",
                    "Verify the API URL: clever login --url <URL>",
                    "Check the state of your deployments later: clever activity",
                ]
            },
            "authentication_failed": {
                "keywords": ["401", "unauthorized", "authentication", "invalid token"],
                "suggestions": [
                    "Log in again: clever login --token <TOKEN>",
                    "Generate a new API token from the console",
                ]
            },
            "not_found": {
                "keywords": ["404", "not found", "does not exist"],
                "suggestions": [
                    "Check the application id or alias",
                    "Link the application again: clever link <APP_ID>",
                ]
            },
            "alias": {
                "keywords": ["alias"],
                "suggestions": [
                    "Link an application: clever link <APP_ID> --alias <ALIAS>",
                    "Pass the alias explicitly: --alias <ALIAS>",
                ]
            },
            "git_error": {
                "keywords": ["git", "push", "branch", "repository"],
                "suggestions": [
                    "Check that the branch exists locally",
                    "Verify your SSH keys are registered on the platform",
                    "Commit your changes before deploying",
                ]
            },
        }

    def identify_error_type(self: Self, error_message: str) -> Optional[str]:
        """Identify the type of error based on the message.

        Args:
            error_message: The error message to analyze.

        Returns:
            The error type key if identified, None otherwise.
        """
        error_lower = error_message.lower()

        for error_type, pattern_data in self.error_patterns.items():
            for keyword in pattern_data["keywords"]:
                if keyword in error_lower:
                    return error_type

        return None

    def get_suggestions(self: Self, error_message: str) -> List[str]:
        """Get recovery suggestions for an error message."""
        error_type = self.identify_error_type(error_message)

        if error_type:
            return self.error_patterns[error_type]["suggestions"]

        return [
            "Re-run the command with --verbose for more details",
            "Check the log file in ~/.clever/logs/clever.log",
        ]

    def display_error(
        self: Self,
        error: Exception,
        context: Optional[str] = None,
        show_suggestions: bool = True
    ) -> None:
        """Display an error with formatting and suggestions.

        Args:
            error: The exception that occurred.
            context: Optional context about what was being attempted.
            show_suggestions: Whether to show recovery suggestions.
        """
        error_message = str(error)
        content = []

        if context:
            content.append(f"[bold]Context:[/bold] {context}")
            content.append("")

        content.append(f"[bold red]Error:[/bold red] {error_message}")

        if show_suggestions:
            if isinstance(error, CleverError) and error.suggestions:
                suggestions = error.suggestions
            else:
                suggestions = self.get_suggestions(error_message)

            if suggestions:
                content.append("")
                content.append("[bold blue]Suggested solutions:[/bold blue]")
                for i, suggestion in enumerate(suggestions, 1):
                    content.append(f"  {i}. {suggestion}")

        console.print(Panel(
            "\n".join(content),
            title="[bold red]Clever CLI Error[/bold red]",
            border_style="red",
            expand=False
        ))

    @staticmethod
    def exit_code_for(error: Exception) -> ExitCode:
        """Map an exception onto a process exit code."""
        if isinstance(error, CleverError):
            return error.exit_code
        if isinstance(error, KeyboardInterrupt):
            return ExitCode.INTERRUPTED
        return ExitCode.REMOTE_FAILURE


def handle_keyboard_interrupt() -> None:
    """Handle Ctrl+C gracefully."""
    console.print("\n[yellow]Operation cancelled by user[/yellow]")
    sys.exit(ExitCode.INTERRUPTED)
