"""Terminal output for the Clever CLI."""

from .display import (
    DeployReporter,
    display_activity_table,
    display_app_status,
    display_domains,
    display_env,
    print_log_entry,
)

__all__ = [
    'DeployReporter',
    'display_activity_table',
    'display_app_status',
    'display_domains',
    'display_env',
    'print_log_entry',
]
