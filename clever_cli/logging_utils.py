"""Logging setup and the audit trail of deployment operations.

Diagnostics go to ``~/.clever/logs/clever.log`` (and to stderr with
``--verbose``). Deployment operations are also recorded as JSON lines in
``audit.log``.
"""

import json
import logging
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from rich.logging import RichHandler

from . import __version__
from .config import default_config_dir

LOGGER_NAME = "clever_cli"
AUDIT_LOGGER_NAME = "clever_cli.audit"


class AuditEventType(Enum):
    """Types of audited events."""
    CONFIGURATION_CHANGE = "configuration_change"
    ALIAS_CHANGE = "alias_change"
    DEPLOYMENT_OPERATION = "deployment_operation"


def is_verbose_env() -> bool:
    return os.environ.get("CLEVER_VERBOSE", "") == "1"


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> logging.Logger:
    """Configure the ``clever_cli`` logger hierarchy.

    Args:
        verbose: Also log DEBUG messages to stderr.
        log_dir: Directory for log files, ``<config dir>/logs`` by default.

    Returns:
        The package root logger.
    """
    if log_dir is None:
        log_dir = default_config_dir() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    os.chmod(log_dir, 0o700)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    logger.handlers.clear()

    file_handler = logging.FileHandler(log_dir / "clever.log")
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s %(name)s: %(message)s'
    ))
    logger.addHandler(file_handler)

    if verbose or is_verbose_env():
        console_handler = RichHandler(show_path=False, markup=False)
        console_handler.setLevel(logging.DEBUG)
        logger.addHandler(console_handler)
        file_handler.setLevel(logging.DEBUG)

    audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)
    audit_logger.setLevel(logging.INFO)
    audit_logger.propagate = False
    audit_logger.handlers.clear()

    audit_file = log_dir / "audit.log"
    audit_handler = logging.FileHandler(audit_file)
    audit_handler.setFormatter(logging.Formatter('%(message)s'))
    audit_logger.addHandler(audit_handler)
    os.chmod(audit_file, 0o600)

    return logger


class AuditLogger:
    """Writes structured audit entries."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self.logger = logger or logging.getLogger(AUDIT_LOGGER_NAME)
        self.user = self.get_user()

    @staticmethod
    def get_user() -> str:
        return os.environ.get('USER') or os.environ.get('USERNAME') or "unknown"

    def _create_log_entry(
        self,
        event_type: AuditEventType,
        message: str,
        resource: Optional[str] = None,
        action: Optional[str] = None,
        result: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_type.value,
            "message": message,
            "user": self.user,
            "source": "clever_cli",
            "version": __version__,
        }
        if resource:
            entry["resource"] = resource
        if action:
            entry["action"] = action
        if result:
            entry["result"] = result
        if details:
            entry["details"] = details
        return entry

    def _write_entry(self, entry: Dict[str, Any]) -> None:
        self.logger.info(json.dumps(entry, default=str))

    def log_deployment_operation(
        self,
        operation: str,
        app_id: str,
        result: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Record a deploy or cancel operation and its outcome."""
        self._write_entry(self._create_log_entry(
            event_type=AuditEventType.DEPLOYMENT_OPERATION,
            message=f"Deployment {operation} {result.lower()}: {app_id} by {self.user}",
            resource=app_id,
            action=operation,
            result=result,
            details=details,
        ))

    def log_alias_change(self, action: str, alias: str, app_id: str) -> None:
        self._write_entry(self._create_log_entry(
            event_type=AuditEventType.ALIAS_CHANGE,
            message=f"Alias {alias} {action} for {app_id}",
            resource=app_id,
            action=action,
            details={"alias": alias},
        ))

    def log_configuration_change(self, setting: str) -> None:
        self._write_entry(self._create_log_entry(
            event_type=AuditEventType.CONFIGURATION_CHANGE,
            message=f"Configuration changed: {setting}",
            resource=setting,
            action="update",
        ))
