"""Deployment history of an application."""

import logging
from typing import Any, Dict, List, Self

from .api import PlatformAPI
from .errors import CleverError, ReportUnavailable
from .models import Application, DeploymentSummary, map_remote_state, parse_timestamp

logger = logging.getLogger(__name__)

RECENT_LIMIT = 10


def summary_from_payload(payload: Dict[str, Any]) -> DeploymentSummary:
    """Build a summary from one deployment returned by the platform."""
    raw_state = str(payload.get('state', ''))
    return DeploymentSummary(
        id=str(payload.get('uuid') or payload.get('id', '')),
        revision=payload.get('commit'),
        state=map_remote_state(raw_state),
        raw_state=raw_state,
        started_at=parse_timestamp(payload.get('date')),
        ended_at=parse_timestamp(payload.get('endDate')),
        cause=payload.get('cause'),
    )


class ActivityReporter:
    """Read-only view over past and current deployments."""

    def __init__(self: Self, api: PlatformAPI) -> None:
        self.api = api

    def report(self: Self, app: Application, show_all: bool = False) -> List[DeploymentSummary]:
        """Deployments of ``app``, most recent first.

        Args:
            app: Application to report on.
            show_all: Include the whole history instead of the last
                ``RECENT_LIMIT`` deployments.

        Raises:
            ReportUnavailable: The platform could not be queried.
        """
        limit = None if show_all else RECENT_LIMIT
        try:
            payload = self.api.list_deployments(app, limit=limit)
        except CleverError as e:
            logger.warning("Activity query for %s failed: %s", app.id, e)
            raise ReportUnavailable(
                f"Cannot fetch the activity of {app.label}: {e.message}",
                e.suggestions
            ) from e

        summaries = [summary_from_payload(item) for item in payload]
        # Undated entries go last
        summaries.sort(key=lambda s: s.started_at.timestamp() if s.started_at else float('-inf'), reverse=True)
        if limit is not None:
            summaries = summaries[:limit]
        return summaries
