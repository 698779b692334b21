"""Publishes the local source tree to the platform."""

import logging
from typing import Self

from .api import PlatformAPI
from .errors import PublishError, PublishRejected, RemoteRequestError
from .models import Application, RevisionHandle

logger = logging.getLogger(__name__)


class SourcePublisher:
    """Single blocking step turning a branch into a deployable revision."""

    def __init__(self: Self, api: PlatformAPI) -> None:
        self.api = api

    def publish(self: Self, app: Application, branch: str = "") -> RevisionHandle:
        """Push ``branch`` (the current branch when empty) for ``app``.

        Raises:
            PublishRejected: The platform refused the push.
            PublishConflict: A deployment is already in flight.
            TransportError: The platform could not be reached.
        """
        logger.info("Publishing %s (branch=%s)", app.id, branch or "<current>")
        try:
            handle = self.api.publish_source(app, branch)
        except PublishError:
            raise
        except RemoteRequestError as e:
            raise PublishRejected(e.message, e.suggestions)

        logger.info("Published revision %s as deployment %s", handle.revision, handle.deployment_id)
        return handle
