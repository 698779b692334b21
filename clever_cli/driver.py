"""Deployment state machine driven by remote status observations.

A ``DeploymentDriver`` starts in INITIATED, enters PUBLISHED once the source
has been pushed, and from then on only moves when the platform reports a
state further along the lifecycle::

    INITIATED -> PUBLISHED -> QUEUED -> BUILDING -> DEPLOYING -> RUNNING
                          \\-> FAILED | CANCELLED (from any non-terminal state)

Stale or repeated observations are discarded. Once a terminal state is
reached the driver stops polling and never changes again.
"""

import asyncio
import logging
from typing import AsyncIterator, List, Optional, Self

from .api import PlatformAPI
from .errors import CancelRequestFailed, CleverError, DriverUnreachable, InvalidCancelState, TransportError
from .models import Application, Deployment, DeploymentState, RevisionHandle, map_remote_state, utcnow
from .retry import Backoff, RetryPolicy, Sleep

logger = logging.getLogger(__name__)


class StateBroadcast:
    """Single-writer, multi-reader notification of driver states."""

    def __init__(self: Self, initial: DeploymentState) -> None:
        self._state = initial
        self._subscribers: List[asyncio.Queue] = []
        self.terminal = asyncio.Event()

    @property
    def state(self: Self) -> DeploymentState:
        return self._state

    def publish(self: Self, state: DeploymentState) -> None:
        self._state = state
        for queue in list(self._subscribers):
            queue.put_nowait(state)
        if state.is_terminal:
            self.terminal.set()

    async def changes(self: Self) -> AsyncIterator[DeploymentState]:
        """Yield the current state, then every change until a terminal state."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._state)
        self._subscribers.append(queue)
        try:
            while True:
                state = await queue.get()
                yield state
                if state.is_terminal:
                    return
        finally:
            self._subscribers.remove(queue)


class DeploymentDriver:
    """Owns the lifecycle of one deployment."""

    def __init__(
        self: Self,
        api: PlatformAPI,
        app: Application,
        poll_interval: float = 2.0,
        policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep
    ) -> None:
        """Initialize the driver in INITIATED.

        Args:
            api: Platform capability used for polling and cancellation.
            app: Application being deployed.
            poll_interval: Seconds between two status observations.
            policy: Retry policy for transient polling failures.
            sleep: Awaitable sleep, replaceable in tests.
        """
        self.api = api
        self.app = app
        self.poll_interval = poll_interval
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.deployment = Deployment(app_id=app.id)
        self.broadcast = StateBroadcast(DeploymentState.INITIATED)
        self.history: List[DeploymentState] = [DeploymentState.INITIATED]
        self.cancel_requested = False

    @classmethod
    def attached(
        cls,
        api: PlatformAPI,
        app: Application,
        deployment_id: str,
        revision: Optional[str] = None,
        **kwargs
    ) -> "DeploymentDriver":
        """Driver for a deployment that is already known to the platform."""
        driver = cls(api, app, **kwargs)
        driver.mark_published(RevisionHandle(revision=revision or "", deployment_id=deployment_id))
        return driver

    @property
    def state(self: Self) -> DeploymentState:
        return self.deployment.state

    def _transition(self: Self, state: DeploymentState) -> None:
        logger.info("Deployment %s: %s -> %s", self.deployment.id, self.state.value, state.value)
        self.deployment.state = state
        self.history.append(state)
        self.broadcast.publish(state)

    def mark_published(self: Self, handle: RevisionHandle) -> None:
        """Record the revision accepted by the platform and enter PUBLISHED."""
        if self.state is not DeploymentState.INITIATED:
            raise RuntimeError(f"Deployment already published (state {self.state.value})")
        self.deployment.id = handle.deployment_id
        self.deployment.revision = handle.revision
        self._transition(DeploymentState.PUBLISHED)

    def observe(self: Self, remote_state: Optional[str]) -> bool:
        """Apply one remote status observation.

        Returns:
            True if the observation moved the driver forward.
        """
        if self.state.is_terminal:
            return False

        observed = map_remote_state(remote_state)
        self.deployment.observed_at = utcnow()
        if observed is None:
            logger.warning("Ignoring unknown remote state %r for %s", remote_state, self.deployment.id)
            return False

        if observed is self.state:
            return False
        if observed.rank < self.state.rank:
            logger.debug("Discarding stale observation %s (current %s)", observed.value, self.state.value)
            return False

        self._transition(observed)
        return True

    async def poll_once(self: Self) -> bool:
        remote_state = await asyncio.to_thread(
            self.api.get_deployment_status, self.app, self.deployment.id
        )
        return self.observe(remote_state)

    async def run(self: Self) -> DeploymentState:
        """Poll the platform until the deployment reaches a terminal state.

        Raises:
            DriverUnreachable: Consecutive transport failures exceeded the
                retry ceiling. The state is left untouched.
        """
        if self.deployment.id is None:
            raise RuntimeError("Cannot poll a deployment that was not published")

        backoff = Backoff(self.policy, self._sleep)
        while not self.state.is_terminal:
            try:
                await self.poll_once()
            except TransportError as e:
                logger.warning("Status poll failed (%d/%d): %s",
                               backoff.failures + 1, self.policy.max_attempts, e)
                if not await backoff.failed():
                    raise DriverUnreachable(
                        f"Lost contact with the platform while deployment {self.deployment.id} "
                        f"was {self.state.value}: {e}",
                        ["The deployment may still be running remotely",
                         "Check its progress with: clever activity",
                         "Follow the logs with: clever log"]
                    )
                continue

            backoff.reset()
            if not self.state.is_terminal:
                await self._sleep(self.poll_interval)

        return self.state

    async def request_cancel(self: Self) -> None:
        """Ask the platform to cancel the deployment.

        Polling is unaffected; the CANCELLED state is only entered when the
        platform reports it.

        Raises:
            InvalidCancelState: The driver is not QUEUED, BUILDING or DEPLOYING.
            CancelRequestFailed: The platform did not accept the request.
        """
        state = self.state
        if not state.is_cancellable:
            raise InvalidCancelState(
                f"Cannot cancel a deployment that is {state.value}",
                ["Only queued, building or deploying deployments can be cancelled"]
            )

        logger.info("Requesting cancellation of deployment %s", self.deployment.id)
        try:
            await asyncio.to_thread(self.api.request_cancel_deployment, self.app, self.deployment.id)
        except CleverError as e:
            raise CancelRequestFailed(f"Cancellation request failed: {e}") from e
        self.cancel_requested = True
