"""Runs a deployment end to end: publish, track, follow logs, cancel."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Self

from .api import PlatformAPI
from .config import Settings
from .driver import DeploymentDriver, StateBroadcast
from .errors import CancelError, CleverError, DriverUnreachable, ExitCode, InvalidCancelState, RemoteStateError
from .logging_utils import AuditLogger
from .logs import LogStreamer
from .models import Application, Deployment, DeploymentState, LogEntry, RevisionHandle
from .publisher import SourcePublisher
from .retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)

OUTCOME_EXIT_CODES = {
    DeploymentState.RUNNING: ExitCode.SUCCESS,
    DeploymentState.FAILED: ExitCode.REMOTE_FAILURE,
    DeploymentState.CANCELLED: ExitCode.CANCELLED,
}


@dataclass
class DeployOutcome:
    """Final result of a tracked deployment.

    ``state`` is None when contact with the platform was lost before a
    terminal state was observed.
    """

    state: Optional[DeploymentState]
    deployment: Deployment
    error: Optional[CleverError] = None

    @property
    def exit_code(self: Self) -> ExitCode:
        if self.state is None:
            return ExitCode.TRANSPORT_FAILURE
        return OUTCOME_EXIT_CODES.get(self.state, ExitCode.REMOTE_FAILURE)

    @property
    def result(self: Self) -> str:
        return self.state.value.upper() if self.state else "UNREACHABLE"


class DeployObserver:
    """Receives progress notifications; the default ignores them."""

    def published(self: Self, app: Application, handle: RevisionHandle) -> None:
        pass

    def state_changed(self: Self, state: DeploymentState) -> None:
        pass

    def log_entry(self: Self, entry: LogEntry) -> None:
        pass

    def warning(self: Self, message: str) -> None:
        pass

    def finished(self: Self, outcome: DeployOutcome) -> None:
        pass


class DeploymentOrchestrator:
    """Wires the publisher, driver and log streamer together."""

    def __init__(
        self: Self,
        api: PlatformAPI,
        settings: Settings,
        observer: Optional[DeployObserver] = None,
        audit: Optional[AuditLogger] = None,
        tail_grace: float = 1.0,
        sleep: Sleep = asyncio.sleep
    ) -> None:
        self.api = api
        self.tail_grace = tail_grace
        self.settings = settings
        self.observer = observer or DeployObserver()
        self.audit = audit
        self._sleep = sleep
        self.policy = RetryPolicy(
            max_attempts=settings.max_attempts,
            backoff_base=settings.backoff_base,
            backoff_max=settings.backoff_max,
        )

    def _driver_kwargs(self: Self) -> Dict[str, Any]:
        return {
            'poll_interval': self.settings.poll_interval,
            'policy': self.policy,
            'sleep': self._sleep,
        }

    def _audit(self: Self, operation: str, app: Application, outcome: DeployOutcome) -> None:
        if self.audit is None:
            return
        self.audit.log_deployment_operation(operation, app.id, outcome.result, {
            'deployment_id': outcome.deployment.id,
            'revision': outcome.deployment.revision,
        })

    async def _watch_states(self: Self, broadcast: StateBroadcast) -> None:
        async for state in broadcast.changes():
            self.observer.state_changed(state)

    async def _follow_logs(self: Self, app: Application, stop: asyncio.Event) -> None:
        streamer = LogStreamer(
            self.api,
            app,
            policy=self.policy,
            reorder_window=self.settings.reorder_window,
            tail_grace=self.tail_grace,
            sleep=self._sleep,
        )
        try:
            async for entry in streamer.stream(stop):
                self.observer.log_entry(entry)
        except CleverError as e:
            # Losing the logs never affects the deployment itself
            logger.warning("Log display stopped: %s", e)
            self.observer.warning(f"Log display stopped: {e.message}")

    async def _cancel_when_requested(self: Self, requested: asyncio.Event, driver: DeploymentDriver) -> None:
        await requested.wait()
        async for state in driver.broadcast.changes():
            if state.is_terminal:
                return
            if state.is_cancellable:
                break
            self.observer.warning("Cancellation will be requested once the deployment is queued")

        try:
            await driver.request_cancel()
        except CancelError as e:
            logger.warning("Cancellation failed: %s", e)
            self.observer.warning(e.message)
        else:
            self.observer.warning("Cancellation requested, waiting for the platform to confirm")

    async def track(
        self: Self,
        driver: DeploymentDriver,
        follow_logs: bool = False,
        cancel_requested: Optional[asyncio.Event] = None
    ) -> DeployOutcome:
        """Poll ``driver`` to a terminal state with the side tasks attached."""
        watcher = asyncio.create_task(self._watch_states(driver.broadcast))
        side_tasks = []
        log_task = None
        if follow_logs:
            log_task = asyncio.create_task(self._follow_logs(driver.app, driver.broadcast.terminal))
        if cancel_requested is not None:
            side_tasks.append(asyncio.create_task(self._cancel_when_requested(cancel_requested, driver)))

        tasks = [watcher, *side_tasks]
        if log_task is not None:
            tasks.append(log_task)

        try:
            state = await driver.run()
        except DriverUnreachable as e:
            outcome = DeployOutcome(None, driver.deployment, e)
        else:
            error = None
            if state is DeploymentState.FAILED:
                error = RemoteStateError(
                    f"Deployment {driver.deployment.id} failed on the platform",
                    ["Inspect the build output: clever log",
                     "Check recent deployments: clever activity"]
                )
            outcome = DeployOutcome(state, driver.deployment, error)
        finally:
            for task in side_tasks:
                task.cancel()
            # The watcher and the log tail only finish on their own after a terminal state
            if not driver.state.is_terminal:
                watcher.cancel()
                if log_task is not None:
                    log_task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        self.observer.finished(outcome)
        return outcome

    async def deploy(
        self: Self,
        app: Application,
        branch: str = "",
        follow_logs: bool = True,
        cancel_requested: Optional[asyncio.Event] = None
    ) -> DeployOutcome:
        """Publish ``branch`` and follow the resulting deployment.

        Args:
            app: Target application.
            branch: Branch to publish, the current one when empty.
            follow_logs: Display the application logs while deploying.
            cancel_requested: Set by the caller to cancel the deployment.

        Raises:
            PublishError: The source could not be published; nothing was
                deployed.
        """
        publisher = SourcePublisher(self.api)
        handle = await asyncio.to_thread(publisher.publish, app, branch)
        self.observer.published(app, handle)

        driver = DeploymentDriver(self.api, app, **self._driver_kwargs())
        driver.mark_published(handle)

        outcome = await self.track(driver, follow_logs, cancel_requested)
        self._audit("deploy", app, outcome)
        return outcome

    async def cancel(self: Self, app: Application) -> DeployOutcome:
        """Cancel the deployment in flight and wait for the platform to confirm.

        Raises:
            InvalidCancelState: Nothing is being deployed, or the deployment
                is past the point where it can be cancelled.
        """
        active = await asyncio.to_thread(self.api.find_active_deployment, app)
        if not active:
            raise InvalidCancelState(
                f"No deployment in progress for {app.label}",
                ["Check recent deployments: clever activity"]
            )

        deployment_id = str(active.get('uuid') or active.get('id'))
        driver = DeploymentDriver.attached(
            self.api, app, deployment_id, active.get('commit'), **self._driver_kwargs()
        )
        if not driver.observe(active.get('state')):
            await driver.poll_once()

        await driver.request_cancel()
        outcome = await self.track(driver)
        self._audit("cancel", app, outcome)
        return outcome
