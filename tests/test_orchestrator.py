"""End-to-end deployment scenarios against the in-memory platform."""

import asyncio
import unittest
from unittest.mock import Mock

from clever_cli.config import Settings
from clever_cli.errors import (
    ExitCode,
    InvalidCancelState,
    PublishConflict,
    PublishRejected,
    RemoteRequestError,
    RemoteStateError,
    TransportError,
)
from clever_cli.models import DeploymentState
from clever_cli.orchestrator import DeployObserver, DeployOutcome, DeploymentOrchestrator

from fakes import FakePlatform, entries, make_app, no_sleep

SETTINGS = Settings(token="token-1234567890", poll_interval=0, max_attempts=5, backoff_base=0)


class RecordingObserver(DeployObserver):
    def __init__(self, cancel_on=None, cancel_event=None) -> None:
        self.states = []
        self.logs = []
        self.warnings = []
        self.outcomes = []
        self.cancel_on = cancel_on
        self.cancel_event = cancel_event

    def state_changed(self, state):
        self.states.append(state)
        if state is self.cancel_on:
            self.cancel_event.set()

    def log_entry(self, entry):
        self.logs.append(entry)

    def warning(self, message):
        self.warnings.append(message)

    def finished(self, outcome):
        self.outcomes.append(outcome)


class TestDeploy(unittest.IsolatedAsyncioTestCase):
    """The ``deploy`` flow."""

    def orchestrator(self, api, observer=None, settings=SETTINGS, audit=None) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(
            api, settings, observer, audit, tail_grace=0.05, sleep=no_sleep
        )

    async def test_successful_deployment(self) -> None:
        api = FakePlatform(
            statuses=["queued", "building", "deploying", "running"],
            log_connections=[[entries(1, 2), entries(3)]],
        )
        observer = RecordingObserver()
        audit = Mock()

        outcome = await asyncio.wait_for(
            self.orchestrator(api, observer, audit=audit).deploy(make_app(), "main"), timeout=5
        )

        self.assertEqual(outcome.state, DeploymentState.RUNNING)
        self.assertEqual(outcome.exit_code, ExitCode.SUCCESS)
        self.assertEqual(api.publish_calls, [("app_1", "main")])
        self.assertEqual(observer.states, [
            DeploymentState.PUBLISHED,
            DeploymentState.QUEUED,
            DeploymentState.BUILDING,
            DeploymentState.DEPLOYING,
            DeploymentState.RUNNING,
        ])
        self.assertEqual([e.token for e in observer.logs], [1, 2, 3])
        self.assertEqual(observer.outcomes, [outcome])
        audit.log_deployment_operation.assert_called_once()
        args = audit.log_deployment_operation.call_args[0]
        self.assertEqual(args[:3], ("deploy", "app_1", "RUNNING"))

    async def test_cancelled_while_building(self) -> None:
        api = FakePlatform(statuses=["queued", "building"])
        cancel_requested = asyncio.Event()
        observer = RecordingObserver(DeploymentState.BUILDING, cancel_requested)

        outcome = await asyncio.wait_for(
            self.orchestrator(api, observer).deploy(make_app(), cancel_requested=cancel_requested),
            timeout=5,
        )

        self.assertEqual(outcome.state, DeploymentState.CANCELLED)
        self.assertEqual(outcome.exit_code, ExitCode.CANCELLED)
        self.assertEqual(api.cancel_calls, ["deployment_1"])
        self.assertNotIn(DeploymentState.FAILED, observer.states)

    async def test_cancel_requested_before_the_deployment_is_queued(self) -> None:
        api = FakePlatform(statuses=["queued"])
        cancel_requested = asyncio.Event()
        cancel_requested.set()
        observer = RecordingObserver()

        outcome = await asyncio.wait_for(
            self.orchestrator(api, observer).deploy(make_app(), follow_logs=False,
                                                    cancel_requested=cancel_requested),
            timeout=5,
        )

        self.assertEqual(outcome.state, DeploymentState.CANCELLED)
        self.assertEqual(api.cancel_calls, ["deployment_1"])

    async def test_transient_failures_are_absorbed(self) -> None:
        api = FakePlatform(statuses=[
            "building",
            TransportError("timeout"),
            TransportError("timeout"),
            TransportError("timeout"),
            "deploying",
            "running",
        ])
        observer = RecordingObserver()

        outcome = await asyncio.wait_for(
            self.orchestrator(api, observer).deploy(make_app(), follow_logs=False), timeout=5
        )

        self.assertEqual(outcome.state, DeploymentState.RUNNING)
        self.assertIn(DeploymentState.DEPLOYING, observer.states)
        self.assertNotIn(DeploymentState.FAILED, observer.states)

    async def test_explicit_failure(self) -> None:
        api = FakePlatform(statuses=["building", "failed"])
        outcome = await asyncio.wait_for(
            self.orchestrator(api).deploy(make_app(), follow_logs=False), timeout=5
        )
        self.assertEqual(outcome.state, DeploymentState.FAILED)
        self.assertEqual(outcome.exit_code, ExitCode.REMOTE_FAILURE)
        self.assertIsInstance(outcome.error, RemoteStateError)
        self.assertEqual(outcome.error.exit_code, ExitCode.REMOTE_FAILURE)

    async def test_lost_contact(self) -> None:
        api = FakePlatform(statuses=["building", TransportError("connection refused")])
        settings = Settings(token="token-1234567890", poll_interval=0, max_attempts=1, backoff_base=0)
        observer = RecordingObserver()

        outcome = await asyncio.wait_for(
            self.orchestrator(api, observer, settings).deploy(make_app()), timeout=5
        )

        self.assertIsNone(outcome.state)
        self.assertEqual(outcome.exit_code, ExitCode.TRANSPORT_FAILURE)
        self.assertIsNotNone(outcome.error)
        self.assertEqual(outcome.deployment.state, DeploymentState.BUILDING)

    async def test_log_failure_does_not_affect_the_deployment(self) -> None:
        api = FakePlatform(
            statuses=["queued"] + ["building"] * 10 + ["running"],
            log_connections=[[TransportError("refused")]] * 6,
        )
        observer = RecordingObserver()

        outcome = await asyncio.wait_for(self.orchestrator(api, observer).deploy(make_app()), timeout=5)

        self.assertEqual(outcome.state, DeploymentState.RUNNING)
        self.assertTrue(any("Log display stopped" in w for w in observer.warnings))

    async def test_publish_rejected(self) -> None:
        api = FakePlatform()
        api.publish_error = PublishRejected("unknown branch")

        with self.assertRaises(PublishRejected):
            await self.orchestrator(api).deploy(make_app(), "nope")
        self.assertEqual(api.status_calls, 0)

    async def test_publish_conflict(self) -> None:
        api = FakePlatform()
        api.publish_error = PublishConflict("already deploying")

        with self.assertRaises(PublishConflict):
            await self.orchestrator(api).deploy(make_app())

    async def test_publish_remote_error_is_a_rejection(self) -> None:
        api = FakePlatform()
        api.publish_error = RemoteRequestError("bad request", 400)

        with self.assertRaises(PublishRejected):
            await self.orchestrator(api).deploy(make_app())


class TestCancelDeploy(unittest.IsolatedAsyncioTestCase):
    """The ``cancel-deploy`` flow."""

    def orchestrator(self, api) -> DeploymentOrchestrator:
        return DeploymentOrchestrator(api, SETTINGS, sleep=no_sleep)

    async def test_cancel_active_deployment(self) -> None:
        api = FakePlatform(statuses=["deploying"])
        api.deployments = [{'uuid': 'd1', 'state': 'WIP', 'commit': 'abc'}]

        outcome = await asyncio.wait_for(self.orchestrator(api).cancel(make_app()), timeout=5)

        self.assertEqual(api.cancel_calls, ["d1"])
        self.assertEqual(outcome.state, DeploymentState.CANCELLED)
        self.assertEqual(outcome.deployment.revision, "abc")

    async def test_nothing_to_cancel(self) -> None:
        api = FakePlatform()
        api.deployments = [{'uuid': 'd0', 'state': 'OK'}]

        with self.assertRaises(InvalidCancelState):
            await self.orchestrator(api).cancel(make_app())
        self.assertEqual(api.cancel_calls, [])


class TestDeployOutcome(unittest.TestCase):

    def test_exit_codes(self) -> None:
        deployment = Mock()
        self.assertEqual(DeployOutcome(DeploymentState.RUNNING, deployment).exit_code, ExitCode.SUCCESS)
        self.assertEqual(DeployOutcome(DeploymentState.FAILED, deployment).exit_code, ExitCode.REMOTE_FAILURE)
        self.assertEqual(DeployOutcome(DeploymentState.CANCELLED, deployment).exit_code, ExitCode.CANCELLED)
        self.assertEqual(DeployOutcome(None, deployment).exit_code, ExitCode.TRANSPORT_FAILURE)
        self.assertEqual(len({code.value for code in ExitCode}), len(ExitCode))


if __name__ == '__main__':
    unittest.main()
