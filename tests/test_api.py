"""Tests for the HTTP platform client."""

import json
import unittest
from typing import Any, List
from unittest.mock import Mock, patch

import requests
from websockets.exceptions import ConnectionClosed, InvalidStatus

from clever_cli.api import CleverAPIClient, entry_from_payload
from clever_cli.errors import (
    AuthenticationError,
    NotFoundError,
    PublishConflict,
    PublishRejected,
    RemoteRequestError,
    ResumeRejected,
    TransportError,
)
from clever_cli.models import Application, LogSource
from clever_cli.vcs import VcsError

APP = Application(id="app_1", name="shop", org_id="orga_1", deploy_url="git+ssh://push/app_1.git")


def response(status: int = 200, payload=None) -> Mock:
    mock = Mock()
    mock.status_code = status
    mock.content = b"x" if payload is not None else b""
    mock.json.return_value = payload
    mock.text = ""
    if status >= 400:
        mock.raise_for_status.side_effect = requests.exceptions.HTTPError(response=mock)
    else:
        mock.raise_for_status.return_value = None
    return mock


class TestCleverAPIClient(unittest.TestCase):
    """Request construction and error mapping."""

    def setUp(self) -> None:
        self.repository = Mock()
        self.repository.resolve.return_value = "c0ffee"
        self.client = CleverAPIClient(
            "https://api.example.com/v2/", "secret-token-123", repository=self.repository
        )
        self.request = patch.object(self.client.session, 'request').start()
        self.addCleanup(patch.stopall)

    def test_session_headers(self) -> None:
        headers = self.client.session.headers
        self.assertEqual(headers['Authorization'], 'Bearer secret-token-123')
        self.assertTrue(headers['User-Agent'].startswith('clever-cli/'))
        self.assertEqual(self.client.base_url, "https://api.example.com/v2")

    def test_application_paths(self) -> None:
        self.request.return_value = response(200, {'state': 'WIP'})
        self.assertEqual(self.client.get_deployment_status(APP, "d1"), "WIP")
        self.request.assert_called_once_with(
            'GET', "https://api.example.com/v2/organisations/orga_1/applications/app_1/deployments/d1",
            timeout=30
        )

        personal = Application(id="app_2", name="blog")
        self.client.get_deployment_status(personal, "d2")
        self.assertEqual(
            self.request.call_args[0][1],
            "https://api.example.com/v2/self/applications/app_2/deployments/d2"
        )

    def test_error_mapping(self) -> None:
        cases = [
            (response(401, {'message': 'bad token'}), AuthenticationError),
            (response(403, {'message': 'forbidden'}), AuthenticationError),
            (response(404, {'message': 'no such app'}), NotFoundError),
            (response(400, {'message': 'bad request'}), RemoteRequestError),
            (response(503, {'message': 'maintenance'}), TransportError),
        ]
        for mocked, expected in cases:
            with self.subTest(status=mocked.status_code):
                self.request.return_value = mocked
                with self.assertRaises(expected):
                    self.client.get_deployment_status(APP, "d1")

    def test_network_failures_are_transport_errors(self) -> None:
        for error in (
            requests.exceptions.Timeout("slow"),
            requests.exceptions.ConnectionError("refused"),
            requests.exceptions.RetryError("too many"),
        ):
            with self.subTest(error=type(error).__name__):
                self.request.side_effect = error
                with self.assertRaises(TransportError):
                    self.client.get_deployment_status(APP, "d1")

    def test_publish_source(self) -> None:
        self.request.return_value = response(200, {'uuid': 'd42', 'commit': 'c0ffee'})

        handle = self.client.publish_source(APP, "main")

        self.repository.resolve.assert_called_once_with("main")
        self.repository.push.assert_called_once_with(APP.deploy_url, "c0ffee")
        self.assertEqual(handle.deployment_id, "d42")
        self.assertEqual(handle.revision, "c0ffee")
        self.assertEqual(self.request.call_args[1]['json'], {'commit': 'c0ffee', 'branch': 'main'})

    def test_publish_push_refused(self) -> None:
        self.repository.push.side_effect = VcsError("git push failed: rejected")
        with self.assertRaises(PublishRejected):
            self.client.publish_source(APP, "main")
        self.request.assert_not_called()

    def test_publish_conflict(self) -> None:
        self.request.return_value = response(409, {'message': 'deployment in progress'})
        with self.assertRaises(PublishConflict):
            self.client.publish_source(APP)

    def test_publish_without_deploy_url(self) -> None:
        with self.assertRaises(PublishRejected):
            self.client.publish_source(Application(id="app_3", name="nourl"))

    def test_find_active_deployment(self) -> None:
        self.request.return_value = response(200, [
            {'uuid': 'd2', 'state': 'WIP'},
            {'uuid': 'd1', 'state': 'OK'},
        ])
        self.assertEqual(self.client.find_active_deployment(APP)['uuid'], 'd2')
        self.assertEqual(self.request.call_args[1]['params'], {'limit': 5})

    def test_list_env(self) -> None:
        self.request.return_value = response(200, [{'name': 'PORT', 'value': '8080'}])
        self.assertEqual(self.client.list_env(APP), {'PORT': '8080'})

    def test_logs_url(self) -> None:
        self.assertEqual(
            self.client._logs_url(APP, 12),
            "wss://api.example.com/v2/logs/app_1/stream?since=12"
        )
        self.assertEqual(self.client._logs_url(APP, None), "wss://api.example.com/v2/logs/app_1/stream")

    def test_close(self) -> None:
        with patch.object(self.client.session, 'close') as close:
            with self.client:
                pass
        close.assert_called_once()


class FakeSocket:
    """Stands in for a websocket connection; replays raw messages."""

    def __init__(self, messages: List[Any]) -> None:
        self.messages = messages

    async def __aenter__(self) -> "FakeSocket":
        return self

    async def __aexit__(self, *exc_info) -> None:
        return None

    def __aiter__(self) -> "FakeSocket":
        return self

    async def __anext__(self) -> str:
        if not self.messages:
            raise StopAsyncIteration
        message = self.messages.pop(0)
        if isinstance(message, Exception):
            raise message
        return message if isinstance(message, str) else json.dumps(message)


class TestLogFeed(unittest.IsolatedAsyncioTestCase):
    """The websocket log feed and its error mapping."""

    def setUp(self) -> None:
        self.client = CleverAPIClient("https://api.example.com/v2", "secret-token-123", repository=Mock())
        self.connect = patch('clever_cli.api.websockets.connect').start()
        self.addCleanup(patch.stopall)

    def feed(self, *messages: Any) -> None:
        self.connect.return_value = FakeSocket(list(messages))

    async def collect(self, since=None) -> List[List[Any]]:
        return [batch async for batch in self.client.stream_logs(APP, since)]

    async def test_batches_and_connection(self) -> None:
        self.feed(
            {'type': 'logs', 'entries': [{'token': 4, 'message': 'a'}, {'token': '5', 'message': 'b'}]},
            {'type': 'heartbeat'},
            {'type': 'logs', 'entries': [{'token': 6, 'source': 'build', 'message': 'c'}]},
        )

        batches = await self.collect(since=3)

        self.assertEqual([[e.token for e in batch] for batch in batches], [[4, 5], [6]])
        self.assertEqual(batches[1][0].source, LogSource.BUILD)
        url = self.connect.call_args[0][0]
        self.assertEqual(url, "wss://api.example.com/v2/logs/app_1/stream?since=3")
        headers = self.connect.call_args[1]['additional_headers']
        self.assertEqual(headers['Authorization'], 'Bearer secret-token-123')

    async def test_malformed_messages_are_skipped(self) -> None:
        self.feed(
            "not json",
            ["not", "an", "object"],
            {'type': 'logs', 'entries': [
                {'message': 'no token'},
                {'token': 'abc', 'message': 'bad token'},
                {'token': None},
                'not an entry',
                {'token': 7, 'message': 'ok'},
            ]},
        )

        batches = await self.collect()

        self.assertEqual([[e.token for e in batch] for batch in batches], [[7]])

    async def test_resume_unavailable_message(self) -> None:
        self.feed({'type': 'error', 'code': 'resume_unavailable', 'message': 'retention expired'})
        with self.assertRaises(ResumeRejected) as ctx:
            await self.collect(since=12)
        self.assertEqual(ctx.exception.since, 12)

    async def test_error_message(self) -> None:
        self.feed({'type': 'error', 'message': 'overloaded'})
        with self.assertRaises(TransportError):
            await self.collect()

    async def test_connection_closed(self) -> None:
        self.feed({'type': 'logs', 'entries': []}, ConnectionClosed(None, None))
        with self.assertRaises(TransportError):
            await self.collect()

    async def test_handshake_status(self) -> None:
        cases = [
            (401, AuthenticationError),
            (403, AuthenticationError),
            (410, ResumeRejected),
            (500, TransportError),
        ]
        for status_code, expected in cases:
            with self.subTest(status=status_code):
                self.connect.side_effect = InvalidStatus(Mock(status_code=status_code))
                with self.assertRaises(expected):
                    await self.collect(since=1)

    async def test_network_failure(self) -> None:
        self.connect.side_effect = OSError("connection refused")
        with self.assertRaises(TransportError):
            await self.collect()


class TestLogPayload(unittest.TestCase):

    def test_entry_from_payload(self) -> None:
        entry = entry_from_payload({
            'token': '17',
            'timestamp': '2024-05-01T10:00:00Z',
            'source': 'build',
            'message': 'npm install',
        })
        self.assertEqual(entry.token, 17)
        self.assertEqual(entry.source, LogSource.BUILD)
        self.assertEqual(entry.message, 'npm install')

    def test_unknown_source_defaults_to_runtime(self) -> None:
        entry = entry_from_payload({'token': 1, 'source': 'weird'})
        self.assertEqual(entry.source, LogSource.RUNTIME)


if __name__ == '__main__':
    unittest.main()
