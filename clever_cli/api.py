"""Platform API capability and its HTTP implementation.

``PlatformAPI`` is the boundary the deployment components depend on. The
concrete ``CleverAPIClient`` talks to the REST API with a pooled
``requests`` session and follows the log feed over a websocket.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, List, Optional, Self
from urllib.parse import urlencode

import requests
import websockets
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from . import __version__
from .errors import (
    AuthenticationError,
    NotFoundError,
    PublishConflict,
    PublishRejected,
    RemoteRequestError,
    ResumeRejected,
    TransportError,
)
from .models import Application, LogEntry, LogSource, RevisionHandle, parse_timestamp
from .vcs import GitRepository, VcsError

logger = logging.getLogger(__name__)


class PlatformAPI(ABC):
    """Operations the CLI needs from the hosting platform.

    Every call is a network operation; transient failures raise
    ``TransportError``.
    """

    # Deployment orchestration

    @abstractmethod
    def publish_source(self: Self, app: Application, branch: str = "") -> RevisionHandle:
        """Push the local source tree and register a deployment for it.

        Raises:
            PublishRejected: The push or the deployment request was refused.
            PublishConflict: A deployment is already in flight.
        """

    @abstractmethod
    def get_deployment_status(self: Self, app: Application, deployment_id: str) -> str:
        """Current remote state name of a deployment."""

    @abstractmethod
    def request_cancel_deployment(self: Self, app: Application, deployment_id: str) -> None:
        """Ask the platform to cancel a deployment."""

    @abstractmethod
    def stream_logs(self: Self, app: Application, since: Optional[int] = None) -> AsyncIterator[List[LogEntry]]:
        """Follow the application logs, yielding batches of entries.

        Entries with a token lower than or equal to ``since`` may be
        redelivered. Raises ``ResumeRejected`` when ``since`` is no longer
        retained.
        """

    @abstractmethod
    def list_deployments(self: Self, app: Application, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Deployments of an application, most recent first."""

    @abstractmethod
    def find_active_deployment(self: Self, app: Application) -> Optional[Dict[str, Any]]:
        """The deployment currently in flight, if any."""

    # Applications

    @abstractmethod
    def get_application(self: Self, app_id: str, org_id: Optional[str] = None) -> Application:
        """Fetch an application by id."""

    @abstractmethod
    def create_application(
        self: Self,
        name: str,
        instance_type: str,
        region: str = "par",
        org_id: Optional[str] = None
    ) -> Application:
        """Create an application."""

    @abstractmethod
    def get_application_status(self: Self, app: Application) -> Dict[str, Any]:
        """Running state and instances of an application."""

    @abstractmethod
    def stop_application(self: Self, app: Application) -> None:
        """Stop all instances of an application."""

    # Environment and domains

    @abstractmethod
    def list_env(self: Self, app: Application) -> Dict[str, str]:
        """Environment variables of an application."""

    @abstractmethod
    def set_env(self: Self, app: Application, name: str, value: str) -> None:
        """Add or update an environment variable."""

    @abstractmethod
    def remove_env(self: Self, app: Application, name: str) -> None:
        """Remove an environment variable."""

    @abstractmethod
    def list_domains(self: Self, app: Application) -> List[str]:
        """Domain names of an application."""

    @abstractmethod
    def add_domain(self: Self, app: Application, fqdn: str) -> None:
        """Attach a domain name."""

    @abstractmethod
    def remove_domain(self: Self, app: Application, fqdn: str) -> None:
        """Detach a domain name."""

    def close(self: Self) -> None:
        """Release network resources."""

    def __enter__(self: Self) -> Self:
        return self

    def __exit__(self: Self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def entry_from_payload(payload: Dict[str, Any]) -> LogEntry:
    """Build a ``LogEntry`` from one element of a log feed message."""
    source = payload.get("source", LogSource.RUNTIME.value)
    try:
        log_source = LogSource(source)
    except ValueError:
        log_source = LogSource.RUNTIME
    return LogEntry(
        token=int(payload["token"]),
        timestamp=parse_timestamp(payload.get("timestamp")),
        source=log_source,
        message=payload.get("message", ""),
    )


class CleverAPIClient(PlatformAPI):
    """Client for the Clever Cloud REST API."""

    def __init__(
        self: Self,
        base_url: str,
        token: str,
        timeout: int = 30,
        max_retries: int = 3,
        repository: Optional[GitRepository] = None
    ) -> None:
        """Initialize API client.

        Args:
            base_url: Base URL of the API (e.g., https://api.clever-cloud.com/v2).
            token: API authentication token.
            timeout: Request timeout in seconds.
            max_retries: Retries for idempotent requests at the HTTP layer.
            repository: Local git repository used by ``publish_source``.
        """
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.repository = repository or GitRepository()
        self.session = requests.Session()
        self._setup_session()

    def _setup_session(self: Self) -> None:
        """Setup session with connection pooling and retry strategy."""
        # Only idempotent methods are retried here; polling has its own backoff
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=0.5,
            status_forcelist=[429, 502, 503, 504],
            allowed_methods=["HEAD", "GET", "PUT", "DELETE", "OPTIONS"]
        )

        # The status poller and cancellation requests share this pool
        adapter = HTTPAdapter(
            pool_connections=10,
            pool_maxsize=10,
            max_retries=retry_strategy
        )

        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self.session.headers.update({
            'Authorization': f'Bearer {self.token}',
            'Content-Type': 'application/json',
            'User-Agent': f'clever-cli/{__version__}'
        })

    @staticmethod
    def _app_path(app: Application) -> str:
        if app.org_id:
            return f"/organisations/{app.org_id}/applications/{app.id}"
        return f"/self/applications/{app.id}"

    def _request(self: Self, method: str, endpoint: str, **kwargs: Any) -> Any:
        """Make an HTTP request and decode the JSON response.

        Raises:
            TransportError: Timeouts, connection failures and 5xx answers.
            AuthenticationError: 401 and 403 answers.
            NotFoundError: 404 answers.
            RemoteRequestError: Any other error answer.
        """
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise TransportError(f"Request timeout: {e}")
        except requests.exceptions.ConnectionError as e:
            raise TransportError(f"Connection error: {e}")
        except requests.exceptions.RetryError as e:
            raise TransportError(f"Too many retries: {e}")
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code
            try:
                error_data = e.response.json()
                error_msg = error_data.get('message') or error_data.get('error') or str(e)
            except ValueError:
                error_msg = e.response.text or str(e)

            logger.debug("%s %s failed with %s: %s", method, url, status_code, error_msg)
            if status_code >= 500:
                raise TransportError(f"Server error {status_code}: {error_msg}")
            if status_code in (401, 403):
                raise AuthenticationError(error_msg, status_code)
            if status_code == 404:
                raise NotFoundError(error_msg, status_code)
            raise RemoteRequestError(error_msg, status_code)

        if response.content:
            return response.json()
        return {}

    def close(self: Self) -> None:
        if self.session:
            self.session.close()

    # Deployment orchestration

    def publish_source(self: Self, app: Application, branch: str = "") -> RevisionHandle:
        if not app.deploy_url:
            raise PublishRejected(f"Application {app.id} has no deployment URL")

        try:
            revision = self.repository.resolve(branch)
            self.repository.push(app.deploy_url, revision)
        except VcsError as e:
            raise PublishRejected(str(e))

        try:
            result = self._request(
                'POST',
                f"{self._app_path(app)}/deployments",
                json={'commit': revision, 'branch': branch}
            )
        except RemoteRequestError as e:
            if e.status_code == 409:
                raise PublishConflict(
                    f"A deployment is already in progress for {app.label}",
                    ["Wait for it to finish or cancel it: clever cancel-deploy"]
                )
            raise PublishRejected(e.message)

        return RevisionHandle(
            revision=result.get('commit', revision),
            deployment_id=str(result.get('uuid') or result['id']),
            branch=branch,
        )

    def get_deployment_status(self: Self, app: Application, deployment_id: str) -> str:
        result = self._request('GET', f"{self._app_path(app)}/deployments/{deployment_id}")
        return result.get('state', '')

    def request_cancel_deployment(self: Self, app: Application, deployment_id: str) -> None:
        self._request('DELETE', f"{self._app_path(app)}/deployments/{deployment_id}/instances")

    def list_deployments(self: Self, app: Application, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        params = {'limit': limit} if limit else {}
        return self._request('GET', f"{self._app_path(app)}/deployments", params=params)

    def find_active_deployment(self: Self, app: Application) -> Optional[Dict[str, Any]]:
        for deployment in self.list_deployments(app, limit=5):
            if deployment.get('state', '').upper() == 'WIP':
                return deployment
        return None

    def _logs_url(self: Self, app: Application, since: Optional[int]) -> str:
        ws_url = self.base_url.replace('http://', 'ws://').replace('https://', 'wss://')
        query = f"?{urlencode({'since': since})}" if since is not None else ""
        return f"{ws_url}/logs/{app.id}/stream{query}"

    async def stream_logs(self: Self, app: Application, since: Optional[int] = None) -> AsyncIterator[List[LogEntry]]:
        url = self._logs_url(app, since)
        headers = {'Authorization': f'Bearer {self.token}'}
        logger.debug("Connecting to log feed %s", url)

        try:
            async with websockets.connect(
                url,
                additional_headers=headers,
                ping_interval=30,
                ping_timeout=10
            ) as websocket:
                async for raw in websocket:
                    try:
                        message = json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("Ignoring malformed log feed message")
                        continue

                    if not isinstance(message, dict):
                        logger.warning("Ignoring unexpected log feed message")
                        continue

                    msg_type = message.get('type')
                    if msg_type == 'logs':
                        batch = []
                        for item in message.get('entries') or []:
                            try:
                                batch.append(entry_from_payload(item))
                            except (AttributeError, KeyError, TypeError, ValueError) as e:
                                logger.warning("Ignoring log entry without a valid token: %r", e)
                        yield batch
                    elif msg_type == 'error' and message.get('code') == 'resume_unavailable':
                        raise ResumeRejected(message.get('message', 'Log resume point expired'), since)
                    elif msg_type == 'error':
                        raise TransportError(f"Log feed error: {message.get('message', 'unknown')}")
        except InvalidStatus as e:
            status_code = e.response.status_code
            if status_code in (401, 403):
                raise AuthenticationError("Log feed refused the API token", status_code)
            if status_code == 410:
                raise ResumeRejected("Log resume point expired", since)
            raise TransportError(f"Log feed handshake failed with status {status_code}")
        except ConnectionClosed as e:
            raise TransportError(f"Log feed connection closed: {e}")
        except (WebSocketException, OSError) as e:
            raise TransportError(f"Log feed connection error: {e}")

    # Applications

    def get_application(self: Self, app_id: str, org_id: Optional[str] = None) -> Application:
        target = Application(id=app_id, name="", org_id=org_id)
        result = self._request('GET', self._app_path(target))
        result.setdefault('org_id', org_id)
        return Application.from_dict(result)

    def create_application(
        self: Self,
        name: str,
        instance_type: str,
        region: str = "par",
        org_id: Optional[str] = None
    ) -> Application:
        endpoint = f"/organisations/{org_id}/applications" if org_id else "/self/applications"
        result = self._request('POST', endpoint, json={
            'name': name,
            'instanceType': instance_type,
            'zone': region,
            'deploy': 'git',
        })
        result.setdefault('org_id', org_id)
        return Application.from_dict(result)

    def get_application_status(self: Self, app: Application) -> Dict[str, Any]:
        application = self._request('GET', self._app_path(app))
        instances = self._request('GET', f"{self._app_path(app)}/instances")
        return {'state': application.get('state', 'unknown'), 'instances': instances}

    def stop_application(self: Self, app: Application) -> None:
        self._request('DELETE', f"{self._app_path(app)}/instances")

    # Environment and domains

    def list_env(self: Self, app: Application) -> Dict[str, str]:
        result = self._request('GET', f"{self._app_path(app)}/env")
        return {item['name']: item.get('value', '') for item in result}

    def set_env(self: Self, app: Application, name: str, value: str) -> None:
        self._request('PUT', f"{self._app_path(app)}/env/{name}", json={'value': value})

    def remove_env(self: Self, app: Application, name: str) -> None:
        self._request('DELETE', f"{self._app_path(app)}/env/{name}")

    def list_domains(self: Self, app: Application) -> List[str]:
        result = self._request('GET', f"{self._app_path(app)}/vhosts")
        return [item['fqdn'] for item in result]

    def add_domain(self: Self, app: Application, fqdn: str) -> None:
        self._request('PUT', f"{self._app_path(app)}/vhosts/{fqdn}")

    def remove_domain(self: Self, app: Application, fqdn: str) -> None:
        self._request('DELETE', f"{self._app_path(app)}/vhosts/{fqdn}")
