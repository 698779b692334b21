"""In-memory platform used by the test suite."""

import asyncio
import uuid
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Union

from clever_cli.api import PlatformAPI
from clever_cli.errors import NotFoundError
from clever_cli.models import Application, LogEntry, LogSource, RevisionHandle

StatusStep = Union[str, Exception]
LogStep = Union[List[LogEntry], Exception]


async def no_sleep(_delay: float) -> None:
    await asyncio.sleep(0)


def entries(*tokens: int, source: LogSource = LogSource.RUNTIME) -> List[LogEntry]:
    return [LogEntry(token=t, source=source, message=f"line {t}") for t in tokens]


def make_app(app_id: str = "app_1", name: str = "demo", alias: Optional[str] = None) -> Application:
    return Application(id=app_id, name=name, alias=alias, deploy_url=f"git+ssh://push/{app_id}.git")


class FakePlatform(PlatformAPI):
    """Scripted ``PlatformAPI``.

    ``statuses`` are returned (or raised) one per poll; the last status
    repeats once the script runs out. Each element of ``log_connections`` is
    the script of one log feed connection: batches are yielded, exceptions
    raised. Once every connection script is used up the feed stays open
    without sending anything, unless ``hang_when_idle`` is False.
    """

    def __init__(
        self,
        statuses: Sequence[StatusStep] = (),
        log_connections: Sequence[Sequence[LogStep]] = (),
        hang_when_idle: bool = True
    ) -> None:
        self.statuses: List[StatusStep] = list(statuses)
        self.log_connections = [list(script) for script in log_connections]
        self.hang_when_idle = hang_when_idle
        self.status_calls = 0
        self.log_calls: List[Optional[int]] = []
        self.cancel_calls: List[str] = []
        self.cancel_error: Optional[Exception] = None
        self.status_after_cancel: Optional[str] = "cancelled"
        self.publish_calls: List[tuple] = []
        self.publish_error: Optional[Exception] = None
        self.deployments: List[Dict[str, Any]] = []
        self.deployments_error: Optional[Exception] = None
        self.apps: Dict[str, Application] = {}
        self.env: Dict[str, str] = {}
        self.domains: List[str] = []
        self.stopped: List[str] = []
        self.closed = False

    # Deployment orchestration

    def publish_source(self, app: Application, branch: str = "") -> RevisionHandle:
        self.publish_calls.append((app.id, branch))
        if self.publish_error is not None:
            raise self.publish_error
        return RevisionHandle(revision="0123456789abcdef", deployment_id="deployment_1", branch=branch)

    def get_deployment_status(self, app: Application, deployment_id: str) -> str:
        self.status_calls += 1
        if len(self.statuses) > 1:
            step = self.statuses.pop(0)
        elif self.statuses:
            step = self.statuses[0]
        else:
            step = "queued"
        if isinstance(step, Exception):
            raise step
        return step

    def request_cancel_deployment(self, app: Application, deployment_id: str) -> None:
        self.cancel_calls.append(deployment_id)
        if self.cancel_error is not None:
            raise self.cancel_error
        if self.status_after_cancel is not None:
            self.statuses = [self.status_after_cancel]

    async def stream_logs(self, app: Application, since: Optional[int] = None) -> AsyncIterator[List[LogEntry]]:
        self.log_calls.append(since)
        if not self.log_connections:
            if self.hang_when_idle:
                await asyncio.Event().wait()
            return
        for step in self.log_connections.pop(0):
            await asyncio.sleep(0)
            if isinstance(step, Exception):
                raise step
            yield step

    def list_deployments(self, app: Application, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        if self.deployments_error is not None:
            raise self.deployments_error
        return self.deployments[:limit] if limit else list(self.deployments)

    def find_active_deployment(self, app: Application) -> Optional[Dict[str, Any]]:
        for deployment in self.deployments:
            if deployment.get('state', '').upper() == 'WIP':
                return deployment
        return None

    # Applications

    def get_application(self, app_id: str, org_id: Optional[str] = None) -> Application:
        if app_id not in self.apps:
            raise NotFoundError(f"Application {app_id} not found", 404)
        return self.apps[app_id]

    def create_application(
        self,
        name: str,
        instance_type: str,
        region: str = "par",
        org_id: Optional[str] = None
    ) -> Application:
        app = Application(
            id=f"app_{uuid.uuid4()}",
            name=name,
            org_id=org_id,
            region=region,
            instance_type=instance_type,
        )
        self.apps[app.id] = app
        return app

    def get_application_status(self, app: Application) -> Dict[str, Any]:
        return {'state': 'running', 'instances': [{'id': 'i1', 'state': 'UP', 'commit': 'abcdef123456'}]}

    def stop_application(self, app: Application) -> None:
        self.stopped.append(app.id)

    # Environment and domains

    def list_env(self, app: Application) -> Dict[str, str]:
        return dict(self.env)

    def set_env(self, app: Application, name: str, value: str) -> None:
        self.env[name] = value

    def remove_env(self, app: Application, name: str) -> None:
        self.env.pop(name, None)

    def list_domains(self, app: Application) -> List[str]:
        return list(self.domains)

    def add_domain(self, app: Application, fqdn: str) -> None:
        self.domains.append(fqdn)

    def remove_domain(self, app: Application, fqdn: str) -> None:
        self.domains.remove(fqdn)

    def close(self) -> None:
        self.closed = True
