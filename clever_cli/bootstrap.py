"""Explicit initialization of everything a command needs."""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from .aliases import AliasRegistry, AliasResolver
from .api import CleverAPIClient, PlatformAPI
from .config import Config, Settings
from .errors import ConfigurationError
from .logging_utils import AuditLogger
from .vcs import GitRepository

ApiFactory = Callable[[Settings, Path], PlatformAPI]


def default_api_factory(settings: Settings, cwd: Path) -> PlatformAPI:
    return CleverAPIClient(
        settings.url,
        settings.token,
        timeout=settings.timeout,
        repository=GitRepository(cwd),
    )


@dataclass
class AppContext:
    """Collaborators shared by the commands of one invocation."""

    api: PlatformAPI
    registry: AliasRegistry
    resolver: AliasResolver
    settings: Settings
    audit: AuditLogger
    config: Config

    def close(self) -> None:
        self.api.close()


def build_context(
    config: Config,
    cwd: Optional[Path] = None,
    api_factory: Optional[ApiFactory] = None
) -> AppContext:
    """Load settings and build the API client and alias registry.

    Raises:
        ConfigurationError: Not logged in, or the configuration is invalid.
    """
    cwd = cwd or Path.cwd()
    settings = Settings.from_config(config)
    if not settings.token:
        raise ConfigurationError(
            "Not logged in",
            ["Log in first: clever login --token <TOKEN>",
             "Or set the CLEVER_TOKEN environment variable"]
        )

    api = (api_factory or default_api_factory)(settings, cwd)
    registry = AliasRegistry.for_working_tree(cwd)
    return AppContext(
        api=api,
        registry=registry,
        resolver=AliasResolver(registry, api),
        settings=settings,
        audit=AuditLogger(),
        config=config,
    )
