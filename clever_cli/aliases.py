"""Local alias registry and application resolution.

Linked applications are recorded in ``.clever.json`` at the root of the
working tree. An alias is unique within that file.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Self

from .api import PlatformAPI
from .errors import AliasConflict, ConfigurationError, UnknownAlias, UnresolvedAlias
from .models import Application

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = ".clever.json"


def find_working_tree(start: Optional[Path] = None) -> Path:
    """Closest directory holding ``.clever.json`` or ``.git``, else ``start``."""
    start = (start or Path.cwd()).resolve()
    for directory in (start, *start.parents):
        if (directory / REGISTRY_FILENAME).exists() or (directory / ".git").exists():
            return directory
    return start


class AliasRegistry:
    """Read/write alias -> application storage backed by a JSON file."""

    def __init__(self: Self, path: Path) -> None:
        self.path = path

    @classmethod
    def for_working_tree(cls, start: Optional[Path] = None) -> "AliasRegistry":
        return cls(find_working_tree(start) / REGISTRY_FILENAME)

    def _load(self: Self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            raise ConfigurationError(
                f"Cannot read {self.path}: {e}",
                [f"Fix or remove {self.path} and link the application again"]
            )
        return data.get('apps', [])

    def _save(self: Self, apps: List[Dict[str, Any]]) -> None:
        temp_file = self.path.with_suffix('.tmp')
        try:
            with open(temp_file, 'w') as f:
                json.dump({'apps': apps}, f, indent=2)
            temp_file.replace(self.path)
        except OSError as e:
            temp_file.unlink(missing_ok=True)
            raise ConfigurationError(f"Cannot write {self.path}: {e}")

    def list(self: Self) -> List[Application]:
        return [Application.from_dict(entry) for entry in self._load()]

    def resolve(self: Self, alias: str) -> Optional[Application]:
        """Application bound to ``alias``, or None when not found."""
        for entry in self._load():
            if entry.get('alias') == alias:
                return Application.from_dict(entry)
        return None

    def default(self: Self) -> Optional[Application]:
        """The linked application when exactly one is linked."""
        apps = self.list()
        if len(apps) == 1:
            return apps[0]
        return None

    def bind(self: Self, alias: str, app: Application) -> Application:
        """Bind ``alias`` to ``app``, replacing any previous link of the same app.

        Raises:
            AliasConflict: The alias is bound to another application.
        """
        apps = self._load()
        for entry in apps:
            if entry.get('alias') == alias and entry.get('id') != app.id:
                raise AliasConflict(
                    f"Alias '{alias}' is already bound to {entry.get('id')}",
                    [f"Unlink it first: clever unlink {alias}", "Choose another alias with --alias"]
                )

        bound = Application(
            id=app.id,
            name=app.name,
            org_id=app.org_id,
            alias=alias,
            region=app.region,
            instance_type=app.instance_type,
            deploy_url=app.deploy_url,
        )
        apps = [entry for entry in apps if entry.get('id') != app.id]
        apps.append(bound.to_dict())
        self._save(apps)
        logger.info("Bound alias %s to %s", alias, app.id)
        return bound

    def unbind(self: Self, alias: str) -> Application:
        """Remove ``alias`` and its link.

        Raises:
            UnknownAlias: No application is bound to ``alias``.
        """
        apps = self._load()
        remaining = [entry for entry in apps if entry.get('alias') != alias]
        if len(remaining) == len(apps):
            raise UnknownAlias(f"Unknown alias '{alias}'")
        removed = next(entry for entry in apps if entry.get('alias') == alias)
        if remaining:
            self._save(remaining)
        else:
            os.remove(self.path)
        logger.info("Unbound alias %s", alias)
        return Application.from_dict(removed)


class AliasResolver:
    """Turns the user's ``--alias`` (or an explicit id) into an application."""

    def __init__(self: Self, registry: AliasRegistry, api: Optional[PlatformAPI] = None) -> None:
        self.registry = registry
        self.api = api

    def resolve(
        self: Self,
        alias: Optional[str] = None,
        app_id: Optional[str] = None,
        org_id: Optional[str] = None
    ) -> Application:
        """Resolve the target application.

        Args:
            alias: Alias given on the command line.
            app_id: Explicit application id; bypasses the registry.
            org_id: Owner organisation for ``app_id``.

        Raises:
            UnknownAlias: ``alias`` has no registry entry.
            UnresolvedAlias: Nothing was given and no single default is linked.
        """
        if app_id:
            if self.api is None:
                raise UnresolvedAlias(f"Cannot look up application {app_id} without an API client")
            return self.api.get_application(app_id, org_id)

        if alias:
            app = self.registry.resolve(alias)
            if app is None:
                known = [a.alias for a in self.registry.list() if a.alias]
                suggestions = [f"Known aliases: {', '.join(known)}"] if known else []
                suggestions.append(f"Link it: clever link <APP_ID> --alias {alias}")
                raise UnknownAlias(f"Unknown alias '{alias}'", suggestions)
            return app

        app = self.registry.default()
        if app is None:
            if self.registry.list():
                raise UnresolvedAlias(
                    "Several applications are linked to this directory",
                    ["Choose one with --alias <ALIAS>"]
                )
            raise UnresolvedAlias(
                "No application is linked to this directory",
                ["Link an application: clever link <APP_ID>",
                 "Or create one: clever create <NAME> --type <TYPE>"]
            )
        return app
