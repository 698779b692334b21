"""Git access used to publish the local source tree."""

import logging
from pathlib import Path
from typing import Optional, Self

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo
from git.exc import BadName

logger = logging.getLogger(__name__)


class VcsError(Exception):
    """Raised when a git operation fails."""

    def __init__(self: Self, message: str, stderr: str = "") -> None:
        super().__init__(message)
        self.stderr = stderr


class GitRepository:
    """The local working tree being deployed."""

    def __init__(self: Self, path: Optional[Path] = None) -> None:
        self.path = path or Path.cwd()
        self._repo: Optional[Repo] = None

    @property
    def repo(self: Self) -> Repo:
        if self._repo is None:
            try:
                self._repo = Repo(self.path, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError):
                raise VcsError(f"{self.path} is not a git repository")
        return self._repo

    def resolve(self: Self, branch: str = "") -> str:
        """Commit id of ``branch``, or of HEAD when branch is empty."""
        ref = branch or "HEAD"
        try:
            return self.repo.commit(ref).hexsha
        except (BadName, ValueError):
            raise VcsError(f"Unknown revision: {ref}")

    def push(self: Self, remote_url: str, commit: str, force: bool = False) -> None:
        """Push ``commit`` to the platform's ingestion remote."""
        logger.debug("Pushing %s to %s", commit, remote_url)
        args = [remote_url, f"{commit}:refs/heads/master"]
        if force:
            args.insert(0, "--force")
        try:
            self.repo.git.push(*args)
        except GitCommandError as e:
            stderr = (e.stderr or "").strip()
            raise VcsError(f"git push failed: {stderr or e}", stderr)
