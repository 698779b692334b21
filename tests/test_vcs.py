"""Tests for publishing commits from the local git repository."""

import tempfile
import unittest
from pathlib import Path

from git import Repo

from clever_cli.vcs import GitRepository, VcsError


class TestGitRepository(unittest.TestCase):
    """Resolve and push against throwaway repositories."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        root = Path(self.temp_dir.name)
        self.workdir = root / "project"
        self.workdir.mkdir()

        self.repo = Repo.init(self.workdir)
        (self.workdir / "app.py").write_text("print('hello')\n")
        self.repo.index.add(["app.py"])
        self.first = self.repo.index.commit("Initial commit").hexsha
        self.repo.create_head("feature")
        (self.workdir / "app.py").write_text("print('hello again')\n")
        self.repo.index.add(["app.py"])
        self.second = self.repo.index.commit("Second commit").hexsha

        self.remote_path = root / "remote.git"
        self.remote = Repo.init(self.remote_path, bare=True)

    def tearDown(self) -> None:
        self.repo.close()
        self.remote.close()
        self.temp_dir.cleanup()

    def test_resolve_head(self) -> None:
        self.assertEqual(GitRepository(self.workdir).resolve(), self.second)

    def test_resolve_branch(self) -> None:
        self.assertEqual(GitRepository(self.workdir).resolve("feature"), self.first)

    def test_resolve_from_a_subdirectory(self) -> None:
        subdir = self.workdir / "src"
        subdir.mkdir()
        self.assertEqual(GitRepository(subdir).resolve(), self.second)

    def test_resolve_unknown_branch(self) -> None:
        with self.assertRaises(VcsError):
            GitRepository(self.workdir).resolve("no-such-branch")

    def test_not_a_repository(self) -> None:
        outside = Path(self.temp_dir.name) / "outside"
        outside.mkdir()
        with self.assertRaises(VcsError):
            GitRepository(outside).resolve()

    def test_push_commit_to_master(self) -> None:
        GitRepository(self.workdir).push(str(self.remote_path), self.first)
        self.assertEqual(self.remote.commit("refs/heads/master").hexsha, self.first)

    def test_rejected_push(self) -> None:
        git_repo = GitRepository(self.workdir)
        git_repo.push(str(self.remote_path), self.second)

        with self.assertRaises(VcsError) as ctx:
            git_repo.push(str(self.remote_path), self.first)
        self.assertIn("git push failed", str(ctx.exception))

        git_repo.push(str(self.remote_path), self.first, force=True)
        self.assertEqual(self.remote.commit("refs/heads/master").hexsha, self.first)


if __name__ == '__main__':
    unittest.main()
