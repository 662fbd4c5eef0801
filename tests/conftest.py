"""Shared fixtures: an in-memory repository and serialized scratch git repositories."""

import shutil
import threading
from pathlib import Path

import git
import pytest

from gitops import WORKING, NotFound


class FakeRepository:
    """Repository collaborator backed by dicts of revision -> {path: text}."""

    def __init__(self, revisions: dict[str, dict[str, str]]) -> None:
        self.revisions = revisions
        self.reads: list[tuple[str, str]] = []
        self.listings: list[tuple[str, str]] = []

    def read_file_at(self, revision: str, path: str) -> bytes:
        self.reads.append((revision, path))
        files = self.revisions.get(revision, {})
        if path not in files:
            raise NotFound(f"'{path}' does not exist at {revision!r}")
        return files[path].encode("utf-8")

    def list_files(self, revision: str, directory: str) -> list[str]:
        self.listings.append((revision, directory))
        prefix = directory.rstrip("/") + "/"
        files = sorted(p for p in self.revisions.get(revision, {}) if p.startswith(prefix))
        if not files:
            raise NotFound(f"directory '{directory}' does not exist at {revision!r}")
        return files


def policy_text(*rules: tuple[str, list[str]]) -> str:
    blocks = []
    for path, caps in rules:
        quoted = ", ".join(f'"{c}"' for c in caps)
        blocks.append(f'path "{path}" {{\n  capabilities = [{quoted}]\n}}\n')
    return "\n".join(blocks)


@pytest.fixture
def fake_repo():
    def make(historical: dict[str, str], working: dict[str, str], revision: str = "base") -> FakeRepository:
        return FakeRepository({revision: historical, WORKING: working})
    return make


class GitSandbox:
    """A throwaway git repository with helpers to write files and commit."""

    def __init__(self, repo: git.Repo) -> None:
        self.repo = repo
        self.path = Path(repo.working_tree_dir)

    def write(self, relative: str, text: str) -> None:
        target = self.path / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text)

    def remove(self, relative: str) -> None:
        (self.path / relative).unlink()

    def commit(self, message: str = "update") -> str:
        self.repo.git.add(all=True)
        self.repo.git.commit("-m", message)
        return self.repo.head.commit.hexsha


# One sandbox at a time, the same way a shared test server would be handed out.
_sandbox_lock = threading.Lock()


@pytest.fixture
def git_sandbox(tmp_path):
    if shutil.which("git") is None:
        pytest.skip("git binary not available")
    with _sandbox_lock:
        repo = git.Repo.init(tmp_path / "repo")
        with repo.config_writer() as writer:
            writer.set_value("user", "name", "hvresult test")
            writer.set_value("user", "email", "test@localhost")
            writer.set_value("commit", "gpgsign", "false")
        yield GitSandbox(repo)
        repo.close()
