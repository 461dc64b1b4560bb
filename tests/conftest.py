import json
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from src.locale_cache import LocaleCacheRegistry
from src.operation_lock import OperationLockManager
from src.recovery_pipeline import RecoveryPipeline
from src.version_history import CommitRef, VersionHistorySource, to_relative_posix


def make_commit(commit_hash: str, day: int = 1, message: str = '') -> CommitRef:
    return CommitRef(hash=commit_hash, date=datetime(2026, 1, day, tzinfo=timezone.utc), message=message)


class FakeHistorySource(VersionHistorySource):
    """
    In-memory history keyed by workspace-relative paths.

    Every call is appended to ``calls`` as ``(method, relative_path, *args)`` so tests can
    assert exactly how much history was consulted.
    """

    def __init__(self, workspace_root: str):
        self.workspace_root = workspace_root
        self.commits: Dict[str, List[CommitRef]] = {}
        self.contents: Dict[Tuple[str, str], str] = {}
        self.diffs: Dict[Tuple[str, str, str], str] = {}
        self.head: Optional[str] = None
        self.calls: List[tuple] = []

    def _rel(self, path: str) -> str:
        return to_relative_posix(self.workspace_root, path)

    def add_commit(self, rel_path: str, commit_hash: str, content: Optional[str] = None):
        """Appends an older commit to ``rel_path``'s newest-first history."""
        self.commits.setdefault(rel_path, []).append(make_commit(commit_hash))
        if content is not None:
            self.contents[(rel_path, commit_hash)] = content

    async def list_commits(self, path, since, max_count):
        rel = self._rel(path)
        self.calls.append(('list_commits', rel))
        return list(self.commits.get(rel, []))[:max_count]

    async def content_at(self, path, commit):
        rel = self._rel(path)
        self.calls.append(('content_at', rel, commit))
        return self.contents.get((rel, commit))

    async def diff(self, path, commit_a, commit_b):
        rel = self._rel(path)
        self.calls.append(('diff', rel, commit_a, commit_b))
        return self.diffs.get((rel, commit_a, commit_b))

    async def head_commit(self):
        self.calls.append(('head_commit',))
        return self.head


class WorkspaceBuilder:
    """Writes locale and source files into a temporary workspace."""

    def __init__(self, root: str):
        self.root = root

    def path(self, rel_path: str) -> str:
        return os.path.join(self.root, *rel_path.split('/'))

    def write(self, rel_path: str, content: str) -> str:
        path = self.path(rel_path)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def write_locale(self, locale: str, tree: dict, rel_dir: str = 'locales') -> str:
        return self.write(f"{rel_dir}/{locale}.json", json.dumps(tree, indent=2))

    def read_json(self, rel_path: str) -> dict:
        with open(self.path(rel_path), 'r', encoding='utf-8') as f:
            return json.load(f)


@pytest.fixture
def workspace(tmp_path):
    return WorkspaceBuilder(str(tmp_path))


@pytest.fixture
def fake_history(workspace):
    return FakeHistorySource(workspace.root)


@pytest.fixture
def registry(fake_history):
    return LocaleCacheRegistry(lambda root: fake_history)


@pytest.fixture
def pipeline(registry):
    return RecoveryPipeline(registry)


@pytest.fixture
def lock_manager():
    return OperationLockManager(lock_timeout=300, file_lock_timeout=30, file_write_delay=0)
