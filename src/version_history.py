"""Read-only access to version-control history for locale and source files."""
import asyncio
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from aiolimiter import AsyncLimiter

from src.logging_config import get_logger

logger = get_logger("git")

# Timeout for a single git invocation, in seconds
GIT_TIMEOUT_SECONDS = 30
# Max commits returned by one history query
MAX_HISTORY_COMMITS = 100
# Prefix that marks a commit header line in batched `git log --name-only` output
COMMIT_MARKER = "__commit__"

_GIT_REF_PATTERN = re.compile(r'^[A-Za-z0-9_./\-^~@]+$')


@dataclass(frozen=True)
class CommitRef:
    """One commit touching a file, as listed newest-first by the history source."""
    hash: str
    date: datetime
    message: str


def is_valid_git_ref(ref: str) -> bool:
    """
    Check that a string is a safe git ref (commit hash, branch name, or tag).

    Shell metacharacters ($, `, quotes, backslash, |, ;, &) are refused even though
    git is never run through a shell.
    """
    if not ref or not isinstance(ref, str):
        return False
    return bool(_GIT_REF_PATTERN.match(ref)) and len(ref) < 256


def to_relative_posix(workspace_root: str, file_path: str) -> str:
    """Express ``file_path`` relative to the workspace with forward slashes, as git expects."""
    if os.path.isabs(file_path):
        file_path = os.path.relpath(file_path, workspace_root)
    return file_path.replace('\\', '/')


def _parse_commit_header(line: str) -> Optional[CommitRef]:
    parts = line.split('|', 2)
    if len(parts) < 2:
        return None
    commit_hash, date_str = parts[0].strip(), parts[1].strip()
    if not commit_hash or not date_str:
        return None
    try:
        date = datetime.fromisoformat(date_str)
    except ValueError:
        return None
    message = parts[2].strip() if len(parts) > 2 else ''
    return CommitRef(hash=commit_hash, date=date, message=message)


def parse_log_output(stdout: str) -> List[CommitRef]:
    """
    Parse ``git log --format=%H|%aI|%s`` output into commit refs, keeping git's order.

    Lines that do not parse are skipped.
    """
    commits = []
    for line in stdout.splitlines():
        if not line.strip():
            continue
        commit = _parse_commit_header(line)
        if commit:
            commits.append(commit)
    return commits


def parse_batched_log_output(stdout: str) -> Dict[str, List[CommitRef]]:
    """
    Parse batched ``git log --name-only`` output into per-file commit lists.

    Commit header lines carry the ``__commit__`` prefix; every other non-blank line is a
    path touched by the preceding commit. Paths are returned exactly as git printed them
    (relative, forward slashes). A commit is recorded at most once per path.
    """
    histories: Dict[str, List[CommitRef]] = {}
    current: Optional[CommitRef] = None
    for raw_line in stdout.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(COMMIT_MARKER):
            current = _parse_commit_header(line[len(COMMIT_MARKER):])
            continue
        if current is None:
            continue
        commits = histories.setdefault(line, [])
        if not any(c.hash == current.hash for c in commits):
            commits.append(current)
    return histories


class VersionHistorySource(ABC):
    """
    Read-only view of a file's version history.

    Implementations never raise for a missing repository, unknown path or bad commit:
    they return ``None`` or an empty list instead.
    """

    @abstractmethod
    async def list_commits(self, path: str, since: datetime, max_count: int) -> List[CommitRef]:
        """Commits touching ``path`` since ``since``, newest first, at most ``max_count``."""

    @abstractmethod
    async def content_at(self, path: str, commit: str) -> Optional[str]:
        """Content of ``path`` at ``commit``, or None when it did not exist or git failed."""

    @abstractmethod
    async def diff(self, path: str, commit_a: str, commit_b: str) -> Optional[str]:
        """Unified diff of ``path`` between two commits, or None."""

    async def list_commits_for_paths(
            self,
            paths: Iterable[str],
            since: datetime,
            max_count: int
    ) -> Dict[str, List[CommitRef]]:
        """
        Commit history for several paths at once, keyed by the paths as given.

        The default implementation issues one query per path; git overrides it with a
        single batched invocation.
        """
        histories = {}
        for path in paths:
            histories[path] = await self.list_commits(path, since, max_count)
        return histories

    async def head_commit(self) -> Optional[str]:
        """Hash of the current HEAD commit, if the source knows it."""
        return None


class GitHistorySource(VersionHistorySource):
    """
    VersionHistorySource backed by the ``git`` executable of a workspace checkout.

    Every invocation goes through a semaphore (concurrent processes) and a rate limiter
    (process spawns per second), and is abandoned after ``timeout`` seconds.
    """

    def __init__(
            self,
            workspace_root: str,
            timeout: float = GIT_TIMEOUT_SECONDS,
            max_concurrency: int = 4,
            rate_limit: int = 50
    ):
        self.workspace_root = os.path.abspath(workspace_root)
        self.timeout = timeout
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._rate_limiter = AsyncLimiter(max_rate=rate_limit, time_period=1)

    async def _run_git(self, args: List[str]) -> Optional[str]:
        """Run git with ``args`` in the workspace and return stdout, or None on any failure."""
        async with self._semaphore:
            async with self._rate_limiter:
                try:
                    proc = await asyncio.create_subprocess_exec(
                        'git', *args,
                        cwd=self.workspace_root,
                        stdout=asyncio.subprocess.PIPE,
                        stderr=asyncio.subprocess.PIPE
                    )
                except OSError as e:
                    logger.debug(f"Could not spawn git {args[0]}: {e}")
                    return None

                try:
                    stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
                except asyncio.TimeoutError:
                    logger.warning(f"git {args[0]} timed out after {self.timeout}s in '{self.workspace_root}'")
                    proc.kill()
                    await proc.wait()
                    return None

        if proc.returncode != 0:
            logger.debug("git %s failed (exit %s): %s", args[0], proc.returncode,
                         stderr.decode('utf-8', errors='replace').strip())
            return None
        return stdout.decode('utf-8', errors='replace')

    async def list_commits(self, path: str, since: datetime, max_count: int) -> List[CommitRef]:
        relative_path = to_relative_posix(self.workspace_root, path)
        stdout = await self._run_git([
            'log',
            f"--since={since.strftime('%Y-%m-%d')}",
            '-n', str(max_count),
            '--format=%H|%aI|%s',
            '--',
            relative_path,
        ])
        if not stdout:
            return []
        return parse_log_output(stdout)

    async def list_commits_for_paths(
            self,
            paths: Iterable[str],
            since: datetime,
            max_count: int
    ) -> Dict[str, List[CommitRef]]:
        paths = list(paths)
        if not paths:
            return {}
        relative_to_given = {to_relative_posix(self.workspace_root, p): p for p in paths}
        stdout = await self._run_git([
            'log',
            f"--since={since.strftime('%Y-%m-%d')}",
            '-n', str(max_count),
            f'--format={COMMIT_MARKER}%H|%aI|%s',
            '--name-only',
            '--',
            *relative_to_given.keys(),
        ])
        histories: Dict[str, List[CommitRef]] = {p: [] for p in paths}
        if not stdout:
            return histories
        for relative_path, commits in parse_batched_log_output(stdout).items():
            given = relative_to_given.get(relative_path)
            if given is not None:
                histories[given] = commits
        return histories

    async def content_at(self, path: str, commit: str) -> Optional[str]:
        if not is_valid_git_ref(commit):
            logger.warning(f"Refusing invalid git ref format: {commit!r}")
            return None
        relative_path = to_relative_posix(self.workspace_root, path)
        stdout = await self._run_git(['show', f'{commit}:{relative_path}'])
        return stdout or None

    async def diff(self, path: str, commit_a: str, commit_b: str) -> Optional[str]:
        if not is_valid_git_ref(commit_a) or not is_valid_git_ref(commit_b):
            logger.warning(f"Refusing invalid git ref format: {commit_a!r} or {commit_b!r}")
            return None
        relative_path = to_relative_posix(self.workspace_root, path)
        stdout = await self._run_git(['diff', commit_a, commit_b, '--', relative_path])
        return stdout or None

    async def head_commit(self) -> Optional[str]:
        stdout = await self._run_git(['rev-parse', 'HEAD'])
        if not stdout:
            return None
        return stdout.strip() or None
