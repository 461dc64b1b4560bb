"""
Per-workspace memoization of locale files, their history, and source-file key usage.

All entries live until ``clear()``; nothing is invalidated automatically.
"""
import asyncio
import fnmatch
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from src.locale_store import (
    DEFAULT_LOCALE_ROOTS,
    LocaleFileInfo,
    discover_locale_files,
    flatten_keys,
    parse_locale_content,
    read_locale_file,
)
from src.logging_config import get_logger
from src.text_analysis import compute_edit_distance
from src.value_checks import contains_translation_call
from src.version_history import MAX_HISTORY_COMMITS, CommitRef, VersionHistorySource

logger = get_logger("cache")

DEFAULT_SOURCE_GLOBS = ('**/*.ts', '**/*.tsx', '**/*.js', '**/*.jsx', '**/*.vue')
DEFAULT_SOURCE_EXCLUDE_DIRS = ('node_modules', '.git', 'dist', 'build')
DEFAULT_MAX_SOURCE_FILES = 500
# Files read concurrently while pre-loading HEAD content
HEAD_PRELOAD_BATCH_SIZE = 10
# Files read concurrently while building the source index
SOURCE_INDEX_BATCH_SIZE = 20


def _since(days_back: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days_back)


def _chunks(items: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def _read_text(path: str) -> Optional[str]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Could not read source file {path}: {e}")
        return None


class LocaleSnapshotCache:
    """
    Cache of one workspace's locale files and their version history.

    ``initialize`` discovers locale files and pre-reads their current content. Commit
    history for all locale files is fetched lazily, with one batched query, the first
    time a caller needs it. Content at a commit is cached per ``(path, commit)``, and
    concurrent requests for the same pair share one fetch.
    """

    def __init__(
            self,
            workspace_root: str,
            history: VersionHistorySource,
            locale_roots: Sequence[str] = DEFAULT_LOCALE_ROOTS,
            source_globs: Sequence[str] = DEFAULT_SOURCE_GLOBS,
            source_exclude_dirs: Sequence[str] = DEFAULT_SOURCE_EXCLUDE_DIRS,
            max_source_files: int = DEFAULT_MAX_SOURCE_FILES
    ):
        self.workspace_root = os.path.abspath(workspace_root)
        self.history = history
        self.locale_roots = tuple(locale_roots)
        self.source_globs = tuple(source_globs)
        self.source_exclude_dirs = set(source_exclude_dirs)
        self.max_source_files = max_source_files
        self._reset()

    def _reset(self):
        self._files_by_locale: Dict[str, List[LocaleFileInfo]] = {}
        self._head_content: Dict[str, dict] = {}
        self._commit_history: Dict[str, List[CommitRef]] = {}
        self._history_loaded = False
        self._history_lock = asyncio.Lock()
        self._init_task: Optional[asyncio.Task] = None
        self._json_at_commit: Dict[Tuple[str, str], asyncio.Task] = {}
        self._raw_at_commit: Dict[Tuple[str, str], asyncio.Task] = {}
        self._diffs: Dict[Tuple[str, str, str], asyncio.Task] = {}
        self._source_history: Dict[str, List[CommitRef]] = {}
        self._source_contents: Dict[str, Optional[str]] = {}
        self._source_files: Optional[List[str]] = None
        self._source_index: Dict[str, List[str]] = {}
        self._indexed_keys = set()

    # --- initialization ----------------------------------------------------------

    async def initialize(self, default_locale: str):
        """Discovers locale files and pre-reads HEAD content, default locale first. Runs once."""
        if self._init_task is None:
            self._init_task = asyncio.ensure_future(self._do_initialize(default_locale))
        await self._init_task

    async def _do_initialize(self, default_locale: str):
        files = await asyncio.to_thread(discover_locale_files, self.workspace_root, self.locale_roots)
        logger.info(f"Found {len(files)} locale file(s) in {self.workspace_root}")
        for info in files:
            self._files_by_locale.setdefault(info.locale, []).append(info)

        default_files = self._files_by_locale.get(default_locale, [])
        other_files = [f for f in files if f.locale != default_locale]
        await self._preload_head_content(default_files)
        await self._preload_head_content(other_files)

    async def _preload_head_content(self, files: Sequence[LocaleFileInfo]):
        for chunk in _chunks(list(files), HEAD_PRELOAD_BATCH_SIZE):
            trees = await asyncio.gather(*(asyncio.to_thread(read_locale_file, f.path) for f in chunk))
            for info, tree in zip(chunk, trees):
                if tree is not None:
                    self._head_content[info.path] = tree
        logger.debug(f"Pre-loaded {len(self._head_content)} locale file(s) from HEAD")

    # --- locale files ------------------------------------------------------------

    def locales(self) -> List[str]:
        return list(self._files_by_locale.keys())

    def locale_files(self, locale: str) -> List[LocaleFileInfo]:
        return list(self._files_by_locale.get(locale, []))

    def all_locale_files(self) -> List[LocaleFileInfo]:
        return [f for files in self._files_by_locale.values() for f in files]

    def head_content(self, path: str) -> Optional[dict]:
        return self._head_content.get(path)

    # --- locale history ----------------------------------------------------------

    async def ensure_history(self, days_back: int, max_commits: int = MAX_HISTORY_COMMITS):
        """Fetches commit history for every locale file with one batched query, once."""
        async with self._history_lock:
            if self._history_loaded:
                return
            paths = [f.path for f in self.all_locale_files()]
            if paths:
                try:
                    self._commit_history = await self.history.list_commits_for_paths(
                        paths, _since(days_back), max_commits
                    )
                except Exception as e:
                    logger.debug(f"Batched history fetch failed: {e}")
                    self._commit_history = {}
            self._history_loaded = True
            with_history = sum(1 for commits in self._commit_history.values() if commits)
            logger.info(f"Pre-fetched history for {with_history} of {len(paths)} locale file(s)")

    def commit_history(self, path: str) -> List[CommitRef]:
        return self._commit_history.get(path, [])

    async def content_at_commit(self, path: str, commit: str) -> Optional[dict]:
        """Parsed locale tree of ``path`` at ``commit``; None when missing or not a JSON object."""
        key = (path, commit)
        task = self._json_at_commit.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_tree(path, commit))
            self._json_at_commit[key] = task
        return await task

    async def _fetch_tree(self, path: str, commit: str) -> Optional[dict]:
        return parse_locale_content(await self.raw_content_at(path, commit))

    async def raw_content_at(self, path: str, commit: str) -> Optional[str]:
        key = (path, commit)
        task = self._raw_at_commit.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_raw(path, commit))
            self._raw_at_commit[key] = task
        return await task

    async def _fetch_raw(self, path: str, commit: str) -> Optional[str]:
        try:
            return await self.history.content_at(path, commit)
        except Exception as e:
            logger.debug(f"Could not read {path} at {commit}: {e}")
            return None

    async def diff(self, path: str, commit_a: str, commit_b: str) -> Optional[str]:
        key = (path, commit_a, commit_b)
        task = self._diffs.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch_diff(path, commit_a, commit_b))
            self._diffs[key] = task
        return await task

    async def _fetch_diff(self, path: str, commit_a: str, commit_b: str) -> Optional[str]:
        try:
            return await self.history.diff(path, commit_a, commit_b)
        except Exception as e:
            logger.debug(f"Could not diff {path} {commit_a}..{commit_b}: {e}")
            return None

    # --- source files ------------------------------------------------------------

    def _list_source_files(self) -> List[str]:
        patterns = [os.path.basename(g) for g in self.source_globs]
        found = []
        for dir_path, dir_names, file_names in os.walk(self.workspace_root):
            dir_names[:] = sorted(d for d in dir_names if d not in self.source_exclude_dirs)
            for file_name in sorted(file_names):
                if any(fnmatch.fnmatch(file_name, p) for p in patterns):
                    found.append(os.path.join(dir_path, file_name))
                    if len(found) >= self.max_source_files:
                        return found
        return found

    async def source_content(self, path: str) -> Optional[str]:
        """Current content of a source file, read once."""
        if path not in self._source_contents:
            self._source_contents[path] = await asyncio.to_thread(_read_text, path)
        return self._source_contents[path]

    async def build_source_index(self, keys: Iterable[str]):
        """
        Records, per key, the source files containing a translation call for it.

        Source files are listed once per cache lifetime; each call only scans for keys
        not indexed before.
        """
        pending = [k for k in dict.fromkeys(keys) if k not in self._indexed_keys]
        if not pending:
            return
        if self._source_files is None:
            self._source_files = await asyncio.to_thread(self._list_source_files)

        for chunk in _chunks(self._source_files, SOURCE_INDEX_BATCH_SIZE):
            contents = await asyncio.gather(*(self.source_content(p) for p in chunk))
            for path, content in zip(chunk, contents):
                if not content:
                    continue
                for key in pending:
                    if key in content and contains_translation_call(content, key):
                        self._source_index.setdefault(key, []).append(path)

        self._indexed_keys.update(pending)
        matched = sum(1 for k in pending if self._source_index.get(k))
        logger.info(f"Indexed {len(self._source_files)} source file(s) for {len(pending)} key(s), {matched} referenced")

    def source_files_for_key(self, key: str) -> List[str]:
        return list(self._source_index.get(key, []))

    async def source_commit_history(self, path: str, days_back: int, max_commits: int) -> List[CommitRef]:
        if path not in self._source_history:
            try:
                self._source_history[path] = await self.history.list_commits(path, _since(days_back), max_commits)
            except Exception as e:
                logger.debug(f"Could not list commits for {path}: {e}")
                self._source_history[path] = []
        return self._source_history[path]

    # --- suggestions -------------------------------------------------------------

    def find_similar_keys(self, locale: str, key: str, max_distance: int = 3, limit: int = 5) -> List[str]:
        """Keys present at HEAD for ``locale`` within ``max_distance`` edits of ``key``, closest first."""
        scored = []
        seen = set()
        for info in self.locale_files(locale):
            for existing in flatten_keys(self._head_content.get(info.path)):
                if existing in seen or existing == key:
                    continue
                seen.add(existing)
                distance = compute_edit_distance(existing, key)
                if distance <= max_distance:
                    scored.append((distance, existing))
        scored.sort()
        return [k for _, k in scored[:limit]]

    def clear(self):
        """Drops every cached entry; the next use starts from scratch."""
        self._reset()


class LocaleCacheRegistry:
    """Explicit owner of one LocaleSnapshotCache per workspace root."""

    def __init__(self, history_factory: Callable[[str], VersionHistorySource], **cache_options):
        self._history_factory = history_factory
        self._cache_options = cache_options
        self._caches: Dict[str, LocaleSnapshotCache] = {}

    def get(self, workspace_root: str) -> LocaleSnapshotCache:
        key = os.path.abspath(workspace_root)
        cache = self._caches.get(key)
        if cache is None:
            cache = LocaleSnapshotCache(key, self._history_factory(key), **self._cache_options)
            self._caches[key] = cache
        return cache

    def clear_all(self):
        for cache in self._caches.values():
            cache.clear()
        self._caches.clear()
