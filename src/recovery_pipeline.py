"""
Phased recovery of human-readable values for translation keys.

Phases run in a fixed order and stop as soon as every requested key is resolved:

1. session cache
2. extraction-reference commit
3. HEAD content of the target locale
4. HEAD content of the other locales
5. locale-file history of the target locale
6. locale-file history of the other locales
7. source-file history (the diff that introduced the translation call)

Batch recovery iterates files and commits on the outside and keys on the inside;
single-key recovery is a batch of one and yields the same results.
"""
import asyncio
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set, Tuple

from tqdm.asyncio import tqdm

from src.locale_cache import LocaleCacheRegistry, LocaleSnapshotCache
from src.locale_store import LocaleFileInfo, get_nested_value
from src.logging_config import get_logger
from src.operation_lock import CancellationToken
from src.text_analysis import Candidate, extract_candidates, extract_hint_words, get_key_path_variations
from src.value_checks import (
    build_translation_call_pattern,
    extract_call_option_names,
    has_signal,
    has_suspicious_placeholder_pattern,
    is_acceptable_candidate,
    is_key_like,
    is_suspicious_value,
)

logger = get_logger("pipeline")

# Minimum score of a diff-derived candidate
DIFF_SCORE_THRESHOLD = 3
# Minimum score of a candidate found in the pre-introduction snapshot
SNAPSHOT_SCORE_THRESHOLD = 5


@dataclass(frozen=True)
class RecoveryResult:
    value: str
    source: str


@dataclass
class RecoveryOptions:
    """
    Tuning knobs for one recovery run.

    ``option_names`` maps a key to the option names passed at its call site; when a key
    has an entry, recovered values may only use those names as placeholders. Keys without
    an entry get the names parsed from their call sites in the workspace sources, unless
    ``derive_option_names`` is off.
    """
    days_back: int = 120
    max_commits: int = 100
    max_commits_per_file: int = 15
    source_days_back: int = 365
    source_max_commits: int = 50
    batch_width: int = 5
    extract_ref: Optional[str] = None
    option_names: Optional[Dict[str, List[str]]] = None
    derive_option_names: bool = True


@dataclass
class _HistoryEvent:
    commit: str
    value: Optional[str] = None
    contaminated: bool = False


@dataclass
class _BatchState:
    keys: List[str]
    locale: str
    options: RecoveryOptions
    token: Optional[CancellationToken]
    variations: Dict[str, List[str]] = field(default_factory=dict)
    results: Dict[str, RecoveryResult] = field(default_factory=dict)
    # (key, locale) pairs whose locale history is abandoned for that key
    contaminated: Set[Tuple[str, str]] = field(default_factory=set)
    call_site_options: Dict[str, List[str]] = field(default_factory=dict)

    def unresolved(self) -> List[str]:
        return [k for k in self.keys if k not in self.results]

    def cancelled(self) -> bool:
        return self.token is not None and self.token.is_cancelled

    def option_names_for(self, key: str) -> Optional[List[str]]:
        if self.options.option_names is not None and key in self.options.option_names:
            return self.options.option_names[key]
        return self.call_site_options.get(key)


def _chunks(items: Sequence, size: int):
    size = max(1, size)
    for start in range(0, len(items), size):
        yield items[start:start + size]


def parse_diff_hunks(diff: str) -> List[Tuple[List[str], List[str]]]:
    """
    Splits unified-diff text into hunks of (removed lines, added lines), prefixes stripped.

    File header lines (``---``/``+++``) are skipped; each ``@@`` header starts a new hunk.
    """
    hunks = []
    removed: List[str] = []
    added: List[str] = []
    for line in diff.split('\n'):
        if line.startswith('@@'):
            if removed or added:
                hunks.append((removed, added))
            removed, added = [], []
        elif line.startswith('-') and not line.startswith('---'):
            removed.append(line[1:])
        elif line.startswith('+') and not line.startswith('+++'):
            added.append(line[1:])
    if removed or added:
        hunks.append((removed, added))
    return hunks


class RecoveryPipeline:
    """
    Recovers values for translation keys, one key or many at a time.

    Results are cached per (workspace, locale, key) for the lifetime of the pipeline,
    until ``clear_cache`` is called. ``recover`` and ``recover_batch`` never raise: a
    failing phase is logged and contributes nothing.
    """

    def __init__(
            self,
            registry: LocaleCacheRegistry,
            default_options: Optional[RecoveryOptions] = None,
            show_progress: bool = False
    ):
        self.registry = registry
        self.default_options = default_options or RecoveryOptions()
        self.show_progress = show_progress
        self._results: Dict[Tuple[str, str, str], RecoveryResult] = {}

    def clear_cache(self):
        """Forgets recovered results and every workspace's locale cache."""
        self._results.clear()
        self.registry.clear_all()

    async def recover(
            self,
            workspace: str,
            locale: str,
            key: str,
            options: Optional[RecoveryOptions] = None,
            cancellation_token: Optional[CancellationToken] = None
    ) -> Optional[RecoveryResult]:
        results = await self.recover_batch(workspace, [key], locale, options, cancellation_token)
        return results.get(key)

    async def recover_batch(
            self,
            workspace: str,
            keys: Sequence[str],
            locale: str,
            options: Optional[RecoveryOptions] = None,
            cancellation_token: Optional[CancellationToken] = None
    ) -> Dict[str, Optional[RecoveryResult]]:
        """
        Recovers values for many keys of one locale.

        Args:
            workspace: Root of the workspace checkout.
            keys: Translation keys; duplicates are recovered once.
            locale: Target locale.
            options: Lookback windows, batch width, extraction-reference commit and
                call-site option names. Defaults to the pipeline's options.
            cancellation_token: Checked between phases and between files and commits.

        Returns:
            A mapping of every requested key to its result, or None when not recovered.
        """
        workspace = os.path.abspath(workspace)
        options = options or self.default_options
        unique_keys = list(dict.fromkeys(keys))
        state = _BatchState(keys=[], locale=locale, options=options, token=cancellation_token)

        for key in unique_keys:
            variations = get_key_path_variations(key or '')
            if not variations:
                logger.warning(f"Skipping invalid translation key {key!r}")
                continue
            state.keys.append(key)
            state.variations[key] = variations
            cached = self._results.get((workspace, locale, key))
            if cached is not None:
                state.results[key] = cached

        hits = len(state.results)
        if state.unresolved():
            logger.info(f"Recovering {len(state.unresolved())} key(s) for '{locale}' ({hits} cached)")
            await self._run_phases(workspace, state)

        for key, result in state.results.items():
            self._results[(workspace, locale, key)] = result

        logger.info(f"Recovered {len(state.results)}/{len(unique_keys)} key(s) for '{locale}'")
        return {key: state.results.get(key) for key in unique_keys}

    async def _run_phases(self, workspace: str, state: _BatchState):
        try:
            cache = self.registry.get(workspace)
            await cache.initialize(state.locale)
        except Exception:
            logger.exception(f"Could not load locale files for {workspace}")
            return

        if state.options.derive_option_names and not state.cancelled():
            try:
                await self._collect_call_site_options(cache, state)
            except Exception:
                logger.exception("Could not read translation call sites")

        phases = (
            ("extraction reference", self._search_extract_ref),
            ("HEAD, target locale", self._search_head_target),
            ("HEAD, other locales", self._search_head_other),
            ("history, target locale", self._search_history_target),
            ("history, other locales", self._search_history_other),
            ("source history", self._search_source_files),
        )
        for name, phase in phases:
            if not state.unresolved():
                return
            if state.cancelled():
                logger.info(f"Recovery cancelled before phase '{name}'")
                return
            before = len(state.results)
            try:
                await phase(cache, state)
            except Exception:
                logger.exception(f"Recovery phase '{name}' failed")
            logger.debug(f"Phase '{name}' resolved {len(state.results) - before} key(s)")

    # --- value checks ------------------------------------------------------------

    async def _collect_call_site_options(self, cache: LocaleSnapshotCache, state: _BatchState):
        """Option names passed at the call sites of unresolved keys the caller gave none for."""
        keys = [k for k in state.unresolved() if state.option_names_for(k) is None]
        if not keys:
            return
        await cache.build_source_index(keys)
        for key in keys:
            names: List[str] = []
            for path in cache.source_files_for_key(key):
                for name in extract_call_option_names(await cache.source_content(path) or '', key):
                    if name not in names:
                        names.append(name)
            # A call without an options object leaves placeholders unchecked
            if names:
                state.call_site_options[key] = names

    def _accept(self, state: _BatchState, key: str, value: str, source: str):
        state.results[key] = RecoveryResult(value=value, source=source)
        logger.info(f"Recovered '{key}' from {source}")

    def _lookup(self, state: _BatchState, tree: dict, key: str) -> Optional[str]:
        """First usable value among the key's variations, skipping suspicious ones."""
        for variation in state.variations[key]:
            value = get_nested_value(tree, variation)
            if not isinstance(value, str) or not value.strip():
                continue
            if has_suspicious_placeholder_pattern(value):
                logger.debug(f"Skipping badly extracted value for '{key}': {value[:50]!r}")
                continue
            if is_suspicious_value(key, value, state.option_names_for(key)):
                continue
            return value
        return None

    def _inspect_history(self, state: _BatchState, tree: dict, key: str, commit: str) -> Optional[_HistoryEvent]:
        for variation in state.variations[key]:
            value = get_nested_value(tree, variation)
            if not isinstance(value, str) or not value.strip():
                continue
            if has_suspicious_placeholder_pattern(value):
                return _HistoryEvent(commit=commit, contaminated=True)
            if is_suspicious_value(key, value, state.option_names_for(key)):
                continue
            return _HistoryEvent(commit=commit, value=value)
        return None

    # --- phases 2-4 --------------------------------------------------------------

    async def _search_extract_ref(self, cache: LocaleSnapshotCache, state: _BatchState):
        ref = state.options.extract_ref
        if not ref:
            return
        for chunk in _chunks(cache.locale_files(state.locale), state.options.batch_width):
            if state.cancelled():
                return
            trees = await asyncio.gather(*(cache.content_at_commit(f.path, ref) for f in chunk))
            for tree in trees:
                if tree is None:
                    continue
                for key in state.unresolved():
                    value = self._lookup(state, tree, key)
                    if value is not None:
                        self._accept(state, key, value, f"ref:{ref}")

    def _search_head(self, cache: LocaleSnapshotCache, state: _BatchState, files: List[LocaleFileInfo], tag):
        for key in state.unresolved():
            for info in files:
                tree = cache.head_content(info.path)
                if tree is None:
                    continue
                value = self._lookup(state, tree, key)
                if value is not None:
                    self._accept(state, key, value, tag(info))
                    break

    async def _search_head_target(self, cache: LocaleSnapshotCache, state: _BatchState):
        self._search_head(cache, state, cache.locale_files(state.locale), lambda info: "head")

    async def _search_head_other(self, cache: LocaleSnapshotCache, state: _BatchState):
        files = [f for f in cache.all_locale_files() if f.locale != state.locale]
        self._search_head(cache, state, files, lambda info: f"head:{info.locale}")

    # --- phases 5-6 --------------------------------------------------------------

    async def _scan_file_history(
            self,
            cache: LocaleSnapshotCache,
            state: _BatchState,
            info: LocaleFileInfo,
            keys: List[str]
    ) -> Dict[str, _HistoryEvent]:
        """First event per key in one file's history: a usable value or a contamination hit."""
        events: Dict[str, _HistoryEvent] = {}
        open_keys = list(keys)
        for commit in cache.commit_history(info.path)[:state.options.max_commits_per_file]:
            if not open_keys or state.cancelled():
                break
            tree = await cache.content_at_commit(info.path, commit.hash)
            if tree is None:
                continue
            for key in list(open_keys):
                event = self._inspect_history(state, tree, key, commit.hash)
                if event is not None:
                    events[key] = event
                    open_keys.remove(key)
        return events

    async def _search_history(self, cache: LocaleSnapshotCache, state: _BatchState, files: List[LocaleFileInfo]):
        await cache.ensure_history(state.options.days_back, state.options.max_commits)
        for chunk in _chunks(files, state.options.batch_width):
            if state.cancelled():
                return
            pending = state.unresolved()
            if not pending:
                return
            keys_per_file = [[k for k in pending if (k, f.locale) not in state.contaminated] for f in chunk]
            chunk_events = await asyncio.gather(*(
                self._scan_file_history(cache, state, info, keys)
                for info, keys in zip(chunk, keys_per_file)
            ))
            for info, events in zip(chunk, chunk_events):
                for key, event in events.items():
                    if key in state.results or (key, info.locale) in state.contaminated:
                        continue
                    if event.contaminated:
                        logger.warning(
                            f"Badly extracted value for '{key}' in {info.relative_path} at {event.commit[:7]}; "
                            f"skipping the rest of the '{info.locale}' history for this key"
                        )
                        state.contaminated.add((key, info.locale))
                    else:
                        self._accept(state, key, event.value, f"history:{event.commit}")

    async def _search_history_target(self, cache: LocaleSnapshotCache, state: _BatchState):
        await self._search_history(cache, state, cache.locale_files(state.locale))

    async def _search_history_other(self, cache: LocaleSnapshotCache, state: _BatchState):
        files = [f for f in cache.all_locale_files() if f.locale != state.locale]
        await self._search_history(cache, state, files)

    # --- phase 7 -----------------------------------------------------------------

    async def _search_source_files(self, cache: LocaleSnapshotCache, state: _BatchState):
        keys = state.unresolved()
        await cache.build_source_index(keys)
        semaphore = asyncio.Semaphore(max(1, state.options.batch_width))

        async def _recover_key(index: int, key: str):
            async with semaphore:
                for path in cache.source_files_for_key(key):
                    if state.cancelled():
                        break
                    try:
                        result = await self._recover_from_source_file(cache, state, path, key)
                    except Exception:
                        logger.exception(f"Source recovery of '{key}' failed for {path}")
                        continue
                    if result is not None:
                        return index, key, result
                return index, key, None

        tasks = [asyncio.ensure_future(_recover_key(i, k)) for i, k in enumerate(keys)]
        outcomes = []
        for coro in tqdm.as_completed(tasks, desc="Searching source history", unit="key", disable=not self.show_progress):
            outcomes.append(await coro)

        for _, key, result in sorted(outcomes, key=lambda outcome: outcome[0]):
            if result is not None:
                self._accept(state, key, result.value, result.source)

    async def _recover_from_source_file(
            self,
            cache: LocaleSnapshotCache,
            state: _BatchState,
            path: str,
            key: str
    ) -> Optional[RecoveryResult]:
        """
        Recovers the hardcoded text a translation call replaced in one source file.

        The file's history is scanned newest first for the commit that introduced the
        call and the commit just before it. Candidates come from the removed lines of
        hunks whose added lines contain the call; if none qualifies, the snapshot before
        the call was introduced is scanned directly.
        """
        hint_words = extract_hint_words(key)
        current = await cache.source_content(path) or ''
        placeholder_hints = extract_call_option_names(current, key)
        option_names = state.option_names_for(key)

        commits = await cache.source_commit_history(path, state.options.source_days_back, state.options.source_max_commits)
        if len(commits) < 2:
            return None

        call_pattern = build_translation_call_pattern(key)
        with_call = without_call = None
        for commit in commits:
            if state.cancelled():
                return None
            content = await cache.raw_content_at(path, commit.hash)
            if not content:
                continue
            if call_pattern.search(content):
                with_call = commit.hash
            elif with_call:
                without_call = commit.hash
                break
        if not with_call or not without_call:
            return None

        relative_path = os.path.relpath(path, cache.workspace_root).replace('\\', '/')
        logger.debug(f"t('{key}') introduced in {relative_path} between {without_call[:7]} and {with_call[:7]}")

        diff = await cache.diff(path, without_call, with_call)
        if diff:
            value = self._best_diff_candidate(diff, call_pattern, hint_words, placeholder_hints)
            if value is not None and not is_suspicious_value(key, value, option_names):
                return RecoveryResult(value=value, source=f"diff:{without_call}..{with_call}")

        snapshot = await cache.raw_content_at(path, without_call)
        if snapshot:
            for candidate in extract_candidates(snapshot, hint_words, placeholder_hints):
                if candidate.score < SNAPSHOT_SCORE_THRESHOLD:
                    break
                if (has_signal(candidate.text, hint_words, placeholder_hints)
                        and not is_key_like(candidate.text)
                        and not is_suspicious_value(key, candidate.text, option_names)):
                    return RecoveryResult(value=candidate.text, source=f"source:{without_call}:{relative_path}")
        return None

    @staticmethod
    def _best_diff_candidate(diff: str, call_pattern, hint_words: List[str], placeholder_hints: List[str]) -> Optional[str]:
        candidates: List[Candidate] = []
        for removed, added in parse_diff_hunks(diff):
            if not any(call_pattern.search(line) for line in added):
                continue
            for line in removed:
                candidates.extend(extract_candidates(line, hint_words, placeholder_hints))
            if len(removed) > 1:
                candidates.extend(extract_candidates('\n'.join(removed), hint_words, placeholder_hints))

        candidates = [
            c for c in candidates
            if has_signal(c.text, hint_words, placeholder_hints) and not is_key_like(c.text)
        ]
        candidates.sort(key=lambda c: c.score, reverse=True)
        for candidate in candidates:
            if candidate.score < DIFF_SCORE_THRESHOLD:
                break
            if is_acceptable_candidate(candidate.text, hint_words, placeholder_hints):
                return candidate.text
        return None
