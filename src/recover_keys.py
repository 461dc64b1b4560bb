"""
Command-line driver for key value recovery.

Usage:
    python -m src.recover_keys auth.errors.invalid_credentials nav.home --locale en
    python -m src.recover_keys --keys-file missing_keys.txt --write
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, List, Optional

from src.app_config import RecoveryConfig, load_app_config
from src.commit_tracker import CommitTracker
from src.locale_cache import LocaleCacheRegistry, LocaleSnapshotCache
from src.locale_store import LocaleFileError, resolve_write_target, set_multiple_in_file
from src.logging_config import LOGGER_NAME
from src.operation_lock import CancellationToken, OperationLockManager, OperationType
from src.recovery_pipeline import RecoveryOptions, RecoveryPipeline, RecoveryResult
from src.text_analysis import build_label_from_key_segment
from src.version_history import GitHistorySource

logger = logging.getLogger(LOGGER_NAME)


def build_recovery_options(config: RecoveryConfig, extract_ref: Optional[str] = None) -> RecoveryOptions:
    """Maps configuration onto the pipeline's per-run options."""
    return RecoveryOptions(
        days_back=config.days_back,
        max_commits=config.max_commits,
        max_commits_per_file=config.max_commits_per_file,
        source_days_back=config.source_days_back,
        source_max_commits=config.source_max_commits,
        batch_width=config.batch_width,
        extract_ref=extract_ref,
    )


def build_registry(config: RecoveryConfig) -> LocaleCacheRegistry:
    def _history_factory(workspace_root: str) -> GitHistorySource:
        return GitHistorySource(
            workspace_root,
            timeout=config.git_timeout_seconds,
            max_concurrency=config.git_max_concurrency,
            rate_limit=config.git_rate_limit
        )

    return LocaleCacheRegistry(
        _history_factory,
        locale_roots=config.locale_roots,
        source_globs=config.source_globs,
        source_exclude_dirs=config.source_exclude_dirs,
        max_source_files=config.max_source_files
    )


def read_keys(keys: List[str], keys_file: Optional[str]) -> List[str]:
    """Keys from the command line followed by those in ``keys_file`` (one per line, '#' comments)."""
    collected = list(keys)
    if keys_file:
        with open(keys_file, 'r', encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith('#'):
                    collected.append(line)
    return list(dict.fromkeys(collected))


def format_report(
        results: Dict[str, Optional[RecoveryResult]],
        cache: LocaleSnapshotCache,
        locale: str
) -> str:
    """Human-readable summary; unresolved keys get a fallback label and near-miss suggestions."""
    lines = []
    recovered = sum(1 for r in results.values() if r is not None)
    lines.append(f"Recovered {recovered} of {len(results)} key(s) for '{locale}'")
    for key, result in results.items():
        if result is not None:
            lines.append(f"  [ok]      {key} = {result.value!r}  ({result.source})")
            continue
        fallback = build_label_from_key_segment(key.split('.')[-1])
        lines.append(f"  [missing] {key}  (fallback label: {fallback!r})")
        similar = cache.find_similar_keys(locale, key)
        if similar:
            lines.append(f"            similar keys: {', '.join(similar)}")
    return '\n'.join(lines)


async def write_recovered_values(
        results: Dict[str, Optional[RecoveryResult]],
        cache: LocaleSnapshotCache,
        locale: str,
        lock_manager: OperationLockManager
) -> int:
    """Writes recovered values into the locale's files, one write per file. Returns the number written."""
    files = cache.locale_files(locale)
    updates_by_file: Dict[str, Dict[str, str]] = {}
    for key, result in results.items():
        if result is None:
            continue
        target = resolve_write_target(files, key)
        if target is None:
            logger.warning(f"No '{locale}' locale file to write '{key}' into")
            continue
        info, key_path = target
        updates_by_file.setdefault(info.path, {})[key_path] = result.value

    written = 0
    for path, updates in updates_by_file.items():
        try:
            await set_multiple_in_file(path, updates, lock_manager, OperationType.KEY_MANAGEMENT)
        except LocaleFileError as e:
            logger.error(f"Skipped writing {len(updates)} value(s): {e}")
            continue
        written += len(updates)
    return written


async def run_recovery(
        config: RecoveryConfig,
        keys: List[str],
        locale: str,
        write: bool = False,
        show_progress: bool = True,
        lock_manager: Optional[OperationLockManager] = None,
        registry: Optional[LocaleCacheRegistry] = None
) -> Optional[Dict[str, Optional[RecoveryResult]]]:
    """
    Recovers ``keys`` for ``locale`` under the global key-management lock.

    Returns:
        The recovery results, or None when another bulk operation holds the lock.
    """
    lock_manager = lock_manager or OperationLockManager(
        lock_timeout=config.lock_timeout_seconds,
        file_lock_timeout=config.file_lock_timeout_seconds,
        file_write_delay=config.file_write_delay_seconds
    )
    registry = registry or build_registry(config)
    pipeline = RecoveryPipeline(registry, show_progress=show_progress)

    tracker = CommitTracker(config.state_file_path)
    extract_ref = tracker.get_extract_commit_ref(config.workspace_root)
    if extract_ref:
        logger.info(f"Using extraction reference commit {extract_ref.commit_hash[:7]}")
    options = build_recovery_options(config, extract_ref.commit_hash if extract_ref else None)

    async def _operation(token: CancellationToken):
        results = await pipeline.recover_batch(config.workspace_root, keys, locale, options, token)
        cache = registry.get(config.workspace_root)
        print(format_report(results, cache, locale))
        if write and not token.is_cancelled:
            written = await write_recovered_values(results, cache, locale, lock_manager)
            print(f"Wrote {written} value(s) to '{locale}' locale files")
        return results

    return await lock_manager.with_global_lock(
        OperationType.KEY_MANAGEMENT,
        f"Recovering {len(keys)} translation key(s)",
        _operation,
        cancellable=True
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Recover missing values for translation keys from git history.")
    parser.add_argument('keys', nargs='*', help="Translation keys to recover")
    parser.add_argument('--keys-file', help="File with one translation key per line")
    parser.add_argument('--locale', help="Target locale (defaults to the configured default locale)")
    parser.add_argument('--workspace', help="Workspace root (defaults to the configured workspace)")
    parser.add_argument('--write', action='store_true', help="Write recovered values into the locale files")
    parser.add_argument('--no-progress', action='store_true', help="Disable progress bars")
    parser.add_argument('--record-ref', metavar='SCRIPT',
                        help="Record the current HEAD as the reference commit for SCRIPT (e.g. i18n:extract) and exit")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """
    Main function to orchestrate a recovery run.
    """
    args = parse_args(argv)
    config = load_app_config()
    if args.workspace:
        config.workspace_root = os.path.abspath(args.workspace)
    locale = args.locale or config.default_locale

    if args.record_ref:
        tracker = CommitTracker(config.state_file_path)
        history = GitHistorySource(config.workspace_root, timeout=config.git_timeout_seconds)
        ref = await tracker.save_commit_ref(config.workspace_root, args.record_ref, history)
        return 0 if ref is not None else 1

    keys = read_keys(args.keys, args.keys_file)
    if not keys:
        print("No translation keys given.", file=sys.stderr)
        return 2

    results = await run_recovery(config, keys, locale, write=args.write, show_progress=not args.no_progress)
    if results is None:
        print("Another bulk operation is in progress; try again later.", file=sys.stderr)
        return 1
    return 0


def cli():
    try:
        sys.exit(asyncio.run(main()))
    except Exception as main_exc:
        logger.error(f"An unexpected error occurred during execution: {main_exc}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
