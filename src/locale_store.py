from typing import Dict, List, Optional, Sequence, Tuple
import json
import os
from dataclasses import dataclass

from src.logging_config import get_logger
from src.operation_lock import OperationLockManager, OperationType

logger = get_logger("store")

# Directories, relative to the workspace root, that may hold locale files
DEFAULT_LOCALE_ROOTS = (
    os.path.join('resources', 'js', 'i18n', 'auto'),
    os.path.join('src', 'i18n'),
    os.path.join('src', 'locales'),
    'locales',
    'i18n',
)
LOCALE_FILE_EXTENSION = '.json'


class LocaleFileError(ValueError):
    """An existing locale file cannot be safely read before a write."""


@dataclass(frozen=True)
class LocaleFileInfo:
    path: str
    relative_path: str
    locale: str
    file_name: str


def _relative(workspace_root: str, path: str) -> str:
    return os.path.relpath(path, workspace_root).replace('\\', '/')


def discover_locale_files(workspace_root: str, locale_roots: Sequence[str] = DEFAULT_LOCALE_ROOTS) -> List[LocaleFileInfo]:
    """
    Finds locale files under the known locale roots of a workspace.

    Two layouts are recognized inside each root: a directory per locale holding
    ``*.json`` files (``locales/en/auth.json``) and one file per locale
    (``locales/en.json``). Entries are visited in sorted order so discovery is stable.
    """
    files = []
    for root in locale_roots:
        base_dir = os.path.join(workspace_root, root)
        if not os.path.isdir(base_dir):
            continue
        try:
            entries = sorted(os.listdir(base_dir))
        except OSError as e:
            logger.debug(f"Could not list locale root {base_dir}: {e}")
            continue

        for name in entries:
            entry_path = os.path.join(base_dir, name)
            if os.path.isdir(entry_path):
                try:
                    locale_entries = sorted(os.listdir(entry_path))
                except OSError as e:
                    logger.debug(f"Could not list locale directory {entry_path}: {e}")
                    continue
                for file_name in locale_entries:
                    file_path = os.path.join(entry_path, file_name)
                    if file_name.endswith(LOCALE_FILE_EXTENSION) and os.path.isfile(file_path):
                        files.append(LocaleFileInfo(
                            path=os.path.abspath(file_path),
                            relative_path=_relative(workspace_root, file_path),
                            locale=name,
                            file_name=file_name
                        ))
            elif name.endswith(LOCALE_FILE_EXTENSION) and os.path.isfile(entry_path):
                files.append(LocaleFileInfo(
                    path=os.path.abspath(entry_path),
                    relative_path=_relative(workspace_root, entry_path),
                    locale=name[:-len(LOCALE_FILE_EXTENSION)],
                    file_name=name
                ))
    return files


def get_nested_value(tree, key_path: str):
    """Walks a dot-path through nested dicts; None when a segment is missing or not a dict."""
    segments = [s for s in key_path.split('.') if s]
    if not segments:
        return None
    current = tree
    for segment in segments:
        if not isinstance(current, dict) or segment not in current:
            return None
        current = current[segment]
    return current


def set_nested_value(tree: dict, key_path: str, value):
    """Sets a leaf, replacing any non-dict intermediate with a fresh dict."""
    segments = [s for s in key_path.split('.') if s]
    if not segments:
        return
    current = tree
    for segment in segments[:-1]:
        if not isinstance(current.get(segment), dict):
            current[segment] = {}
        current = current[segment]
    current[segments[-1]] = value


def flatten_keys(tree, prefix: str = '') -> Dict[str, str]:
    """All string leaves of a locale tree, keyed by their dot-path."""
    flat = {}
    if not isinstance(tree, dict):
        return flat
    for key, value in tree.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(flatten_keys(value, path))
        elif isinstance(value, str):
            flat[path] = value
    return flat


def parse_locale_content(raw: Optional[str]) -> Optional[dict]:
    """Parses locale JSON text; anything that is not a JSON object yields None."""
    if not raw:
        return None
    try:
        tree = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return tree if isinstance(tree, dict) else None


def read_locale_file(path: str) -> Optional[dict]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = f.read()
    except (OSError, UnicodeDecodeError) as e:
        logger.debug(f"Could not read locale file {path}: {e}")
        return None
    return parse_locale_content(raw)


def load_locale_for_update(path: str) -> dict:
    """
    Reads a locale file that is about to be rewritten.

    A missing or empty file starts a fresh tree. Anything else that cannot be read as a
    JSON object raises, since writing over it would drop its existing keys.

    Raises:
        LocaleFileError: The file exists but is unreadable or not a JSON object.
    """
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            raw = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise LocaleFileError(f"Could not read locale file {path}: {e}") from e
    if not raw.strip():
        return {}
    try:
        tree = json.loads(raw)
    except json.JSONDecodeError as e:
        raise LocaleFileError(f"Invalid JSON in locale file {path}: {e}") from e
    if not isinstance(tree, dict):
        raise LocaleFileError(f"Locale file {path} does not hold a JSON object")
    return tree


def write_locale_file(path: str, tree: dict):
    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write(json.dumps(tree, indent=2, ensure_ascii=False) + '\n')


def resolve_write_target(files: Sequence[LocaleFileInfo], key: str) -> Optional[Tuple[LocaleFileInfo, str]]:
    """
    Chooses the file a recovered ``key`` is written to, and the key path inside it.

    In the directory-per-locale layout a file named after the key's first segment
    (``auth.json`` for ``auth.errors.invalid``) receives the rest of the key;
    otherwise the first file receives the full key.
    """
    if not files:
        return None
    segments = [s for s in key.split('.') if s]
    if len(segments) > 1:
        namespace = segments[0] + LOCALE_FILE_EXTENSION
        for info in files:
            if info.file_name == namespace and info.file_name != f"{info.locale}{LOCALE_FILE_EXTENSION}":
                return info, '.'.join(segments[1:])
    return files[0], '.'.join(segments)


async def set_multiple_in_file(
        path: str,
        updates: Dict[str, str],
        lock_manager: OperationLockManager,
        holder: OperationType
):
    """
    Applies several leaf updates to one locale file in a single write.

    The file lock for ``holder`` and the per-file mutex are held while the file is
    read fresh, every update is applied, and the result written once, so concurrent
    updates to the same file within a batch are not lost.

    Raises:
        FileLockError: Another operation type holds the file lock.
        LocaleFileError: The existing file is unreadable; it is left untouched.
    """
    if not updates:
        return

    async def _apply():
        async with lock_manager.file_mutex.hold(path):
            tree = load_locale_for_update(path)
            for key_path, value in updates.items():
                set_nested_value(tree, key_path, value)
            write_locale_file(path, tree)
            logger.info(f"Wrote {len(updates)} value(s) to {path}")

    await lock_manager.with_file_lock(path, holder, _apply)
