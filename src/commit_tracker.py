"""Records the commit checked out right before i18n scripts ran, per workspace."""
import json
import os
import time
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional

import jsonschema

from src.logging_config import get_logger
from src.version_history import VersionHistorySource, is_valid_git_ref

logger = get_logger("tracker")

EXTRACT_SCRIPT_NAME = "i18n:extract"
REPLACE_SCRIPT_NAMES = ("i18n:rewrite", "i18n:replace")
# Only the newest entries are kept in the state file
MAX_COMMIT_REFS = 50

COMMIT_REFS_SCHEMA = {
    "type": "object",
    "properties": {
        "script_commit_refs": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "script_name": {"type": "string", "minLength": 1},
                    "commit_hash": {"type": "string", "minLength": 1},
                    "timestamp": {"type": "number"},
                    "folder_path": {"type": "string"}
                },
                "required": ["script_name", "commit_hash", "timestamp", "folder_path"],
                "additionalProperties": False
            }
        }
    },
    "required": ["script_commit_refs"]
}


@dataclass
class ScriptCommitRef:
    script_name: str
    commit_hash: str
    timestamp: float
    folder_path: str


class CommitTracker:
    """
    Persists ScriptCommitRef entries in a JSON state file.

    A state file that is missing, unreadable, or does not match ``COMMIT_REFS_SCHEMA``
    is treated as empty; it is rewritten on the next save.
    """

    def __init__(self, state_file_path: str, clock: Callable[[], float] = time.time):
        self.state_file_path = state_file_path
        self._clock = clock

    def _load(self) -> List[ScriptCommitRef]:
        if not os.path.exists(self.state_file_path):
            return []
        try:
            with open(self.state_file_path, 'r', encoding='utf-8') as f:
                state = json.load(f)
            jsonschema.validate(instance=state, schema=COMMIT_REFS_SCHEMA)
        except json.JSONDecodeError as json_exc:
            logger.warning(f"Commit tracker state '{self.state_file_path}' is not valid JSON: {json_exc}")
            return []
        except jsonschema.ValidationError as schema_exc:
            logger.warning(f"Commit tracker state '{self.state_file_path}' has an unexpected shape: {schema_exc.message}")
            return []
        except OSError as e:
            logger.warning(f"Could not read commit tracker state '{self.state_file_path}': {e}")
            return []
        return [ScriptCommitRef(**entry) for entry in state["script_commit_refs"]]

    def _save(self, refs: List[ScriptCommitRef]):
        os.makedirs(os.path.dirname(self.state_file_path) or '.', exist_ok=True)
        with open(self.state_file_path, 'w', encoding='utf-8') as f:
            json.dump({"script_commit_refs": [asdict(r) for r in refs]}, f, indent=2)
            f.write('\n')

    def record(self, workspace: str, script_name: str, commit_hash: str) -> ScriptCommitRef:
        """Stores ``commit_hash`` for ``script_name`` in ``workspace``, replacing any earlier entry."""
        folder_path = os.path.abspath(workspace)
        ref = ScriptCommitRef(script_name, commit_hash, self._clock(), folder_path)
        refs = [r for r in self._load() if not (r.script_name == script_name and r.folder_path == folder_path)]
        refs.append(ref)
        self._save(refs[-MAX_COMMIT_REFS:])
        return ref

    async def save_commit_ref(
            self,
            workspace: str,
            script_name: str,
            history: VersionHistorySource
    ) -> Optional[ScriptCommitRef]:
        """Records the workspace's current HEAD before ``script_name`` runs."""
        commit_hash = await history.head_commit()
        if not commit_hash or not is_valid_git_ref(commit_hash):
            logger.warning(f"Could not get commit hash for {script_name} in {workspace}")
            return None
        ref = self.record(workspace, script_name, commit_hash)
        logger.info(f"Recorded {script_name} reference commit {commit_hash[:7]} for {workspace}")
        return ref

    def commit_refs_for_folder(self, workspace: str) -> List[ScriptCommitRef]:
        folder_path = os.path.abspath(workspace)
        return [r for r in self._load() if r.folder_path == folder_path]

    def get_commit_ref(self, workspace: str, script_name: str) -> Optional[ScriptCommitRef]:
        for ref in self.commit_refs_for_folder(workspace):
            if ref.script_name == script_name:
                return ref
        return None

    def _newest(self, workspace: str, script_names) -> Optional[ScriptCommitRef]:
        refs = [r for r in self.commit_refs_for_folder(workspace) if r.script_name in script_names]
        if not refs:
            return None
        return max(refs, key=lambda r: r.timestamp)

    def get_extract_commit_ref(self, workspace: str) -> Optional[ScriptCommitRef]:
        """Newest commit recorded before the extraction script, used as the recovery reference."""
        return self._newest(workspace, (EXTRACT_SCRIPT_NAME,))

    def get_replace_commit_ref(self, workspace: str) -> Optional[ScriptCommitRef]:
        return self._newest(workspace, REPLACE_SCRIPT_NAMES)
