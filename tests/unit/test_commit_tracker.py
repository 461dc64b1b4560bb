import json
import os
import tempfile
import unittest
from unittest.mock import AsyncMock, MagicMock

from src.commit_tracker import (
    EXTRACT_SCRIPT_NAME,
    MAX_COMMIT_REFS,
    CommitTracker,
)


class TestCommitTracker(unittest.TestCase):

    def setUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp_dir.cleanup)
        self.workspace = os.path.join(self._temp_dir.name, "workspace")
        self.state_file = os.path.join(self._temp_dir.name, "state", "refs.json")
        self.now = 1000.0
        self.tracker = CommitTracker(self.state_file, clock=lambda: self.now)

    def test_missing_state_file_has_no_refs(self):
        self.assertIsNone(self.tracker.get_extract_commit_ref(self.workspace))
        self.assertEqual(self.tracker.commit_refs_for_folder(self.workspace), [])

    def test_record_replaces_earlier_entry_for_same_script(self):
        self.tracker.record(self.workspace, EXTRACT_SCRIPT_NAME, "aaa111")
        self.now += 10
        self.tracker.record(self.workspace, EXTRACT_SCRIPT_NAME, "bbb222")

        refs = self.tracker.commit_refs_for_folder(self.workspace)
        self.assertEqual(len(refs), 1)
        self.assertEqual(self.tracker.get_extract_commit_ref(self.workspace).commit_hash, "bbb222")

    def test_refs_are_scoped_per_workspace(self):
        other = os.path.join(self._temp_dir.name, "other")
        self.tracker.record(other, EXTRACT_SCRIPT_NAME, "aaa111")
        self.assertIsNone(self.tracker.get_extract_commit_ref(self.workspace))
        self.assertEqual(self.tracker.get_commit_ref(other, EXTRACT_SCRIPT_NAME).commit_hash, "aaa111")

    def test_newest_replace_script_wins(self):
        self.tracker.record(self.workspace, "i18n:rewrite", "aaa111")
        self.now += 5
        self.tracker.record(self.workspace, "i18n:replace", "bbb222")
        self.assertEqual(self.tracker.get_replace_commit_ref(self.workspace).commit_hash, "bbb222")
        self.assertIsNone(self.tracker.get_extract_commit_ref(self.workspace))

    def test_only_newest_entries_are_kept(self):
        for i in range(MAX_COMMIT_REFS + 5):
            self.tracker.record(os.path.join(self._temp_dir.name, f"ws{i}"), EXTRACT_SCRIPT_NAME, f"c{i}")
        with open(self.state_file, 'r', encoding='utf-8') as f:
            state = json.load(f)
        self.assertEqual(len(state["script_commit_refs"]), MAX_COMMIT_REFS)
        self.assertEqual(state["script_commit_refs"][-1]["commit_hash"], f"c{MAX_COMMIT_REFS + 4}")

    def test_invalid_state_is_treated_as_empty(self):
        os.makedirs(os.path.dirname(self.state_file), exist_ok=True)
        with open(self.state_file, 'w', encoding='utf-8') as f:
            json.dump({"script_commit_refs": [{"script_name": "i18n:extract"}]}, f)
        self.assertEqual(self.tracker.commit_refs_for_folder(self.workspace), [])

        with open(self.state_file, 'w', encoding='utf-8') as f:
            f.write("{not json")
        self.assertEqual(self.tracker.commit_refs_for_folder(self.workspace), [])

        # The next save rewrites the file
        self.tracker.record(self.workspace, EXTRACT_SCRIPT_NAME, "aaa111")
        self.assertEqual(self.tracker.get_extract_commit_ref(self.workspace).commit_hash, "aaa111")


class TestSaveCommitRef(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self._temp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(self._temp_dir.cleanup)
        self.tracker = CommitTracker(os.path.join(self._temp_dir.name, "refs.json"))

    async def test_records_head_commit(self):
        history = MagicMock()
        history.head_commit = AsyncMock(return_value="0123456789abcdef")

        ref = await self.tracker.save_commit_ref(self._temp_dir.name, EXTRACT_SCRIPT_NAME, history)

        self.assertEqual(ref.commit_hash, "0123456789abcdef")
        self.assertEqual(self.tracker.get_extract_commit_ref(self._temp_dir.name).commit_hash, "0123456789abcdef")

    async def test_missing_or_invalid_head_is_not_recorded(self):
        history = MagicMock()
        for head in (None, "bad ref; rm"):
            history.head_commit = AsyncMock(return_value=head)
            self.assertIsNone(await self.tracker.save_commit_ref(self._temp_dir.name, EXTRACT_SCRIPT_NAME, history))
        self.assertIsNone(self.tracker.get_extract_commit_ref(self._temp_dir.name))
