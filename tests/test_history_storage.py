"""
Tests for history and credential storage
"""
import json
import os

import pytest

from models import GenerationParams
from history_storage import (
    HistoryStore,
    MAX_HISTORY_ENTRIES,
    StorageError,
    create_history_entry,
)
from fakes import VALID_KEY


def entry(n):
    return create_history_entry(GenerationParams(desired_output=f"output {n}"), f"instruction {n}", "m")


class TestHistory:
    """Tests for the generation history"""

    def test_empty_store(self, history_store):
        """Positive: No file -> empty history"""
        assert history_store.get_history() == []

    def test_newest_first(self, history_store):
        """Positive: Entries are prepended"""
        history_store.save_history_entry(entry(1))
        history_store.save_history_entry(entry(2))

        assert [e.instruction for e in history_store.get_history()] == ["instruction 2", "instruction 1"]

    def test_capped(self, history_store):
        """Positive: Only the most recent entries are kept"""
        for n in range(MAX_HISTORY_ENTRIES + 5):
            history_store.save_history_entry(entry(n))

        history = history_store.get_history()
        assert len(history) == MAX_HISTORY_ENTRIES == 50
        assert history[0].instruction == f"instruction {MAX_HISTORY_ENTRIES + 4}"
        assert history[-1].instruction == "instruction 5"

    def test_get_entry(self, history_store):
        """Positive: Lookup by id"""
        saved = entry(1)
        history_store.save_history_entry(saved)

        assert history_store.get_entry(saved.id).instruction == "instruction 1"
        assert history_store.get_entry("missing") is None

    def test_clear(self, history_store):
        """Positive: Clearing removes every entry"""
        history_store.save_history_entry(entry(1))
        history_store.clear_history()
        assert history_store.get_history() == []

    def test_corrupt_file(self, history_store):
        """Negative: Unreadable history is treated as empty"""
        os.makedirs(history_store.storage_path, exist_ok=True)
        history_store.history_file.write_text("{not json")

        assert history_store.get_history() == []

    def test_unwritable_directory(self, tmp_path):
        """Negative: Write failures raise StorageError"""
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a directory")
        store = HistoryStore(str(blocker / "history"))

        with pytest.raises(StorageError):
            store.save_history_entry(entry(1))

    def test_entry_feedback(self):
        """Positive: Empty feedback is stored as None"""
        assert entry(1).feedback is None
        with_feedback = create_history_entry(
            GenerationParams(desired_output="x", feedback="Be shorter"), "i", "m"
        )
        assert with_feedback.feedback == "Be shorter"


class TestCredential:
    """Tests for the stored credential"""

    def test_round_trip(self, history_store):
        """Positive: Saved key can be read back"""
        history_store.save_credential(VALID_KEY)
        assert history_store.get_credential() == VALID_KEY

    def test_stored_encrypted(self, history_store):
        """Positive: The key never appears in cleartext on disk"""
        history_store.save_credential(VALID_KEY)

        raw = history_store.credential_file.read_text()
        assert VALID_KEY not in raw
        assert set(json.loads(raw)) == {"encrypted_key", "key_hash"}

    def test_missing(self, history_store):
        """Negative: Nothing saved -> None"""
        assert history_store.get_credential() is None

    def test_undecryptable(self, history_store):
        """Negative: Tampered blob raises StorageError"""
        os.makedirs(history_store.storage_path, exist_ok=True)
        history_store.credential_file.write_text(json.dumps({"encrypted_key": "bm90LWEtdG9rZW4=", "key_hash": "x"}))

        with pytest.raises(StorageError):
            history_store.get_credential()

    def test_save_logs_masked_key(self, history_store, caplog):
        """Positive: Only the masked key is logged"""
        with caplog.at_level("INFO", logger="history_storage"):
            history_store.save_credential(VALID_KEY)

        assert VALID_KEY not in caplog.text
        assert "sk-or-v1..." in caplog.text
