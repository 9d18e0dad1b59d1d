"""
Simple file-based history and credential storage

History is an append-only log of successful generations, newest first,
capped at MAX_HISTORY_ENTRIES. The credential is stored encrypted.
"""
import json
import uuid
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from models import GenerationParams, HistoryEntry
from security import encrypt_api_key, decrypt_api_key, mask_api_key

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 50
HISTORY_FILE = "history.json"
CREDENTIAL_FILE = "credential.json"


class StorageError(Exception):
    """Raised when the history or credential files cannot be read or written"""


def create_history_entry(params: GenerationParams, instruction: str, model: str) -> HistoryEntry:
    """Build a history entry for a successful generation"""
    return HistoryEntry(
        id=str(uuid.uuid4()),
        timestamp=datetime.now(),
        desired_output=params.desired_output,
        context=params.context,
        instruction=instruction,
        feedback=params.feedback or None,
        model=model
    )


class HistoryStore:
    """Persistent storage for generation history and the API credential"""

    def __init__(self, storage_path: str = "prompt_history"):
        self.storage_path = Path(storage_path)

    def _ensure_dir(self) -> None:
        try:
            self.storage_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create storage directory {self.storage_path}: {e}")

    @property
    def history_file(self) -> Path:
        return self.storage_path / HISTORY_FILE

    @property
    def credential_file(self) -> Path:
        return self.storage_path / CREDENTIAL_FILE

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self) -> List[HistoryEntry]:
        """All entries, newest first. Unreadable files yield an empty list."""
        if not self.history_file.exists():
            return []

        try:
            with open(self.history_file, 'r') as f:
                data = json.load(f)
            return [HistoryEntry(**entry) for entry in data]
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Error loading history: {e}")
            return []

    def get_entry(self, entry_id: str) -> Optional[HistoryEntry]:
        """Find an entry by id"""
        for entry in self.get_history():
            if entry.id == entry_id:
                return entry
        return None

    def save_history_entry(self, entry: HistoryEntry) -> List[HistoryEntry]:
        """Prepend an entry, trimming to the most recent MAX_HISTORY_ENTRIES"""
        entries = [entry] + self.get_history()
        entries = entries[:MAX_HISTORY_ENTRIES]
        self._write_history(entries)
        logger.info(f"Saved history entry {entry.id} ({len(entries)} total)")
        return entries

    def clear_history(self) -> None:
        """Remove all history entries"""
        try:
            if self.history_file.exists():
                self.history_file.unlink()
        except OSError as e:
            raise StorageError(f"Cannot clear history: {e}")

    def _write_history(self, entries: List[HistoryEntry]) -> None:
        self._ensure_dir()
        try:
            with open(self.history_file, 'w') as f:
                json.dump([e.model_dump(mode="json") for e in entries], f, indent=2)
        except OSError as e:
            raise StorageError(f"Cannot write history: {e}")

    # ------------------------------------------------------------------
    # Credential
    # ------------------------------------------------------------------

    def save_credential(self, api_key: str) -> None:
        """Store the API key encrypted"""
        encrypted, key_hash = encrypt_api_key(api_key)
        self._ensure_dir()
        try:
            with open(self.credential_file, 'w') as f:
                json.dump({"encrypted_key": encrypted, "key_hash": key_hash}, f)
        except OSError as e:
            raise StorageError(f"Cannot save API key: {e}")
        logger.info(f"Saved API key {mask_api_key(api_key)}")

    def get_credential(self) -> Optional[str]:
        """Stored API key, None if never saved"""
        if not self.credential_file.exists():
            return None

        try:
            with open(self.credential_file, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read stored API key: {e}")

        encrypted = data.get("encrypted_key", "") if isinstance(data, dict) else ""
        if not encrypted:
            return None

        api_key = decrypt_api_key(encrypted)
        if api_key is None:
            raise StorageError("Stored API key could not be decrypted")
        return api_key
