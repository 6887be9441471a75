"""
Enforcement Ledger.

Append-only JSONL audit of every accepted engine transition and every
rejected batch. No deletes, no edits.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import jsonschema

from inclusion_enforcer.core.errors import LedgerTamperingError, LedgerWriteError
from inclusion_enforcer.utils.hashing import compute_sha256_hash

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent.parent / "config" / "schemas" / "ledger_record.json"

GENESIS_HASH = "0" * 64


# Event types
EVENT_ENGINE_CREATED = "ENGINE_CREATED"
EVENT_MESSAGE_SUBMITTED = "MESSAGE_SUBMITTED"
EVENT_MESSAGE_INCLUDED = "MESSAGE_INCLUDED"
EVENT_UPPER_BOUND_SET = "UPPER_BOUND_SET"
EVENT_BLACKLIST_ADDED = "BLACKLIST_ADDED"
EVENT_BLACKLIST_REMOVED = "BLACKLIST_REMOVED"
EVENT_BATCH_PROCESSED = "BATCH_PROCESSED"
EVENT_BATCH_REJECTED = "BATCH_REJECTED"

VALID_EVENTS = {
    EVENT_ENGINE_CREATED,
    EVENT_MESSAGE_SUBMITTED,
    EVENT_MESSAGE_INCLUDED,
    EVENT_UPPER_BOUND_SET,
    EVENT_BLACKLIST_ADDED,
    EVENT_BLACKLIST_REMOVED,
    EVENT_BATCH_PROCESSED,
    EVENT_BATCH_REJECTED,
}


class EnforcementLedger:
    """
    Append-only enforcement audit log.

    Records are immutable once written. Each record carries a sequence
    number, the hash of the record before it and the SHA-256 of its own
    canonical JSON (every field except the hash itself).
    """

    def __init__(self, storage_path: str):
        self.storage_path = Path(storage_path)
        self._ensure_storage_exists()
        self._entry_count, self._last_hash = self._scan_tail()

    def _ensure_storage_exists(self) -> None:
        self.storage_path.parent.mkdir(parents=True, exist_ok=True)
        if not self.storage_path.exists():
            self.storage_path.touch()

    def _scan_tail(self):
        """Count records and find the hash the next record chains to."""
        count, last_hash = 0, GENESIS_HASH
        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                for line in f:
                    if line.strip():
                        count += 1
                        try:
                            last_hash = json.loads(line).get("hash", last_hash)
                        except json.JSONDecodeError:
                            logger.warning("Unreadable ledger record %d in %s", count - 1, self.storage_path)
        except FileNotFoundError:
            pass
        return count, last_hash

    def _load_schema(self) -> dict:
        with open(SCHEMA_PATH, 'r') as f:
            return json.load(f)

    def _compute_hash(self, record: Dict[str, Any]) -> str:
        return compute_sha256_hash(record, exclude_keys=["hash"])

    def __len__(self) -> int:
        return self._entry_count

    def append(
        self,
        event: str,
        actor: Optional[str],
        height: int,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Append an immutable record to the ledger.

        Args:
            event: Event type (MESSAGE_SUBMITTED, BATCH_REJECTED, etc.)
            actor: Account that triggered the event, None if anonymous
            height: Ledger height at which the event happened
            payload: Optional payload data

        Returns:
            The created ledger record

        Raises:
            LedgerWriteError: If write fails
        """
        if event not in VALID_EVENTS:
            raise ValueError(f"Invalid event type: {event}. Valid: {sorted(VALID_EVENTS)}")

        payload = payload or {}

        record = {
            "sequence": self._entry_count,
            "event": event,
            "actor": actor,
            "height": height,
            "prev_hash": self._last_hash,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
        }
        record["hash"] = self._compute_hash(record)

        try:
            with open(self.storage_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as e:
            raise LedgerWriteError(f"{self.storage_path}: {e}")

        self._entry_count += 1
        self._last_hash = record["hash"]
        logger.debug("Ledger %s #%d at height %d", event, record["sequence"], height)
        return record

    def get_entries(self, event: Optional[str] = None) -> List[Dict[str, Any]]:
        """Get all ledger entries, optionally filtered by event type."""
        entries = []
        try:
            with open(self.storage_path, "r", encoding="utf-8") as f:
                for line in f:
                    if line.strip():
                        entry = json.loads(line)
                        if event is None or entry.get("event") == event:
                            entries.append(entry)
        except FileNotFoundError:
            pass
        return entries

    def verify_integrity(self) -> bool:
        """
        Verify sequence continuity, the hash chain and every record hash.

        Returns:
            True if ledger is intact

        Raises:
            LedgerTamperingError: If tampering detected
        """
        try:
            entries = self.get_entries()
        except json.JSONDecodeError as e:
            raise LedgerTamperingError(f"unreadable record: {e}")

        schema = self._load_schema()
        prev_hash = GENESIS_HASH
        for i, entry in enumerate(entries):
            try:
                jsonschema.validate(instance=entry, schema=schema)
            except jsonschema.ValidationError as e:
                raise LedgerTamperingError(f"malformed record {i}: {e.message}")
            if entry.get("sequence") != i:
                raise LedgerTamperingError(f"sequence gap at record {i}")
            if entry["prev_hash"] != prev_hash:
                raise LedgerTamperingError(f"broken hash chain at record {i}")
            if entry["hash"] != self._compute_hash(entry):
                raise LedgerTamperingError(f"record hash mismatch at record {i}")
            prev_hash = entry["hash"]

        return True
