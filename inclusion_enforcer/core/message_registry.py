"""
Message Registry.

Append-only store of cross-layer message entries keyed by identifier.

Entry lifecycle:
- created by the first submit of its identifier, pending until its deadline
- flipped to included exactly once, never reverted
- expired once ledger height passes its deadline while still un-included
  (derived from height, never stored)

Entries are never deleted. Every accepted submit also appends an audit row,
so resubmitting a still-pending identifier leaves two rows behind.
"""

import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from inclusion_enforcer.core.errors import (
    AlreadyIncluded,
    AlreadyProcessed,
    DeadlinePassed,
    UnknownMessage,
)
from inclusion_enforcer.utils.hashing import normalize_message_id

logger = logging.getLogger(__name__)


class MessageStatus(Enum):
    """Derived message state at a given ledger height."""
    PENDING = "PENDING"
    INCLUDED = "INCLUDED"
    EXPIRED = "EXPIRED"


@dataclass
class MessageEntry:
    """Tracked message."""
    message_id: str
    included: bool
    deadline: int
    sequence: int

    def status_at(self, height: int) -> MessageStatus:
        if self.included:
            return MessageStatus.INCLUDED
        if height > self.deadline:
            return MessageStatus.EXPIRED
        return MessageStatus.PENDING

    def is_blocking_at(self, height: int) -> bool:
        """Un-included and still inside its window."""
        return not self.included and height <= self.deadline

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'MessageEntry':
        return cls(**data)


@dataclass(frozen=True)
class SubmissionRecord:
    """Audit row for one accepted submit."""
    position: int
    message_id: str
    height: int
    deadline: int
    submitter: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> 'SubmissionRecord':
        return cls(**data)


class MessageRegistry:
    """
    Identifier -> entry map plus the ordered submission audit.

    Listeners are notified after each accepted transition through
    on_submitted(entry) and on_included(entry).
    """

    def __init__(self):
        self._entries: Dict[str, MessageEntry] = {}
        self._submissions: List[SubmissionRecord] = []
        self._listeners: List[Any] = []

    def add_listener(self, listener: Any) -> None:
        self._listeners.append(listener)

    def submit(
        self,
        message_id: str,
        height: int,
        upper_bound: int,
        submitter: Optional[str] = None,
    ) -> MessageEntry:
        """
        Track a message with deadline = height + upper_bound.

        Only an included entry is rejected. An entry that exists but is not
        included is re-armed with a fresh deadline.

        Raises:
            AlreadyProcessed: If the identifier is already included
        """
        key = normalize_message_id(message_id)
        existing = self._entries.get(key)
        if existing is not None and existing.included:
            raise AlreadyProcessed(key)

        deadline = height + upper_bound
        if existing is None:
            entry = MessageEntry(
                message_id=key,
                included=False,
                deadline=deadline,
                sequence=len(self._entries),
            )
            self._entries[key] = entry
        else:
            logger.info("Resubmission of pending message %s resets deadline %d -> %d",
                        key, existing.deadline, deadline)
            existing.deadline = deadline
            entry = existing

        self._submissions.append(SubmissionRecord(
            position=len(self._submissions),
            message_id=key,
            height=height,
            deadline=deadline,
            submitter=submitter,
        ))

        for listener in self._listeners:
            listener.on_submitted(entry)
        return entry

    def mark_included(
        self,
        message_id: str,
        height: int,
        reject_if_included: bool = False,
    ) -> MessageEntry:
        """
        Flip an entry to included.

        Args:
            message_id: Identifier of a tracked message
            height: Current ledger height
            reject_if_included: Fail with AlreadyIncluded instead of treating a
                repeat as a no-op

        Raises:
            UnknownMessage: If the identifier is not tracked
            AlreadyIncluded: If reject_if_included and the entry is included
            DeadlinePassed: If height > deadline
        """
        key = normalize_message_id(message_id)
        entry = self._entries.get(key)
        if entry is None:
            raise UnknownMessage(key, height)
        if reject_if_included and entry.included:
            raise AlreadyIncluded(key)
        if height > entry.deadline:
            raise DeadlinePassed(key, height, entry.deadline)

        if entry.included:
            return entry

        entry.included = True
        for listener in self._listeners:
            listener.on_included(entry)
        return entry

    def get(self, message_id: str) -> Optional[MessageEntry]:
        return self._entries.get(normalize_message_id(message_id))

    def status(self, message_id: str, height: int) -> MessageStatus:
        entry = self.get(message_id)
        if entry is None:
            raise UnknownMessage(normalize_message_id(message_id), height)
        return entry.status_at(height)

    def __contains__(self, message_id: object) -> bool:
        try:
            return normalize_message_id(message_id) in self._entries
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MessageEntry]:
        return iter(self.entries())

    def entries(self) -> List[MessageEntry]:
        """All entries in insertion order."""
        return sorted(self._entries.values(), key=lambda e: e.sequence)

    def submissions(self) -> List[SubmissionRecord]:
        return list(self._submissions)

    def to_dict(self) -> dict:
        return {
            "entries": [e.to_dict() for e in self.entries()],
            "submissions": [s.to_dict() for s in self._submissions],
        }

    def load(self, data: dict) -> None:
        """Replace contents from a to_dict() payload. Listeners are kept."""
        self._entries = {}
        for raw in data.get("entries", []):
            entry = MessageEntry.from_dict(raw)
            self._entries[entry.message_id] = entry
        self._submissions = [SubmissionRecord.from_dict(s) for s in data.get("submissions", [])]
