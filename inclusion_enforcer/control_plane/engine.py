"""
Forced Inclusion Enforcement Engine.

The single owned service object. Operator, upper bound, blacklist and the
message registry live here and change only through the methods below.

Every call is atomic: all checks run before anything is mutated, and if
persisting the new state or writing the audit record fails, the in-memory
state (and the stored snapshot) is put back to what it was before the call.
Calls are expected to be serialised by the caller in ledger order.
"""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from inclusion_enforcer.core.access_control import OperatorGuard
from inclusion_enforcer.core.batch_gate import BatchGate
from inclusion_enforcer.core.blacklist import Blacklist
from inclusion_enforcer.core.enforcement_ledger import (
    EVENT_BATCH_PROCESSED,
    EVENT_BATCH_REJECTED,
    EVENT_BLACKLIST_ADDED,
    EVENT_BLACKLIST_REMOVED,
    EVENT_ENGINE_CREATED,
    EVENT_MESSAGE_INCLUDED,
    EVENT_MESSAGE_SUBMITTED,
    EVENT_UPPER_BOUND_SET,
    EnforcementLedger,
)
from inclusion_enforcer.core.errors import (
    AccountBlacklisted,
    LedgerWriteError,
    StateStoreError,
    UnprocessedMessages,
)
from inclusion_enforcer.core.message_registry import (
    MessageEntry,
    MessageRegistry,
    MessageStatus,
    SubmissionRecord,
)
from inclusion_enforcer.control_plane.settings import EngineSettings, InclusionPolicy
from inclusion_enforcer.control_plane.state_store import EngineStateStore
from inclusion_enforcer.utils.hashing import normalize_account, normalize_message_id

logger = logging.getLogger(__name__)

STATE_SCHEMA_VERSION = "1"


def _validate_upper_bound(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Upper bound must be a non-negative integer, got {value!r}")
    return value


class InclusionEngine:
    """
    Deadline-based message inclusion enforcement.

    Args:
        operator: The single privileged account
        height_source: Object exposing current_height() for the L1 ledger
        upper_bound: Initial inclusion window in height units
        batch_processor: Callable invoked by process_new_batch when the gate is open
        inclusion_policy: Access policy of mark_included
        enforce_blacklist: Reject submissions from blacklisted callers
        block_on_expired: Expired, never-included messages keep the gate shut
        store: Optional snapshot store, written after every state change
        ledger: Optional enforcement ledger, appended on every state change
    """

    def __init__(
        self,
        operator: str,
        height_source: Any,
        upper_bound: int = 0,
        batch_processor: Optional[Callable[..., Any]] = None,
        *,
        inclusion_policy: InclusionPolicy = InclusionPolicy.OPEN,
        enforce_blacklist: bool = False,
        block_on_expired: bool = False,
        store: Optional[EngineStateStore] = None,
        ledger: Optional[EnforcementLedger] = None,
    ):
        self.guard = OperatorGuard(operator)
        self.height_source = height_source
        self.batch_processor = batch_processor
        self.inclusion_policy = InclusionPolicy(inclusion_policy)
        self.enforce_blacklist = enforce_blacklist
        self.store = store
        self.ledger = ledger
        self._pending_audit: Optional[list] = None

        self._upper_bound = _validate_upper_bound(upper_bound)
        self.blacklist = Blacklist()
        self.registry = MessageRegistry()
        self.gate = BatchGate(self.registry, block_on_expired=block_on_expired)

    # ------------------------------------------------------------------
    # Construction from persisted state
    # ------------------------------------------------------------------

    @classmethod
    def from_snapshot(cls, snapshot: Dict[str, Any], height_source: Any, **kwargs) -> 'InclusionEngine':
        """Rebuild an engine from a snapshot() payload."""
        engine = cls(
            snapshot["operator"],
            height_source,
            upper_bound=snapshot["upper_bound"],
            **kwargs,
        )
        engine._restore(snapshot)
        return engine

    @classmethod
    def open(
        cls,
        settings: EngineSettings,
        height_source: Any,
        batch_processor: Optional[Callable[..., Any]] = None,
    ) -> 'InclusionEngine':
        """
        Load the engine described by settings, creating fresh state if none exists.

        Persisted operator and upper bound win over settings. A configured
        operator that differs from the persisted one is refused.

        Raises:
            StateStoreError: On operator mismatch, missing operator for fresh
                state, or an unreadable snapshot
        """
        store = EngineStateStore(settings.state_path) if settings.state_path else None
        ledger = EnforcementLedger(settings.ledger_path) if settings.ledger_path else None
        options = dict(
            batch_processor=batch_processor,
            inclusion_policy=settings.inclusion_policy,
            enforce_blacklist=settings.enforce_blacklist,
            block_on_expired=settings.block_on_expired,
            store=store,
            ledger=ledger,
        )

        snapshot = store.load() if store is not None else None
        if snapshot is not None:
            if settings.operator and normalize_account(settings.operator) != snapshot["operator"]:
                raise StateStoreError(
                    f"configured operator {settings.operator!r} does not match "
                    f"persisted operator {snapshot['operator']!r}"
                )
            logger.info("Loaded engine state from %s (%d entries)",
                        store.path, len(snapshot["entries"]))
            return cls.from_snapshot(snapshot, height_source, **options)

        if not settings.operator:
            raise StateStoreError("no persisted state and no operator configured")

        engine = cls(settings.operator, height_source, upper_bound=settings.upper_bound, **options)
        with engine._transaction():
            engine._audit(EVENT_ENGINE_CREATED, engine.operator, {
                "operator": engine.operator,
                "upper_bound": engine.upper_bound,
            })
        logger.info("Created engine state for operator %s", engine.operator)
        return engine

    # ------------------------------------------------------------------
    # Snapshot / atomicity
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        registry = self.registry.to_dict()
        return {
            "schema_version": STATE_SCHEMA_VERSION,
            "operator": self.operator,
            "upper_bound": self._upper_bound,
            "blacklist": self.blacklist.members(),
            "entries": registry["entries"],
            "submissions": registry["submissions"],
        }

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self._upper_bound = snapshot["upper_bound"]
        self.blacklist = Blacklist(snapshot["blacklist"])
        self.registry.load(snapshot)
        self.gate.rebuild()

    @contextmanager
    def _transaction(self):
        """
        Apply a state change, then persist it, then write its audit records.

        Audit records raised inside the block are held back until the new
        snapshot is saved. Any failure restores the previous state.
        """
        if self.store is None and self.ledger is None:
            yield
            return

        before = self.snapshot()
        self._pending_audit = []
        saved = False
        try:
            yield
            if self.store is not None:
                self.store.save(self.snapshot())
                saved = True
            pending, self._pending_audit = self._pending_audit, None
            for event, actor, height, payload in pending:
                self.ledger.append(event, actor, height, payload)
        except Exception:
            logger.debug("State change aborted, restoring previous engine state")
            self._pending_audit = None
            self._restore(before)
            if saved:
                self.store.save(before)
            raise

    def _audit(self, event: str, actor: Optional[str], payload: Dict[str, Any]) -> None:
        if self.ledger is None:
            return
        record = (event, actor, self.current_height(), payload)
        if self._pending_audit is not None:
            self._pending_audit.append(record)
        else:
            self.ledger.append(*record)

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def operator(self) -> str:
        return self.guard.operator

    @property
    def upper_bound(self) -> int:
        return self._upper_bound

    @property
    def block_on_expired(self) -> bool:
        return self.gate.block_on_expired

    def current_height(self) -> int:
        return self.height_source.current_height()

    def get_entry(self, message_id: str) -> Optional[MessageEntry]:
        entry = self.registry.get(message_id)
        return MessageEntry(**entry.to_dict()) if entry else None

    def message_status(self, message_id: str) -> MessageStatus:
        return self.registry.status(message_id, self.current_height())

    def entries(self) -> List[MessageEntry]:
        return [MessageEntry(**e.to_dict()) for e in self.registry.entries()]

    def submissions(self) -> List[SubmissionRecord]:
        return self.registry.submissions()

    def is_blacklisted(self, account: str) -> bool:
        return account in self.blacklist

    # ------------------------------------------------------------------
    # Administration (operator only)
    # ------------------------------------------------------------------

    def set_upper_bound(self, caller: Optional[str], value: int) -> int:
        """
        Set the inclusion window for messages submitted from now on.

        Existing deadlines are not touched. Zero is allowed.

        Raises:
            Unauthorized: If caller is not the operator
            ValueError: If value is not a non-negative integer
        """
        self.guard.require_operator(caller, "set_upper_bound")
        value = _validate_upper_bound(value)
        previous = self._upper_bound
        with self._transaction():
            self._upper_bound = value
            self._audit(EVENT_UPPER_BOUND_SET, self.operator, {
                "previous": previous,
                "upper_bound": value,
            })
        logger.info("Upper bound changed %d -> %d", previous, value)
        return value

    def add_to_blacklist(self, caller: Optional[str], account: str) -> bool:
        """Returns False if the account was already listed."""
        self.guard.require_operator(caller, "add_to_blacklist")
        key = normalize_account(account)
        if key in self.blacklist:
            return False
        with self._transaction():
            self.blacklist.add(key)
            self._audit(EVENT_BLACKLIST_ADDED, self.operator, {"account": key})
        logger.info("Blacklisted %s", key)
        return True

    def remove_from_blacklist(self, caller: Optional[str], account: str) -> bool:
        """Returns False if the account was not listed."""
        self.guard.require_operator(caller, "remove_from_blacklist")
        key = normalize_account(account)
        if key not in self.blacklist:
            return False
        with self._transaction():
            self.blacklist.remove(key)
            self._audit(EVENT_BLACKLIST_REMOVED, self.operator, {"account": key})
        logger.info("Removed %s from blacklist", key)
        return True

    # ------------------------------------------------------------------
    # Message lifecycle
    # ------------------------------------------------------------------

    def submit(self, message_id: str, caller: Optional[str] = None) -> MessageEntry:
        """
        Track a message with deadline = current height + upper bound.

        Raises:
            InvalidMessageId: If message_id is malformed
            AccountBlacklisted: If blacklist enforcement is on and caller is listed
            AlreadyProcessed: If the message is already included
        """
        key = normalize_message_id(message_id)
        submitter = normalize_account(caller) if caller is not None else None
        if self.enforce_blacklist and submitter is not None and submitter in self.blacklist:
            logger.warning("Submission of %s refused for blacklisted %s", key, submitter)
            raise AccountBlacklisted(submitter)

        height = self.current_height()
        with self._transaction():
            entry = self.registry.submit(key, height, self._upper_bound, submitter)
            self._audit(EVENT_MESSAGE_SUBMITTED, submitter, {
                "message_id": key,
                "deadline": entry.deadline,
                "upper_bound": self._upper_bound,
            })
        logger.info("Tracking %s at height %d, deadline %d", key, height, entry.deadline)
        return MessageEntry(**entry.to_dict())

    def mark_included(self, message_id: str, caller: Optional[str] = None) -> MessageEntry:
        """
        Mark a tracked message as included in L2.

        Under the open policy anyone may call this and repeating it inside
        the window is a no-op. Under the operator policy only the operator
        may call it and a repeat raises AlreadyIncluded.

        Raises:
            Unauthorized: Operator policy and caller is not the operator
            UnknownMessage: If the message is not tracked
            AlreadyIncluded: Operator policy and the message is already included
            DeadlinePassed: If the current height is past the deadline
        """
        restricted = self.inclusion_policy is InclusionPolicy.OPERATOR
        if restricted:
            self.guard.require_operator(caller, "mark_included")

        key = normalize_message_id(message_id)
        height = self.current_height()
        current = self.registry.get(key)
        already = current is not None and current.included

        with self._transaction():
            entry = self.registry.mark_included(key, height, reject_if_included=restricted)
            if not already:
                actor = normalize_account(caller) if caller is not None else None
                self._audit(EVENT_MESSAGE_INCLUDED, actor, {
                    "message_id": key,
                    "deadline": entry.deadline,
                })
        if not already:
            logger.info("Included %s at height %d (deadline %d)", key, height, entry.deadline)
        return MessageEntry(**entry.to_dict())

    # ------------------------------------------------------------------
    # Batch gate
    # ------------------------------------------------------------------

    def may_proceed(self) -> bool:
        return self.gate.may_proceed(self.current_height())

    def reject_new_batch(self) -> bool:
        """True while a new batch would be refused. No side effects."""
        return self.gate.reject_new_batch(self.current_height())

    def blocking_messages(self) -> List[str]:
        return self.gate.blocking_messages(self.current_height())

    def process_new_batch(self, *args, **kwargs) -> Any:
        """
        Run the batch processor if no message is pending inside its window.

        The BATCH_PROCESSED record is written before the processor runs.

        Raises:
            UnprocessedMessages: If the gate is shut
            LedgerWriteError: If the batch could not be recorded; the
                processor has not run
        """
        height = self.current_height()

        def record_then_process(*batch_args, **batch_kwargs):
            self._audit(EVENT_BATCH_PROCESSED, None, {"tracked": len(self.registry)})
            if self.batch_processor is None:
                return None
            return self.batch_processor(*batch_args, **batch_kwargs)

        try:
            return self.gate.process_new_batch(height, record_then_process, *args, **kwargs)
        except UnprocessedMessages as e:
            try:
                self._audit(EVENT_BATCH_REJECTED, None, {"blocking": e.blocking})
            except LedgerWriteError:
                logger.exception("Could not record rejected batch at height %d", height)
            raise e

    def summary(self) -> Dict[str, Any]:
        """Counts of entries by status at the current height."""
        height = self.current_height()
        counts = {status.value: 0 for status in MessageStatus}
        for entry in self.registry.entries():
            counts[entry.status_at(height).value] += 1
        return {
            "operator": self.operator,
            "height": height,
            "upper_bound": self._upper_bound,
            "inclusion_policy": self.inclusion_policy.value,
            "block_on_expired": self.block_on_expired,
            "enforce_blacklist": self.enforce_blacklist,
            "tracked": len(self.registry),
            "submissions": len(self.registry.submissions()),
            "pending": counts[MessageStatus.PENDING.value],
            "included": counts[MessageStatus.INCLUDED.value],
            "expired": counts[MessageStatus.EXPIRED.value],
            "blocking": self.gate.blocking_count(height),
            "may_proceed": self.gate.may_proceed(height),
            "blacklisted": len(self.blacklist),
        }
