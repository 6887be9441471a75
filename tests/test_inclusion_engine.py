"""
Inclusion Engine Tests.

End-to-end behaviour of the single service object: lifecycle, gate,
administration, atomicity and persistence.
"""

import pytest

from conftest import OPERATOR, OTHER, message_id
from inclusion_enforcer.control_plane.engine import InclusionEngine
from inclusion_enforcer.control_plane.settings import EngineSettings, InclusionPolicy
from inclusion_enforcer.control_plane.state_store import EngineStateStore
from inclusion_enforcer.core.enforcement_ledger import (
    EVENT_BATCH_PROCESSED,
    EVENT_BATCH_REJECTED,
    EVENT_ENGINE_CREATED,
    EVENT_MESSAGE_INCLUDED,
    EVENT_MESSAGE_SUBMITTED,
    EVENT_UPPER_BOUND_SET,
    EnforcementLedger,
)
from inclusion_enforcer.core.errors import (
    AccountBlacklisted,
    AlreadyIncluded,
    AlreadyProcessed,
    DeadlinePassed,
    LedgerWriteError,
    StateStoreError,
    Unauthorized,
    UnknownMessage,
    UnprocessedMessages,
)
from inclusion_enforcer.core.ledger_height import LedgerHeightClock
from inclusion_enforcer.core.message_registry import MessageStatus


class TestSubmission:
    """Tests for submit through the engine."""

    def test_fresh_submission(self, engine):
        """After submit at H, deadline = H + bound and the entry is pending."""
        entry = engine.submit(message_id(1))
        assert entry.deadline == 110
        assert entry.included is False
        assert engine.message_status(message_id(1)) is MessageStatus.PENDING

    def test_returned_entry_is_a_copy(self, engine):
        entry = engine.submit(message_id(1))
        entry.included = True
        assert engine.get_entry(message_id(1)).included is False

    def test_resubmission_of_included_rejected(self, engine, clock):
        engine.submit(message_id(1))
        engine.mark_included(message_id(1))
        clock.advance(1)
        with pytest.raises(AlreadyProcessed):
            engine.submit(message_id(1))

    def test_resubmission_of_pending_accepted(self, engine, clock):
        """Current behaviour: a pending message may be resubmitted, resetting its deadline."""
        engine.submit(message_id(1))
        clock.advance(5)
        entry = engine.submit(message_id(1))
        assert entry.deadline == 115
        assert len(engine.entries()) == 1
        assert len(engine.submissions()) == 2

    def test_status_of_unknown_message(self, engine):
        with pytest.raises(UnknownMessage):
            engine.message_status(message_id(404))


class TestInclusion:
    """Tests for mark_included through the engine."""

    def test_inclusion_succeeds_at_deadline(self, engine, clock):
        engine.submit(message_id(1))
        clock.advance_to(110)
        assert engine.mark_included(message_id(1)).included is True

    def test_inclusion_fails_after_deadline(self, engine, clock):
        engine.submit(message_id(1))
        clock.advance_to(111)
        with pytest.raises(DeadlinePassed):
            engine.mark_included(message_id(1))
        assert engine.message_status(message_id(1)) is MessageStatus.EXPIRED

    def test_open_policy_allows_anyone(self, engine):
        engine.submit(message_id(1))
        assert engine.mark_included(message_id(1), caller=OTHER).included is True
        # repeat is a no-op under the open policy
        assert engine.mark_included(message_id(1), caller=OTHER).included is True

    def test_operator_policy_requires_operator(self, clock):
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10,
                                 inclusion_policy=InclusionPolicy.OPERATOR)
        engine.submit(message_id(1))
        with pytest.raises(Unauthorized):
            engine.mark_included(message_id(1), caller=OTHER)
        assert engine.get_entry(message_id(1)).included is False

        engine.mark_included(message_id(1), caller=OPERATOR)
        with pytest.raises(AlreadyIncluded):
            engine.mark_included(message_id(1), caller=OPERATOR)


class TestUpperBound:
    """Tests for the operator-only upper bound."""

    def test_operator_sets_zero(self, engine):
        assert engine.set_upper_bound(OPERATOR, 0) == 0
        assert engine.upper_bound == 0

    def test_non_operator_rejected(self, engine):
        with pytest.raises(Unauthorized):
            engine.set_upper_bound(OTHER, 0)
        assert engine.upper_bound == 10

    @pytest.mark.parametrize("value", [-1, 1.5, "3", True])
    def test_invalid_values_rejected(self, engine, value):
        with pytest.raises(ValueError):
            engine.set_upper_bound(OPERATOR, value)
        assert engine.upper_bound == 10

    def test_change_does_not_touch_existing_deadlines(self, engine):
        """Deadlines are fixed at submission time."""
        engine.submit(message_id(1))
        engine.set_upper_bound(OPERATOR, 1000)
        engine.submit(message_id(2))
        assert engine.get_entry(message_id(1)).deadline == 110
        assert engine.get_entry(message_id(2)).deadline == 1100

    def test_zero_bound_window(self, engine, clock):
        """With bound 0, inclusion must happen at the submission height."""
        engine.set_upper_bound(OPERATOR, 0)
        engine.submit(message_id(1))
        engine.submit(message_id(2))
        assert engine.get_entry(message_id(1)).deadline == 100
        engine.mark_included(message_id(1))
        clock.advance(1)
        with pytest.raises(DeadlinePassed):
            engine.mark_included(message_id(2))


class TestBlacklist:
    """Tests for blacklist administration and opt-in enforcement."""

    def test_operator_administers(self, engine):
        assert engine.add_to_blacklist(OPERATOR, "mallory") is True
        assert engine.is_blacklisted("mallory")
        assert engine.add_to_blacklist(OPERATOR, "mallory") is False
        assert engine.remove_from_blacklist(OPERATOR, "mallory") is True
        assert not engine.is_blacklisted("mallory")

    def test_non_operator_rejected(self, engine):
        with pytest.raises(Unauthorized):
            engine.add_to_blacklist(OTHER, "mallory")
        engine.add_to_blacklist(OPERATOR, "mallory")
        with pytest.raises(Unauthorized):
            engine.remove_from_blacklist(OTHER, "mallory")
        assert engine.is_blacklisted("mallory")

    def test_not_enforced_by_default(self, engine):
        """Without enforcement the blacklist has no effect on submissions."""
        engine.add_to_blacklist(OPERATOR, "mallory")
        engine.submit(message_id(1), caller="mallory")
        assert engine.get_entry(message_id(1)) is not None

    def test_enforced_when_enabled(self, clock):
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10, enforce_blacklist=True)
        engine.add_to_blacklist(OPERATOR, "mallory")
        with pytest.raises(AccountBlacklisted):
            engine.submit(message_id(1), caller="mallory")
        assert engine.get_entry(message_id(1)) is None
        engine.submit(message_id(1), caller="alice")


class TestBatchGate:
    """Tests for the gate through the engine."""

    def test_pending_blocks_then_inclusion_opens(self, engine):
        batches = []
        engine.batch_processor = batches.append
        engine.submit(message_id(1))

        with pytest.raises(UnprocessedMessages):
            engine.process_new_batch("batch-1")
        assert batches == []

        engine.mark_included(message_id(1))
        engine.process_new_batch("batch-1")
        assert batches == ["batch-1"]

    def test_reject_new_batch_idempotent(self, engine):
        engine.submit(message_id(1))
        first = engine.reject_new_batch()
        assert all(engine.reject_new_batch() == first for _ in range(10))
        assert first is True

    def test_summary_counts(self, engine, clock):
        engine.submit(message_id(1))
        engine.submit(message_id(2))
        engine.mark_included(message_id(1))
        clock.advance_to(111)
        engine.submit(message_id(3))

        summary = engine.summary()
        assert summary["included"] == 1
        assert summary["expired"] == 1
        assert summary["pending"] == 1
        assert summary["blocking"] == 1
        assert summary["may_proceed"] is False


class TestScenarios:
    """Scenarios across several heights."""

    def test_expired_message_no_longer_blocks(self):
        """
        h2 submitted at 99 (deadline 109), h1 at 100 (deadline 110).
        h1 included at 105. At 111 the gate is open because h2 expired, and
        h2 can no longer be included.
        """
        clock = LedgerHeightClock(height=99)
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10)
        h1, h2 = message_id(1), message_id(2)

        engine.submit(h2)
        clock.advance_to(100)
        entry = engine.submit(h1)
        assert entry.deadline == 110
        assert engine.get_entry(h2).deadline == 109

        clock.advance_to(105)
        engine.mark_included(h1)
        assert engine.may_proceed() is False

        clock.advance_to(111)
        assert engine.may_proceed() is True
        assert engine.reject_new_batch() is False
        with pytest.raises(DeadlinePassed):
            engine.mark_included(h2)

    def test_expired_message_under_strict_rule(self):
        """FOR REVIEW: same scenario with expired messages kept blocking."""
        clock = LedgerHeightClock(height=99)
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10, block_on_expired=True)
        engine.submit(message_id(2))
        clock.advance_to(111)
        assert engine.may_proceed() is False
        assert engine.blocking_messages() == [message_id(2)]

    def test_operator_sets_bound_other_rejected(self, engine):
        engine.set_upper_bound(OPERATOR, 0)
        with pytest.raises(Unauthorized):
            engine.set_upper_bound(OTHER, 5)
        assert engine.upper_bound == 0


class FailingStore:
    """Store stand-in whose writes always fail."""

    def save(self, snapshot):
        raise StateStoreError("disk full")


class FailingLedger:
    """Ledger stand-in whose appends always fail."""

    def append(self, *args, **kwargs):
        raise LedgerWriteError("read-only filesystem")


class TestAtomicity:
    """A call that fails leaves no partial state behind."""

    def test_store_failure_rolls_back_submit(self, clock):
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10, store=FailingStore())
        with pytest.raises(StateStoreError):
            engine.submit(message_id(1))
        assert engine.get_entry(message_id(1)) is None
        assert engine.submissions() == []
        assert engine.may_proceed() is True

    def test_store_failure_rolls_back_inclusion(self, clock):
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10)
        engine.submit(message_id(1))
        engine.store = FailingStore()
        with pytest.raises(StateStoreError):
            engine.mark_included(message_id(1))
        assert engine.get_entry(message_id(1)).included is False
        assert engine.may_proceed() is False

    def test_ledger_failure_restores_snapshot(self, clock, tmp_path):
        store = EngineStateStore(str(tmp_path / "state.json"))
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10, store=store)
        engine.submit(message_id(1))
        before = store.load()

        engine.ledger = FailingLedger()
        with pytest.raises(LedgerWriteError):
            engine.set_upper_bound(OPERATOR, 3)

        assert engine.upper_bound == 10
        assert store.load() == before

    def test_unrecorded_batch_is_not_processed(self, clock):
        """A batch the ledger cannot record never reaches the processor."""
        calls = []
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10,
                                 batch_processor=lambda: calls.append(1), ledger=FailingLedger())
        with pytest.raises(LedgerWriteError):
            engine.process_new_batch()
        assert calls == []

    def test_rejection_survives_ledger_failure(self, clock):
        engine = InclusionEngine(OPERATOR, clock, upper_bound=10)
        engine.submit(message_id(1))
        engine.ledger = FailingLedger()
        with pytest.raises(UnprocessedMessages) as exc_info:
            engine.process_new_batch()
        assert exc_info.value.blocking == [message_id(1)]

    def test_validation_failure_mutates_nothing(self, engine, clock):
        engine.submit(message_id(1))
        before = engine.snapshot()
        clock.advance_to(200)
        with pytest.raises(DeadlinePassed):
            engine.mark_included(message_id(1))
        with pytest.raises(Unauthorized):
            engine.add_to_blacklist(OTHER, "x")
        assert engine.snapshot() == before


class TestPersistence:
    """Engine state survives a restart through the store."""

    def settings(self, tmp_path, **overrides):
        values = dict(
            operator=OPERATOR,
            upper_bound=10,
            state_path=str(tmp_path / "state.json"),
            ledger_path=str(tmp_path / "ledger.jsonl"),
        )
        values.update(overrides)
        return EngineSettings(**values)

    def test_open_creates_and_reloads(self, tmp_path):
        clock = LedgerHeightClock(height=100)
        engine = InclusionEngine.open(self.settings(tmp_path), clock)
        engine.submit(message_id(1))
        engine.submit(message_id(2))
        engine.mark_included(message_id(1))
        engine.set_upper_bound(OPERATOR, 4)
        engine.add_to_blacklist(OPERATOR, "mallory")

        clock.advance_to(105)
        reopened = InclusionEngine.open(self.settings(tmp_path, upper_bound=99), clock)

        assert reopened.upper_bound == 4
        assert reopened.is_blacklisted("mallory")
        assert reopened.get_entry(message_id(1)).included is True
        assert reopened.blocking_messages() == [message_id(2)]
        assert reopened.snapshot() == engine.snapshot()

    def test_ledger_records_transitions(self, tmp_path):
        clock = LedgerHeightClock(height=100)
        engine = InclusionEngine.open(self.settings(tmp_path), clock)
        engine.submit(message_id(1), caller="alice")
        with pytest.raises(UnprocessedMessages):
            engine.process_new_batch()
        engine.mark_included(message_id(1))
        engine.mark_included(message_id(1))
        engine.process_new_batch()
        engine.set_upper_bound(OPERATOR, 0)

        ledger = EnforcementLedger(str(tmp_path / "ledger.jsonl"))
        events = [e["event"] for e in ledger.get_entries()]
        assert events == [
            EVENT_ENGINE_CREATED,
            EVENT_MESSAGE_SUBMITTED,
            EVENT_BATCH_REJECTED,
            EVENT_MESSAGE_INCLUDED,
            EVENT_BATCH_PROCESSED,
            EVENT_UPPER_BOUND_SET,
        ]
        assert ledger.get_entries(EVENT_MESSAGE_SUBMITTED)[0]["actor"] == "alice"
        assert ledger.verify_integrity() is True

    def test_operator_mismatch_refused(self, tmp_path):
        clock = LedgerHeightClock(height=1)
        InclusionEngine.open(self.settings(tmp_path), clock)
        with pytest.raises(StateStoreError):
            InclusionEngine.open(self.settings(tmp_path, operator=OTHER), clock)

    def test_fresh_state_requires_operator(self, tmp_path):
        with pytest.raises(StateStoreError):
            InclusionEngine.open(self.settings(tmp_path, operator=None), LedgerHeightClock())

    def test_in_memory_settings(self):
        settings = EngineSettings(operator=OPERATOR, state_path=None, ledger_path=None)
        engine = InclusionEngine.open(settings, LedgerHeightClock(height=7))
        assert engine.store is None
        assert engine.ledger is None
        assert engine.submit(message_id(1)).deadline == 7 + settings.upper_bound
