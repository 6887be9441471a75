"""
Engine State Store Tests.
"""

import json

import pytest

from conftest import OPERATOR, message_id
from inclusion_enforcer.control_plane.engine import InclusionEngine
from inclusion_enforcer.control_plane.state_store import EngineStateStore
from inclusion_enforcer.core.errors import StateStoreError
from inclusion_enforcer.core.ledger_height import LedgerHeightClock


def populated_engine():
    clock = LedgerHeightClock(height=10)
    engine = InclusionEngine(OPERATOR, clock, upper_bound=5)
    engine.submit(message_id(1), caller="alice")
    engine.submit(message_id(2))
    engine.mark_included(message_id(2))
    engine.add_to_blacklist(OPERATOR, "mallory")
    return engine


class TestSnapshotStore:
    """Tests for save/load of engine snapshots."""

    def test_missing_file_loads_none(self, tmp_path):
        store = EngineStateStore(str(tmp_path / "state.json"))
        assert store.exists() is False
        assert store.load() is None

    def test_save_and_load(self, tmp_path):
        engine = populated_engine()
        store = EngineStateStore(str(tmp_path / "nested" / "state.json"))
        store.save(engine.snapshot())

        assert store.load() == engine.snapshot()

    def test_save_overwrites(self, tmp_path):
        engine = populated_engine()
        store = EngineStateStore(str(tmp_path / "state.json"))
        store.save(engine.snapshot())
        engine.set_upper_bound(OPERATOR, 7)
        store.save(engine.snapshot())
        assert store.load()["upper_bound"] == 7

    def test_saved_file_has_timestamp(self, tmp_path):
        store = EngineStateStore(str(tmp_path / "state.json"))
        store.save(populated_engine().snapshot())
        with open(tmp_path / "state.json") as f:
            assert "saved_at" in json.load(f)

    def test_invalid_snapshot_not_written(self, tmp_path):
        """Schema violations are refused before touching disk."""
        store = EngineStateStore(str(tmp_path / "state.json"))
        snapshot = populated_engine().snapshot()
        snapshot["upper_bound"] = -1

        with pytest.raises(StateStoreError):
            store.save(snapshot)
        assert not (tmp_path / "state.json").exists()

    def test_corrupt_file_rejected(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(StateStoreError):
            EngineStateStore(str(path)).load()

    def test_bad_identifier_rejected(self, tmp_path):
        path = tmp_path / "state.json"
        snapshot = populated_engine().snapshot()
        snapshot["entries"][0]["message_id"] = "0xABC"
        path.write_text(json.dumps(snapshot))
        with pytest.raises(StateStoreError):
            EngineStateStore(str(path)).load()

    def test_restored_engine_matches(self, tmp_path):
        engine = populated_engine()
        store = EngineStateStore(str(tmp_path / "state.json"))
        store.save(engine.snapshot())

        restored = InclusionEngine.from_snapshot(store.load(), LedgerHeightClock(height=10))

        assert restored.snapshot() == engine.snapshot()
        assert restored.blocking_messages() == [message_id(1)]
        assert restored.is_blacklisted("mallory")
