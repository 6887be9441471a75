"""Shared fixtures for the enforcement engine tests."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from inclusion_enforcer.control_plane.engine import InclusionEngine
from inclusion_enforcer.core.ledger_height import LedgerHeightClock

OPERATOR = "0x00000000000000000000000000000000000000aa"
OTHER = "0x00000000000000000000000000000000000000bb"


def message_id(n: int) -> str:
    """Deterministic 32-byte identifier for tests."""
    return "0x" + format(n, "064x")


@pytest.fixture
def clock():
    return LedgerHeightClock(height=100)


@pytest.fixture
def engine(clock):
    return InclusionEngine(OPERATOR, clock, upper_bound=10)
