"""
L1 Ledger Height Source.

The engine never reads height on its own; it asks an injected source.
LedgerHeightClock is the in-process source used by the CLI, the API and the
tests. It only moves forward.
"""

from dataclasses import dataclass


@dataclass
class LedgerHeightClock:
    """Monotonic ledger height."""
    height: int = 0

    def __post_init__(self):
        if not isinstance(self.height, int) or self.height < 0:
            raise ValueError(f"Ledger height must be a non-negative integer, got {self.height!r}")

    def current_height(self) -> int:
        return self.height

    def advance(self, blocks: int = 1) -> int:
        """Move forward by a number of blocks and return the new height."""
        if not isinstance(blocks, int) or blocks < 0:
            raise ValueError(f"Cannot advance by {blocks!r} blocks")
        return self.advance_to(self.height + blocks)

    def advance_to(self, height: int) -> int:
        """Move to an absolute height. Moving backwards is rejected."""
        if not isinstance(height, int):
            raise ValueError(f"Ledger height must be an integer, got {height!r}")
        if height < self.height:
            raise ValueError(f"Ledger height cannot move backwards ({self.height} -> {height})")
        self.height = height
        return self.height
