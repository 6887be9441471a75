"""
Forced Inclusion Enforcer.

Deadline-based enforcement of L1 -> L2 message inclusion. Every tracked
message gets a deadline in L1 ledger height, and new L2 batches are gated on
pending messages being resolved within their window.
"""

from .version import __version__

__all__ = ["__version__"]
