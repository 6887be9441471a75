"""
Blacklist of excluded accounts.

Administered through the engine's operator-guarded calls. Whether membership
is enforced at submission is decided by the engine settings.
"""

from typing import Iterable, List, Optional, Set

from inclusion_enforcer.utils.hashing import normalize_account


class Blacklist:
    """Set of excluded account identifiers."""

    def __init__(self, accounts: Optional[Iterable[str]] = None):
        self._accounts: Set[str] = {normalize_account(a) for a in accounts or []}

    def add(self, account: str) -> bool:
        """Add an account. Returns False if it was already listed."""
        key = normalize_account(account)
        if key in self._accounts:
            return False
        self._accounts.add(key)
        return True

    def remove(self, account: str) -> bool:
        """Remove an account. Returns False if it was not listed."""
        key = normalize_account(account)
        if key not in self._accounts:
            return False
        self._accounts.discard(key)
        return True

    def __contains__(self, account: object) -> bool:
        if not isinstance(account, str):
            return False
        try:
            return normalize_account(account) in self._accounts
        except ValueError:
            return False

    def __len__(self) -> int:
        return len(self._accounts)

    def members(self) -> List[str]:
        return sorted(self._accounts)
