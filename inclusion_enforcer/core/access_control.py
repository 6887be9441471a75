"""
Operator Access Guard.

Exactly one account is the operator, fixed when the guard is created.
Guarded calls fail with Unauthorized for every other caller. There is no
transfer or multi-operator mechanism.
"""

import logging
from typing import Optional

from inclusion_enforcer.core.errors import Unauthorized
from inclusion_enforcer.utils.hashing import normalize_account

logger = logging.getLogger(__name__)


class OperatorGuard:
    """Identity check against the single privileged operator."""

    def __init__(self, operator: str):
        self._operator = normalize_account(operator)

    @property
    def operator(self) -> str:
        return self._operator

    def is_operator(self, caller: Optional[str]) -> bool:
        """Check whether caller is the operator. No side effects."""
        if caller is None:
            return False
        try:
            return normalize_account(caller) == self._operator
        except ValueError:
            return False

    def require_operator(self, caller: Optional[str], action: str = "") -> None:
        """
        Raise Unauthorized unless caller is the operator.

        Args:
            caller: Identity of the account making the call
            action: Name of the guarded action, for the error and log line
        """
        if not self.is_operator(caller):
            logger.warning("Unauthorized %s attempt by %r", action or "operator call", caller)
            raise Unauthorized(caller, f"caller={caller!r} action={action}" if action else None)
