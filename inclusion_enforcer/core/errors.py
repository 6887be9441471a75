"""
Failure Taxonomy & Codes.

Every failed engine call raises an EnforcementError subclass carrying an
immutable failure code. Failures abort the whole call: nothing is mutated,
nothing is retried, nothing is swallowed.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional


@dataclass(frozen=True)
class FailureCode:
    """Immutable failure code definition."""
    code: str
    category: str
    description: str


# ============================================================================
# FAILURE CODE REGISTRY
# ============================================================================

# Access failures (FIE-AUTH-XXX)
AUTH_001 = FailureCode("FIE-AUTH-001", "AUTH", "Caller is not the operator")
AUTH_002 = FailureCode("FIE-AUTH-002", "AUTH", "Submitter is blacklisted")

# Message failures (FIE-MSG-XXX)
MSG_001 = FailureCode("FIE-MSG-001", "MESSAGE", "Message already processed")
MSG_002 = FailureCode("FIE-MSG-002", "MESSAGE", "Message already included")
MSG_003 = FailureCode("FIE-MSG-003", "MESSAGE", "Inclusion deadline has passed")
MSG_004 = FailureCode("FIE-MSG-004", "MESSAGE", "Message is not tracked")
MSG_005 = FailureCode("FIE-MSG-005", "MESSAGE", "Malformed message identifier")

# Gate failures (FIE-GATE-XXX)
GATE_001 = FailureCode("FIE-GATE-001", "GATE", "Unprocessed messages block the batch")

# System failures (FIE-SYS-XXX)
SYS_000 = FailureCode("FIE-SYS-000", "SYSTEM", "Unclassified enforcement failure")
SYS_001 = FailureCode("FIE-SYS-001", "SYSTEM", "Enforcement ledger write failure")
SYS_002 = FailureCode("FIE-SYS-002", "SYSTEM", "Enforcement ledger tampering detected")
SYS_003 = FailureCode("FIE-SYS-003", "SYSTEM", "Engine state store failure")

_CODE_REGISTRY: Dict[str, FailureCode] = {
    fc.code: fc for fc in [
        AUTH_001, AUTH_002,
        MSG_001, MSG_002, MSG_003, MSG_004, MSG_005,
        GATE_001,
        SYS_000, SYS_001, SYS_002, SYS_003,
    ]
}


def get_failure_code(code: str) -> Optional[FailureCode]:
    """Get a failure code by its code string."""
    return _CODE_REGISTRY.get(code)


def get_all_codes() -> Dict[str, FailureCode]:
    """Get all registered failure codes."""
    return _CODE_REGISTRY.copy()


def format_failure_message(failure_code: FailureCode, details: Optional[str] = None) -> str:
    """Format a one-line failure message with code."""
    message = f"{failure_code.code}: {failure_code.description}"
    if details:
        message += f" ({details})"
    return message


class EnforcementError(Exception):
    """Base class for all engine failures."""

    failure_code: FailureCode = SYS_000

    def __init__(self, details: Optional[str] = None):
        self.details = details
        super().__init__(format_failure_message(self.failure_code, details))

    @property
    def code(self) -> str:
        return self.failure_code.code

    @property
    def category(self) -> str:
        return self.failure_code.category


class Unauthorized(EnforcementError):
    """Raised when the caller is not the operator."""
    failure_code = AUTH_001

    def __init__(self, caller: Optional[str], details: Optional[str] = None):
        self.caller = caller
        super().__init__(details or f"caller={caller!r}")


class AccountBlacklisted(EnforcementError):
    """Raised when a blacklisted account submits while enforcement is on."""
    failure_code = AUTH_002

    def __init__(self, account: str):
        self.account = account
        super().__init__(f"account={account}")


class AlreadyProcessed(EnforcementError):
    """Raised when submitting an identifier whose entry is already included."""
    failure_code = MSG_001

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"message_id={message_id}")


class AlreadyIncluded(EnforcementError):
    """Raised by the operator inclusion path when the entry is already included."""
    failure_code = MSG_002

    def __init__(self, message_id: str):
        self.message_id = message_id
        super().__init__(f"message_id={message_id}")


class DeadlinePassed(EnforcementError):
    """Raised when inclusion is attempted after the entry's window closed."""
    failure_code = MSG_003

    def __init__(self, message_id: str, height: int, deadline: Optional[int]):
        self.message_id = message_id
        self.height = height
        self.deadline = deadline
        super().__init__(f"message_id={message_id} height={height} deadline={deadline}")


class UnknownMessage(DeadlinePassed):
    """
    Raised when an identifier has no entry.

    An absent entry has no inclusion window, so this is a DeadlinePassed.
    """
    failure_code = MSG_004

    def __init__(self, message_id: str, height: int):
        super().__init__(message_id, height, None)


class InvalidMessageId(EnforcementError, ValueError):
    """Raised when a value cannot be read as a 32-byte message identifier."""
    failure_code = MSG_005

    def __init__(self, value: object):
        self.value = value
        super().__init__(f"value={value!r}")


class UnprocessedMessages(EnforcementError):
    """Raised when the batch gate is shut."""
    failure_code = GATE_001

    def __init__(self, height: int, blocking: Iterable[str]):
        self.height = height
        self.blocking = list(blocking)
        super().__init__(f"height={height} blocking={len(self.blocking)}")


class LedgerWriteError(EnforcementError):
    """Raised when the enforcement ledger cannot be written."""
    failure_code = SYS_001


class LedgerTamperingError(EnforcementError):
    """Raised when the enforcement ledger fails verification."""
    failure_code = SYS_002


class StateStoreError(EnforcementError):
    """Raised when the persisted engine state is unreadable or invalid."""
    failure_code = SYS_003
