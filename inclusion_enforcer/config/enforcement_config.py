"""
Forced Inclusion Enforcer Configuration

Defaults for the enforcement engine. Environment variables prefixed with
INCLUSION_ override these (see inclusion_enforcer.control_plane.settings).
"""

ENFORCEMENT_CONFIG = {
    # Operator account. Required when creating fresh state.
    "operator": None,

    # Height units a message may wait before inclusion
    "upper_bound": 50,

    # Who may mark messages included: "open" (anyone) or "operator"
    "inclusion_policy": "open",

    # Reject submissions from blacklisted submitters
    "enforce_blacklist": False,

    # Keep expired, never-included messages blocking the gate
    "block_on_expired": False,

    # Persistence
    "state_path": "data/engine_state.json",
    "ledger_path": "data/enforcement_ledger.jsonl",

    # API key for the HTTP surface (None disables the check)
    "api_key": None,
}

ENV_PREFIX = "INCLUSION_"
