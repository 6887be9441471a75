"""
Engine Settings.

Defaults come from inclusion_enforcer.config.enforcement_config. A .env file
(python-dotenv) and INCLUSION_* environment variables override them.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from inclusion_enforcer.config.enforcement_config import ENFORCEMENT_CONFIG, ENV_PREFIX


class InclusionPolicy(str, Enum):
    """Who may mark a message included."""

    OPEN = "open"            # any caller, repeat marks are no-ops
    OPERATOR = "operator"    # operator only, repeat marks raise AlreadyIncluded


class EngineSettings(BaseModel):
    """Runtime configuration for the enforcement engine."""

    operator: Optional[str] = Field(
        default=None,
        description="Operator account, fixed when the engine state is first created"
    )
    upper_bound: int = Field(
        default=ENFORCEMENT_CONFIG["upper_bound"],
        ge=0,
        description="Height units a message may wait before inclusion"
    )
    inclusion_policy: InclusionPolicy = Field(
        default=InclusionPolicy(ENFORCEMENT_CONFIG["inclusion_policy"]),
        description="Access policy of the inclusion call"
    )
    enforce_blacklist: bool = Field(
        default=ENFORCEMENT_CONFIG["enforce_blacklist"],
        description="Reject submissions from blacklisted submitters"
    )
    block_on_expired: bool = Field(
        default=ENFORCEMENT_CONFIG["block_on_expired"],
        description="Expired, never-included messages keep the batch gate shut"
    )
    state_path: Optional[str] = Field(
        default=ENFORCEMENT_CONFIG["state_path"],
        description="Engine snapshot file, None for in-memory only"
    )
    ledger_path: Optional[str] = Field(
        default=ENFORCEMENT_CONFIG["ledger_path"],
        description="Enforcement ledger JSONL file, None to disable auditing"
    )
    api_key: Optional[str] = Field(
        default=ENFORCEMENT_CONFIG["api_key"],
        description="Shared key required by the HTTP API, None to disable"
    )


_BOOL_TRUE = {"1", "true", "yes", "on"}
_BOOL_FALSE = {"0", "false", "no", "off"}


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _BOOL_TRUE:
        return True
    if value in _BOOL_FALSE:
        return False
    raise ValueError(f"{name} must be a boolean, got {raw!r}")


def _read_env() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for field_name in EngineSettings.model_fields:
        env_name = f"{ENV_PREFIX}{field_name.upper()}"
        raw = os.environ.get(env_name)
        if raw is None:
            continue
        if field_name in ("enforce_blacklist", "block_on_expired"):
            overrides[field_name] = _parse_bool(env_name, raw)
        elif raw.strip() == "" and field_name in ("operator", "state_path", "ledger_path", "api_key"):
            overrides[field_name] = None
        else:
            overrides[field_name] = raw.strip()
    return overrides


def load_settings(env_file: Optional[str] = None, **overrides: Any) -> EngineSettings:
    """
    Build settings from defaults, .env, environment and explicit overrides.

    Explicit keyword overrides win over the environment; None values are
    ignored so CLI flags that were not given fall through.
    """
    if env_file is not None:
        load_dotenv(Path(env_file), override=False)
    else:
        load_dotenv(override=False)

    values: Dict[str, Any] = {k: v for k, v in ENFORCEMENT_CONFIG.items() if k in EngineSettings.model_fields}
    values.update(_read_env())
    values.update({k: v for k, v in overrides.items() if v is not None})
    return EngineSettings(**values)
