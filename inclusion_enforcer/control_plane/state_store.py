"""
Engine State Store.

Durable snapshot of the enforcement engine: operator, upper bound, blacklist,
entries and the submission audit. Snapshots are validated against
config/schemas/engine_state.json on both write and read, and written
atomically.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

import jsonschema

from inclusion_enforcer.core.errors import StateStoreError
from inclusion_enforcer.utils.storage import write_json_atomically

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent.parent / "config" / "schemas" / "engine_state.json"


class EngineStateStore:
    """Single-file JSON snapshot store."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.schema = self._load_schema()

    def _load_schema(self) -> Dict:
        if not SCHEMA_PATH.exists():
            raise FileNotFoundError(f"Engine state schema not found at {SCHEMA_PATH}")
        with open(SCHEMA_PATH, 'r') as f:
            return json.load(f)

    def _validate(self, data: Dict[str, Any]) -> None:
        try:
            jsonschema.validate(instance=data, schema=self.schema)
        except jsonschema.ValidationError as e:
            path = "/" + "/".join(str(p) for p in e.absolute_path)
            raise StateStoreError(f"invalid engine state at {path}: {e.message}")

    def exists(self) -> bool:
        return self.path.exists()

    def save(self, snapshot: Dict[str, Any]) -> Path:
        """Validate and atomically replace the stored snapshot."""
        data = dict(snapshot)
        data["saved_at"] = datetime.now(timezone.utc).isoformat()
        try:
            write_json_atomically(self.path, data, schema_validator=self._validate, overwrite=True)
        except OSError as e:
            raise StateStoreError(f"{self.path}: {e}")
        logger.debug("Engine state saved to %s (%d entries)", self.path, len(data["entries"]))
        return self.path

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the stored snapshot, or None if nothing was saved yet."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise StateStoreError(f"{self.path} is not valid JSON: {e}")
        self._validate(data)
        data.pop("saved_at", None)
        return data
