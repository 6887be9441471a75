import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict


def write_json_atomically(path: Path, data: Dict[str, Any], schema_validator=None, overwrite: bool = False):
    """
    Writes JSON data to path atomically:
    1. Validate (optional).
    2. Write to temp file in same directory.
    3. fsync.
    4. Move into place.

    Args:
        path: Target Path object.
        data: Dict to write.
        schema_validator: Optional callable(data) that raises exception if invalid.
        overwrite: Replace an existing target. When False an existing target
            raises FileExistsError.
    """
    if not overwrite and path.exists():
        raise FileExistsError(f"Target {path} already exists. Overwrite denied.")

    if schema_validator:
        schema_validator(data)

    path.parent.mkdir(parents=True, exist_ok=True)

    # Temp file in the target directory so the final move stays on one filesystem.
    fd, temp_path = tempfile.mkstemp(dir=path.parent, text=True)
    try:
        with os.fdopen(fd, 'w') as f:
            json.dump(data, f, indent=2)
            f.flush()
            os.fsync(f.fileno())

        if overwrite:
            os.replace(temp_path, path)
        else:
            # os.link fails with EEXIST if the target appeared concurrently.
            try:
                os.link(temp_path, str(path))
            except FileExistsError:
                raise FileExistsError(f"Target {path} created concurrently. Overwrite denied.")
            except OSError:
                if path.exists():
                    raise FileExistsError(f"Target {path} created concurrently.")
                os.rename(temp_path, path)

    finally:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
