"""JSON state files for the order book and certificate registry."""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Optional

logger = logging.getLogger("onchainfarm.storage")


def write_json_atomic(path: str | Path, state: dict):
    """Write to a temp file in the same directory, then os.replace()."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    state = {**state, "saved_at": time.time()}

    tmp_fd, tmp_path = tempfile.mkstemp(dir=str(p.parent), suffix=".tmp", prefix=f"{p.stem}_")
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            json.dump(state, f, ensure_ascii=False, indent=2)
        # os.replace is atomic on same filesystem
        os.replace(tmp_path, str(p))
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def read_json(path: str | Path) -> Optional[dict]:
    """Load a state file. None if it does not exist."""
    p = Path(path)
    if not p.exists():
        return None
    with open(p, "r", encoding="utf-8") as f:
        return json.load(f)
