r"""backend\app\services\storage.py

Named JSON slots on the local filesystem.

Each slot is a single file written with one atomic serialize-and-replace step
(temporary file + move), so readers always observe the previous or the new
document, never a partial write.  Read or write failures are logged and
reported as "no data" instead of propagating to the caller.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

CACHE_SLOT = "optimization_cache"
QUEUE_SLOT = "optimization_queue"
BREAKER_SLOT = "ai_circuit_breaker"


class JsonSlotStorage:
    """Read and write whole JSON documents under ``root``."""

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def path_for(self, slot: str) -> Path:
        return self.root / f"{slot}.json"

    def read(self, slot: str) -> Any | None:
        """Return the decoded slot or ``None`` when it is missing or unreadable."""

        path = self.path_for(slot)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except (OSError, ValueError):
            LOGGER.exception("Failed to read storage slot %s at %s", slot, path)
            return None

    def write(self, slot: str, payload: Any) -> bool:
        """Persist ``payload`` atomically; return ``False`` if it could not be stored."""

        path = self.path_for(slot)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            body = json.dumps(payload, separators=(",", ":"))
        except (OSError, TypeError, ValueError):
            LOGGER.exception("Failed to serialise storage slot %s", slot)
            return False

        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=str(self.root))
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(body)
            shutil.move(tmp_path, path)
            return True
        except OSError:
            LOGGER.exception("Failed to write storage slot %s at %s", slot, path)
            return False
        finally:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
