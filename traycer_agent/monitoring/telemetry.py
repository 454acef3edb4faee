from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)

TELEMETRY_PATH_ENV = "TRAYCER_TELEMETRY_PATH"


class TelemetryLogger:
    """Append-only JSONL event sink. Disabled when no path is configured."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = path or os.environ.get(TELEMETRY_PATH_ENV)
        self._fh = None
        if self.path:
            p = Path(self.path)
            p.parent.mkdir(parents=True, exist_ok=True)
            self._fh = p.open("a", encoding="utf-8")

    @property
    def enabled(self) -> bool:
        return self._fh is not None

    def log(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if not self._fh:
            return
        record = {"event": event, "ts": time.time(), **(payload or {})}
        try:
            self._fh.write(json.dumps(record, separators=(",", ":"), default=str) + "\n")
            self._fh.flush()
        except (OSError, ValueError) as exc:
            logger.debug(f"telemetry write failed: {exc}")

    def close(self) -> None:
        if self._fh is None:
            return
        try:
            self._fh.close()
        except OSError as exc:
            logger.debug(f"telemetry close failed: {exc}")
        finally:
            self._fh = None
