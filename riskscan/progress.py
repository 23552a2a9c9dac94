"""Leveled, timestamped progress notifications for a single scan."""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

LEVEL_INFO = "info"
LEVEL_SUCCESS = "success"
LEVEL_WARNING = "warning"
LEVEL_ERROR = "error"
LEVELS = (LEVEL_INFO, LEVEL_SUCCESS, LEVEL_WARNING, LEVEL_ERROR)

_LOGGING_LEVELS = {
    LEVEL_INFO: logging.INFO,
    LEVEL_SUCCESS: logging.INFO,
    LEVEL_WARNING: logging.WARNING,
    LEVEL_ERROR: logging.ERROR,
}

logger = logging.getLogger("riskscan.progress")
logger.addHandler(logging.NullHandler())

ProgressCallback = Callable[[Dict[str, Any]], None]


@dataclass(frozen=True)
class ProgressEntry:
    sequence: int
    timestamp: str
    level: str
    phase: str
    message: str
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        return {k: v for k, v in payload.items() if v is not None}


def _notify_progress(callback: Optional[ProgressCallback], payload: Dict[str, Any]) -> None:
    if not callback:
        return
    try:
        callback(payload)
    except Exception:
        # Progress callbacks are best-effort only.
        logger.debug("Progress callback raised", exc_info=True)


class ScanProgress:
    def __init__(self, callback: Optional[ProgressCallback] = None, scan_id: Optional[str] = None) -> None:
        self.callback = callback
        self.scan_id = scan_id
        self.current_phase = "init"
        self._entries: List[ProgressEntry] = []
        self._lock = threading.Lock()

    def log(self, level: str, message: str, *, phase: Optional[str] = None, **metadata: Any) -> ProgressEntry:
        if level not in LEVELS:
            raise ValueError(f"Unknown progress level: {level}")
        with self._lock:
            entry = ProgressEntry(
                sequence=len(self._entries),
                timestamp=datetime.now(timezone.utc).isoformat(),
                level=level,
                phase=phase or self.current_phase,
                message=message,
                metadata=metadata or None,
            )
            self._entries.append(entry)
        logger.log(_LOGGING_LEVELS[level], "[%s] %s", entry.phase, message)
        payload = entry.to_dict()
        payload["type"] = "log"
        if self.scan_id:
            payload["scan_id"] = self.scan_id
        _notify_progress(self.callback, payload)
        return entry

    def info(self, message: str, **metadata: Any) -> ProgressEntry:
        return self.log(LEVEL_INFO, message, **metadata)

    def success(self, message: str, **metadata: Any) -> ProgressEntry:
        return self.log(LEVEL_SUCCESS, message, **metadata)

    def warning(self, message: str, **metadata: Any) -> ProgressEntry:
        return self.log(LEVEL_WARNING, message, **metadata)

    def error(self, message: str, **metadata: Any) -> ProgressEntry:
        return self.log(LEVEL_ERROR, message, **metadata)

    def phase(self, name: str, progress: float) -> None:
        self.current_phase = name
        payload: Dict[str, Any] = {"type": "phase", "phase": name, "progress": progress}
        if self.scan_id:
            payload["scan_id"] = self.scan_id
        _notify_progress(self.callback, payload)

    def entries(self) -> List[ProgressEntry]:
        with self._lock:
            return list(self._entries)

    def summary(self) -> Dict[str, int]:
        counts = {level: 0 for level in LEVELS}
        for entry in self.entries():
            counts[entry.level] += 1
        counts["total"] = sum(counts.values())
        return counts

    def to_list(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self.entries()]
