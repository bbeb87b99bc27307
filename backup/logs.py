"""Structured run event log.

Every noteworthy action of a run is recorded as a :class:`RunEvent` in an
ordered, in-memory list and mirrored to the ``zfsbackup`` std logger (which
``core.logging_utils.configure_logging`` routes to the JSONL log file). The
list travels with the run report and is rendered into the human readable
summary exactly once, when the run is finalized.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, Callable, Dict, List, Optional

LOGGER = logging.getLogger("zfsbackup.run")


@dataclass(slots=True)
class RunEvent:
    ts: datetime
    level: int
    phase: str
    message: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def level_name(self) -> str:
        return logging.getLevelName(self.level)

    def render(self) -> str:
        return f"{self.ts:%Y-%m-%d %H:%M:%S} - {self.message}"


class RunLogger:
    """Collect run events in order and forward them to the std logger."""

    def __init__(self, *, clock: Optional[Callable[[], datetime]] = None, phase: str = "init") -> None:
        self._clock = clock or datetime.now
        self._events: List[RunEvent] = []
        self._lock = Lock()
        self.phase = phase

    # ------------------------------------------------------------------
    @property
    def events(self) -> List[RunEvent]:
        with self._lock:
            return list(self._events)

    def _record(self, level: int, message: str, *, phase: Optional[str], summarize: bool, fields: Dict[str, Any]) -> None:
        event = RunEvent(
            ts=self._clock(),
            level=level,
            phase=phase or self.phase,
            message=message,
            fields=dict(fields),
        )
        if summarize:
            with self._lock:
                self._events.append(event)
        LOGGER.log(level, "%s", message, extra={"phase": event.phase, "fields": event.fields})

    def debug(self, message: str, *, phase: Optional[str] = None, **fields: Any) -> None:
        self._record(logging.DEBUG, message, phase=phase, summarize=False, fields=fields)

    def info(self, message: str, *, phase: Optional[str] = None, summarize: bool = True, **fields: Any) -> None:
        self._record(logging.INFO, message, phase=phase, summarize=summarize, fields=fields)

    def warning(self, message: str, *, phase: Optional[str] = None, **fields: Any) -> None:
        self._record(logging.WARNING, message, phase=phase, summarize=True, fields=fields)

    def error(self, message: str, *, phase: Optional[str] = None, **fields: Any) -> None:
        self._record(logging.ERROR, message, phase=phase, summarize=True, fields=fields)

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        level = logging.INFO if ok else logging.ERROR
        self._record(level, event, phase=phase, summarize=True, fields={"ok": bool(ok), **extra})


__all__ = ["RunEvent", "RunLogger"]
