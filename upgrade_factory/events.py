"""Upgrade events: observational progress notifications.

The orchestrator emits one event per lifecycle milestone:
  analysis-complete, path-calculated, step-start, step-complete,
  step-failed, rollback-start, rollback-complete, upgrade-complete, etc.

Sinks only observe. Nothing in the orchestrator ever reads a sink back
to decide what to do next.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Immutable event record."""

    id: str = ""
    event_type: str = ""
    payload: dict = field(default_factory=dict)
    timestamp: float = 0.0

    def __post_init__(self):
        if not self.id:
            self.id = str(uuid.uuid4())
        if not self.timestamp:
            self.timestamp = time.time()


# Event types
ANALYSIS_COMPLETE = "analysis-complete"
PATH_CALCULATED = "path-calculated"
PREREQUISITES_VALIDATED = "prerequisites-validated"
CHECKPOINT_CREATED = "checkpoint-created"
STEP_START = "step-start"
STEP_COMPLETE = "step-complete"
STEP_SKIPPED = "step-skipped"
STEP_FAILED = "step-failed"
MANUAL_INTERVENTION = "manual-intervention-required"
FINAL_VALIDATION = "final-validation"
UPGRADE_COMPLETE = "upgrade-complete"
UPGRADE_FAILED = "upgrade-failed"
ROLLBACK_START = "rollback-start"
ROLLBACK_COMPLETE = "rollback-complete"
ROLLBACK_FAILED = "rollback-failed"

_ERROR_EVENTS = (STEP_FAILED, UPGRADE_FAILED, ROLLBACK_FAILED)
_WARNING_EVENTS = (MANUAL_INTERVENTION,)


class EventSink(Protocol):
    def emit(self, event: Event) -> None: ...


class EventRecorder:
    """Keeps every event in order and fans out to listeners."""

    def __init__(self):
        self.events: list[Event] = []
        self._listeners: list[Callable[[Event], None]] = []

    def on_event(self, listener: Callable[[Event], None]) -> None:
        self._listeners.append(listener)

    def emit(self, event: Event) -> Event:
        self.events.append(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener error")
        return event

    def emit_simple(self, event_type: str, **payload) -> Event:
        """Convenience: create and emit an event in one call."""
        return self.emit(Event(event_type=event_type, payload=payload))

    def query(self, event_type: Optional[str] = None) -> list[Event]:
        if event_type is None:
            return list(self.events)
        return [e for e in self.events if e.event_type == event_type]

    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


class LoggingSink:
    """Renders events to the log."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or logger

    def emit(self, event: Event) -> None:
        level = logging.INFO
        if event.event_type in _ERROR_EVENTS:
            level = logging.ERROR
        elif event.event_type in _WARNING_EVENTS:
            level = logging.WARNING
        details = ", ".join(f"{k}={v}" for k, v in event.payload.items())
        self.log.log(level, f"[{event.event_type}] {details}")
