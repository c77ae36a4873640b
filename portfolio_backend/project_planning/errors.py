"""
Schedule engine exceptions.

ScheduleEngineError
 ├── InvalidChangeError   (bad move/resize request, rejected before any write)
 ├── PersistenceError     (entity store could not write)
 └── PropagationError     (cascade aborted mid-way, earlier writes kept)
"""

from __future__ import annotations

from typing import Any, List, Optional


class ScheduleEngineError(Exception):
    """Base class for schedule engine failures."""


class InvalidChangeError(ScheduleEngineError):
    """A move/resize request cannot be planned against the current graph."""


class PersistenceError(ScheduleEngineError):
    """The entity store failed to persist new dates."""


class PropagationError(ScheduleEngineError):
    """
    A propagation stopped at a failing write.

    Already committed updates stay in place (no compensating transaction);
    callers should re-fetch the store to reconcile.
    """

    def __init__(
        self,
        message: str,
        applied_updates: Optional[List[Any]] = None,
        failed_update: Any = None,
    ):
        super().__init__(message)
        self.applied_updates = list(applied_updates or [])
        self.failed_update = failed_update
