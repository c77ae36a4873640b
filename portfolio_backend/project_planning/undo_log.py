"""
Single-slot undo log.

Holds the `ChangeRecord` of the last committed move/resize. Recording a new
change overwrites the previous one; `undo()` writes the captured `before`
dates back and empties the slot, so a second consecutive undo is a no-op.

Scope (config `undo_scope`):
    initiating: the edited entity and the milestones it directly moved
    cascade:    additionally every entity the propagation reached (default)

Known limitation: undo restores the captured dates even if other edits
touched the same entities afterwards.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional, Tuple

from ..feature_flags import FeatureFlags, UndoScope
from .entity_store import EntityStore
from .schedule_model import ChangeRecord, EntityRef

logger = logging.getLogger(__name__)


class UndoLog:
    """One level of undo for schedule edits."""

    def __init__(self, scope: Optional[UndoScope] = None) -> None:
        self._record: Optional[ChangeRecord] = None
        self.scope = scope or FeatureFlags.get_config().undo_scope

    @property
    def last_change(self) -> Optional[ChangeRecord]:
        return self._record

    @property
    def can_undo(self) -> bool:
        return self._record is not None

    def record_change(self, record: ChangeRecord) -> None:
        """Store `record`, replacing whatever was there."""
        if self._record is not None:
            logger.debug(f"Undo slot overwritten: {self._record.description!r} -> {record.description!r}")
        self._record = record

    def clear(self) -> None:
        self._record = None

    def restore_updates(self) -> List[Tuple[EntityRef, Optional[date], date]]:
        """
        The writes `undo()` would perform, in order: the entity, its
        milestones, then (cascade scope) the cascaded entities, last reached
        first.
        """
        record = self._record
        if record is None:
            return []

        updates = [(record.entity_ref, record.before.start, record.before.end)]
        for milestone_id, change in sorted(record.affected_milestones.items()):
            updates.append((EntityRef.milestone(milestone_id), change.before.start, change.before.end))

        if self.scope == UndoScope.CASCADE:
            for ref, change in reversed(list(record.cascaded_changes.items())):
                updates.append((ref, change.before.start, change.before.end))
        return updates

    async def undo(self, store: EntityStore) -> Optional[ChangeRecord]:
        """
        Re-apply the captured `before` dates.

        Writes are awaited sequentially. The slot is emptied only after every
        write succeeded; a failing write propagates and leaves the record in
        place.

        Returns:
            The undone record, or None when there was nothing to undo
        """
        record = self._record
        if record is None:
            return None

        updates = self.restore_updates()
        for ref, start, end in updates:
            await store.update_entity_dates(ref, start, end)

        self._record = None
        logger.info(
            f"Undid {record.description or 'change'} on {record.entity_ref} "
            f"({len(updates)} entities restored, scope={self.scope.value})"
        )
        return record
