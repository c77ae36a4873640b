"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    PORTFOLIO PLANNER — SCHEDULE MODEL
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Data model for the project/milestone dependency graph behind the Gantt view.

DEFINITIONS
═══════════

A SCHEDULE ENTITY is either:
- a PROJECT: an interval [start, end] with start ≤ end
- a MILESTONE: a point in time (start = end), unless a planned start exists

A DEPENDENCY links an anchor of one entity to an anchor of another:

    pred.point  ──(type, lag)──▶  succ.point

    FS: pred.end   → succ.start        SS: pred.start → succ.start
    FF: pred.end   → succ.end          SF: pred.start → succ.end

The constraint it expresses is always the same inequality:

    date(succ, succ_point) ≥ date(pred, pred_point) + lag

lag is a signed number of days (negative = lead / overlap).

All dates are day-granular (`datetime.date`); the engine never handles
timezones.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# ENUMS
# ════════════════════════════════════════════════════════════════════════════════════════════════════

class EntityKind(str, Enum):
    """Kind of schedulable entity."""
    PROJECT = "project"
    MILESTONE = "milestone"


class AnchorPoint(str, Enum):
    """Which end of an entity a dependency attaches to."""
    START = "start"
    END = "end"


class DependencyType(str, Enum):
    """Temporal relationship between predecessor and successor."""
    FS = "FS"   # Finish-to-Start
    SS = "SS"   # Start-to-Start
    FF = "FF"   # Finish-to-Finish
    SF = "SF"   # Start-to-Finish


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# REFERENCES
# ════════════════════════════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, order=True)
class EntityRef:
    """
    Tagged reference to a project or a milestone.

    Ordering is (kind, id), which gives a stable tie-break wherever
    refs need sorting.
    """
    kind: EntityKind
    id: int

    @classmethod
    def project(cls, entity_id: int) -> 'EntityRef':
        return cls(EntityKind.PROJECT, int(entity_id))

    @classmethod
    def milestone(cls, entity_id: int) -> 'EntityRef':
        return cls(EntityKind.MILESTONE, int(entity_id))

    @classmethod
    def of(cls, kind: Any, entity_id: Any) -> 'EntityRef':
        """Build from loosely typed record values ('project', '12')."""
        return cls(EntityKind(str(kind).lower()), int(entity_id))

    @classmethod
    def parse(cls, key: str) -> 'EntityRef':
        """Inverse of `key`. Raises ValueError on malformed keys."""
        kind, sep, raw_id = str(key).partition("-")
        if not sep or not raw_id.isdigit():
            raise ValueError(f"Malformed entity key: {key!r}")
        return cls(EntityKind(kind), int(raw_id))

    @property
    def key(self) -> str:
        """Serialization key, e.g. 'project-12'."""
        return f"{self.kind.value}-{self.id}"

    @property
    def is_project(self) -> bool:
        return self.kind == EntityKind.PROJECT

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class DateSpan:
    """A (start, end) pair of dates."""
    start: Optional[date]
    end: Optional[date]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'start': self.start.isoformat() if self.start else None,
            'end': self.end.isoformat() if self.end else None,
        }


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# ENTITIES & DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class ScheduleEntity:
    """
    A project or milestone as seen by the schedule engine.

    Attributes:
        ref: Entity reference
        start: Start date (projects), planned start or end (milestones)
        end: End date (projects), planned end (milestones)
        name: Display name
        project_id: Owning project (milestones only)
        has_distinct_start: Milestone supplied its own planned start
        actual_start: Actual start (milestones, optional)
        actual_end: Actual end (milestones, optional)
    """
    ref: EntityRef
    start: Optional[date]
    end: Optional[date]
    name: str = ""
    project_id: Optional[int] = None
    has_distinct_start: bool = False
    actual_start: Optional[date] = None
    actual_end: Optional[date] = None

    @property
    def is_schedulable(self) -> bool:
        """Both anchors known, so duration is defined."""
        return self.start is not None and self.end is not None

    @property
    def is_point(self) -> bool:
        """Milestone without its own start: both anchors move together."""
        return self.ref.kind == EntityKind.MILESTONE and not self.has_distinct_start

    @property
    def duration_days(self) -> int:
        if not self.is_schedulable:
            return 0
        return (self.end - self.start).days

    def date_at(self, point: AnchorPoint) -> Optional[date]:
        """Planned date at an anchor."""
        return self.start if point == AnchorPoint.START else self.end

    def current_date_at(self, point: AnchorPoint, prefer_actual: bool = True) -> Optional[date]:
        """
        Date used for violation checks.

        Milestones report their actual date when one is recorded and
        `prefer_actual` is set; projects always report their planned dates.
        """
        if prefer_actual and self.ref.kind == EntityKind.MILESTONE:
            actual = self.actual_start if (point == AnchorPoint.START and self.has_distinct_start) else self.actual_end
            if actual is not None:
                return actual
        return self.date_at(point)

    def with_dates(self, start: Optional[date], end: Optional[date]) -> 'ScheduleEntity':
        return replace(self, start=start, end=end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ref': self.ref.key,
            'kind': self.ref.kind.value,
            'id': self.ref.id,
            'name': self.name,
            'start': self.start.isoformat() if self.start else None,
            'end': self.end.isoformat() if self.end else None,
            'project_id': self.project_id,
        }


@dataclass(frozen=True)
class Dependency:
    """
    Typed temporal link between two entity anchors.

    Defaults follow the dependency dialog: predecessor end → successor
    start, Finish-to-Start, no lag.
    """
    id: int
    predecessor: EntityRef
    successor: EntityRef
    predecessor_point: AnchorPoint = AnchorPoint.END
    successor_point: AnchorPoint = AnchorPoint.START
    dependency_type: DependencyType = DependencyType.FS
    lag_days: int = 0
    active: bool = True

    @property
    def is_self_reference(self) -> bool:
        return self.predecessor == self.successor

    @property
    def lag(self) -> timedelta:
        return timedelta(days=self.lag_days)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'predecessor': self.predecessor.key,
            'predecessor_point': self.predecessor_point.value,
            'successor': self.successor.key,
            'successor_point': self.successor_point.value,
            'dependency_type': self.dependency_type.value,
            'lag_days': self.lag_days,
            'active': self.active,
        }


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# GRAPH
# ════════════════════════════════════════════════════════════════════════════════════════════════════

@dataclass
class ScheduleGraph:
    """
    Explicit value holding everything one computation needs.

    The engine never mutates a graph in place; planning builds a new one.
    """
    entities: Dict[EntityRef, ScheduleEntity] = field(default_factory=dict)
    dependencies: List[Dependency] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def __contains__(self, ref: EntityRef) -> bool:
        return ref in self.entities

    def __iter__(self) -> Iterator[ScheduleEntity]:
        return iter(self.entities.values())

    def __len__(self) -> int:
        return len(self.entities)

    def get(self, ref: EntityRef) -> Optional[ScheduleEntity]:
        return self.entities.get(ref)

    def outgoing(self, ref: EntityRef) -> List[Dependency]:
        """Active dependencies whose predecessor is `ref`."""
        return [d for d in self.dependencies if d.active and d.predecessor == ref]

    def incoming(self, ref: EntityRef) -> List[Dependency]:
        """Active dependencies whose successor is `ref`."""
        return [d for d in self.dependencies if d.active and d.successor == ref]

    def milestones_of(self, project_id: int) -> List[ScheduleEntity]:
        """Milestones of a project, ordered by planned end date."""
        milestones = [
            e for e in self.entities.values()
            if e.ref.kind == EntityKind.MILESTONE and e.project_id == project_id and e.end is not None
        ]
        return sorted(milestones, key=lambda m: (m.end, m.ref.id))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entities': [e.to_dict() for e in self.entities.values()],
            'dependencies': [d.to_dict() for d in self.dependencies],
            'warnings': list(self.warnings),
        }


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# CHANGE RECORD
# ════════════════════════════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class DateChange:
    """Before/after dates of one entity touched by a change."""
    before: DateSpan
    after: DateSpan

    def to_dict(self) -> Dict[str, Any]:
        return {'before': self.before.to_dict(), 'after': self.after.to_dict()}


@dataclass
class ChangeRecord:
    """
    Reversible snapshot of one user edit.

    `before`/`after` and `affected_milestones` cover the initiating entity and
    the milestones it directly adjusted. Entities reached by the recursive
    cascade are listed in `cascaded_changes`; whether undo restores them is
    decided by the undo scope.

    A milestone without its own planned start is captured with start=None.
    """
    entity_ref: EntityRef
    before: DateSpan
    after: DateSpan
    affected_milestones: Dict[int, DateChange] = field(default_factory=dict)
    cascaded_changes: Dict[EntityRef, DateChange] = field(default_factory=dict)
    description: str = ""
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def entity_id(self) -> int:
        return self.entity_ref.id

    @property
    def entity_kind(self) -> EntityKind:
        return self.entity_ref.kind

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity_id': self.entity_id,
            'entity_kind': self.entity_kind.value,
            'before': self.before.to_dict(),
            'after': self.after.to_dict(),
            'affected_milestones': {str(mid): c.to_dict() for mid, c in self.affected_milestones.items()},
            'cascaded_changes': {ref.key: c.to_dict() for ref, c in self.cascaded_changes.items()},
            'description': self.description,
            'created_at': self.created_at.isoformat(),
        }


def days_between(earlier: date, later: date) -> int:
    """Signed whole-day difference `later - earlier`."""
    return (later - earlier).days
