"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    PORTFOLIO PLANNER — CHANGE PROPAGATION ENGINE
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Applies a user edit (move or resize) to one entity and cascades it through
the dependency graph.

Two stages:

    plan_change(graph, change)      pure: computes every DateUpdate and the
                                    resulting graph, no I/O
    ChangePropagationEngine         async: writes the plan to the store one
                                    update at a time, then records undo

RULES
═════

Moved entity (project):
    move    milestones shift by the project's start delta
    resize  milestones keep their relative position
                m' = S' + rint((m - S) / D * D')
            (D = 0 or D = D' degenerates to the start shift)

Successor of a dependency whose predecessor anchor moved from `old` to `new`
(δ = new - old, L = lag):

    FS   start = new + L,          end = start + duration
    SS   start = start + δ + L,    end = start + duration
    FF   end   = end + δ + L
    SF   end   = new + L

    A point milestone moves as a unit; an end dragged before the start pulls
    the start along.

Cascade:
    every staged entity cascades from each anchor whose date changed;
    cascaded projects reposition their milestones;
    a `visited` set of EntityRef bounds the walk, so cyclic graphs terminate.

Zero net displacement short-circuits: no plan, no writes, no undo record.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Sequence, Set, Tuple, Union

import numpy as np

from ..feature_flags import FeatureFlags, ScheduleEngineConfig
from .entity_store import EntityStore
from .errors import InvalidChangeError, PropagationError
from .schedule_model import (
    AnchorPoint,
    ChangeRecord,
    DateChange,
    DateSpan,
    Dependency,
    DependencyType,
    EntityKind,
    EntityRef,
    ScheduleEntity,
    ScheduleGraph,
    days_between,
)
from .undo_log import UndoLog

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# CHANGES & UPDATES
# ════════════════════════════════════════════════════════════════════════════════════════════════════

class ChangeKind(str, Enum):
    """Kind of user edit."""
    MOVE = "move"       # both anchors shift by the same delta
    RESIZE = "resize"   # anchors move independently


@dataclass(frozen=True)
class ScheduleChange:
    """
    A finalized user edit on one entity.

    Build with `move`, `move_to` or `resize` rather than directly.
    """
    ref: EntityRef
    kind: ChangeKind
    delta_days: int = 0
    new_start: Optional[date] = None
    new_end: Optional[date] = None
    description: str = ""

    @classmethod
    def move(cls, ref: EntityRef, delta_days: int, description: str = "") -> 'ScheduleChange':
        return cls(ref=ref, kind=ChangeKind.MOVE, delta_days=int(delta_days), description=description)

    @classmethod
    def move_to(cls, ref: EntityRef, new_start: date, description: str = "") -> 'ScheduleChange':
        """Move so that the entity starts on `new_start` (for point milestones: lands on it)."""
        return cls(ref=ref, kind=ChangeKind.MOVE, new_start=new_start, description=description)

    @classmethod
    def resize(
        cls,
        ref: EntityRef,
        new_start: Optional[date] = None,
        new_end: Optional[date] = None,
        description: str = "",
    ) -> 'ScheduleChange':
        """Resize; an omitted anchor keeps its current date."""
        return cls(ref=ref, kind=ChangeKind.RESIZE, new_start=new_start, new_end=new_end, description=description)

    def target_dates(self, entity: ScheduleEntity) -> Tuple[date, date]:
        """New (start, end) of `entity` under this change. Raises InvalidChangeError."""
        if self.kind == ChangeKind.MOVE:
            delta = self.delta_days if self.new_start is None else days_between(entity.start, self.new_start)
            shift = timedelta(days=delta)
            return entity.start + shift, entity.end + shift

        start = self.new_start or entity.start
        end = self.new_end or entity.end
        if end < start:
            raise InvalidChangeError(f"Cannot resize {entity.ref}: end {end} is before start {start}")
        if entity.is_point and start != end:
            raise InvalidChangeError(f"Milestone {entity.ref.id} is a point in time and cannot be resized")
        return start, end

    def default_description(self) -> str:
        if self.description:
            return self.description
        if self.kind == ChangeKind.RESIZE:
            return f"Resized {self.ref.kind.value} timeline"
        return f"Moved {self.ref.kind.value} timeline"


@dataclass(frozen=True)
class DateUpdate:
    """
    One staged write.

    For a milestone without its own planned start, `before.start` and
    `after.start` are None: only the planned end is written.
    """
    ref: EntityRef
    before: DateSpan
    after: DateSpan
    reason: str = ""

    @property
    def delta_days(self) -> int:
        return days_between(self.before.end, self.after.end)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ref': self.ref.key,
            'before': self.before.to_dict(),
            'after': self.after.to_dict(),
            'reason': self.reason,
        }


@dataclass
class PropagationPlan:
    """
    Everything a change will write, in commit order.

    Attributes:
        change: The originating edit
        updates: Ordered writes (initiating entity first)
        graph: Graph with all updates applied
        record: Undo record for the change
    """
    change: ScheduleChange
    updates: List[DateUpdate] = field(default_factory=list)
    graph: ScheduleGraph = field(default_factory=ScheduleGraph)
    record: Optional[ChangeRecord] = None

    @property
    def touched(self) -> List[EntityRef]:
        return [u.ref for u in self.updates]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entity': self.change.ref.key,
            'kind': self.change.kind.value,
            'updates': [u.to_dict() for u in self.updates],
            'record': self.record.to_dict() if self.record else None,
        }


@dataclass
class PropagationResult:
    """Outcome of a committed propagation."""
    graph: ScheduleGraph
    record: ChangeRecord
    updates: List[DateUpdate] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'record': self.record.to_dict(),
            'updates': [u.to_dict() for u in self.updates],
            'entities': [e.to_dict() for e in self.graph],
        }


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# DATE RULES
# ════════════════════════════════════════════════════════════════════════════════════════════════════

def reposition_dates(
    dates: Sequence[date],
    old_start: date,
    old_duration: int,
    new_start: date,
    new_duration: int,
) -> List[date]:
    """
    Map dates from an old project span onto a new one, keeping relative position.

    Offsets are rounded to whole days with `np.rint`, which is monotone, so
    the order of the input dates is preserved.
    """
    if not dates:
        return []
    offsets = np.array([days_between(old_start, d) for d in dates], dtype=float)
    if old_duration != 0 and old_duration != new_duration:
        offsets = np.rint(offsets * new_duration / old_duration)
    return [new_start + timedelta(days=int(offset)) for offset in offsets]


def successor_dates(
    successor: ScheduleEntity,
    dependency: Dependency,
    old_date: date,
    new_date: date,
) -> Tuple[date, date]:
    """New (start, end) of `successor` after its predecessor anchor moved from `old_date` to `new_date`."""
    start, end = successor.start, successor.end
    duration = end - start
    delta = new_date - old_date
    lag = dependency.lag

    kind = dependency.dependency_type
    if kind == DependencyType.FS:
        start = new_date + lag
        end = start + duration
    elif kind == DependencyType.SS:
        start = start + delta + lag
        end = start + duration
    elif kind == DependencyType.FF:
        end = end + delta + lag
    elif kind == DependencyType.SF:
        end = new_date + lag

    if successor.is_point or end < start:
        start = end
    return start, end


def _span(entity: ScheduleEntity) -> DateSpan:
    return DateSpan(None if entity.is_point else entity.start, entity.end)


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# PLANNER
# ════════════════════════════════════════════════════════════════════════════════════════════════════

class _Planner:
    """Stages date updates against a private copy of the graph's entities."""

    def __init__(self, graph: ScheduleGraph):
        self.graph = graph
        self.entities: Dict[EntityRef, ScheduleEntity] = dict(graph.entities)
        self.updates: List[DateUpdate] = []
        self.visited: Set[EntityRef] = set()

    def set_dates(self, ref: EntityRef, start: date, end: date, reason: str) -> Optional[ScheduleEntity]:
        """Stage new dates. Returns the entity as it was, or None when nothing changed."""
        previous = self.entities[ref]
        if previous.is_point:
            start = end
        if start == previous.start and end == previous.end:
            return None

        current = previous.with_dates(start, end)
        self.entities[ref] = current
        self.updates.append(DateUpdate(ref, _span(previous), _span(current), reason))
        return previous

    def reposition_milestones(self, previous: ScheduleEntity) -> List[ScheduleEntity]:
        """Reposition the milestones of a rescheduled project. Returns those that moved, as they were."""
        project = self.entities[previous.ref]
        milestones = sorted(
            (
                e for e in self.entities.values()
                if e.ref.kind == EntityKind.MILESTONE
                and e.project_id == previous.ref.id
                and e.is_schedulable
                and e.ref not in self.visited
            ),
            key=lambda m: (m.end, m.ref.id),
        )
        if not milestones:
            return []

        args = (previous.start, previous.duration_days, project.start, project.duration_days)
        new_ends = reposition_dates([m.end for m in milestones], *args)
        new_starts = reposition_dates([m.start for m in milestones], *args)

        moved = []
        for milestone, new_start, new_end in zip(milestones, new_starts, new_ends):
            self.visited.add(milestone.ref)
            if new_start > new_end:
                new_start = new_end
            before = self.set_dates(milestone.ref, new_start, new_end, f"{previous.ref} rescheduled")
            if before is not None:
                moved.append(before)
        return moved

    def cascade(self, previous: ScheduleEntity) -> List[ScheduleEntity]:
        """Apply one step of every outgoing dependency whose anchor moved. Returns changed successors, as they were."""
        current = self.entities[previous.ref]
        changed = []

        for point in (AnchorPoint.START, AnchorPoint.END):
            old_date, new_date = previous.date_at(point), current.date_at(point)
            if old_date == new_date:
                continue

            for dep in self.graph.outgoing(previous.ref):
                if dep.predecessor_point != point:
                    continue
                if dep.successor in self.visited:
                    logger.debug(f"Dependency {dep.id}: {dep.successor} already visited in this propagation; skipped")
                    continue
                successor = self.entities.get(dep.successor)
                if successor is None or not successor.is_schedulable:
                    continue

                self.visited.add(dep.successor)
                start, end = successor_dates(successor, dep, old_date, new_date)
                reason = f"dependency {dep.id} ({dep.dependency_type.value}, lag {dep.lag_days})"
                before = self.set_dates(dep.successor, start, end, reason)
                if before is not None:
                    changed.append(before)

        return changed

    def propagate(self, origin: ScheduleEntity) -> List[ScheduleEntity]:
        """
        Cascade from an already staged entity until the work queue drains.

        Returns the milestones the origin directly repositioned, as they were.
        """
        direct = self.reposition_milestones(origin) if origin.ref.is_project else []

        queue: Deque[Tuple[ScheduleEntity, bool]] = deque([(origin, False)])
        queue.extend((m, False) for m in direct)
        while queue:
            previous, reposition = queue.popleft()
            if reposition and previous.ref.is_project:
                queue.extend((m, False) for m in self.reposition_milestones(previous))
            queue.extend((s, True) for s in self.cascade(previous))

        return direct

    def result_graph(self) -> ScheduleGraph:
        return ScheduleGraph(
            entities=self.entities,
            dependencies=list(self.graph.dependencies),
            warnings=list(self.graph.warnings),
        )


def _resolve(graph: ScheduleGraph, ref: EntityRef) -> ScheduleEntity:
    entity = graph.get(ref)
    if entity is None:
        raise InvalidChangeError(f"Unknown entity {ref}")
    if not entity.is_schedulable:
        raise InvalidChangeError(f"{ref} has no complete date range")
    return entity


def plan_change(graph: ScheduleGraph, change: ScheduleChange) -> Optional[PropagationPlan]:
    """
    Compute every write a change implies, without touching any store.

    Safe for previews: the input graph is not modified.

    Returns:
        PropagationPlan, or None when the change has zero net displacement

    Raises:
        InvalidChangeError: unknown/undated entity or inconsistent resize
    """
    entity = _resolve(graph, change.ref)
    new_start, new_end = change.target_dates(entity)

    planner = _Planner(graph)
    planner.visited.add(entity.ref)
    origin = planner.set_dates(entity.ref, new_start, new_end, change.kind.value)
    if origin is None:
        logger.debug(f"{change.kind.value} of {change.ref} has zero displacement; nothing to do")
        return None

    direct = planner.propagate(origin)

    direct_refs = {m.ref for m in direct}
    affected = {
        m.ref.id: DateChange(before=_span(m), after=_span(planner.entities[m.ref]))
        for m in direct
    }
    cascaded = {
        u.ref: DateChange(before=u.before, after=u.after)
        for u in planner.updates
        if u.ref != entity.ref and u.ref not in direct_refs
    }

    record = ChangeRecord(
        entity_ref=entity.ref,
        before=_span(origin),
        after=_span(planner.entities[entity.ref]),
        affected_milestones=affected,
        cascaded_changes=cascaded,
        description=change.default_description(),
    )

    return PropagationPlan(
        change=change,
        updates=planner.updates,
        graph=planner.result_graph(),
        record=record,
    )


def constrain_milestone_date(graph: ScheduleGraph, ref: EntityRef, proposed: date) -> date:
    """
    Clamp a proposed milestone date.

    The date is kept inside its project's [start, end] and strictly between
    the neighbouring milestones of the same project (at least one day apart),
    so a drag can never reorder milestones.
    """
    milestone = _resolve(graph, ref)
    if ref.kind != EntityKind.MILESTONE:
        raise InvalidChangeError(f"{ref} is not a milestone")

    result = proposed
    if milestone.project_id is None:
        return result

    project = graph.get(EntityRef.project(milestone.project_id))
    if project is not None and project.is_schedulable:
        result = min(max(result, project.start), project.end)

    siblings = graph.milestones_of(milestone.project_id)
    index = next((i for i, m in enumerate(siblings) if m.ref == ref), None)
    if index is None:
        return result

    one_day = timedelta(days=1)
    if index > 0 and result <= siblings[index - 1].end:
        result = siblings[index - 1].end + one_day
    if index + 1 < len(siblings) and result >= siblings[index + 1].end:
        result = siblings[index + 1].end - one_day

    if result != proposed:
        logger.debug(f"Milestone {ref.id}: {proposed} constrained to {result}")
    return result


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# ENGINE
# ════════════════════════════════════════════════════════════════════════════════════════════════════

class ChangePropagationEngine:
    """
    Commits planned changes to an entity store.

    Writes are awaited one by one in plan order. On the first failing write
    the cascade stops, earlier writes stay in place and a PropagationError is
    raised; the undo log is only updated after a complete commit.

    Uso:
        engine = ChangePropagationEngine(store)
        result = await engine.apply_move(EntityRef.project(1), 5)
        await engine.undo()
    """

    def __init__(
        self,
        store: EntityStore,
        undo_log: Optional[UndoLog] = None,
        config: Optional[ScheduleEngineConfig] = None,
    ):
        self.store = store
        self.config = config or FeatureFlags.get_config()
        self.undo_log = undo_log or UndoLog(self.config.undo_scope)

    async def _graph(self, graph: Optional[ScheduleGraph]) -> ScheduleGraph:
        if graph is not None:
            return graph
        return await self.store.load_graph()

    async def commit(self, plan: PropagationPlan) -> List[DateUpdate]:
        """Write a plan sequentially. Raises PropagationError on the first failure."""
        applied: List[DateUpdate] = []
        for update in plan.updates:
            try:
                await self.store.update_entity_dates(update.ref, update.after.start, update.after.end)
            except Exception as e:
                logger.error(
                    f"Propagation of {plan.change.ref} aborted at {update.ref} "
                    f"after {len(applied)}/{len(plan.updates)} writes: {e}"
                )
                raise PropagationError(
                    f"Failed to update {update.ref}: {e}",
                    applied_updates=applied,
                    failed_update=update,
                ) from e
            applied.append(update)
        return applied

    async def apply_change(
        self,
        change: ScheduleChange,
        graph: Optional[ScheduleGraph] = None,
    ) -> Optional[PropagationResult]:
        """
        Plan, commit and record a change.

        Args:
            change: The edit
            graph: Current graph; loaded from the store when omitted

        Returns:
            PropagationResult, or None for a zero-displacement change
        """
        if change.kind == ChangeKind.MOVE and change.new_start is None and change.delta_days == 0:
            return None

        graph = await self._graph(graph)
        plan = plan_change(graph, change)
        if plan is None:
            return None

        applied = await self.commit(plan)
        self.undo_log.record_change(plan.record)

        logger.info(
            f"{plan.record.description}: {change.ref} "
            f"{plan.record.before.start}..{plan.record.before.end} -> "
            f"{plan.record.after.start}..{plan.record.after.end} "
            f"({len(applied)} writes, {len(plan.record.cascaded_changes)} cascaded)"
        )
        return PropagationResult(graph=plan.graph, record=plan.record, updates=applied)

    async def apply_move(
        self,
        ref: EntityRef,
        delta_days: int,
        graph: Optional[ScheduleGraph] = None,
        description: str = "",
    ) -> Optional[PropagationResult]:
        return await self.apply_change(ScheduleChange.move(ref, delta_days, description), graph)

    async def apply_resize(
        self,
        ref: EntityRef,
        new_start: Optional[date] = None,
        new_end: Optional[date] = None,
        graph: Optional[ScheduleGraph] = None,
        description: str = "",
    ) -> Optional[PropagationResult]:
        return await self.apply_change(ScheduleChange.resize(ref, new_start, new_end, description), graph)

    async def apply_milestone_move(
        self,
        milestone: Union[EntityRef, int],
        new_date: date,
        graph: Optional[ScheduleGraph] = None,
    ) -> Optional[PropagationResult]:
        """
        Move a milestone so its planned end lands on `new_date`.

        With `constrain_milestone_moves` the date is first clamped by
        `constrain_milestone_date`.
        """
        ref = milestone if isinstance(milestone, EntityRef) else EntityRef.milestone(milestone)
        graph = await self._graph(graph)
        entity = _resolve(graph, ref)
        if ref.kind != EntityKind.MILESTONE:
            raise InvalidChangeError(f"{ref} is not a milestone")

        if self.config.constrain_milestone_moves:
            new_date = constrain_milestone_date(graph, ref, new_date)

        delta = days_between(entity.end, new_date)
        description = f"Moved milestone \"{entity.name}\"" if entity.name else "Moved milestone"
        return await self.apply_change(ScheduleChange.move(ref, delta, description), graph)

    async def undo(self) -> Optional[ChangeRecord]:
        """Undo the last committed change; None when there is nothing to undo."""
        return await self.undo_log.undo(self.store)
