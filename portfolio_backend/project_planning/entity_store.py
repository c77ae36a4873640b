"""
Entity store: the persistence collaborator of the schedule engine.

The engine reads projects, milestones and dependencies through `fetch_*` and
writes back new dates through `update_*`. Writes are awaited one at a time by
the propagation engine, so a later cascade step always observes earlier ones.

`InMemoryEntityStore` backs the HTTP surface and the tests; production
deployments plug in a store that talks to the REST update endpoints.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import PersistenceError
from .graph_builder import build_schedule_graph, parse_records
from .records import DependencyRecord, MilestoneRecord, ProjectRecord
from .schedule_model import EntityKind, EntityRef, ScheduleGraph

logger = logging.getLogger(__name__)


class EntityStore(ABC):
    """Async persistence interface used by the engine."""

    @abstractmethod
    async def fetch_projects(self) -> List[ProjectRecord]:
        ...

    @abstractmethod
    async def fetch_milestones(self) -> List[MilestoneRecord]:
        ...

    @abstractmethod
    async def fetch_dependencies(self) -> List[DependencyRecord]:
        ...

    @abstractmethod
    async def update_project_dates(self, project_id: int, start: date, end: date) -> None:
        """Write `startDate` / `endDate` of a project."""

    @abstractmethod
    async def update_milestone_dates(
        self,
        milestone_id: int,
        planned_start: Optional[date],
        planned_end: date,
    ) -> None:
        """Write `plannedStartDate` / `plannedEndDate`; a None start is left untouched."""

    async def update_entity_dates(
        self,
        ref: EntityRef,
        start: Optional[date],
        end: date,
    ) -> None:
        """Dispatch a date write on entity kind. A None milestone start is not written."""
        if ref.kind == EntityKind.PROJECT:
            await self.update_project_dates(ref.id, start, end)
        else:
            await self.update_milestone_dates(ref.id, start, end)

    async def load_graph(self) -> ScheduleGraph:
        """Re-read everything and build a fresh graph."""
        projects = await self.fetch_projects()
        milestones = await self.fetch_milestones()
        dependencies = await self.fetch_dependencies()
        return build_schedule_graph(projects, milestones, dependencies)


@dataclass
class StoreWrite:
    """Journal entry of one write."""
    ref: EntityRef
    start: Optional[date]
    end: date
    written_at: datetime = field(default_factory=datetime.now)


class InMemoryEntityStore(EntityStore):
    """
    Dict-backed store.

    Keeps a `writes` journal so callers can see exactly what a propagation
    persisted.
    """

    def __init__(
        self,
        projects: Iterable[Any] = (),
        milestones: Iterable[Any] = (),
        dependencies: Iterable[Any] = (),
    ):
        self.projects: Dict[int, ProjectRecord] = {}
        self.milestones: Dict[int, MilestoneRecord] = {}
        self.dependencies: Dict[int, DependencyRecord] = {}
        self.writes: List[StoreWrite] = []
        self.load(projects, milestones, dependencies)

    def load(
        self,
        projects: Iterable[Any] = (),
        milestones: Iterable[Any] = (),
        dependencies: Iterable[Any] = (),
    ) -> Tuple[int, int, int]:
        """Replace the store contents. Returns (projects, milestones, dependencies) loaded."""
        self.projects = {p.id: p for p in parse_records(projects, ProjectRecord)}
        self.milestones = {m.id: m for m in parse_records(milestones, MilestoneRecord)}
        self.dependencies = {d.id: d for d in parse_records(dependencies, DependencyRecord)}
        self.writes = []
        logger.info(
            f"Store loaded: {len(self.projects)} projects, {len(self.milestones)} milestones, "
            f"{len(self.dependencies)} dependencies"
        )
        return len(self.projects), len(self.milestones), len(self.dependencies)

    async def fetch_projects(self) -> List[ProjectRecord]:
        return list(self.projects.values())

    async def fetch_milestones(self) -> List[MilestoneRecord]:
        return list(self.milestones.values())

    async def fetch_dependencies(self) -> List[DependencyRecord]:
        return list(self.dependencies.values())

    async def update_project_dates(self, project_id: int, start: date, end: date) -> None:
        record = self.projects.get(project_id)
        if record is None:
            raise PersistenceError(f"Project {project_id} not found")
        self.projects[project_id] = record.model_copy(update={'start_date': start, 'end_date': end})
        self.writes.append(StoreWrite(EntityRef.project(project_id), start, end))

    async def update_milestone_dates(
        self,
        milestone_id: int,
        planned_start: Optional[date],
        planned_end: date,
    ) -> None:
        record = self.milestones.get(milestone_id)
        if record is None:
            raise PersistenceError(f"Milestone {milestone_id} not found")
        update: Dict[str, Any] = {'planned_end_date': planned_end}
        if planned_start is not None:
            update['planned_start_date'] = planned_start
        self.milestones[milestone_id] = record.model_copy(update=update)
        self.writes.append(StoreWrite(EntityRef.milestone(milestone_id), planned_start, planned_end))
