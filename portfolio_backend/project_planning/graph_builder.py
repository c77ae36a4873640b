"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    PORTFOLIO PLANNER — SCHEDULE GRAPH BUILDER
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Turns raw project / milestone / dependency records into a `ScheduleGraph`.

RULES
═════

Projects:
    start = startDate ∨ desiredStartDate
    end   = endDate   ∨ desiredCompletionDate
    excluded when start or end is missing (duration undefined) or end < start

Milestones:
    end   = plannedEndDate ∨ actualEndDate
    start = plannedStartDate ∨ end
    excluded when no end date is known

Dependencies:
    inactive rows skipped
    self-references dropped (warning)
    dangling edges, i.e. an endpoint that is not a known entity, dropped (warning)

Nothing here raises for bad data: every exclusion is logged and recorded on
`graph.warnings`.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar, Union

import pandas as pd
from pydantic import BaseModel, ValidationError

from .dependency_order import would_create_cycle
from .records import DependencyRecord, MilestoneRecord, ProjectRecord
from .schedule_model import Dependency, EntityRef, ScheduleEntity, ScheduleGraph

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)
RecordSource = Union[pd.DataFrame, Iterable[Union[Dict[str, Any], BaseModel]], None]


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# RECORD PARSING
# ════════════════════════════════════════════════════════════════════════════════════════════════════

def _to_rows(source: RecordSource) -> List[Dict[str, Any]]:
    """Normalise a DataFrame / list of dicts / list of models to plain dicts."""
    if source is None:
        return []
    if isinstance(source, pd.DataFrame):
        if source.empty:
            return []
        frame = source.astype(object).where(pd.notna(source), None)
        return frame.to_dict(orient="records")

    rows = []
    for item in source:
        if isinstance(item, BaseModel):
            rows.append(item.model_dump(by_alias=True))
        else:
            rows.append(dict(item))
    return rows


def parse_records(source: RecordSource, model: Type[RecordT], warnings: Optional[List[str]] = None) -> List[RecordT]:
    """
    Validate rows against a record model, skipping invalid ones.

    Args:
        source: Rows to parse
        model: Pydantic record class
        warnings: Optional list collecting skip messages
    """
    records = []
    for row in _to_rows(source):
        try:
            records.append(model.model_validate(row))
        except ValidationError as e:
            message = f"Skipping invalid {model.__name__} {row.get('id')!r}: {e.error_count()} validation error(s)"
            logger.warning(message)
            if warnings is not None:
                warnings.append(message)
    return records


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# GRAPH BUILDER
# ════════════════════════════════════════════════════════════════════════════════════════════════════

def _project_entity(record: ProjectRecord, warnings: List[str]) -> Optional[ScheduleEntity]:
    start, end = record.resolved_start, record.resolved_end
    if start is None or end is None:
        logger.debug(f"Project {record.id} has no complete date range; excluded from CPM")
        return None
    if end < start:
        message = f"Project {record.id} ends before it starts ({start} > {end}); excluded"
        logger.warning(message)
        warnings.append(message)
        return None
    return ScheduleEntity(
        ref=EntityRef.project(record.id),
        start=start,
        end=end,
        name=record.name,
    )


def _milestone_entity(record: MilestoneRecord, warnings: List[str]) -> Optional[ScheduleEntity]:
    end = record.resolved_end
    if end is None:
        logger.debug(f"Milestone {record.id} has no date; excluded from CPM")
        return None

    start = record.planned_start_date
    if start is not None and start > end:
        message = f"Milestone {record.id} planned start {start} is after its end {end}; start ignored"
        logger.warning(message)
        warnings.append(message)
        start = None

    return ScheduleEntity(
        ref=EntityRef.milestone(record.id),
        start=start or end,
        end=end,
        name=record.name,
        project_id=record.project_id,
        has_distinct_start=start is not None,
        actual_start=record.actual_start_date,
        actual_end=record.actual_end_date,
    )


def dependency_from_record(record: DependencyRecord) -> Dependency:
    return Dependency(
        id=record.id,
        predecessor=EntityRef(record.predecessor_type, record.predecessor_id),
        successor=EntityRef(record.successor_type, record.successor_id),
        predecessor_point=record.predecessor_point,
        successor_point=record.successor_point,
        dependency_type=record.dependency_type,
        lag_days=record.lag_days,
        active=record.is_active,
    )


def build_schedule_graph(
    projects: RecordSource,
    milestones: RecordSource = None,
    dependencies: RecordSource = None,
) -> ScheduleGraph:
    """
    Build the typed node-and-edge graph consumed by the engine.

    Args:
        projects: Project rows (DataFrame, dicts or ProjectRecord)
        milestones: Milestone rows
        dependencies: Dependency rows; inactive ones are skipped

    Returns:
        ScheduleGraph with only resolvable, active dependencies
    """
    warnings: List[str] = []
    entities: Dict[EntityRef, ScheduleEntity] = {}

    excluded_projects = 0
    for record in parse_records(projects, ProjectRecord, warnings):
        entity = _project_entity(record, warnings)
        if entity is None:
            excluded_projects += 1
            continue
        entities[entity.ref] = entity

    excluded_milestones = 0
    for record in parse_records(milestones, MilestoneRecord, warnings):
        entity = _milestone_entity(record, warnings)
        if entity is None:
            excluded_milestones += 1
            continue
        entities[entity.ref] = entity

    edges: List[Dependency] = []
    dropped = 0
    for record in parse_records(dependencies, DependencyRecord, warnings):
        if not record.is_active:
            continue
        dep = dependency_from_record(record)

        if dep.is_self_reference:
            message = f"Dependency {dep.id} references {dep.predecessor} on both ends; dropped"
        elif dep.predecessor not in entities or dep.successor not in entities:
            missing = [str(r) for r in (dep.predecessor, dep.successor) if r not in entities]
            message = f"Dependency {dep.id} has unresolved endpoint(s) {', '.join(missing)}; dropped"
        else:
            edges.append(dep)
            continue

        dropped += 1
        logger.warning(message)
        warnings.append(message)

    logger.info(
        f"Built schedule graph: {len(entities)} entities "
        f"({excluded_projects} projects and {excluded_milestones} milestones excluded), "
        f"{len(edges)} dependencies ({dropped} dropped)"
    )

    return ScheduleGraph(entities=entities, dependencies=edges, warnings=warnings)


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# DEPENDENCY VALIDATION
# ════════════════════════════════════════════════════════════════════════════════════════════════════

def validate_new_dependency(graph: ScheduleGraph, candidate: Union[DependencyRecord, Dict[str, Any]]) -> List[str]:
    """
    Creation-time checks for a dependency the user wants to add.

    Returns:
        List of problems; empty when the dependency is acceptable
    """
    if not isinstance(candidate, DependencyRecord):
        payload = {"id": 0, **dict(candidate)}
        try:
            candidate = DependencyRecord.model_validate(payload)
        except ValidationError as e:
            return [f"Invalid dependency: {err['loc'][-1]} {err['msg']}" for err in e.errors()]

    dep = dependency_from_record(candidate)
    problems = []

    if dep.predecessor not in graph:
        problems.append(f"Predecessor {dep.predecessor.kind.value} not found")
    if dep.successor not in graph:
        problems.append(f"Successor {dep.successor.kind.value} not found")
    if dep.is_self_reference:
        problems.append("Cannot create a dependency from an entity to itself")
        return problems
    if problems:
        return problems

    duplicate = any(d.predecessor == dep.predecessor for d in graph.incoming(dep.successor))
    if duplicate:
        problems.append("This dependency already exists")
    elif would_create_cycle(graph, dep.predecessor, dep.successor):
        problems.append(f"Dependency {dep.predecessor} -> {dep.successor} would create a cycle")

    return problems
