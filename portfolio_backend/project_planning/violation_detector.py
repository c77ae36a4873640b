"""
Dependency violation detection.

Compares each active dependency against the entities' *current* dates (not
the CPM dates). For every dependency type the test is the same:

    violated  ⇔  date(succ, succ_point) < date(pred, pred_point) + lag

FS/SS/FF/SF only differ in which anchors are compared, which the dependency's
points already encode. Read-only: nothing here mutates a graph.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Dict, Optional

from ..feature_flags import FeatureFlags
from .schedule_model import Dependency, DependencyType, ScheduleGraph

logger = logging.getLogger(__name__)


def is_violated(
    predecessor_date: Optional[date],
    successor_date: Optional[date],
    dependency_type: DependencyType = DependencyType.FS,
    lag_days: int = 0,
) -> bool:
    """
    Pure constraint check on two resolved dates.

    Missing dates and unknown dependency types never count as a violation.
    """
    if predecessor_date is None or successor_date is None:
        return False
    try:
        DependencyType(dependency_type)
    except ValueError:
        logger.warning(f"Unknown dependency type: {dependency_type}")
        return False
    return successor_date < predecessor_date + timedelta(days=lag_days)


def is_dependency_violated(
    dependency: Dependency,
    graph: ScheduleGraph,
    prefer_actual: Optional[bool] = None,
) -> bool:
    """Check one dependency against the graph's current dates."""
    if not dependency.active:
        return False
    if prefer_actual is None:
        prefer_actual = FeatureFlags.get_config().prefer_actual_milestone_dates

    pred = graph.get(dependency.predecessor)
    succ = graph.get(dependency.successor)
    if pred is None or succ is None:
        return False

    return is_violated(
        pred.current_date_at(dependency.predecessor_point, prefer_actual),
        succ.current_date_at(dependency.successor_point, prefer_actual),
        dependency.dependency_type,
        dependency.lag_days,
    )


def detect_violations(graph: ScheduleGraph, prefer_actual: Optional[bool] = None) -> Dict[int, bool]:
    """Violation flag per active dependency id."""
    flags = {
        dep.id: is_dependency_violated(dep, graph, prefer_actual)
        for dep in graph.dependencies
        if dep.active
    }
    violated = sum(flags.values())
    if violated:
        logger.info(f"{violated} of {len(flags)} dependencies violated")
    return flags
