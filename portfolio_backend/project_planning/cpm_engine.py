"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    PORTFOLIO PLANNER — CPM ENGINE
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Forward/backward pass over the project/milestone dependency graph.

NOTATION
════════

For each node n (project interval or milestone point):

    ES_n, EF_n    earliest start / finish
    LS_n, LF_n    latest start / finish
    d_n           span EF_n - ES_n after the forward pass

For each dependency e = (p.a → s.b, lag) with anchors a, b ∈ {start, end}:

    date_fwd(e) = (ES_p if a = start else EF_p) + lag
    date_bwd(e) = (LS_s if b = start else LF_s) - lag

FORWARD PASS (edges in topological order)
─────────────────────────────────────────
    b = start:  if date_fwd > ES_s:  ES_s ← date_fwd,  EF_s ← EF_s + (date_fwd - ES_s)
    b = end:    if date_fwd > EF_s:  EF_s ← date_fwd                (span not preserved)

HORIZON
───────
    H = max_n EF_n ;   LF_n ← H ;   LS_n ← H - d_n

BACKWARD PASS (edges in reverse topological order)
──────────────────────────────────────────────────
    a = end:    if date_bwd < LF_p:  LF_p ← date_bwd,  LS_p ← date_bwd - d_p
    a = start:  if date_bwd < LS_p:  LS_p ← date_bwd

All arithmetic is whole days. The computation is pure: each call rebuilds
every node from the graph, nothing survives between calls.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import pandas as pd

from ..feature_flags import FeatureFlags, OrderingStrategy, ScheduleEngineConfig
from .critical_path import apply_slack
from .dependency_order import order_dependencies
from .schedule_model import AnchorPoint, Dependency, EntityRef, ScheduleGraph

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ════════════════════════════════════════════════════════════════════════════════════════════════════

@dataclass
class CPMNode:
    """
    CPM values for one entity.

    Attributes:
        ref: Entity reference
        earliest_start / earliest_finish: Forward pass result
        latest_start / latest_finish: Backward pass result
        slack_days: LS - ES in whole days
        is_critical: slack_days ≤ critical threshold
    """
    ref: EntityRef
    earliest_start: date
    earliest_finish: date
    latest_start: date
    latest_finish: date
    slack_days: int = 0
    is_critical: bool = False

    @property
    def duration_days(self) -> int:
        return (self.earliest_finish - self.earliest_start).days

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ref': self.ref.key,
            'kind': self.ref.kind.value,
            'id': self.ref.id,
            'earliest_start': self.earliest_start.isoformat(),
            'earliest_finish': self.earliest_finish.isoformat(),
            'latest_start': self.latest_start.isoformat(),
            'latest_finish': self.latest_finish.isoformat(),
            'slack_days': self.slack_days,
            'is_critical': self.is_critical,
        }


@dataclass
class CPMResult:
    """
    Output of `compute_cpm`.

    Attributes:
        nodes: CPM node per entity
        critical_path: Entities with slack ≤ threshold
        project_finish: Horizon (max earliest finish), None for an empty graph
        broken_dependencies: Dependencies excluded to break cycles
        warnings: Ordering / convergence warnings
    """
    nodes: Dict[EntityRef, CPMNode] = field(default_factory=dict)
    critical_path: FrozenSet[EntityRef] = frozenset()
    project_finish: Optional[date] = None
    broken_dependencies: List[Dependency] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def __getitem__(self, ref: EntityRef) -> CPMNode:
        return self.nodes[ref]

    def slack_of(self, ref: EntityRef) -> Optional[int]:
        node = self.nodes.get(ref)
        return node.slack_days if node else None

    def is_critical(self, ref: EntityRef) -> bool:
        return ref in self.critical_path

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': {ref.key: node.to_dict() for ref, node in self.nodes.items()},
            'critical_path': sorted(ref.key for ref in self.critical_path),
            'project_finish': self.project_finish.isoformat() if self.project_finish else None,
            'broken_dependencies': [d.id for d in self.broken_dependencies],
            'warnings': list(self.warnings),
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per node, sorted by earliest start."""
        columns = [
            'ref', 'kind', 'id', 'earliest_start', 'earliest_finish',
            'latest_start', 'latest_finish', 'slack_days', 'is_critical',
        ]
        if not self.nodes:
            return pd.DataFrame(columns=columns)
        df = pd.DataFrame([node.to_dict() for node in self.nodes.values()], columns=columns)
        for col in ('earliest_start', 'earliest_finish', 'latest_start', 'latest_finish'):
            df[col] = pd.to_datetime(df[col])
        return df.sort_values(['earliest_start', 'ref']).reset_index(drop=True)


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# PASSES
# ════════════════════════════════════════════════════════════════════════════════════════════════════

def _init_nodes(graph: ScheduleGraph) -> Dict[EntityRef, CPMNode]:
    nodes: Dict[EntityRef, CPMNode] = {}
    for entity in graph:
        if not entity.is_schedulable:
            continue
        nodes[entity.ref] = CPMNode(
            ref=entity.ref,
            earliest_start=entity.start,
            earliest_finish=entity.end,
            latest_start=entity.start,
            latest_finish=entity.end,
        )
    return nodes


def _relax_forward(nodes: Dict[EntityRef, CPMNode], dep: Dependency) -> bool:
    pred = nodes.get(dep.predecessor)
    succ = nodes.get(dep.successor)
    if pred is None or succ is None:
        return False

    anchor = pred.earliest_start if dep.predecessor_point == AnchorPoint.START else pred.earliest_finish
    required = anchor + dep.lag

    if dep.successor_point == AnchorPoint.START:
        if required > succ.earliest_start:
            delta = required - succ.earliest_start
            succ.earliest_start = required
            succ.earliest_finish = succ.earliest_finish + delta
            return True
    elif required > succ.earliest_finish:
        succ.earliest_finish = required
        return True
    return False


def _relax_backward(nodes: Dict[EntityRef, CPMNode], dep: Dependency) -> bool:
    pred = nodes.get(dep.predecessor)
    succ = nodes.get(dep.successor)
    if pred is None or succ is None:
        return False

    anchor = succ.latest_start if dep.successor_point == AnchorPoint.START else succ.latest_finish
    required = anchor - dep.lag

    if dep.predecessor_point == AnchorPoint.END:
        if required < pred.latest_finish:
            span = pred.earliest_finish - pred.earliest_start
            pred.latest_finish = required
            pred.latest_start = min(pred.latest_start, required - span)
            return True
    elif required < pred.latest_start:
        pred.latest_start = required
        return True
    return False


def forward_pass(nodes: Dict[EntityRef, CPMNode], edges: Iterable[Dependency]) -> None:
    """Single forward scan; `edges` must be in topological order."""
    for dep in edges:
        _relax_forward(nodes, dep)


def backward_pass(nodes: Dict[EntityRef, CPMNode], edges: Iterable[Dependency]) -> None:
    """Single backward scan; `edges` must be in reverse topological order."""
    for dep in edges:
        _relax_backward(nodes, dep)


def _reset_latest(nodes: Dict[EntityRef, CPMNode]) -> Optional[date]:
    if not nodes:
        return None
    horizon = max(node.earliest_finish for node in nodes.values())
    for node in nodes.values():
        span = node.earliest_finish - node.earliest_start
        node.latest_finish = horizon
        node.latest_start = horizon - span
    return horizon


def _run_to_fixpoint(relax, nodes, edges: List[Dependency], max_passes: int, label: str) -> Optional[str]:
    for _ in range(max_passes):
        changed = False
        for dep in edges:
            changed = relax(nodes, dep) or changed
        if not changed:
            return None
    message = f"{label} pass did not converge after {max_passes} passes (dependency cycle?)"
    logger.warning(message)
    return message


# ════════════════════════════════════════════════════════════════════════════════════════════════════
# MAIN ENTRY POINT
# ════════════════════════════════════════════════════════════════════════════════════════════════════

def compute_cpm(graph: ScheduleGraph, config: Optional[ScheduleEngineConfig] = None) -> CPMResult:
    """
    Compute earliest/latest dates, slack and the critical path.

    Args:
        graph: Schedule graph
        config: Engine config (defaults to FeatureFlags)

    Returns:
        CPMResult
    """
    config = config or FeatureFlags.get_config()
    nodes = _init_nodes(graph)
    result = CPMResult(nodes=nodes)

    if config.ordering_strategy == OrderingStrategy.FIXPOINT:
        edges = [d for d in graph.dependencies if d.active]
        max_passes = config.max_fixpoint_passes or len(nodes) + 1

        warning = _run_to_fixpoint(_relax_forward, nodes, edges, max_passes, "Forward")
        if warning:
            result.warnings.append(warning)
        result.project_finish = _reset_latest(nodes)
        warning = _run_to_fixpoint(_relax_backward, nodes, list(reversed(edges)), max_passes, "Backward")
        if warning:
            result.warnings.append(warning)
    else:
        order = order_dependencies(graph)
        result.broken_dependencies = order.broken
        result.warnings.extend(order.warnings)

        forward_pass(nodes, order.edges)
        result.project_finish = _reset_latest(nodes)
        backward_pass(nodes, order.backward())

    result.critical_path = apply_slack(nodes, config.critical_slack_threshold_days)

    logger.debug(
        f"CPM: {len(nodes)} nodes, {len(result.critical_path)} critical, "
        f"finish={result.project_finish}"
    )
    return result
