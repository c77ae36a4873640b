"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    PORTFOLIO PLANNER — SLACK & CRITICAL PATH
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Post-processing of the CPM passes. No graph traversal happens here.

Slack:
──────
    Slack_n = round(LS_n - ES_n)   [days]

    Slack > 0 : node can slip Slack_n days without moving the horizon
    Slack ≤ 0 : node is on the critical path

The critical path is the set {n : Slack_n ≤ threshold}, threshold = 0 by
default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Mapping

import numpy as np

from .schedule_model import EntityRef

if TYPE_CHECKING:
    from .cpm_engine import CPMNode, CPMResult

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60


def apply_slack(nodes: Mapping[EntityRef, 'CPMNode'], threshold_days: int = 0) -> FrozenSet[EntityRef]:
    """
    Fill `slack_days` / `is_critical` on every node.

    Returns:
        The critical-path set
    """
    critical = set()
    for ref, node in nodes.items():
        slack_seconds = (node.latest_start - node.earliest_start).total_seconds()
        node.slack_days = int(round(slack_seconds / SECONDS_PER_DAY))
        node.is_critical = node.slack_days <= threshold_days
        if node.is_critical:
            critical.add(ref)
    return frozenset(critical)


@dataclass
class SlackSummary:
    """Aggregate slack figures for tooltips and the API."""
    total_nodes: int = 0
    critical_nodes: int = 0
    min_slack_days: int = 0
    max_slack_days: int = 0
    mean_slack_days: float = 0.0

    @property
    def critical_ratio(self) -> float:
        if self.total_nodes == 0:
            return 0.0
        return self.critical_nodes / self.total_nodes

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_nodes': self.total_nodes,
            'critical_nodes': self.critical_nodes,
            'critical_ratio': round(self.critical_ratio, 3),
            'min_slack_days': self.min_slack_days,
            'max_slack_days': self.max_slack_days,
            'mean_slack_days': round(self.mean_slack_days, 2),
        }


def summarize_slack(result: 'CPMResult') -> SlackSummary:
    """Slack statistics over a CPM result."""
    if not result.nodes:
        return SlackSummary()

    slack = np.array([node.slack_days for node in result.nodes.values()], dtype=float)
    return SlackSummary(
        total_nodes=int(slack.size),
        critical_nodes=len(result.critical_path),
        min_slack_days=int(slack.min()),
        max_slack_days=int(slack.max()),
        mean_slack_days=float(slack.mean()),
    )
