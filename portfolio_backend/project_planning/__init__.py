"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    PORTFOLIO PLANNER — DEPENDENCY SCHEDULE ENGINE
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Critical Path Method over a mixed graph of projects and milestones linked by
typed temporal dependencies (FS / SS / FF / SF, signed lag), plus cascading
propagation of user edits with single-level undo.

This module provides:
1. Graph building from raw project / milestone / dependency records
2. Forward/backward pass (earliest/latest dates)
3. Slack and critical path
4. Dependency violation flags
5. Change propagation (move / resize) with milestone repositioning
6. Single-slot undo

ARCHITECTURE
════════════

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                         SCHEDULE ENGINE                                  │
    │                                                                          │
    │  ┌──────────────┐  ┌──────────────┐  ┌──────────────┐  ┌──────────────┐ │
    │  │ graph_builder│─▶│ cpm_engine   │─▶│ critical_path│  │ violation_   │ │
    │  │              │  │              │  │              │  │ detector     │ │
    │  │ • records    │  │ • ordering   │  │ • slack      │  │ • current    │ │
    │  │ • filtering  │  │ • fwd / bwd  │  │ • summary    │  │   dates      │ │
    │  └──────────────┘  └──────────────┘  └──────────────┘  └──────────────┘ │
    │                                                                          │
    │  ┌──────────────────────────────┐  ┌──────────────┐                      │
    │  │ change_propagation           │─▶│ undo_log     │                      │
    │  │ • plan (pure)  • commit      │  └──────────────┘                      │
    │  └───────────────┬──────────────┘                                        │
    └──────────────────┼───────────────────────────────────────────────────────┘
                       │
    ┌──────────────────▼──────────────────────────────────────────────────────┐
    │                          ENTITY STORE                                    │
    │                (projects / milestones read & date writes)                │
    └─────────────────────────────────────────────────────────────────────────┘

REFERENCES
──────────
[1] Kelley & Walker (1959). Critical-path planning and scheduling.
[2] PMI (2021). A Guide to the Project Management Body of Knowledge (PMBOK).
"""

from .schedule_model import (
    EntityKind,
    AnchorPoint,
    DependencyType,
    EntityRef,
    DateSpan,
    ScheduleEntity,
    Dependency,
    ScheduleGraph,
    DateChange,
    ChangeRecord,
)
from .records import (
    ProjectRecord,
    MilestoneRecord,
    DependencyRecord,
)
from .errors import (
    ScheduleEngineError,
    InvalidChangeError,
    PersistenceError,
    PropagationError,
)
from .graph_builder import (
    build_schedule_graph,
    parse_records,
    validate_new_dependency,
)
from .dependency_order import (
    DependencyOrder,
    order_dependencies,
    would_create_cycle,
)
from .cpm_engine import (
    CPMNode,
    CPMResult,
    compute_cpm,
)
from .critical_path import (
    SlackSummary,
    summarize_slack,
)
from .violation_detector import (
    is_violated,
    is_dependency_violated,
    detect_violations,
)
from .entity_store import (
    EntityStore,
    InMemoryEntityStore,
)
from .undo_log import UndoLog
from .change_propagation import (
    ChangeKind,
    ScheduleChange,
    DateUpdate,
    PropagationPlan,
    PropagationResult,
    ChangePropagationEngine,
    plan_change,
    constrain_milestone_date,
)

__all__ = [
    # Model
    "EntityKind",
    "AnchorPoint",
    "DependencyType",
    "EntityRef",
    "DateSpan",
    "ScheduleEntity",
    "Dependency",
    "ScheduleGraph",
    "DateChange",
    "ChangeRecord",
    # Records
    "ProjectRecord",
    "MilestoneRecord",
    "DependencyRecord",
    # Errors
    "ScheduleEngineError",
    "InvalidChangeError",
    "PersistenceError",
    "PropagationError",
    # Graph
    "build_schedule_graph",
    "parse_records",
    "validate_new_dependency",
    "DependencyOrder",
    "order_dependencies",
    "would_create_cycle",
    # CPM
    "CPMNode",
    "CPMResult",
    "compute_cpm",
    "SlackSummary",
    "summarize_slack",
    # Violations
    "is_violated",
    "is_dependency_violated",
    "detect_violations",
    # Propagation
    "EntityStore",
    "InMemoryEntityStore",
    "UndoLog",
    "ChangeKind",
    "ScheduleChange",
    "DateUpdate",
    "PropagationPlan",
    "PropagationResult",
    "ChangePropagationEngine",
    "plan_change",
    "constrain_milestone_date",
]
