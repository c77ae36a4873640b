"""
════════════════════════════════════════════════════════════════════════════════════════════════════
TESTS - CPM Engine
════════════════════════════════════════════════════════════════════════════════════════════════════

Forward/backward pass, ordering, slack, critical path and violation flags.

Test Categories:
────────────────
    1. Dependency ordering (topological, cycles)
    2. Forward/backward pass values
    3. Slack & critical path
    4. Violation detector
"""

from datetime import date

import pytest

from portfolio_backend.feature_flags import OrderingStrategy, ScheduleEngineConfig
from portfolio_backend.project_planning.cpm_engine import compute_cpm
from portfolio_backend.project_planning.critical_path import summarize_slack
from portfolio_backend.project_planning.dependency_order import order_dependencies, would_create_cycle
from portfolio_backend.project_planning.graph_builder import build_schedule_graph
from portfolio_backend.project_planning.schedule_model import (
    Dependency,
    DependencyType,
    EntityRef,
    ScheduleGraph,
)
from portfolio_backend.project_planning.violation_detector import (
    detect_violations,
    is_dependency_violated,
    is_violated,
)

A, B, C = EntityRef.project(1), EntityRef.project(2), EntityRef.project(3)


def _project(pid, start, end):
    return {"id": pid, "name": f"P{pid}", "startDate": start, "endDate": end}


def _dep(dep_id, pred, succ, dep_type="FS", lag=0, pred_point="end", succ_point="start"):
    return {
        "id": dep_id,
        "predecessorType": "project", "predecessorId": pred,
        "predecessorPoint": pred_point,
        "successorType": "project", "successorId": succ,
        "successorPoint": succ_point,
        "dependencyType": dep_type,
        "lagDays": lag,
        "isActive": True,
    }


@pytest.fixture
def config():
    return ScheduleEngineConfig()


@pytest.fixture
def scenario_graph():
    """A {01-01..01-10} --FS, lag 2--> B {01-05..01-15}."""
    return build_schedule_graph(
        [_project(1, "2025-01-01", "2025-01-10"), _project(2, "2025-01-05", "2025-01-15")],
        [],
        [_dep(1, 1, 2, lag=2)],
    )


@pytest.fixture
def chain_projects():
    return [
        _project(1, "2025-01-01", "2025-01-10"),
        _project(2, "2025-01-01", "2025-01-05"),
        _project(3, "2025-01-01", "2025-01-03"),
    ]


# ═══════════════════════════════════════════════════════════════════════════════
# ORDERING
# ═══════════════════════════════════════════════════════════════════════════════

class TestDependencyOrder:
    """Testes para a ordenação topológica das dependências."""

    def test_reordered_input_is_sorted(self, chain_projects):
        graph = build_schedule_graph(chain_projects, [], [_dep(2, 2, 3), _dep(1, 1, 2)])
        order = order_dependencies(graph)

        assert [d.id for d in order.edges] == [1, 2]
        assert [d.id for d in order.backward()] == [2, 1]
        assert not order.has_cycles
        assert order.positions[A] < order.positions[B] < order.positions[C]

    def test_cycle_is_broken_with_warning(self, chain_projects):
        graph = build_schedule_graph(chain_projects, [], [_dep(1, 1, 2), _dep(2, 2, 1)])
        order = order_dependencies(graph)

        assert order.has_cycles
        assert len(order.broken) == 1
        assert len(order.edges) == 1
        assert "cycle" in order.warnings[0]

    def test_would_create_cycle(self, chain_projects):
        graph = build_schedule_graph(chain_projects, [], [_dep(1, 1, 2), _dep(2, 2, 3)])
        assert would_create_cycle(graph, C, A)
        assert not would_create_cycle(graph, A, C)
        assert would_create_cycle(graph, A, A)


# ═══════════════════════════════════════════════════════════════════════════════
# CPM PASSES
# ═══════════════════════════════════════════════════════════════════════════════

class TestCPMPasses:
    """Testes para o forward/backward pass."""

    def test_forward_pass_scenario(self, scenario_graph, config):
        result = compute_cpm(scenario_graph, config)

        assert result[B].earliest_start == date(2025, 1, 12)
        assert result[B].earliest_finish == date(2025, 1, 22)
        assert result[A].earliest_start == date(2025, 1, 1)
        assert result[A].earliest_finish == date(2025, 1, 10)
        assert result.project_finish == date(2025, 1, 22)

    def test_backward_pass_scenario(self, scenario_graph, config):
        result = compute_cpm(scenario_graph, config)

        assert result[A].latest_finish == date(2025, 1, 10)
        assert result[A].latest_start == date(2025, 1, 1)
        assert result[B].latest_finish == date(2025, 1, 22)
        assert result[B].latest_start == date(2025, 1, 12)

    def test_durations_preserved(self, scenario_graph, config):
        result = compute_cpm(scenario_graph, config)
        for node in result.nodes.values():
            assert (node.latest_finish - node.latest_start) == (node.earliest_finish - node.earliest_start)
        assert result[B].duration_days == 10

    def test_order_independent(self, chain_projects, config):
        ordered = build_schedule_graph(chain_projects, [], [_dep(1, 1, 2), _dep(2, 2, 3)])
        reordered = build_schedule_graph(chain_projects, [], [_dep(2, 2, 3), _dep(1, 1, 2)])

        first = compute_cpm(ordered, config)
        second = compute_cpm(reordered, config)

        assert second[C].earliest_start == date(2025, 1, 14)
        assert second[C].earliest_finish == date(2025, 1, 16)
        assert first.to_dict()["nodes"] == second.to_dict()["nodes"]

    def test_fixpoint_matches_topological(self, chain_projects):
        graph = build_schedule_graph(chain_projects, [], [_dep(2, 2, 3), _dep(1, 1, 2)])

        topological = compute_cpm(graph, ScheduleEngineConfig())
        fixpoint = compute_cpm(graph, ScheduleEngineConfig(ordering_strategy=OrderingStrategy.FIXPOINT))

        assert fixpoint.to_dict()["nodes"] == topological.to_dict()["nodes"]
        assert fixpoint.warnings == []

    def test_finish_to_finish_moves_only_finish(self, config):
        graph = build_schedule_graph(
            [_project(1, "2025-01-01", "2025-01-10"), _project(2, "2025-01-01", "2025-01-05")],
            [],
            [_dep(1, 1, 2, dep_type="FF", succ_point="end")],
        )
        result = compute_cpm(graph, config)

        assert result[B].earliest_start == date(2025, 1, 1)
        assert result[B].earliest_finish == date(2025, 1, 10)

    def test_start_to_start_with_lag(self, config):
        graph = build_schedule_graph(
            [_project(1, "2025-01-01", "2025-01-10"), _project(2, "2025-01-01", "2025-01-05")],
            [],
            [_dep(1, 1, 2, dep_type="SS", lag=3, pred_point="start")],
        )
        result = compute_cpm(graph, config)

        assert result[B].earliest_start == date(2025, 1, 4)
        assert result[B].earliest_finish == date(2025, 1, 8)
        assert result[B].slack_days == 2
        assert result[A].slack_days == 0

    def test_negative_lag(self, config):
        graph = build_schedule_graph(
            [_project(1, "2025-01-01", "2025-01-10"), _project(2, "2025-01-01", "2025-01-05")],
            [],
            [_dep(1, 1, 2, lag=-3)],
        )
        result = compute_cpm(graph, config)
        assert result[B].earliest_start == date(2025, 1, 7)

    def test_cycle_terminates_with_warning(self, chain_projects, config):
        graph = build_schedule_graph(chain_projects, [], [_dep(1, 1, 2), _dep(2, 2, 1)])
        result = compute_cpm(graph, config)

        assert len(result.broken_dependencies) == 1
        assert any("cycle" in w for w in result.warnings)
        assert set(result.nodes) == {A, B, C}

    def test_fixpoint_bound_on_cycle(self, chain_projects):
        graph = build_schedule_graph(chain_projects, [], [_dep(1, 1, 2), _dep(2, 2, 1)])
        config = ScheduleEngineConfig(ordering_strategy=OrderingStrategy.FIXPOINT, max_fixpoint_passes=5)

        result = compute_cpm(graph, config)

        assert any("did not converge" in w for w in result.warnings)

    def test_empty_graph(self, config):
        result = compute_cpm(ScheduleGraph(), config)
        assert result.nodes == {}
        assert result.project_finish is None
        assert result.critical_path == frozenset()
        assert result.to_dataframe().empty

    def test_recomputation_is_idempotent(self, scenario_graph, config):
        assert compute_cpm(scenario_graph, config).to_dict() == compute_cpm(scenario_graph, config).to_dict()
        assert scenario_graph.get(B).start == date(2025, 1, 5)


# ═══════════════════════════════════════════════════════════════════════════════
# SLACK & CRITICAL PATH
# ═══════════════════════════════════════════════════════════════════════════════

class TestCriticalPath:
    """Testes para slack e caminho crítico."""

    @pytest.fixture
    def graph(self):
        return build_schedule_graph(
            [
                _project(1, "2025-01-01", "2025-01-10"),
                _project(2, "2025-01-05", "2025-01-15"),
                _project(3, "2025-01-01", "2025-01-05"),
            ],
            [],
            [_dep(1, 1, 2, lag=2)],
        )

    def test_scenario_both_critical(self, scenario_graph, config):
        result = compute_cpm(scenario_graph, config)
        assert result.critical_path == frozenset({A, B})
        assert result.slack_of(A) == 0
        assert result.is_critical(B)

    def test_start_and_end_edges_keep_tightest_latest_start(self, config):
        # A --SS--> C (long) and A --FS--> B (short)
        graph = build_schedule_graph(
            [
                _project(1, "2025-01-01", "2025-01-10"),
                _project(2, "2025-01-10", "2025-01-12"),
                _project(3, "2025-01-01", "2025-01-20"),
            ],
            [],
            [_dep(1, 1, 3, dep_type="SS", pred_point="start"), _dep(2, 1, 2)],
        )
        result = compute_cpm(graph, config)

        assert result[A].latest_start == date(2025, 1, 1)
        assert result[A].latest_finish == date(2025, 1, 18)
        assert result[A].slack_days == 0
        assert result[B].slack_days == 8
        assert result.critical_path == frozenset({A, C})

    def test_slack_non_negative_and_path(self, graph, config):
        result = compute_cpm(graph, config)

        assert all(node.slack_days >= 0 for node in result.nodes.values())
        assert result[C].slack_days == 17
        assert not result.is_critical(C)

        # critical nodes run from a source to the node finishing last
        finish_node = max(result.nodes.values(), key=lambda n: n.earliest_finish)
        assert finish_node.ref == B
        assert result.critical_path == frozenset({A, B})
        assert not graph.incoming(A)

    def test_threshold(self, graph):
        result = compute_cpm(graph, ScheduleEngineConfig(critical_slack_threshold_days=17))
        assert result.critical_path == frozenset({A, B, C})

    def test_summary(self, graph, config):
        summary = summarize_slack(compute_cpm(graph, config))

        assert summary.total_nodes == 3
        assert summary.critical_nodes == 2
        assert summary.min_slack_days == 0
        assert summary.max_slack_days == 17
        assert summary.to_dict()["critical_ratio"] == pytest.approx(0.667, abs=1e-3)

    def test_dataframe(self, graph, config):
        df = compute_cpm(graph, config).to_dataframe()

        assert len(df) == 3
        assert list(df["ref"]) == ["project-1", "project-3", "project-2"]
        assert df.loc[df["ref"] == "project-3", "slack_days"].iloc[0] == 17


# ═══════════════════════════════════════════════════════════════════════════════
# VIOLATIONS
# ═══════════════════════════════════════════════════════════════════════════════

class TestViolationDetector:
    """Testes para a deteção de violações."""

    def test_is_violated_examples(self):
        assert is_violated(date(2025, 1, 10), date(2025, 1, 5), DependencyType.FS, 0) is True
        assert is_violated(date(2025, 1, 10), date(2025, 1, 12), DependencyType.FS, 0) is False

    def test_is_violated_lag_and_edges(self):
        assert is_violated(date(2025, 1, 10), date(2025, 1, 12), DependencyType.FS, 3) is True
        assert is_violated(date(2025, 1, 10), date(2025, 1, 8), DependencyType.SS, -2) is False
        assert is_violated(date(2025, 1, 10), date(2025, 1, 10)) is False
        assert is_violated(None, date(2025, 1, 5)) is False
        assert is_violated(date(2025, 1, 10), date(2025, 1, 5), "XX") is False

    def test_same_rule_for_every_type(self):
        for dep_type in DependencyType:
            assert is_violated(date(2025, 1, 10), date(2025, 1, 5), dep_type) is True

    def test_detect_violations_uses_current_dates(self, scenario_graph):
        assert detect_violations(scenario_graph, prefer_actual=True) == {1: True}

    def test_milestone_actual_dates(self):
        graph = build_schedule_graph(
            [_project(3, "2025-01-15", "2025-01-30")],
            [{"id": 10, "projectId": 3, "plannedEndDate": "2025-01-20", "actualEndDate": "2025-01-08"}],
            [{
                "id": 1,
                "predecessorType": "milestone", "predecessorId": 10,
                "successorType": "project", "successorId": 3,
            }],
        )
        dep = graph.dependencies[0]

        assert is_dependency_violated(dep, graph, prefer_actual=True) is False
        assert is_dependency_violated(dep, graph, prefer_actual=False) is True

    def test_inactive_dependency_never_violated(self, scenario_graph):
        dep = Dependency(9, A, B, active=False)
        assert is_dependency_violated(dep, scenario_graph, prefer_actual=True) is False
