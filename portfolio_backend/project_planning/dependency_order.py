"""
═══════════════════════════════════════════════════════════════════════════════════════════════════════
                    PORTFOLIO PLANNER — DEPENDENCY ORDERING
═══════════════════════════════════════════════════════════════════════════════════════════════════════

Orders dependencies so that a single linear scan is a valid CPM pass.

ORDERING
════════

Let G = (V, E) with V = entities and E = active dependencies (multi-edges
allowed). Each edge e = (u → v) gets the sort key

    key(e) = (pos(u), pos(v), input_index(e))

where pos is a deterministic topological position of the entity. Then:

    forward pass:  edges sorted by key     (every edge into u precedes edges out of u)
    backward pass: edges in reverse order  (every edge out of v precedes edges into v)

CYCLES
══════

A cycle has no topological order. While G is cyclic, a DFS locates one cycle
and its closing edge (the back-edge that revisits a node already on the DFS
stack) is excluded. Every exclusion is surfaced as a warning: CPM values for
nodes on a cycle are not authoritative.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

import networkx as nx

from .schedule_model import Dependency, EntityRef, ScheduleGraph

logger = logging.getLogger(__name__)


@dataclass
class DependencyOrder:
    """
    Result of ordering a graph's dependencies.

    Attributes:
        edges: Dependencies in forward-pass order (cycle back-edges removed)
        broken: Dependencies excluded to break cycles
        positions: Topological position per entity
        warnings: Human-readable notes about broken cycles
    """
    edges: List[Dependency] = field(default_factory=list)
    broken: List[Dependency] = field(default_factory=list)
    positions: Dict[EntityRef, int] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_cycles(self) -> bool:
        return bool(self.broken)

    def backward(self) -> List[Dependency]:
        """Dependencies in backward-pass order."""
        return list(reversed(self.edges))


def build_dependency_digraph(graph: ScheduleGraph) -> nx.MultiDiGraph:
    """
    Entity-level multigraph, one edge per active dependency keyed by its id.

    Nodes are added in sorted order so that traversals are deterministic.
    """
    digraph = nx.MultiDiGraph()
    digraph.add_nodes_from(sorted(graph.entities))
    for dep in graph.dependencies:
        if not dep.active:
            continue
        if dep.predecessor not in graph.entities or dep.successor not in graph.entities:
            continue
        digraph.add_edge(dep.predecessor, dep.successor, key=dep.id, dependency=dep)
    return digraph


def order_dependencies(graph: ScheduleGraph) -> DependencyOrder:
    """
    Compute a topological ordering of the graph's dependencies.

    Args:
        graph: Schedule graph (built by `build_schedule_graph`)

    Returns:
        DependencyOrder with forward-pass edges and excluded back-edges
    """
    digraph = build_dependency_digraph(graph)
    order = DependencyOrder()

    while True:
        try:
            cycle = nx.find_cycle(digraph, orientation="original")
        except nx.NetworkXNoCycle:
            break

        u, v, key, _direction = cycle[-1]
        dep = digraph.edges[u, v, key]["dependency"]
        digraph.remove_edge(u, v, key=key)
        order.broken.append(dep)

        path = " -> ".join(str(edge[0]) for edge in cycle) + f" -> {cycle[0][0]}"
        message = (
            f"Dependency cycle {path}: excluded dependency {dep.id} ({u} -> {v}); "
            f"CPM dates on this cycle are not authoritative"
        )
        order.warnings.append(message)
        logger.warning(message)

    topo = list(nx.lexicographical_topological_sort(digraph))
    order.positions = {ref: idx for idx, ref in enumerate(topo)}

    input_index = {dep.id: idx for idx, dep in enumerate(graph.dependencies)}
    edges = [data["dependency"] for _, _, data in digraph.edges(data=True)]
    edges.sort(key=lambda d: (
        order.positions[d.predecessor],
        order.positions[d.successor],
        input_index.get(d.id, 0),
    ))
    order.edges = edges

    return order


def would_create_cycle(graph: ScheduleGraph, predecessor: EntityRef, successor: EntityRef) -> bool:
    """True when adding predecessor → successor closes a dependency cycle."""
    if predecessor == successor:
        return True
    digraph = build_dependency_digraph(graph)
    if predecessor not in digraph or successor not in digraph:
        return False
    return nx.has_path(digraph, successor, predecessor)
