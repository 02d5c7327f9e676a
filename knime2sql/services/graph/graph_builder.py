"""
Workflow Graph Builder - node/edge graph and deterministic execution order.

Handles:
- NetworkX MultiDiGraph construction from node and connection declarations
- Duplicate node and dangling edge diagnostics
- Kahn topological ordering with declaration-order tie-breaks
- Cycle detection and reporting via strongly connected components
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import networkx as nx

from knime2sql.core.config import ConverterSettings
from knime2sql.core.errors import Diagnostic, DiagnosticLog, ErrorCode
from knime2sql.models.workflow_models import (
    ConnectionDeclaration,
    Edge,
    Node,
    NodeDeclaration,
)

logger = logging.getLogger(__name__)


@dataclass
class GraphBuildResult:
    """Nodes with adjacency and order assigned, plus structural diagnostics."""
    nodes: Dict[int, Node]
    edges: List[Edge]
    order: List[int]
    unordered: List[int]
    graph: nx.MultiDiGraph
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def is_acyclic(self) -> bool:
        return not self.unordered

    def ordered_nodes(self) -> List[Node]:
        return [self.nodes[node_id] for node_id in self.order]

    def unordered_nodes(self) -> List[Node]:
        return [self.nodes[node_id] for node_id in self.unordered]

    def incoming(self, node_id: int) -> List[Edge]:
        """Kept edges into `node_id`, in declaration order."""
        node = self.nodes.get(node_id)
        return list(node.incoming) if node else []


class WorkflowGraphBuilder:
    """
    Builds the execution graph for one workflow declaration.

    A fresh builder holds no state between calls; the returned
    GraphBuildResult owns the Node records for the run.
    """

    def __init__(self, settings: Optional[ConverterSettings] = None):
        self.settings = settings or ConverterSettings()

    def build(
        self,
        declarations: Iterable[NodeDeclaration],
        connections: Iterable[ConnectionDeclaration],
    ) -> GraphBuildResult:
        """
        Build nodes and edges, then assign execution order.

        Args:
            declarations: Node declarations, in declaration order
            connections: Connection declarations, in declaration order

        Returns:
            GraphBuildResult with `order` set on every orderable node
        """
        log = DiagnosticLog()
        nodes = self._build_nodes(declarations, log)
        edges = self._build_edges(nodes, connections, log)
        graph = self._build_graph(nodes, edges)

        order = self._topological_order(nodes)
        unordered = [node_id for node_id in nodes if nodes[node_id].order < 0]
        if unordered:
            self._report_cycles(nodes, graph, unordered, log)

        logger.info(
            f"Graph built: {len(nodes)} nodes, {len(edges)} edges, "
            f"{len(order)} ordered, {len(unordered)} unordered"
        )
        return GraphBuildResult(
            nodes=nodes,
            edges=edges,
            order=order,
            unordered=unordered,
            graph=graph,
            diagnostics=log.diagnostics,
        )

    def _build_nodes(
        self,
        declarations: Iterable[NodeDeclaration],
        log: DiagnosticLog,
    ) -> Dict[int, Node]:
        nodes: Dict[int, Node] = {}
        used_aliases = set()
        for declaration in declarations:
            if declaration.id in nodes:
                log.error(
                    ErrorCode.GRAPH_DUPLICATE_NODE,
                    f"Duplicate node id {declaration.id}: later declaration "
                    f"'{declaration.name}' dropped",
                    node_id=declaration.id,
                )
                continue
            alias = self.settings.alias_for(declaration.id, declaration.name)
            if alias in used_aliases:
                unique = f"{alias}_{declaration.id}"
                while unique in used_aliases:
                    unique = f"{unique}_{declaration.id}"
                log.warning(
                    ErrorCode.GRAPH_ALIAS_COLLISION,
                    f"Alias '{alias}' of node {declaration.id} already used; using '{unique}'",
                    node_id=declaration.id,
                )
                alias = unique
            used_aliases.add(alias)
            nodes[declaration.id] = Node.from_declaration(declaration, alias)
        return nodes

    def _build_edges(
        self,
        nodes: Dict[int, Node],
        connections: Iterable[ConnectionDeclaration],
        log: DiagnosticLog,
    ) -> List[Edge]:
        edges: List[Edge] = []
        for index, conn in enumerate(connections):
            source = nodes.get(conn.source_id)
            target = nodes.get(conn.dest_id)

            if source is None or target is None:
                missing = [str(i) for i, n in ((conn.source_id, source), (conn.dest_id, target)) if n is None]
                log.error(
                    ErrorCode.GRAPH_DANGLING_EDGE,
                    f"Connection #{index} {conn.source_id} -> {conn.dest_id} references "
                    f"undeclared node(s) {', '.join(missing)}",
                    node_id=conn.dest_id if target is not None else conn.source_id,
                )
                # The declared target expected this input and cannot be trusted
                if target is not None:
                    target.mark_unresolved(f"input from undeclared node {conn.source_id}")
                continue

            edge = Edge(
                source_id=conn.source_id,
                target_id=conn.dest_id,
                source_port=conn.source_port,
                target_port=conn.dest_port,
                index=index,
            )
            source.outgoing.append(edge)
            target.incoming.append(edge)
            edges.append(edge)
            logger.debug(
                f"Edge #{index}: {edge.source_id}:{edge.source_port} -> "
                f"{edge.target_id}:{edge.target_port}"
            )
        return edges

    def _build_graph(self, nodes: Dict[int, Node], edges: List[Edge]) -> nx.MultiDiGraph:
        graph = nx.MultiDiGraph()
        for node in nodes.values():
            graph.add_node(node.id, kind=node.kind.value, name=node.name, factory=node.factory)
        for edge in edges:
            graph.add_edge(
                edge.source_id,
                edge.target_id,
                key=edge.index,
                source_port=edge.source_port,
                target_port=edge.target_port,
            )
        return graph

    def _topological_order(self, nodes: Dict[int, Node]) -> List[int]:
        """
        Kahn's algorithm.

        The queue is seeded with in-degree 0 nodes in declaration order and
        successors are released in edge declaration order, so equal inputs
        always give the same order.
        """
        in_degree = {node_id: len(node.incoming) for node_id, node in nodes.items()}
        queue = deque(node_id for node_id in nodes if in_degree[node_id] == 0)
        order: List[int] = []

        while queue:
            node_id = queue.popleft()
            node = nodes[node_id]
            node.order = len(order)
            order.append(node_id)
            for edge in node.outgoing:
                in_degree[edge.target_id] -= 1
                if in_degree[edge.target_id] == 0:
                    queue.append(edge.target_id)

        return order

    def _report_cycles(
        self,
        nodes: Dict[int, Node],
        graph: nx.MultiDiGraph,
        unordered: List[int],
        log: DiagnosticLog,
    ):
        position = {node_id: i for i, node_id in enumerate(nodes)}
        subgraph = graph.subgraph(unordered)

        cycles: List[List[int]] = []
        for component in nx.strongly_connected_components(subgraph):
            members = sorted(component, key=position.__getitem__)
            if len(members) > 1 or subgraph.has_edge(members[0], members[0]):
                cycles.append(members)
        cycles.sort(key=lambda members: position[members[0]])

        in_cycle = {}
        for members in cycles:
            for node_id in members:
                in_cycle[node_id] = members

        groups = "; ".join("[" + ", ".join(str(n) for n in members) + "]" for members in cycles)
        log.error(
            ErrorCode.GRAPH_CYCLE,
            f"{len(unordered)} of {len(nodes)} nodes could not be ordered; "
            f"cyclic groups: {groups or 'none'}",
        )

        for node_id in unordered:
            members = in_cycle.get(node_id)
            if members is not None:
                reason = f"part of cycle {members}"
            else:
                reason = "only reachable through a cycle"
            nodes[node_id].mark_unresolved(reason)
