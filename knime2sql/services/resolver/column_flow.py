"""
Column-Flow Resolver.

Walks the workflow in execution order and computes, for every node, its
input schema (from the already resolved predecessors) and its output schema
(by applying the node kind's column rule). Problems never abort the run:
they mark the node unresolved, and that status spreads to every node
downstream of it.
"""
import logging
from typing import Iterable, List, Mapping, Optional

from knime2sql.core.config import ConverterSettings
from knime2sql.core.errors import (
    DiagnosticLog,
    ErrorCode,
    ErrorContext,
    InvariantViolation,
    SettingsError,
)
from knime2sql.models.workflow_models import (
    ConnectionDeclaration,
    Node,
    NodeDeclaration,
    ResolvedNode,
    ResolvedWorkflow,
)
from knime2sql.services.graph.graph_builder import GraphBuildResult, WorkflowGraphBuilder
from knime2sql.services.resolver.column_rules import RuleContext, compute_columns
from knime2sql.services.resolver.predecessor_resolver import resolve_predecessors

logger = logging.getLogger(__name__)


def union_schemas(schemas: Iterable[List[str]]) -> List[str]:
    """Set union of column lists, in first-seen order."""
    union: List[str] = []
    seen = set()
    for schema in schemas:
        for col in schema:
            if col not in seen:
                seen.add(col)
                union.append(col)
    return union


def resolve_node(
    node: Node,
    nodes: Mapping[int, Node],
    settings: ConverterSettings,
    log: DiagnosticLog,
):
    """Resolve one node in place; its predecessors must already be processed."""
    if node.unresolved:
        # Tainted while building the graph (dangling input)
        node.predecessors = list(resolve_predecessors(node, nodes).inputs)
        return

    predecessors = resolve_predecessors(node, nodes, log)
    node.predecessors = list(predecessors.inputs)

    if node.kind.is_source:
        input_schema: List[str] = []
        ctx = RuleContext(node_id=node.id, settings=node.settings, join_suffix=settings.join_suffix)
    else:
        if not predecessors.is_valid:
            reason = predecessors.failure_reason
            if not predecessors.errors:
                log.warning(
                    ErrorCode.RESOLUTION_UPSTREAM_UNRESOLVED,
                    f"Node {node.id} ({node.name}): {reason}",
                    node_id=node.id,
                )
            node.mark_unresolved(reason)
            return

        schemas = predecessors.schemas()
        input_schema = union_schemas(schemas)
        ctx = RuleContext(
            node_id=node.id,
            settings=node.settings,
            input_schema=input_schema,
            input_schemas=schemas,
            left_schema=list(predecessors.left.schema) if predecessors.left else None,
            right_schema=list(predecessors.right.schema) if predecessors.right else None,
            join_suffix=settings.join_suffix,
        )

    try:
        output_schema, delta = compute_columns(node.kind, ctx)
    except SettingsError as e:
        log.error(e.code, f"Node {node.id} ({node.name}): {e.message}", node_id=node.id)
        node.mark_unresolved(e.message)
        return

    duplicates = sorted({col for col in output_schema if output_schema.count(col) > 1})
    if duplicates:
        reason = f"settings produce duplicate output columns: {duplicates}"
        log.error(ErrorCode.SETTINGS_INVALID, f"Node {node.id} ({node.name}): {reason}", node_id=node.id)
        node.mark_unresolved(reason)
        return

    node.input_schema = input_schema
    node.output_schema = output_schema
    node.delta = delta
    logger.debug(f"Node {node.id} ({node.kind.value}): {input_schema} -> {output_schema}")


def check_invariants(build: GraphBuildResult):
    """Raise InvariantViolation when ordering or resolution went wrong internally."""
    for node in build.nodes.values():
        if not node.unresolved and node.order < 0:
            raise InvariantViolation(
                f"Node {node.id} is resolved but has no execution order",
                context=ErrorContext(node_id=node.id, node_name=node.name),
            )
        if not node.unresolved and node.output_schema is None:
            raise InvariantViolation(
                f"Node {node.id} is resolved but has no output schema",
                context=ErrorContext(node_id=node.id, node_name=node.name),
            )
    for edge in build.edges:
        source = build.nodes[edge.source_id]
        target = build.nodes[edge.target_id]
        if source.order >= 0 and target.order >= 0 and source.order >= target.order:
            raise InvariantViolation(
                f"Execution order is not topological: {source.id} (order {source.order}) "
                f"-> {target.id} (order {target.order})"
            )


def resolve_workflow(
    declarations: Iterable[NodeDeclaration],
    connections: Iterable[ConnectionDeclaration],
    settings: Optional[ConverterSettings] = None,
    name: str = "workflow",
) -> ResolvedWorkflow:
    """
    Resolve execution order, predecessors and column schemas of a workflow.

    Pure function: all state lives in the records created for this call.

    Args:
        declarations: Node declarations, in declaration order
        connections: Connection declarations, in declaration order
        settings: Converter settings (alias template, join suffix)
        name: Workflow name carried into the result

    Returns:
        ResolvedWorkflow with ordered nodes first, then unordered ones
    """
    settings = settings or ConverterSettings()
    build = WorkflowGraphBuilder(settings).build(declarations, connections)

    log = DiagnosticLog()
    log.extend(build.diagnostics)

    for node in build.ordered_nodes():
        resolve_node(node, build.nodes, settings, log)

    check_invariants(build)

    resolved = [ResolvedNode.from_node(node) for node in build.ordered_nodes()]
    resolved.extend(ResolvedNode.from_node(node) for node in build.unordered_nodes())

    unresolved_count = sum(1 for n in resolved if n.unresolved)
    summary = log.summary()
    message = (
        f"Resolved workflow '{name}': {len(resolved) - unresolved_count}/{len(resolved)} nodes, "
        f"{summary['error_count']} errors, {summary['warning_count']} warnings"
    )
    if log.has_errors():
        logger.warning(f"{message}; codes: {', '.join(summary['codes'])}")
    else:
        logger.info(message)
    return ResolvedWorkflow(name=name, nodes=resolved, diagnostics=log.diagnostics)
