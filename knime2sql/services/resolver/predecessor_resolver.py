"""
Predecessor/Port Resolver.

Finds the direct inputs of a node and interprets their ports according to
the node kind's arity: single input, left/right join input, or any number of
unordered inputs.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from knime2sql.core.errors import Diagnostic, DiagnosticLog, ErrorCode, Severity
from knime2sql.models.workflow_models import Edge, Node, NodeArity, PredecessorRef

logger = logging.getLogger(__name__)

LEFT_PORT = 0
RIGHT_PORT = 1


@dataclass
class PredecessorSet:
    """Interpreted inputs of one node."""
    arity: NodeArity
    inputs: List[PredecessorRef] = field(default_factory=list)
    left: Optional[PredecessorRef] = None
    right: Optional[PredecessorRef] = None
    diagnostics: List[Diagnostic] = field(default_factory=list)
    tainted_by: Optional[int] = None

    @property
    def primary(self) -> Optional[PredecessorRef]:
        """Input whose alias a single-input SQL statement reads from."""
        if self.arity == NodeArity.DUAL:
            return self.left
        return self.inputs[0] if self.inputs else None

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity == Severity.ERROR]

    @property
    def is_valid(self) -> bool:
        return not self.errors and self.tainted_by is None

    @property
    def failure_reason(self) -> Optional[str]:
        errors = self.errors
        if errors:
            return errors[0].message
        if self.tainted_by is not None:
            return f"upstream node {self.tainted_by} unresolved"
        return None

    def schemas(self) -> List[List[str]]:
        return [list(ref.schema) for ref in self.inputs]


def _ref(edge: Edge, nodes: Mapping[int, Node]) -> PredecessorRef:
    source = nodes[edge.source_id]
    schema = [] if source.unresolved else list(source.output_schema or [])
    return PredecessorRef(id=source.id, alias=source.alias, schema=schema, port=edge.target_port)


def resolve_predecessors(
    node: Node,
    nodes: Mapping[int, Node],
    log: Optional[DiagnosticLog] = None,
) -> PredecessorSet:
    """
    Interpret the incoming edges of `node`.

    Args:
        node: Node being resolved; its `incoming` edges are in declaration order
        nodes: All nodes of the run, predecessors already processed
        log: Optional run log that receives every diagnostic

    Returns:
        PredecessorSet; never raises for data-shape problems
    """
    arity = node.kind.arity
    result = PredecessorSet(arity=arity)

    def report(code: ErrorCode, message: str, severity: Severity):
        message = f"Node {node.id} ({node.name}): {message}"
        if log is not None:
            diagnostic = log.add(code, message, severity, node.id)
        else:
            diagnostic = Diagnostic(code=code, message=message, severity=severity, node_id=node.id)
        result.diagnostics.append(diagnostic)

    incoming = node.incoming

    if arity == NodeArity.SOURCE:
        # Inputs of a reader are kept for reporting only
        result.inputs = [_ref(edge, nodes) for edge in incoming]
        return result

    if arity == NodeArity.DUAL:
        _resolve_dual(incoming, nodes, result, report)
    else:
        result.inputs = [_ref(edge, nodes) for edge in incoming]
        if not result.inputs:
            report(ErrorCode.RESOLUTION_NO_PREDECESSOR, "no predecessor", Severity.ERROR)
        elif arity == NodeArity.SINGLE and len(result.inputs) > 1:
            ids = ", ".join(str(ref.id) for ref in result.inputs)
            report(
                ErrorCode.RESOLUTION_EXTRA_PREDECESSOR,
                f"expected one predecessor, found {len(result.inputs)} ({ids}); "
                f"using {result.inputs[0].id}",
                Severity.WARNING,
            )

    for ref in result.inputs:
        if nodes[ref.id].unresolved:
            result.tainted_by = ref.id
            break

    logger.debug(
        f"Node {node.id}: {arity.value} predecessors "
        f"{[ref.id for ref in result.inputs]}, valid={result.is_valid}"
    )
    return result


def _resolve_dual(incoming: List[Edge], nodes: Mapping[int, Node], result: PredecessorSet, report):
    for edge in incoming:
        if edge.target_port is None:
            report(
                ErrorCode.RESOLUTION_AMBIGUOUS_PORT,
                f"connection from node {edge.source_id} has no target port; "
                f"cannot tell left from right",
                Severity.ERROR,
            )
            continue
        if edge.target_port not in (LEFT_PORT, RIGHT_PORT):
            report(
                ErrorCode.RESOLUTION_AMBIGUOUS_PORT,
                f"connection from node {edge.source_id} on port {edge.target_port} ignored",
                Severity.WARNING,
            )
            continue

        side = "left" if edge.target_port == LEFT_PORT else "right"
        previous = getattr(result, side)
        if previous is not None:
            report(
                ErrorCode.RESOLUTION_AMBIGUOUS_PORT,
                f"{side} input declared twice (nodes {previous.id} and {edge.source_id}); "
                f"using {edge.source_id}",
                Severity.WARNING,
            )
        setattr(result, side, _ref(edge, nodes))

    for side in ("left", "right"):
        if getattr(result, side) is None:
            report(
                ErrorCode.RESOLUTION_MISSING_JOIN_INPUT,
                f"missing {side} input",
                Severity.ERROR,
            )
    result.inputs = [ref for ref in (result.left, result.right) if ref is not None]
