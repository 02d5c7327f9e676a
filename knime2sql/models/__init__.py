"""Workflow data models."""
from knime2sql.models.workflow_models import (
    ColumnDelta,
    ConnectionDeclaration,
    Edge,
    Node,
    NodeArity,
    NodeDeclaration,
    NodeKind,
    PredecessorRef,
    ResolvedNode,
    ResolvedWorkflow,
)

__all__ = [
    "ColumnDelta",
    "ConnectionDeclaration",
    "Edge",
    "Node",
    "NodeArity",
    "NodeDeclaration",
    "NodeKind",
    "PredecessorRef",
    "ResolvedNode",
    "ResolvedWorkflow",
]
