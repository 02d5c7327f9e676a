"""Resolver services module exports."""
from knime2sql.services.resolver.column_flow import resolve_node, resolve_workflow
from knime2sql.services.resolver.column_rules import COLUMN_RULES, apply_delta, compute_columns
from knime2sql.services.resolver.predecessor_resolver import PredecessorSet, resolve_predecessors

__all__ = [
    "COLUMN_RULES",
    "PredecessorSet",
    "apply_delta",
    "compute_columns",
    "resolve_node",
    "resolve_predecessors",
    "resolve_workflow",
]
