"""Graph services module exports."""
from knime2sql.services.graph.graph_builder import GraphBuildResult, WorkflowGraphBuilder

__all__ = ["GraphBuildResult", "WorkflowGraphBuilder"]
