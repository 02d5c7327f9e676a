"""Parser services module exports."""
from knime2sql.services.parser.workflow_loader import WorkflowDeclaration, WorkflowLoader

__all__ = ["WorkflowDeclaration", "WorkflowLoader"]
