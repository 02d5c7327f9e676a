"""
knime2sql - FastAPI application

Endpoints:
- GET /api/health - Health check
- POST /api/resolve - Resolve a workflow declaration (order, predecessors, columns)
- POST /api/sql - Resolve and generate SQL fragments plus a composed script
"""
import logging
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastapi import Body, FastAPI, HTTPException, Query

# Load environment variables
load_dotenv()

from knime2sql import __version__
from knime2sql.core.config import ConverterSettings, configure_logging
from knime2sql.core.errors import DeclarationError
from knime2sql.models.workflow_models import ResolvedWorkflow
from knime2sql.services.generator.sql_dispatcher import SqlDispatcher
from knime2sql.services.parser.workflow_loader import WorkflowLoader
from knime2sql.services.resolver.column_flow import resolve_workflow

settings = ConverterSettings()
configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="knime2sql API",
    description="Resolve KNIME workflow column flow and translate nodes to SQL",
    version=__version__,
)


def _resolve(payload: Dict[str, Any]) -> ResolvedWorkflow:
    try:
        declaration = WorkflowLoader().load_dict(payload)
    except DeclarationError as e:
        logger.warning(f"Rejected declaration: {e}")
        raise HTTPException(status_code=400, detail=e.to_dict())

    if len(declaration.nodes) > settings.max_upload_nodes:
        raise HTTPException(
            status_code=413,
            detail={
                "error": "too_many_nodes",
                "message": f"Workflow has {len(declaration.nodes)} nodes "
                           f"(maximum: {settings.max_upload_nodes})",
                "suggestion": "Split the workflow or raise KNIME2SQL_MAX_UPLOAD_NODES",
            },
        )

    return resolve_workflow(
        declaration.nodes, declaration.connections, settings=settings, name=declaration.name
    )


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": "knime2sql",
        "version": __version__,
    }


@app.post("/api/resolve")
async def resolve(payload: Dict[str, Any] = Body(...)):
    """Execution order, predecessors and column schemas for every node."""
    return _resolve(payload).to_dict()


@app.post("/api/sql")
async def generate_sql(
    payload: Dict[str, Any] = Body(...),
    node: Optional[int] = Query(None, description="Only generate SQL for this node id"),
):
    """SQL fragment per node and the composed CREATE VIEW script."""
    workflow = _resolve(payload)
    dispatcher = SqlDispatcher(settings)

    if node is not None:
        if workflow.get_node(node) is None:
            raise HTTPException(
                status_code=404,
                detail={"error": "node_not_found", "message": f"Node {node} not in workflow"},
            )
        return dispatcher.generate(node, workflow).to_dict()

    return {
        "name": workflow.name,
        "complete": workflow.is_complete,
        "fragments": [f.to_dict() for f in dispatcher.generate_all(workflow)],
        "script": dispatcher.render_script(workflow),
        "diagnostics": [d.to_dict() for d in workflow.diagnostics],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "knime2sql.main:app",
        host=settings.api_host,
        port=settings.api_port,
    )
