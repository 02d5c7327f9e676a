"""
Workflow Declaration Loader

Reads the JSON workflow declaration consumed by the resolver:

    {
        "name": "sales",
        "nodes": [
            {"id": 1, "factory": "org.knime...CSVTableReaderNodeFactory",
             "name": "CSV Reader", "settings": {...settings tree...}}
        ],
        "connections": [
            {"sourceID": 1, "destID": 2, "sourcePort": 1, "destPort": 0}
        ]
    }

`kind` may replace `factory`. Connections also accept sourceId/targetId/targetPort
and snake_case keys.
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from knime2sql.core.errors import DeclarationError, ErrorCode, ErrorContext
from knime2sql.models.workflow_models import ConnectionDeclaration, NodeDeclaration, NodeKind
from knime2sql.services.settings.settings_tree import get_value

logger = logging.getLogger(__name__)


@dataclass
class WorkflowDeclaration:
    """Parsed declaration, ready for resolve_workflow."""
    name: str
    nodes: List[NodeDeclaration] = field(default_factory=list)
    connections: List[ConnectionDeclaration] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "nodes": [n.to_dict() for n in self.nodes],
            "connections": [c.to_dict() for c in self.connections],
        }


def _to_int(value: Any, what: str, code: ErrorCode, context: ErrorContext) -> int:
    if isinstance(value, bool):
        raise DeclarationError(f"{what} must be an integer, got {value!r}", code=code, context=context)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise DeclarationError(f"{what} must be an integer, got {value!r}", code=code, context=context)


def _first_present(data: Mapping, *keys: str) -> Optional[Any]:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


class WorkflowLoader:
    """Builds a WorkflowDeclaration from a file, a JSON string or a dict."""

    def load_file(self, path: Union[str, Path]) -> WorkflowDeclaration:
        path = Path(path)
        logger.info(f"Loading workflow declaration: {path}")
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise DeclarationError(
                f"Cannot read workflow declaration {path}: {e}",
                context=ErrorContext(additional={"path": str(path)}),
                cause=e,
            )
        return self.load_json(text, default_name=path.stem)

    def load_json(self, text: str, default_name: str = "workflow") -> WorkflowDeclaration:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DeclarationError(f"Invalid JSON: {e}", cause=e)
        return self.load_dict(data, default_name=default_name)

    def load_dict(self, data: Any, default_name: str = "workflow") -> WorkflowDeclaration:
        """
        Validate and convert a declaration mapping.

        Raises:
            DeclarationError: when the shape is not a workflow declaration
        """
        if not isinstance(data, Mapping):
            raise DeclarationError("Workflow declaration must be a JSON object")

        raw_nodes = data.get("nodes")
        if not isinstance(raw_nodes, list):
            raise DeclarationError("'nodes' must be a list")
        raw_connections = data.get("connections", [])
        if not isinstance(raw_connections, list):
            raise DeclarationError(
                "'connections' must be a list",
                code=ErrorCode.DECLARATION_CONNECTION_INVALID,
            )

        name = data.get("name") or default_name
        nodes = [self.parse_node(raw, index) for index, raw in enumerate(raw_nodes)]
        connections = [self.parse_connection(raw, index) for index, raw in enumerate(raw_connections)]

        logger.info(f"Loaded '{name}': {len(nodes)} nodes, {len(connections)} connections")
        return WorkflowDeclaration(name=str(name), nodes=nodes, connections=connections)

    def parse_node(self, raw: Any, index: int) -> NodeDeclaration:
        context = ErrorContext(additional={"node_index": index})
        if not isinstance(raw, Mapping):
            raise DeclarationError(
                f"Node #{index} must be an object",
                code=ErrorCode.DECLARATION_NODE_INVALID,
                context=context,
            )
        if "id" not in raw:
            raise DeclarationError(
                f"Node #{index} has no 'id'",
                code=ErrorCode.DECLARATION_NODE_INVALID,
                context=context,
            )
        node_id = _to_int(raw["id"], f"Node #{index} id", ErrorCode.DECLARATION_NODE_INVALID, context)
        context.node_id = node_id

        settings = raw.get("settings") or {}
        if not isinstance(settings, Mapping):
            raise DeclarationError(
                f"Node {node_id}: 'settings' must be an object",
                code=ErrorCode.DECLARATION_NODE_INVALID,
                context=context,
            )

        factory = raw.get("factory") or get_value(settings, "factory") or ""
        kind = None
        if raw.get("kind"):
            kind = NodeKind.parse(str(raw["kind"]))
        elif not factory:
            logger.warning(f"Node {node_id} declares neither factory nor kind; treating it as unknown")

        return NodeDeclaration(
            id=node_id,
            factory=str(factory),
            settings=settings,
            name=raw.get("name"),
            kind=kind,
        )

    def parse_connection(self, raw: Any, index: int) -> ConnectionDeclaration:
        code = ErrorCode.DECLARATION_CONNECTION_INVALID
        context = ErrorContext(additional={"connection_index": index})
        if not isinstance(raw, Mapping):
            raise DeclarationError(f"Connection #{index} must be an object", code=code, context=context)

        source = _first_present(raw, "sourceID", "sourceId", "source_id")
        dest = _first_present(raw, "destID", "destId", "targetId", "dest_id", "target_id")
        if source is None or dest is None:
            raise DeclarationError(
                f"Connection #{index} needs sourceID and destID",
                code=code,
                context=context,
            )

        source_port = _first_present(raw, "sourcePort", "source_port")
        dest_port = _first_present(raw, "destPort", "targetPort", "dest_port", "target_port")
        return ConnectionDeclaration(
            source_id=_to_int(source, f"Connection #{index} sourceID", code, context),
            dest_id=_to_int(dest, f"Connection #{index} destID", code, context),
            source_port=_to_int(source_port, f"Connection #{index} sourcePort", code, context)
            if source_port is not None else 0,
            dest_port=_to_int(dest_port, f"Connection #{index} destPort", code, context)
            if dest_port is not None else None,
        )
