"""
Workflow Models for the KNIME to SQL converter.

Dataclass-based models for the declared workflow (nodes, connections), the
mutable per-run node record used by the resolver, and the resolved result
handed to SQL generators and presentation layers.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from knime2sql.core.errors import Diagnostic


class NodeArity(str, Enum):
    """How many inputs a node kind consumes."""
    SOURCE = "source"   # defines its own columns, no data input
    SINGLE = "single"   # exactly one data input
    DUAL = "dual"       # left (port 0) and right (port 1)
    MULTI = "multi"     # any number of unordered inputs


class NodeKind(str, Enum):
    """Closed set of node kinds the converter understands."""
    CSV_READER = "csv_reader"
    EXCEL_READER = "excel_reader"
    COLUMN_FILTER = "column_filter"
    ROW_FILTER = "row_filter"
    DUPLICATE_ROW_FILTER = "duplicate_row_filter"
    COLUMN_MERGER = "column_merger"
    COLUMN_RENAMER = "column_renamer"
    STRING_TO_NUMBER = "string_to_number"
    STRING_MANIPULATION = "string_manipulation"
    EXPRESSION = "expression"
    RULE_ENGINE = "rule_engine"
    JOINER = "joiner"
    CONCATENATE = "concatenate"
    UNKNOWN = "unknown"

    @property
    def arity(self) -> NodeArity:
        return _KIND_ARITY.get(self, NodeArity.SINGLE)

    @property
    def is_source(self) -> bool:
        return self.arity == NodeArity.SOURCE

    @classmethod
    def from_factory(cls, factory: Optional[str]) -> "NodeKind":
        """Map a KNIME factory class string to its kind."""
        if not factory:
            return cls.UNKNOWN
        return FACTORY_KINDS.get(factory, cls.UNKNOWN)

    @classmethod
    def parse(cls, value: str) -> "NodeKind":
        """Accept either a kind value ('joiner') or a KNIME factory class."""
        try:
            return cls(value)
        except ValueError:
            return cls.from_factory(value)


FACTORY_KINDS: Dict[str, NodeKind] = {
    "org.knime.base.node.io.filehandling.csv.reader.CSVTableReaderNodeFactory": NodeKind.CSV_READER,
    "org.knime.ext.poi3.node.io.filehandling.excel.reader.ExcelTableReaderNodeFactory": NodeKind.EXCEL_READER,
    "org.knime.base.node.preproc.filter.column.DataColumnSpecFilterNodeFactory": NodeKind.COLUMN_FILTER,
    "org.knime.base.node.preproc.filter.row3.RowFilterNodeFactory": NodeKind.ROW_FILTER,
    "org.knime.base.node.preproc.duplicates.DuplicateRowFilterNodeFactory": NodeKind.DUPLICATE_ROW_FILTER,
    "org.knime.base.node.preproc.columnmerge.ColumnMergerNodeFactory": NodeKind.COLUMN_MERGER,
    "org.knime.base.node.preproc.column.renamer.ColumnRenamerNodeFactory": NodeKind.COLUMN_RENAMER,
    "org.knime.base.node.preproc.colconvert.stringtonumber2.StringToNumber2NodeFactory": NodeKind.STRING_TO_NUMBER,
    "org.knime.base.node.preproc.stringmanipulation.StringManipulationNodeFactory": NodeKind.STRING_MANIPULATION,
    "org.knime.base.expressions.node.row.mapper.ExpressionRowMapperNodeFactory": NodeKind.EXPRESSION,
    "org.knime.base.node.rules.engine.RuleEngineNodeFactory": NodeKind.RULE_ENGINE,
    "org.knime.base.node.preproc.joiner.JoinerNodeFactory": NodeKind.JOINER,
    "org.knime.base.node.preproc.joiner3.Joiner3NodeFactory": NodeKind.JOINER,
    "org.knime.base.node.preproc.append.row.AppendedRowsNodeFactory": NodeKind.CONCATENATE,
}

_KIND_ARITY: Dict[NodeKind, NodeArity] = {
    NodeKind.CSV_READER: NodeArity.SOURCE,
    NodeKind.EXCEL_READER: NodeArity.SOURCE,
    NodeKind.JOINER: NodeArity.DUAL,
    NodeKind.CONCATENATE: NodeArity.MULTI,
}


def simple_factory_name(factory: Optional[str]) -> str:
    """
    Extract a readable node type from a factory class.

    Example:
    'org.knime.base.node.io.csvreader.CSVReaderNodeFactory' -> 'CSV Reader'
    """
    if not factory:
        return "Unknown"
    last_part = factory.split(".")[-1]
    if last_part.endswith("NodeFactory"):
        last_part = last_part[:-len("NodeFactory")]
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])", " ", last_part) or factory


@dataclass
class NodeDeclaration:
    """One node as declared by the workflow."""
    id: int
    factory: str
    settings: Mapping[str, Any] = field(default_factory=dict)
    name: Optional[str] = None
    kind: Optional[NodeKind] = None

    def __post_init__(self):
        if self.kind is None:
            self.kind = NodeKind.from_factory(self.factory)
        if not self.name:
            self.name = simple_factory_name(self.factory) if self.factory else self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "factory": self.factory,
        }


@dataclass
class ConnectionDeclaration:
    """A directed connection between two declared nodes."""
    source_id: int
    dest_id: int
    source_port: int = 0
    # None when the declaration did not state the port
    dest_port: Optional[int] = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "dest_id": self.dest_id,
            "source_port": self.source_port,
            "dest_port": self.dest_port,
        }


@dataclass(frozen=True)
class Edge:
    """A kept connection; `index` is its declaration position."""
    source_id: int
    target_id: int
    source_port: int
    target_port: Optional[int]
    index: int


@dataclass
class ColumnDelta:
    """Columns a node adds, removes, or renames relative to its input."""
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    renamed: Dict[str, str] = field(default_factory=dict)


@dataclass
class Node:
    """
    Mutable per-run record for one workflow node.

    Created once from a declaration; each computed field is written once by
    the resolver during its single pass.
    """
    id: int
    kind: NodeKind
    factory: str
    name: str
    settings: Mapping[str, Any]
    alias: str
    order: int = -1
    outgoing: List[Edge] = field(default_factory=list)
    incoming: List[Edge] = field(default_factory=list)
    input_schema: Optional[List[str]] = None
    output_schema: Optional[List[str]] = None
    delta: ColumnDelta = field(default_factory=ColumnDelta)
    predecessors: List["PredecessorRef"] = field(default_factory=list)
    unresolved: bool = False
    reason: Optional[str] = None

    @classmethod
    def from_declaration(cls, declaration: NodeDeclaration, alias: str) -> "Node":
        return cls(
            id=declaration.id,
            kind=declaration.kind,
            factory=declaration.factory,
            name=declaration.name,
            settings=declaration.settings,
            alias=alias,
        )

    def mark_unresolved(self, reason: str):
        """Flag the node; the first reason recorded wins."""
        if not self.unresolved:
            self.unresolved = True
            self.reason = reason


@dataclass(frozen=True)
class PredecessorRef:
    """A resolved direct predecessor as seen by its successor."""
    id: int
    alias: str
    schema: List[str]
    port: Optional[int] = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alias": self.alias,
            "schema": list(self.schema),
            "port": self.port,
        }


@dataclass
class ResolvedNode:
    """Final per-node result of a resolution run."""
    id: int
    name: str
    kind: NodeKind
    factory: str
    alias: str
    order: int
    settings: Mapping[str, Any]
    input_schema: List[str] = field(default_factory=list)
    output_schema: List[str] = field(default_factory=list)
    added_columns: List[str] = field(default_factory=list)
    removed_columns: List[str] = field(default_factory=list)
    renamed_columns: Dict[str, str] = field(default_factory=dict)
    predecessors: List[PredecessorRef] = field(default_factory=list)
    successors: List[int] = field(default_factory=list)
    unresolved: bool = False
    reason: Optional[str] = None

    @classmethod
    def from_node(cls, node: Node) -> "ResolvedNode":
        resolved = not node.unresolved
        return cls(
            id=node.id,
            name=node.name,
            kind=node.kind,
            factory=node.factory,
            alias=node.alias,
            order=node.order,
            settings=node.settings,
            input_schema=list(node.input_schema or []) if resolved else [],
            output_schema=list(node.output_schema or []) if resolved else [],
            added_columns=list(node.delta.added) if resolved else [],
            removed_columns=list(node.delta.removed) if resolved else [],
            renamed_columns=dict(node.delta.renamed) if resolved else {},
            predecessors=list(node.predecessors),
            successors=[edge.target_id for edge in node.outgoing],
            unresolved=node.unresolved,
            reason=node.reason,
        )

    @property
    def predecessor_aliases(self) -> List[str]:
        return [p.alias for p in self.predecessors]

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "factory": self.factory,
            "alias": self.alias,
            "order": self.order,
            "input_schema": self.input_schema,
            "output_schema": self.output_schema,
            "added_columns": self.added_columns,
            "removed_columns": self.removed_columns,
            "predecessors": [p.to_dict() for p in self.predecessors],
            "successors": self.successors,
            "unresolved": self.unresolved,
            "reason": self.reason,
        }
        if self.renamed_columns:
            result["renamed_columns"] = self.renamed_columns
        return result


@dataclass
class ResolvedWorkflow:
    """
    Complete result of resolving one workflow.

    `nodes` lists ordered nodes by execution order first, then the nodes the
    topological sort could not order, in declaration order.
    """
    name: str
    nodes: List[ResolvedNode] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def execution_order(self) -> List[int]:
        return [n.id for n in self.nodes if n.order >= 0]

    @property
    def unresolved_nodes(self) -> List[ResolvedNode]:
        return [n for n in self.nodes if n.unresolved]

    @property
    def is_complete(self) -> bool:
        return not self.unresolved_nodes

    def get_node(self, node_id: int) -> Optional[ResolvedNode]:
        """Find a node by its ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for JSON/YAML serialization."""
        return {
            "name": self.name,
            "execution_order": self.execution_order,
            "complete": self.is_complete,
            "nodes": [n.to_dict() for n in self.nodes],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), indent=indent, default=str)

    def to_yaml(self) -> str:
        """Serialize to YAML string."""
        import yaml
        return yaml.dump(self.to_dict(), default_flow_style=False, allow_unicode=True, sort_keys=False)
