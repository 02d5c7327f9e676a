"""
SQL text helpers and the context handed to per-kind generators.
"""
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from knime2sql.core.errors import ErrorContext, GenerationError
from knime2sql.models.workflow_models import PredecessorRef, ResolvedNode
from knime2sql.services.resolver.column_rules import DEFAULT_JOIN_SUFFIX
from knime2sql.services.settings.settings_tree import get_model


def quote_identifier(name: str) -> str:
    """ANSI identifier: double quotes, embedded quotes doubled."""
    return '"' + str(name).replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """SQL string literal: single quotes, embedded quotes doubled."""
    return "'" + str(value).replace("'", "''") + "'"


def select_statement(parts: List[str], source: str, where: Optional[str] = None) -> str:
    """SELECT <parts> FROM "<source>" [WHERE ...], one select item per line."""
    sql = "SELECT\n  " + ",\n  ".join(parts) + f"\nFROM {quote_identifier(source)}"
    if where:
        sql += f"\nWHERE {where}"
    return sql


@dataclass
class SqlContext:
    """Resolved facts about one node, as seen by its SQL generator."""
    node_id: int
    alias: str
    name: str
    settings: Mapping
    factory: str = ""
    input_schema: List[str] = field(default_factory=list)
    output_schema: List[str] = field(default_factory=list)
    predecessors: List[PredecessorRef] = field(default_factory=list)
    join_suffix: str = DEFAULT_JOIN_SUFFIX

    @classmethod
    def from_node(cls, node: ResolvedNode, join_suffix: str = DEFAULT_JOIN_SUFFIX) -> "SqlContext":
        return cls(
            node_id=node.id,
            alias=node.alias,
            name=node.name,
            settings=node.settings,
            factory=node.factory,
            input_schema=list(node.input_schema),
            output_schema=list(node.output_schema),
            predecessors=list(node.predecessors),
            join_suffix=join_suffix,
        )

    @property
    def predecessor_aliases(self) -> List[str]:
        return [p.alias for p in self.predecessors]

    def error(self, message: str, **kwargs) -> GenerationError:
        """A GenerationError carrying this node's context."""
        return GenerationError(
            f"Node {self.node_id} ({self.name}): {message}",
            context=ErrorContext(node_id=self.node_id, node_name=self.name),
            **kwargs
        )

    def model(self) -> Mapping:
        model = get_model(self.settings)
        if model is None:
            raise self.error("model configuration not found")
        return model

    def source(self) -> str:
        """Alias of the single (primary) input."""
        if not self.predecessors:
            raise self.error("no input to select from")
        primary = self.predecessors[0]
        missing = [col for col in self.input_schema if col not in primary.schema]
        if missing:
            raise self.error(
                f"input columns {missing} are not in primary input node {primary.id}; "
                f"cannot select from several inputs"
            )
        return primary.alias

    def port(self, port: int) -> PredecessorRef:
        for ref in self.predecessors:
            if ref.port == port:
                return ref
        raise self.error(f"no input on port {port}")
