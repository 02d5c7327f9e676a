"""
SQL Fragment Dispatcher.

Routes each resolved node to the SQL generator registered for its kind and
packages the outcome as a SqlFragment. Generation problems never escape the
dispatcher: they are carried on the fragment as a structured error.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from knime2sql.core.config import ConverterSettings
from knime2sql.core.errors import (
    ConverterError,
    ErrorCode,
    ErrorContext,
    GenerationError,
    InvariantViolation,
)
from knime2sql.models.workflow_models import NodeKind, ResolvedNode, ResolvedWorkflow
from knime2sql.services.generator.columns import (
    generate_column_merger,
    generate_column_renamer,
    generate_string_to_number,
)
from knime2sql.services.generator.expressions import (
    generate_expression,
    generate_rule_engine,
    generate_string_manipulation,
)
from knime2sql.services.generator.filters import (
    generate_column_filter,
    generate_duplicate_row_filter,
    generate_row_filter,
)
from knime2sql.services.generator.joins import generate_concatenate, generate_joiner
from knime2sql.services.generator.readers import generate_csv_reader, generate_excel_reader
from knime2sql.services.generator.sql_utils import SqlContext, quote_identifier

logger = logging.getLogger(__name__)


def generate_unsupported(ctx: SqlContext) -> str:
    raise GenerationError(
        f"Conversion for node type {ctx.factory or ctx.name} is not supported",
        code=ErrorCode.GENERATION_UNSUPPORTED,
        context=ErrorContext(node_id=ctx.node_id, node_name=ctx.name, node_factory=ctx.factory),
    )


SqlGenerator = Callable[[SqlContext], str]

SQL_GENERATORS: Dict[NodeKind, SqlGenerator] = {
    NodeKind.CSV_READER: generate_csv_reader,
    NodeKind.EXCEL_READER: generate_excel_reader,
    NodeKind.COLUMN_FILTER: generate_column_filter,
    NodeKind.ROW_FILTER: generate_row_filter,
    NodeKind.DUPLICATE_ROW_FILTER: generate_duplicate_row_filter,
    NodeKind.COLUMN_MERGER: generate_column_merger,
    NodeKind.COLUMN_RENAMER: generate_column_renamer,
    NodeKind.STRING_TO_NUMBER: generate_string_to_number,
    NodeKind.STRING_MANIPULATION: generate_string_manipulation,
    NodeKind.EXPRESSION: generate_expression,
    NodeKind.RULE_ENGINE: generate_rule_engine,
    NodeKind.JOINER: generate_joiner,
    NodeKind.CONCATENATE: generate_concatenate,
    NodeKind.UNKNOWN: generate_unsupported,
}

_unhandled = [kind.value for kind in NodeKind if kind not in SQL_GENERATORS]
if _unhandled:
    raise InvariantViolation(f"No SQL generator for node kinds: {', '.join(_unhandled)}")


@dataclass
class SqlFragment:
    """SQL for one node, or the error that prevented it."""
    node_id: int
    alias: str
    name: str
    sql: Optional[str] = None
    error: Optional[ConverterError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.sql is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node_id": self.node_id,
            "alias": self.alias,
            "name": self.name,
            "sql": self.sql,
            "error": self.error.to_dict() if self.error else None,
        }


class SqlDispatcher:
    """Turns resolved nodes into SQL fragments and whole scripts."""

    def __init__(self, settings: Optional[ConverterSettings] = None):
        self.settings = settings or ConverterSettings()

    def generate(
        self,
        node: Union[ResolvedNode, int],
        workflow: Optional[ResolvedWorkflow] = None,
    ) -> SqlFragment:
        """
        SQL for one node.

        Args:
            node: A resolved node, or a node id looked up in `workflow`
            workflow: The resolution result the node belongs to

        Returns:
            SqlFragment; never raises
        """
        if not isinstance(node, ResolvedNode):
            found = workflow.get_node(node) if workflow is not None else None
            if found is None:
                return SqlFragment(
                    node_id=node,
                    alias="",
                    name="",
                    error=GenerationError(
                        f"Node {node} not found in workflow",
                        code=ErrorCode.GENERATION_FAILED,
                        context=ErrorContext(node_id=node),
                    ),
                )
            node = found

        fragment = SqlFragment(node_id=node.id, alias=node.alias, name=node.name)
        context = ErrorContext(node_id=node.id, node_name=node.name, node_factory=node.factory)

        if node.unresolved:
            fragment.error = GenerationError(
                f"Node {node.id} ({node.name}) is unresolved: {node.reason}",
                code=ErrorCode.RESOLUTION_UPSTREAM_UNRESOLVED,
                context=context,
            )
            return fragment

        ctx = SqlContext.from_node(node, join_suffix=self.settings.join_suffix)
        try:
            fragment.sql = SQL_GENERATORS[node.kind](ctx)
        except ConverterError as e:
            logger.warning(f"SQL generation failed for node {node.id}: {e}")
            fragment.error = e
        except Exception as e:
            logger.error(f"Unexpected error generating SQL for node {node.id}: {e}", exc_info=True)
            fragment.error = GenerationError(
                f"Node {node.id} ({node.name}): unexpected error: {e}",
                context=context,
                cause=e,
            )
        return fragment

    def generate_all(self, workflow: ResolvedWorkflow) -> List[SqlFragment]:
        """Fragments for every node, in the workflow's node order."""
        fragments = [self.generate(node, workflow) for node in workflow.nodes]
        failed = sum(1 for f in fragments if not f.ok)
        logger.info(f"Generated SQL for {len(fragments) - failed}/{len(fragments)} nodes")
        return fragments

    def render_script(self, workflow: ResolvedWorkflow) -> str:
        """
        One SQL script: a CREATE VIEW per node in execution order.

        Nodes without SQL appear as comments carrying the reason.
        """
        lines = [f"-- Workflow: {_comment(workflow.name)}", ""]
        for fragment in self.generate_all(workflow):
            header = f"-- Node {fragment.node_id}: {_comment(fragment.name)}"
            if fragment.ok:
                lines.append(header)
                lines.append(f"CREATE VIEW {quote_identifier(fragment.alias)} AS")
                lines.append(f"{fragment.sql};")
            else:
                lines.append(f"{header} (skipped)")
                for message_line in str(fragment.error).splitlines():
                    lines.append(f"-- {message_line}")
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"


def _comment(text: str) -> str:
    return " ".join(str(text).split())
