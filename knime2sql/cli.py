"""
knime2sql command line.

Usage:
    knime2sql resolve workflow.json [--format json|yaml|table]
    knime2sql sql workflow.json [--node ID] [--output FILE]

Exit codes: 0 when every node resolved, 1 when some did not, 2 when the
declaration could not be read.
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from knime2sql import __version__
from knime2sql.core.config import ConverterSettings, configure_logging
from knime2sql.core.errors import DeclarationError
from knime2sql.models.workflow_models import ResolvedWorkflow
from knime2sql.services.generator.sql_dispatcher import SqlDispatcher
from knime2sql.services.parser.workflow_loader import WorkflowLoader
from knime2sql.services.resolver.column_flow import resolve_workflow

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNRESOLVED = 1
EXIT_BAD_INPUT = 2


def format_table(workflow: ResolvedWorkflow) -> str:
    """Plain-text table: one line per node."""
    rows = [("ORDER", "ID", "KIND", "NAME", "OUTPUT COLUMNS")]
    for node in workflow.nodes:
        if node.unresolved:
            columns = f"UNRESOLVED: {node.reason}"
        else:
            columns = ", ".join(node.output_schema)
        order = str(node.order) if node.order >= 0 else "-"
        rows.append((order, str(node.id), node.kind.value, node.name, columns))

    widths = [max(len(row[i]) for row in rows) for i in range(4)]
    lines = []
    for row in rows:
        cells = [row[i].ljust(widths[i]) for i in range(4)]
        lines.append("  ".join(cells + [row[4]]))

    for diagnostic in workflow.diagnostics:
        lines.append(f"[{diagnostic.code.value}] {diagnostic.severity.value}: {diagnostic.message}")
    return "\n".join(lines)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="knime2sql",
        description="Resolve KNIME workflow column flow and translate nodes to SQL",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", help="Override KNIME2SQL_LOG_LEVEL", default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve = subparsers.add_parser("resolve", help="Print execution order and column schemas")
    resolve.add_argument("workflow", help="Workflow declaration (JSON)")
    resolve.add_argument("--format", "-f", choices=["json", "yaml", "table"], default="json")

    sql = subparsers.add_parser("sql", help="Generate SQL for the workflow or one node")
    sql.add_argument("workflow", help="Workflow declaration (JSON)")
    sql.add_argument("--node", "-n", type=int, help="Only this node id", default=None)
    sql.add_argument("--output", "-o", help="Write SQL to this file", default=None)
    return parser


def _write(text: str, output: Optional[str]):
    if output:
        Path(output).write_text(text, encoding="utf-8")
        logger.info(f"SQL written to {output}")
    else:
        sys.stdout.write(text if text.endswith("\n") else text + "\n")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        if args.log_level:
            settings = ConverterSettings(log_level=args.log_level.upper())
        else:
            settings = ConverterSettings()
    except ValueError as e:
        sys.stderr.write(f"Error: {e}\n")
        return EXIT_BAD_INPUT
    configure_logging(settings)

    try:
        declaration = WorkflowLoader().load_file(args.workflow)
    except DeclarationError as e:
        sys.stderr.write(f"Error: {e}\n")
        return EXIT_BAD_INPUT

    workflow = resolve_workflow(
        declaration.nodes, declaration.connections, settings=settings, name=declaration.name
    )

    if args.command == "resolve":
        if args.format == "yaml":
            output = workflow.to_yaml()
        elif args.format == "table":
            output = format_table(workflow)
        else:
            output = workflow.to_json()
        sys.stdout.write(output.rstrip("\n") + "\n")
        return EXIT_OK if workflow.is_complete else EXIT_UNRESOLVED

    dispatcher = SqlDispatcher(settings)
    if args.node is not None:
        fragment = dispatcher.generate(args.node, workflow)
        if not fragment.ok:
            sys.stderr.write(f"Error: {fragment.error}\n")
            return EXIT_UNRESOLVED
        _write(fragment.sql + ";", args.output)
        return EXIT_OK

    _write(dispatcher.render_script(workflow), args.output)
    return EXIT_OK if workflow.is_complete else EXIT_UNRESOLVED


if __name__ == "__main__":
    sys.exit(main())
