"""
Tests for the knime2sql command line.
"""
import json

from knime2sql.cli import EXIT_BAD_INPUT, EXIT_OK, EXIT_UNRESOLVED, format_table, main
from knime2sql.models.workflow_models import NodeKind
from tests.factories import WorkflowBuilder, linear_workflow


def broken_workflow() -> WorkflowBuilder:
    """Reader without settings feeding a row filter."""
    return (
        WorkflowBuilder(name="broken")
        .node(1, NodeKind.CSV_READER, {})
        .node(2, NodeKind.ROW_FILTER)
        .connect(1, 2)
    )


class TestResolveCommand:
    """Tests for `knime2sql resolve`."""

    def test_json_output(self, workflow_file, capsys):
        path = workflow_file(linear_workflow().to_dict())

        assert main(["resolve", str(path)]) == EXIT_OK
        data = json.loads(capsys.readouterr().out)
        assert data["execution_order"] == [1, 2]
        assert data["nodes"][1]["output_schema"] == ["a", "c"]

    def test_yaml_output(self, workflow_file, capsys):
        path = workflow_file(linear_workflow().to_dict())

        assert main(["resolve", str(path), "--format", "yaml"]) == EXIT_OK
        assert "execution_order:" in capsys.readouterr().out

    def test_table_output(self, workflow_file, capsys):
        path = workflow_file(broken_workflow().to_dict())

        assert main(["resolve", str(path), "-f", "table"]) == EXIT_UNRESOLVED
        out = capsys.readouterr().out
        assert out.startswith("ORDER")
        assert "UNRESOLVED: upstream node 1 unresolved" in out
        assert "[E4001] error:" in out

    def test_unreadable_declaration(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")

        assert main(["resolve", str(path)]) == EXIT_BAD_INPUT
        assert "Invalid JSON" in capsys.readouterr().err

    def test_invalid_log_level(self, workflow_file, capsys):
        path = workflow_file(linear_workflow().to_dict())

        assert main(["--log-level", "loud", "resolve", str(path)]) == EXIT_BAD_INPUT
        assert "Invalid log level" in capsys.readouterr().err


class TestSqlCommand:
    """Tests for `knime2sql sql`."""

    def test_script_to_stdout(self, workflow_file, capsys):
        path = workflow_file(linear_workflow().to_dict())

        assert main(["sql", str(path)]) == EXIT_OK
        out = capsys.readouterr().out
        assert 'CREATE VIEW "node_1" AS' in out
        assert 'CREATE VIEW "node_2" AS' in out

    def test_single_node(self, workflow_file, capsys):
        path = workflow_file(linear_workflow().to_dict())

        assert main(["sql", str(path), "--node", "2"]) == EXIT_OK
        assert capsys.readouterr().out == 'SELECT\n  "a",\n  "c"\nFROM "node_1";\n'

    def test_single_node_failure(self, workflow_file, capsys):
        path = workflow_file(broken_workflow().to_dict())

        assert main(["sql", str(path), "-n", "2"]) == EXIT_UNRESOLVED
        assert "Error: [E3004]" in capsys.readouterr().err

    def test_output_file(self, workflow_file, tmp_path):
        path = workflow_file(broken_workflow().to_dict())
        output = tmp_path / "out.sql"

        assert main(["sql", str(path), "-o", str(output)]) == EXIT_UNRESOLVED
        script = output.read_text(encoding="utf-8")
        assert script.startswith("-- Workflow: broken")
        assert "(skipped)" in script


class TestFormatTable:
    """Tests for the plain-text table."""

    def test_columns_listed(self):
        text = format_table(linear_workflow().resolve())
        lines = text.splitlines()

        assert len(lines) == 3
        assert lines[2].endswith("a, c")
        assert "column_filter" in lines[2]
