"""
Tests for the column-flow resolver.

End-to-end resolution of small workflows: the documented scenarios,
determinism, and how unresolved status spreads downstream.
"""
import logging

from knime2sql.core.errors import ErrorCode
from knime2sql.models.workflow_models import NodeKind
from knime2sql.services.resolver.column_flow import resolve_workflow, union_schemas
from knime2sql.services.resolver.column_rules import COLUMN_RULES, RuleResult
from tests.factories import (
    WorkflowBuilder,
    column_filter_settings,
    concatenate_settings,
    joiner_settings,
    merger_settings,
    reader_settings,
    renamer_settings,
)


class TestScenarios:
    """Concrete column-flow scenarios."""

    def test_column_filter_removes(self, linear):
        workflow = linear.resolve()
        assert workflow.get_node(2).output_schema == ["a", "c"]
        assert workflow.get_node(2).input_schema == ["a", "b", "c"]
        assert workflow.get_node(2).removed_columns == ["b"]

    def test_renamer_keeps_position(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["x", "y"])
            .node(2, NodeKind.COLUMN_RENAMER, renamer_settings({"x": "z"}))
            .connect(1, 2)
            .resolve()
        )
        node = workflow.get_node(2)
        assert node.output_schema == ["z", "y"]
        assert node.renamed_columns == {"x": "z"}

    def test_join_with_merged_key(self, join):
        workflow = join.resolve()
        node = workflow.get_node(3)

        assert node.output_schema == ["id", "name", "amount"]
        assert [p.id for p in node.predecessors] == [1, 2]
        assert node.predecessor_aliases == ["node_1", "node_2"]

    def test_join_with_repeated_selection(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["id", "name"])
            .reader(2, ["id", "amount"])
            .node(3, NodeKind.JOINER, joiner_settings(
                [("id", "id")], merge_keys=True, left_selection=["id", "name", "name"],
            ))
            .connect(1, 3, dest_port=0)
            .connect(2, 3, dest_port=1)
            .resolve()
        )
        assert workflow.is_complete
        assert workflow.get_node(3).output_schema == ["id", "name", "amount"]

    def test_concatenate_intersection(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["a", "b"])
            .reader(2, ["a", "b", "c"])
            .reader(3, ["a", "b"])
            .node(4, NodeKind.CONCATENATE, concatenate_settings(intersection=True))
            .connect(1, 4, 0)
            .connect(2, 4, 1)
            .connect(3, 4, 2)
            .resolve()
        )
        assert workflow.get_node(4).output_schema == ["a", "b"]


class TestProperties:
    """General resolution properties."""

    def test_topological_order(self, join):
        workflow = join.resolve()
        order = {n.id: n.order for n in workflow.nodes}
        assert workflow.execution_order == [1, 2, 3]
        assert order[1] < order[3] and order[2] < order[3]

    def test_deterministic(self, join):
        first = join.resolve().to_dict()
        second = join.resolve().to_dict()
        assert first == second

    def test_re_added_column_not_duplicated(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["a", "b"])
            .node(2, NodeKind.COLUMN_MERGER, merger_settings("a", "b", "ReplacePrimary"))
            .connect(1, 2)
            .resolve()
        )
        assert workflow.get_node(2).output_schema == ["a", "b"]

    def test_source_ignores_input(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["x", "y", "z"])
            .reader(2, ["a"])
            .connect(1, 2)
            .resolve()
        )
        node = workflow.get_node(2)
        assert node.output_schema == ["a"]
        assert node.input_schema == []

    def test_join_sides_independent_of_declaration_order(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["id", "name"])
            .reader(2, ["id", "amount"])
            .node(3, NodeKind.JOINER, joiner_settings([("id", "id")], merge_keys=True))
            .connect(2, 3, dest_port=1)
            .connect(1, 3, dest_port=0)
            .resolve()
        )
        assert workflow.get_node(3).output_schema == ["id", "name", "amount"]

    def test_extra_predecessors_union(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["a", "b"])
            .reader(2, ["b", "c"])
            .node(3, NodeKind.ROW_FILTER)
            .connect(1, 3)
            .connect(2, 3)
            .resolve()
        )
        assert workflow.get_node(3).output_schema == ["a", "b", "c"]
        assert workflow.get_node(3).predecessors[0].id == 1
        assert ErrorCode.RESOLUTION_EXTRA_PREDECESSOR in [d.code for d in workflow.diagnostics]

    def test_union_schemas(self):
        assert union_schemas([["a", "b"], ["b", "c"], []]) == ["a", "b", "c"]


class TestTaint:
    """Tests for unresolved status propagation."""

    def test_settings_error_taints_downstream(self):
        workflow = (
            WorkflowBuilder()
            .node(1, NodeKind.CSV_READER, reader_settings("data.csv", []))
            .node(2, NodeKind.ROW_FILTER)
            .node(3, NodeKind.COLUMN_FILTER, column_filter_settings(excluded=["a"]))
            .connect(1, 2)
            .connect(2, 3)
            .resolve()
        )
        assert not workflow.is_complete
        assert workflow.get_node(1).reason == "Reader: no column specification for 'data.csv'"
        assert workflow.get_node(2).reason == "upstream node 1 unresolved"
        assert workflow.get_node(3).reason == "upstream node 2 unresolved"
        assert workflow.get_node(3).output_schema == []

        codes = [d.code for d in workflow.diagnostics]
        assert codes[0] == ErrorCode.SETTINGS_MISSING
        assert codes.count(ErrorCode.RESOLUTION_UPSTREAM_UNRESOLVED) == 2

    def test_unaffected_branch_still_resolves(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["a"])
            .node(2, NodeKind.CSV_READER, {})
            .node(3, NodeKind.ROW_FILTER)
            .node(4, NodeKind.ROW_FILTER)
            .connect(1, 3)
            .connect(2, 4)
            .resolve()
        )
        assert workflow.get_node(3).output_schema == ["a"]
        assert [n.id for n in workflow.unresolved_nodes] == [2, 4]

    def test_missing_join_side(self):
        workflow = (
            WorkflowBuilder()
            .reader(1, ["id"])
            .node(3, NodeKind.JOINER, joiner_settings([("id", "id")]))
            .node(4, NodeKind.ROW_FILTER)
            .connect(1, 3, dest_port=0)
            .connect(3, 4)
            .resolve()
        )
        assert workflow.get_node(3).reason == "Node 3 (Joiner): missing right input"
        assert workflow.get_node(4).unresolved

    def test_cycle_nodes_listed_after_ordered(self):
        workflow = (
            WorkflowBuilder()
            .node(2, NodeKind.ROW_FILTER)
            .node(3, NodeKind.ROW_FILTER)
            .reader(1, ["a"])
            .node(4, NodeKind.ROW_FILTER)
            .connect(1, 2)
            .connect(2, 3)
            .connect(3, 2)
            .connect(1, 4)
            .resolve()
        )
        assert [n.id for n in workflow.nodes] == [1, 4, 2, 3]
        assert workflow.execution_order == [1, 4]
        assert workflow.get_node(4).output_schema == ["a"]
        assert workflow.get_node(2).order == -1
        assert workflow.get_node(2).unresolved
        assert workflow.get_node(3).reason == "part of cycle [2, 3]"

    def test_dangling_input_taints(self):
        workflow = (
            WorkflowBuilder()
            .node(2, NodeKind.ROW_FILTER)
            .node(3, NodeKind.ROW_FILTER)
            .connect(99, 2)
            .connect(2, 3)
            .resolve()
        )
        assert workflow.get_node(2).reason == "input from undeclared node 99"
        assert workflow.get_node(3).reason == "upstream node 2 unresolved"

    def test_duplicate_output_taints(self, monkeypatch):
        monkeypatch.setitem(
            COLUMN_RULES, NodeKind.ROW_FILTER, lambda ctx: RuleResult(output=["a", "a"]),
        )
        workflow = (
            WorkflowBuilder()
            .reader(1, ["a"])
            .node(2, NodeKind.ROW_FILTER)
            .node(3, NodeKind.COLUMN_FILTER, column_filter_settings())
            .connect(1, 2)
            .connect(2, 3)
            .resolve()
        )
        node = workflow.get_node(2)

        assert node.reason == "settings produce duplicate output columns: ['a']"
        assert node.output_schema == []
        assert workflow.get_node(3).reason == "upstream node 2 unresolved"
        assert ErrorCode.SETTINGS_INVALID in [d.code for d in workflow.diagnostics]

    def test_summary_logged_with_codes(self, caplog):
        WorkflowBuilder().node(1, NodeKind.CSV_READER, {}).node(2, NodeKind.ROW_FILTER).connect(1, 2).resolve()

        record = caplog.records[-1]
        assert record.levelname == "WARNING"
        assert record.getMessage().startswith("Resolved workflow 'test_workflow': 0/2 nodes")
        assert "codes: E3004, E4001" in record.getMessage()

    def test_clean_summary_logged_as_info(self, linear, caplog):
        caplog.set_level(logging.INFO)
        linear.resolve()

        record = caplog.records[-1]
        assert record.levelname == "INFO"
        assert record.getMessage() == "Resolved workflow 'linear': 2/2 nodes, 0 errors, 0 warnings"


class TestSerialization:
    """Tests for ResolvedWorkflow output."""

    def test_to_dict_shape(self, linear):
        data = linear.resolve().to_dict()

        assert data["name"] == "linear"
        assert data["execution_order"] == [1, 2]
        assert data["complete"] is True
        node = data["nodes"][1]
        assert node["kind"] == "column_filter"
        assert node["predecessors"] == [{"id": 1, "alias": "node_1", "schema": ["a", "b", "c"], "port": 0}]
        assert "renamed_columns" not in node

    def test_yaml(self, linear):
        text = linear.resolve().to_yaml()
        assert "execution_order:" in text
        assert "complete: true" in text
        assert "alias: node_2" in text
