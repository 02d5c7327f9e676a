"""
Test Factories for knime2sql tests.

Provides:
- Settings-tree builders (entries, blocks, array blocks)
- Per-kind node settings builders
- WorkflowBuilder for declarations, declaration dicts and resolution
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from knime2sql.core.config import ConverterSettings
from knime2sql.models.workflow_models import (
    FACTORY_KINDS,
    ConnectionDeclaration,
    NodeDeclaration,
    NodeKind,
    ResolvedWorkflow,
)
from knime2sql.services.resolver.column_flow import resolve_workflow


# ---------------------------------------------------------------------------
# Settings tree
# ---------------------------------------------------------------------------

def entry(key: str, value: Any, type: str = "xstring", isnull: bool = False) -> Dict[str, Any]:
    """One settings entry."""
    result = {"key": key, "type": type, "value": value}
    if isnull:
        result["isnull"] = "true"
    return result


def flag(key: str, value: bool) -> Dict[str, Any]:
    """An xboolean entry."""
    return entry(key, "true" if value else "false", type="xboolean")


def block(key: str, entries: Sequence[Dict] = (), configs: Sequence[Dict] = ()) -> Dict[str, Any]:
    """A nested config block."""
    result: Dict[str, Any] = {"key": key}
    if entries:
        result["entry"] = list(entries)
    if configs:
        result["config"] = list(configs)
    return result


def array_block(key: str, values: Sequence[str]) -> Dict[str, Any]:
    """KNIME array encoding: array-size plus positional xstring entries."""
    entries = [entry("array-size", str(len(values)), type="xint")]
    entries.extend(entry(str(i), value) for i, value in enumerate(values))
    return block(key, entries)


def numbered(blocks: Sequence[Tuple[Sequence[Dict], Sequence[Dict]]]) -> List[Dict[str, Any]]:
    """Blocks keyed "0", "1", ... from (entries, configs) pairs."""
    return [block(str(i), entries, configs) for i, (entries, configs) in enumerate(blocks)]


def node_settings(entries: Sequence[Dict] = (), configs: Sequence[Dict] = ()) -> Dict[str, Any]:
    """A settings.xml tree with the given model block."""
    return block("settings.xml", configs=[block("model", entries, configs)])


# ---------------------------------------------------------------------------
# Per-kind settings
# ---------------------------------------------------------------------------

def reader_settings(path: str, columns: Sequence[str], sheet: Optional[str] = None) -> Dict[str, Any]:
    file_selection = block(
        "settings",
        configs=[block("file_selection", configs=[block("path", [entry("path", path)])])],
    )
    spec = block(
        "table_spec_config_Internals",
        configs=[
            block(
                "individual_specs",
                configs=[
                    block(path, configs=[
                        block(str(i), [entry("name", name), entry("type", "String")])
                        for i, name in enumerate(columns)
                    ])
                ],
            )
        ],
    )
    entries = [entry("sheet_name", sheet)] if sheet else []
    return node_settings(entries, [file_selection, spec])


def column_filter_settings(
    excluded: Sequence[str] = (),
    included: Sequence[str] = (),
    enforce: str = "EnforceExclusion",
) -> Dict[str, Any]:
    column_filter = block(
        "column-filter",
        [entry("filter-type", "STANDARD"), entry("enforce_option", enforce)],
        [array_block("included_names", included), array_block("excluded_names", excluded)],
    )
    return node_settings(configs=[column_filter])


def renamer_settings(mapping: Dict[str, str]) -> Dict[str, Any]:
    rules = numbered([
        ([entry("oldName", old), entry("newName", new)], ()) for old, new in mapping.items()
    ])
    return node_settings(configs=[block("renamings", configs=rules)])


def merger_settings(
    primary: str,
    secondary: str,
    placement: str = "AppendAsNewColumn",
    output_name: Optional[str] = None,
) -> Dict[str, Any]:
    entries = [
        entry("primaryColumn", primary),
        entry("secondaryColumn", secondary),
        entry("outputPlacement", placement),
    ]
    if output_name is not None:
        entries.append(entry("outputName", output_name))
    return node_settings(entries)


def string_manipulation_settings(
    expression: str,
    replaced_column: Optional[str] = None,
    append: bool = False,
) -> Dict[str, Any]:
    entries = [entry("expression", expression), flag("append_column", append)]
    if replaced_column is not None:
        entries.append(entry("replaced_column", replaced_column))
    return node_settings(entries)


def expression_settings(
    script: str,
    mode: str = "APPEND",
    column: str = "new_col",
    additional: Sequence[Tuple[str, str, str]] = (),
) -> Dict[str, Any]:
    """Main expression plus (script, mode, column) additional expressions."""

    def expression_entries(script, mode, column):
        name_key = "createdColumn" if mode == "APPEND" else "replacedColumn"
        return [entry("script", script), entry("columnOutputMode", mode), entry(name_key, column)]

    configs = []
    if additional:
        configs.append(block(
            "additionalExpressions",
            configs=numbered([(expression_entries(*spec), ()) for spec in additional]),
        ))
    return node_settings(expression_entries(script, mode, column), configs)


def rule_engine_settings(
    rules: Sequence[str],
    append: bool = True,
    new_column: Optional[str] = "prediction",
    replace_column: Optional[str] = None,
) -> Dict[str, Any]:
    entries = [flag("append-column", append)]
    if new_column is not None:
        entries.append(entry("new-column-name", new_column))
    if replace_column is not None:
        entries.append(entry("replace-column-name", replace_column))
    return node_settings(entries, [array_block("rules", rules)])


def predicate(column: str, operator: str, value: Optional[str] = None) -> Tuple[List, List]:
    """(entries, configs) of one row3 predicate."""
    configs = [block("column", [entry("selected", column)])]
    if value is not None:
        configs.append(block(
            "predicateValues",
            configs=[block("values", configs=[block("0", [entry("value", value)])])],
        ))
    return [entry("operator", operator)], configs


def row_filter_settings(
    predicates: Sequence[Tuple[List, List]],
    match: str = "AND",
    mode: str = "MATCHING",
) -> Dict[str, Any]:
    return node_settings(
        [entry("matchCriteria", match), entry("outputMode", mode)],
        [block("predicates", configs=numbered(predicates))],
    )


def duplicate_filter_settings(
    group_columns: Sequence[str] = (),
    remove: bool = True,
    row_selection: str = "FIRST",
) -> Dict[str, Any]:
    group_cols = block(
        "group_cols",
        [entry("filter-type", "STANDARD")],
        [array_block("included_names", group_columns)],
    )
    return node_settings(
        [flag("remove_duplicates", remove), entry("row_selection", row_selection)],
        [group_cols],
    )


def string_to_number_settings(
    columns: Sequence[str],
    cell_class: str = "org.knime.core.data.def.DoubleCell",
    fail_on_error: bool = False,
) -> Dict[str, Any]:
    return node_settings(
        [flag("fail_on_error", fail_on_error)],
        [
            block("include", configs=[array_block("included_names", columns)]),
            block("parse_type", [entry("cell_class", cell_class)]),
        ],
    )


def joiner_settings(
    criteria: Sequence[Tuple[str, str]],
    merge_keys: bool = False,
    suffix: Optional[str] = None,
    matches: bool = True,
    left_unmatched: bool = False,
    right_unmatched: bool = False,
    left_selection: Optional[Sequence[str]] = None,
    right_selection: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Joiner model; a `*_selection` list becomes an EnforceInclusion column selection."""
    entries = [
        flag("mergeJoinColumns", merge_keys),
        flag("includeMatchesInOutput", matches),
        flag("includeLeftUnmatchedInOutput", left_unmatched),
        flag("includeRightUnmatchedInOutput", right_unmatched),
    ]
    if suffix is not None:
        entries.append(entry("suffix", suffix))
    matching = block(
        "matchingCriteria",
        configs=numbered([
            ([entry("leftTableColumn", left), entry("rightTableColumn", right)], ())
            for left, right in criteria
        ]),
    )
    configs = [matching]
    selections = (
        ("leftColumnSelectionConfig", left_selection),
        ("rightColumnSelectionConfig", right_selection),
    )
    for key, included in selections:
        if included is not None:
            configs.append(block(
                key,
                [entry("filter-type", "STANDARD"), entry("enforce_option", "EnforceInclusion")],
                [array_block("included_names", included), array_block("excluded_names", [])],
            ))
    return node_settings(entries, configs)


def concatenate_settings(intersection: bool = False) -> Dict[str, Any]:
    return node_settings([flag("intersection_of_columns", intersection)])


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

def factory_for(kind: NodeKind) -> str:
    """First KNIME factory class registered for `kind`."""
    for factory, factory_kind in FACTORY_KINDS.items():
        if factory_kind == kind:
            return factory
    return "org.knime.example.UnsupportedNodeFactory"


@dataclass
class WorkflowBuilder:
    """Fluent builder for workflow declarations."""
    name: str = "test_workflow"
    nodes: List[NodeDeclaration] = field(default_factory=list)
    connections: List[ConnectionDeclaration] = field(default_factory=list)

    def node(
        self,
        node_id: int,
        kind: NodeKind,
        settings: Optional[Dict[str, Any]] = None,
        name: Optional[str] = None,
    ) -> "WorkflowBuilder":
        self.nodes.append(NodeDeclaration(
            id=node_id,
            factory=factory_for(kind),
            settings=settings or {},
            name=name,
        ))
        return self

    def reader(self, node_id: int, columns: Sequence[str], path: Optional[str] = None) -> "WorkflowBuilder":
        return self.node(node_id, NodeKind.CSV_READER, reader_settings(path or f"file_{node_id}.csv", columns))

    def connect(
        self,
        source_id: int,
        dest_id: int,
        dest_port: Optional[int] = 0,
        source_port: int = 1,
    ) -> "WorkflowBuilder":
        self.connections.append(ConnectionDeclaration(
            source_id=source_id,
            dest_id=dest_id,
            source_port=source_port,
            dest_port=dest_port,
        ))
        return self

    def resolve(self, settings: Optional[ConverterSettings] = None) -> ResolvedWorkflow:
        return resolve_workflow(self.nodes, self.connections, settings=settings, name=self.name)

    def to_dict(self) -> Dict[str, Any]:
        """JSON declaration as read by WorkflowLoader."""
        return {
            "name": self.name,
            "nodes": [
                {"id": n.id, "factory": n.factory, "name": n.name, "settings": n.settings}
                for n in self.nodes
            ],
            "connections": [
                {
                    "sourceID": c.source_id,
                    "destID": c.dest_id,
                    "sourcePort": c.source_port,
                    "destPort": c.dest_port,
                }
                for c in self.connections
            ],
        }


def linear_workflow() -> WorkflowBuilder:
    """CSV reader [a, b, c] -> column filter excluding b."""
    return (
        WorkflowBuilder(name="linear")
        .reader(1, ["a", "b", "c"], path="data.csv")
        .node(2, NodeKind.COLUMN_FILTER, column_filter_settings(excluded=["b"]))
        .connect(1, 2)
    )


def join_workflow(merge_keys: bool = True) -> WorkflowBuilder:
    """customers [id, name] joined with orders [id, amount] on id."""
    return (
        WorkflowBuilder(name="join")
        .reader(1, ["id", "name"], path="customers.csv")
        .reader(2, ["id", "amount"], path="orders.csv")
        .node(3, NodeKind.JOINER, joiner_settings([("id", "id")], merge_keys=merge_keys))
        .connect(1, 3, dest_port=0)
        .connect(2, 3, dest_port=1)
    )
