"""
Column rules - how each node kind changes the columns flowing through it.

Every NodeKind has exactly one rule. A rule reads the node's settings (and,
where the delta depends on it, the input schema) and returns either a
ColumnDelta to apply to the input or the complete output schema. Missing
settings that the columns depend on raise SettingsError; the resolver turns
that into an unresolved node.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from knime2sql.core.errors import ErrorCode, InvariantViolation, SettingsError
from knime2sql.models.workflow_models import ColumnDelta, NodeKind
from knime2sql.services.settings.settings_tree import (
    children_of,
    find_child,
    find_path,
    get_array_values,
    get_bool,
    get_model,
    get_value,
    key_of,
)

logger = logging.getLogger(__name__)

DEFAULT_JOIN_SUFFIX = " (Right)"

# $column$ reference in KNIME string-manipulation and rule syntax
COLUMN_REF_PATTERN = re.compile(r"\$([^$]+)\$")


@dataclass
class RuleContext:
    """Everything a column rule may look at."""
    node_id: int
    settings: Mapping
    input_schema: List[str] = field(default_factory=list)
    input_schemas: List[List[str]] = field(default_factory=list)
    left_schema: Optional[List[str]] = None
    right_schema: Optional[List[str]] = None
    join_suffix: str = DEFAULT_JOIN_SUFFIX

    @property
    def model(self) -> Optional[Mapping]:
        return get_model(self.settings)


@dataclass
class RuleResult:
    """Delta relative to the input; `output` is set when a rule defines it directly."""
    delta: ColumnDelta = field(default_factory=ColumnDelta)
    output: Optional[List[str]] = None


def apply_delta(input_schema: List[str], delta: ColumnDelta) -> List[str]:
    """
    Renames in place, then removals, then additions.

    An added name already present keeps its first position.
    """
    renamed = [delta.renamed.get(col, col) for col in input_schema]
    removed = set(delta.removed)
    output = []
    for col in renamed:
        if col not in removed and col not in output:
            output.append(col)
    for col in delta.added:
        if col not in output:
            output.append(col)
    return output


def unique_name(name: str, taken: List[str]) -> str:
    """KNIME-style unique column name: 'name', 'name (#1)', 'name (#2)', ..."""
    if name not in taken:
        return name
    counter = 1
    while f"{name} (#{counter})" in taken:
        counter += 1
    return f"{name} (#{counter})"


def _require_model(ctx: RuleContext, kind: str) -> Mapping:
    model = ctx.model
    if model is None:
        raise SettingsError(f"{kind}: 'model' configuration not found")
    return model


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

def reader_path(model: Mapping) -> Optional[str]:
    """File path of a CSV/Excel reader, as used to key its table spec."""
    path = get_value(find_path(model, "settings", "file_selection", "path"), "path")
    if not path:
        path = get_value(find_child(children_of(model), "settings"), "path")
    return path if isinstance(path, str) else None


def reader_columns(model: Mapping, path: str) -> List[str]:
    """Column names from table_spec_config_Internals/individual_specs/<path>."""
    spec = find_path(model, "table_spec_config_Internals", "individual_specs", path)
    columns = []
    for column_block in children_of(spec):
        key = key_of(column_block)
        if key is None or not key.isdigit():
            continue
        name = get_value(column_block, "name")
        if not name:
            continue
        if name in columns:
            logger.warning(f"Duplicate column '{name}' in table spec for {path}; keeping the first")
            continue
        columns.append(name)
    return columns


def _reader_rule(ctx: RuleContext) -> RuleResult:
    model = _require_model(ctx, "Reader")
    path = reader_path(model)
    if not path:
        raise SettingsError("Reader: no file path in settings")
    columns = reader_columns(model, path)
    if not columns:
        raise SettingsError(f"Reader: no column specification for '{path}'")
    return RuleResult(output=columns)


# ---------------------------------------------------------------------------
# Single-input transforms
# ---------------------------------------------------------------------------

def _pass_through(ctx: RuleContext) -> RuleResult:
    return RuleResult()


def _column_filter_rule(ctx: RuleContext) -> RuleResult:
    model = _require_model(ctx, "Column Filter")
    column_filter = find_child(children_of(model), "column-filter")
    if column_filter is None:
        raise SettingsError("Column Filter: 'column-filter' configuration not found")

    included = get_array_values(find_child(children_of(column_filter), "included_names"))
    excluded = get_array_values(find_child(children_of(column_filter), "excluded_names"))

    if get_value(column_filter, "enforce_option") == "EnforceInclusion":
        keep = set(included)
        removed = [col for col in ctx.input_schema if col not in keep]
        missing = [col for col in included if col not in ctx.input_schema]
        if missing:
            logger.warning(f"Node {ctx.node_id}: included columns not in input: {missing}")
        return RuleResult(delta=ColumnDelta(removed=removed))

    return RuleResult(delta=ColumnDelta(removed=list(excluded)))


def _column_merger_rule(ctx: RuleContext) -> RuleResult:
    model = _require_model(ctx, "Column Merger")
    primary = get_value(model, "primaryColumn")
    secondary = get_value(model, "secondaryColumn")
    placement = get_value(model, "outputPlacement")
    if not primary or not secondary or not placement:
        raise SettingsError(
            "Column Merger: primaryColumn, secondaryColumn and outputPlacement are required"
        )

    if placement in ("ReplacePrimary", "ReplaceSecondary"):
        return RuleResult()
    if placement == "ReplaceBoth":
        return RuleResult(delta=ColumnDelta(removed=[secondary]))

    # AppendAsNewColumn (older exports call it NewColumn)
    output_name = get_value(model, "outputName")
    if not output_name:
        raise SettingsError("Column Merger: outputName is required to append a column")
    return RuleResult(delta=ColumnDelta(added=[unique_name(output_name, ctx.input_schema)]))


def renamings(model: Mapping) -> Dict[str, str]:
    """oldName -> newName pairs from model/renamings, in declaration order."""
    mapping: Dict[str, str] = {}
    for rule in children_of(find_child(children_of(model), "renamings")):
        old_name = get_value(rule, "oldName")
        new_name = get_value(rule, "newName")
        if old_name and new_name:
            mapping[old_name] = new_name
        else:
            logger.warning(f"Ignoring renaming rule {key_of(rule)!r}: oldName or newName missing")
    return mapping


def _column_renamer_rule(ctx: RuleContext) -> RuleResult:
    model = _require_model(ctx, "Column Renamer")
    renamed = {}
    for old_name, new_name in renamings(model).items():
        if old_name not in ctx.input_schema:
            logger.warning(f"Node {ctx.node_id}: cannot rename '{old_name}', not in input")
            continue
        if old_name != new_name:
            renamed[old_name] = new_name

    result = [renamed.get(col, col) for col in ctx.input_schema]
    if len(set(result)) != len(result):
        raise SettingsError(
            "Column Renamer: renaming produces duplicate column names",
            code=ErrorCode.SETTINGS_INVALID,
        )
    return RuleResult(delta=ColumnDelta(renamed=renamed))


def string_manipulation_target(model: Mapping) -> Tuple[str, bool]:
    """
    Output column of a String Manipulation node and whether it is appended.

    With append_column set, the column referenced in the expression is
    rewritten in place; otherwise `replaced_column` is appended.
    """
    expression = get_value(model, "expression")
    if not expression:
        raise SettingsError("String Manipulation: 'expression' is missing")
    replaced_column = get_value(model, "replaced_column")

    if get_bool(model, "append_column"):
        match = COLUMN_REF_PATTERN.search(expression)
        target = match.group(1) if match else replaced_column
        if not target:
            raise SettingsError("String Manipulation: no column referenced by the expression")
        return target, False

    if not replaced_column:
        raise SettingsError("String Manipulation: 'replaced_column' is missing")
    return replaced_column, True


def _string_manipulation_rule(ctx: RuleContext) -> RuleResult:
    target, _ = string_manipulation_target(_require_model(ctx, "String Manipulation"))
    if target in ctx.input_schema:
        return RuleResult()
    return RuleResult(delta=ColumnDelta(added=[target]))


@dataclass
class ExpressionSpec:
    script: str
    mode: str
    column: str
    source: str


def expression_specs(model: Mapping) -> List[ExpressionSpec]:
    """Main expression then additionalExpressions, each with its output column."""
    blocks = [("main", model)]
    additional = find_child(children_of(model), "additionalExpressions")
    blocks.extend(
        (f"additional[{i}]", block) for i, block in enumerate(children_of(additional))
    )

    specs = []
    for source, block in blocks:
        script = get_value(block, "script")
        if not script:
            continue
        mode = get_value(block, "columnOutputMode")
        if mode == "APPEND":
            column = get_value(block, "createdColumn")
        elif mode == "REPLACE":
            column = get_value(block, "replacedColumn")
        else:
            raise SettingsError(
                f"Expression ({source}): unknown columnOutputMode {mode!r}",
                code=ErrorCode.SETTINGS_INVALID,
            )
        if not column:
            raise SettingsError(f"Expression ({source}): {mode} mode has no output column name")
        specs.append(ExpressionSpec(script=script, mode=mode, column=column, source=source))
    return specs


def _expression_rule(ctx: RuleContext) -> RuleResult:
    specs = expression_specs(_require_model(ctx, "Expression"))
    added = []
    for spec in specs:
        if spec.column not in ctx.input_schema and spec.column not in added:
            if spec.mode == "REPLACE":
                logger.warning(
                    f"Node {ctx.node_id}: column '{spec.column}' to replace not in input; appending it"
                )
            added.append(spec.column)
    return RuleResult(delta=ColumnDelta(added=added))


def rule_engine_target(model: Mapping) -> Tuple[str, bool]:
    """Output column of a Rule Engine node and whether it is appended."""
    if get_bool(model, "append-column"):
        name = get_value(model, "new-column-name")
        if not name:
            raise SettingsError("Rule Engine: set to append but 'new-column-name' is missing")
        return name, True
    name = get_value(model, "replace-column-name")
    if not name:
        raise SettingsError("Rule Engine: set to replace but 'replace-column-name' is missing")
    return name, False


def _rule_engine_rule(ctx: RuleContext) -> RuleResult:
    target, _ = rule_engine_target(_require_model(ctx, "Rule Engine"))
    if target in ctx.input_schema:
        return RuleResult()
    return RuleResult(delta=ColumnDelta(added=[target]))


# ---------------------------------------------------------------------------
# Multi-input
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class JoinColumn:
    """One output column of a join: side ('L'/'R'), source column, output name."""
    side: str
    source: str
    name: str


def selected_columns(selection: Optional[Mapping], available: List[str]) -> List[str]:
    """Apply a joiner left/right column selection to the available columns."""
    if selection is None:
        return list(available)
    filter_type = get_value(selection, "filter-type")
    if filter_type not in (None, "STANDARD"):
        logger.warning(f"Joiner column selection '{filter_type}' not handled; selecting all columns")
        return list(available)

    included = get_array_values(find_child(children_of(selection), "included_names"))
    excluded = get_array_values(find_child(children_of(selection), "excluded_names"))
    enforce = get_value(selection, "enforce_option")

    if enforce == "EnforceInclusion" or (enforce == "EnforceExclusion" and included):
        selected = []
        for col in included:
            if col in available and col not in selected:
                selected.append(col)
        return selected
    if enforce == "EnforceExclusion":
        return [col for col in available if col not in excluded]
    return list(available)


def join_criteria(model: Mapping) -> List[Tuple[str, str]]:
    """(left column, right column) pairs from matchingCriteria."""
    pairs = []
    for criterion in children_of(find_child(children_of(model), "matchingCriteria")):
        left = get_value(criterion, "leftTableColumn")
        right = get_value(criterion, "rightTableColumn")
        if left and right:
            pairs.append((left, right))
    return pairs


def join_columns(
    model: Mapping,
    left_schema: List[str],
    right_schema: List[str],
    default_suffix: str = DEFAULT_JOIN_SUFFIX,
) -> List[JoinColumn]:
    """
    Output columns of a join, left selection first.

    Right join keys are dropped when mergeJoinColumns is set; right names
    that collide with earlier output names get the duplicate suffix.
    """
    suffix = get_value(model, "suffix") or default_suffix
    merge_keys = get_bool(model, "mergeJoinColumns")
    right_keys = {right for _, right in join_criteria(model)}

    left_selected = selected_columns(
        find_child(children_of(model), "leftColumnSelectionConfig"), left_schema
    )
    right_selected = selected_columns(
        find_child(children_of(model), "rightColumnSelectionConfig"), right_schema
    )

    columns = [JoinColumn("L", col, col) for col in left_selected]
    taken = list(left_selected)
    for col in right_selected:
        if merge_keys and col in right_keys:
            continue
        name = col
        while name in taken:
            name = f"{name}{suffix}"
        taken.append(name)
        columns.append(JoinColumn("R", col, name))
    return columns


def _joiner_rule(ctx: RuleContext) -> RuleResult:
    model = _require_model(ctx, "Joiner")
    if ctx.left_schema is None or ctx.right_schema is None:
        raise InvariantViolation(f"Joiner {ctx.node_id} resolved without both inputs")

    columns = join_columns(model, ctx.left_schema, ctx.right_schema, ctx.join_suffix)
    output = [c.name for c in columns]
    kept_right = {c.source for c in columns if c.side == "R"}
    delta = ColumnDelta(
        added=[c.name for c in columns if c.side == "R"],
        removed=[col for col in ctx.right_schema if col not in kept_right],
        renamed={c.source: c.name for c in columns if c.side == "R" and c.source != c.name},
    )
    return RuleResult(delta=delta, output=output)


def concatenate_columns(model: Optional[Mapping], schemas: List[List[str]]) -> List[str]:
    """Intersection in first-input order, or union in first-seen order."""
    if not schemas:
        return []
    if get_bool(model, "intersection_of_columns"):
        common = list(schemas[0])
        for schema in schemas[1:]:
            members = set(schema)
            common = [col for col in common if col in members]
        return common

    union = []
    for schema in schemas:
        for col in schema:
            if col not in union:
                union.append(col)
    return union


def _concatenate_rule(ctx: RuleContext) -> RuleResult:
    output = concatenate_columns(ctx.model, ctx.input_schemas)
    dropped = [col for col in ctx.input_schema if col not in output]
    return RuleResult(delta=ColumnDelta(removed=dropped), output=output)


ColumnRule = Callable[[RuleContext], RuleResult]

COLUMN_RULES: Dict[NodeKind, ColumnRule] = {
    NodeKind.CSV_READER: _reader_rule,
    NodeKind.EXCEL_READER: _reader_rule,
    NodeKind.COLUMN_FILTER: _column_filter_rule,
    NodeKind.ROW_FILTER: _pass_through,
    NodeKind.DUPLICATE_ROW_FILTER: _pass_through,
    NodeKind.COLUMN_MERGER: _column_merger_rule,
    NodeKind.COLUMN_RENAMER: _column_renamer_rule,
    NodeKind.STRING_TO_NUMBER: _pass_through,
    NodeKind.STRING_MANIPULATION: _string_manipulation_rule,
    NodeKind.EXPRESSION: _expression_rule,
    NodeKind.RULE_ENGINE: _rule_engine_rule,
    NodeKind.JOINER: _joiner_rule,
    NodeKind.CONCATENATE: _concatenate_rule,
    NodeKind.UNKNOWN: _pass_through,
}

_unhandled = [kind.value for kind in NodeKind if kind not in COLUMN_RULES]
if _unhandled:
    raise InvariantViolation(f"No column rule for node kinds: {', '.join(_unhandled)}")


def compute_columns(kind: NodeKind, ctx: RuleContext) -> Tuple[List[str], ColumnDelta]:
    """Run the rule for `kind`; returns (output schema, delta)."""
    result = COLUMN_RULES[kind](ctx)
    if result.output is not None:
        return list(result.output), result.delta
    return apply_delta(ctx.input_schema, result.delta), result.delta
