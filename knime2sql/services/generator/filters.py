"""SQL for column and row filtering nodes."""
import logging
import re
from typing import List, Mapping, Optional

from knime2sql.services.generator.sql_utils import (
    SqlContext,
    quote_identifier,
    quote_literal,
    select_statement,
)
from knime2sql.services.settings.settings_tree import (
    children_of,
    find_child,
    find_path,
    get_array_values,
    get_bool,
    get_value,
)

logger = logging.getLogger(__name__)

NUMBER_PATTERN = re.compile(r"^[+-]?\d+(\.\d+)?$")

COMPARISON_OPERATORS = {
    "EQ": "=",
    "NEQ": "<>",
    "LT": "<",
    "LTE": "<=",
    "GT": ">",
    "GTE": ">=",
}


def generate_column_filter(ctx: SqlContext) -> str:
    if not ctx.output_schema:
        raise ctx.error("column filter leaves no columns")
    return select_statement([quote_identifier(col) for col in ctx.output_schema], ctx.source())


def _sql_value(raw: str) -> str:
    return raw if NUMBER_PATTERN.match(raw) else quote_literal(raw)


def translate_predicate(predicate: Mapping) -> Optional[str]:
    """One row3 predicate as a SQL condition, or None when unsupported."""
    column_block = find_child(children_of(predicate), "column")
    if column_block is None:
        blocks = children_of(predicate)
        column_block = blocks[0] if blocks else None
    column = get_value(column_block, "selected")
    operator = get_value(predicate, "operator")
    if not column or not operator:
        return None

    quoted = quote_identifier(column)
    if operator == "IS_MISSING":
        return f"{quoted} IS NULL"
    if operator == "IS_NOT_MISSING":
        return f"{quoted} IS NOT NULL"
    if operator in COMPARISON_OPERATORS:
        value = get_value(find_path(predicate, "predicateValues", "values", "0"), "value")
        if value is None:
            return None
        return f"{quoted} {COMPARISON_OPERATORS[operator]} {_sql_value(value)}"
    return None


def generate_row_filter(ctx: SqlContext) -> str:
    model = ctx.model()
    source = ctx.source()
    columns = [quote_identifier(col) for col in ctx.output_schema] or ["*"]

    conditions: List[str] = []
    for predicate in children_of(find_child(children_of(model), "predicates")):
        condition = translate_predicate(predicate)
        if condition is None:
            logger.warning(
                f"Node {ctx.node_id}: untranslatable row filter predicate "
                f"{get_value(predicate, 'operator')!r}; treating it as always true"
            )
            condition = "1 = 1"
        conditions.append(f"({condition})")

    if not conditions:
        return select_statement(columns, source)

    match_criteria = (get_value(model, "matchCriteria") or "AND").upper()
    if match_criteria not in ("AND", "OR"):
        raise ctx.error(f"unsupported matchCriteria {match_criteria!r}")
    combined = f" {match_criteria} ".join(conditions)

    output_mode = get_value(model, "outputMode") or "MATCHING"
    if output_mode == "MATCHING":
        where = combined
    elif output_mode == "NON_MATCHING":
        where = f"NOT ({combined})"
    else:
        raise ctx.error(f"unsupported outputMode {output_mode!r}")
    return select_statement(columns, source, where=where)


def duplicate_group_columns(model: Mapping, input_schema: List[str]) -> List[str]:
    """Columns that identify duplicates; all input columns when none are selected."""
    group_cols = find_child(children_of(model), "group_cols")
    selected: List[str] = []
    if group_cols is not None:
        filter_type = get_value(group_cols, "filter-type")
        if filter_type in (None, "STANDARD"):
            included = get_array_values(find_child(children_of(group_cols), "included_names"))
            selected = [col for col in included if col in input_schema]
        else:
            logger.warning(f"Duplicate filter group columns '{filter_type}' not handled; using all columns")
    return selected or list(input_schema)


def generate_duplicate_row_filter(ctx: SqlContext) -> str:
    model = ctx.model()
    source = ctx.source()
    columns = [quote_identifier(col) for col in ctx.output_schema]
    if not columns:
        raise ctx.error("input columns unknown")

    if not get_bool(model, "remove_duplicates", default=True):
        return select_statement(columns, source)

    partition = [quote_identifier(col) for col in duplicate_group_columns(model, ctx.input_schema)]
    direction = "DESC" if get_value(model, "row_selection") == "LAST" else "ASC"
    order_by = ", ".join(f"{col} {direction}" for col in partition)
    row_number = quote_identifier("knime_row_number")

    return (
        "SELECT\n  " + ",\n  ".join(columns) + "\n"
        "FROM (\n"
        "  SELECT\n"
        "    *,\n"
        f"    ROW_NUMBER() OVER (PARTITION BY {', '.join(partition)} ORDER BY {order_by}) AS {row_number}\n"
        f"  FROM {quote_identifier(source)}\n"
        f") AS {quote_identifier('ranked')}\n"
        f"WHERE {row_number} = 1"
    )
