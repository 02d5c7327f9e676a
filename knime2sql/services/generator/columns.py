"""SQL for nodes that rewrite columns in place: merger, renamer, type conversion."""
import logging
from typing import List, Mapping

from knime2sql.services.generator.sql_utils import SqlContext, quote_identifier, select_statement
from knime2sql.services.settings.settings_tree import (
    children_of,
    find_child,
    get_array_values,
    get_bool,
    get_value,
)

logger = logging.getLogger(__name__)

# KNIME cell class fragment -> SQL type
CELL_CLASS_TYPES = [
    ("DoubleCell", "DOUBLE PRECISION"),
    ("IntCell", "INTEGER"),
    ("LongCell", "BIGINT"),
]


def generate_column_merger(ctx: SqlContext) -> str:
    model = ctx.model()
    primary = get_value(model, "primaryColumn")
    secondary = get_value(model, "secondaryColumn")
    placement = get_value(model, "outputPlacement")
    if not primary or not secondary:
        raise ctx.error("primaryColumn and secondaryColumn are required")

    coalesce = f"COALESCE({quote_identifier(primary)}, {quote_identifier(secondary)})"
    if placement == "ReplaceSecondary":
        targets = {secondary}
    elif placement in ("ReplacePrimary", "ReplaceBoth"):
        targets = {primary}
    else:
        targets = {col for col in ctx.output_schema if col not in ctx.input_schema}

    parts = []
    for col in ctx.output_schema:
        if col in targets:
            parts.append(f"{coalesce} AS {quote_identifier(col)}")
        else:
            parts.append(quote_identifier(col))
    return select_statement(parts, ctx.source())


def generate_column_renamer(ctx: SqlContext) -> str:
    if len(ctx.input_schema) != len(ctx.output_schema):
        raise ctx.error("renamer input and output columns do not line up")
    parts = []
    for old_name, new_name in zip(ctx.input_schema, ctx.output_schema):
        if old_name == new_name:
            parts.append(quote_identifier(old_name))
        else:
            parts.append(f"{quote_identifier(old_name)} AS {quote_identifier(new_name)}")
    return select_statement(parts, ctx.source())


def sql_type_for_cell_class(cell_class: str) -> str:
    for fragment, sql_type in CELL_CLASS_TYPES:
        if fragment in (cell_class or ""):
            return sql_type
    logger.warning(f"Unsupported cell class for numeric conversion: {cell_class}; using VARCHAR")
    return "VARCHAR"


def columns_to_convert(model: Mapping) -> List[str]:
    """included_names of whichever model block carries the column selection."""
    for block in children_of(model):
        included = find_child(children_of(block), "included_names")
        if included is not None:
            return get_array_values(included)
    return []


def generate_string_to_number(ctx: SqlContext) -> str:
    model = ctx.model()
    selected = set(columns_to_convert(model))
    if not selected:
        raise ctx.error("no columns selected for conversion")

    cell_class = get_value(find_child(children_of(model), "parse_type"), "cell_class")
    if not cell_class:
        raise ctx.error("target type (parse_type/cell_class) not found")
    sql_type = sql_type_for_cell_class(cell_class)
    cast = "CAST" if get_bool(model, "fail_on_error") else "TRY_CAST"

    parts = []
    for col in ctx.output_schema:
        quoted = quote_identifier(col)
        if col in selected:
            parts.append(f"{cast}({quoted} AS {sql_type}) AS {quoted}")
        else:
            parts.append(quoted)
    return select_statement(parts, ctx.source())
