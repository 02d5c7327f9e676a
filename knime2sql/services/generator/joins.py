"""SQL for multi-input nodes: Joiner and Concatenate."""
import logging

from knime2sql.services.generator.sql_utils import SqlContext, quote_identifier
from knime2sql.services.resolver.column_rules import join_columns, join_criteria
from knime2sql.services.settings.settings_tree import get_bool, get_model

logger = logging.getLogger(__name__)

LEFT = quote_identifier("L")
RIGHT = quote_identifier("R")


def join_type(include_matches: bool, left_unmatched: bool, right_unmatched: bool):
    """
    (JOIN keyword, anti-join side) for the joiner's output flags.

    The anti-join side is "L"/"R" for the table whose key must be NULL, or None.
    """
    flags = (include_matches, left_unmatched, right_unmatched)
    types = {
        (True, False, False): ("INNER JOIN", None),
        (True, True, False): ("LEFT JOIN", None),
        (True, False, True): ("RIGHT JOIN", None),
        (True, True, True): ("FULL OUTER JOIN", None),
        (False, True, False): ("LEFT JOIN", "R"),
        (False, False, True): ("RIGHT JOIN", "L"),
        (False, True, True): ("FULL OUTER JOIN", "LR"),
    }
    return types.get(flags, (None, None))


def generate_joiner(ctx: SqlContext) -> str:
    model = ctx.model()
    left = ctx.port(0)
    right = ctx.port(1)

    include_matches = get_bool(model, "includeMatchesInOutput", default=True)
    left_unmatched = get_bool(model, "includeLeftUnmatchedInOutput")
    right_unmatched = get_bool(model, "includeRightUnmatchedInOutput")
    keyword, anti_side = join_type(include_matches, left_unmatched, right_unmatched)
    if keyword is None:
        raise ctx.error(
            f"unsupported join configuration (matches={include_matches}, "
            f"left unmatched={left_unmatched}, right unmatched={right_unmatched})"
        )

    criteria = join_criteria(model)
    if not criteria:
        raise ctx.error("no join criteria")
    on_clause = "\n  AND ".join(
        f"{LEFT}.{quote_identifier(l_col)} = {RIGHT}.{quote_identifier(r_col)}"
        for l_col, r_col in criteria
    )

    columns = join_columns(model, left.schema, right.schema, ctx.join_suffix)
    if [c.name for c in columns] != ctx.output_schema:
        raise ctx.error("join columns do not match the resolved output columns")
    if not columns:
        raise ctx.error("no columns selected for output")

    parts = []
    for col in columns:
        table = LEFT if col.side == "L" else RIGHT
        item = f"{table}.{quote_identifier(col.source)}"
        if col.name != col.source:
            item += f" AS {quote_identifier(col.name)}"
        parts.append(item)

    sql = (
        "SELECT\n  " + ",\n  ".join(parts) + "\n"
        f"FROM {quote_identifier(left.alias)} AS {LEFT}\n"
        f"{keyword} {quote_identifier(right.alias)} AS {RIGHT}\n"
        f"  ON {on_clause}"
    )

    first_left, first_right = criteria[0]
    if anti_side == "R":
        sql += f"\nWHERE {RIGHT}.{quote_identifier(first_right)} IS NULL"
    elif anti_side == "L":
        sql += f"\nWHERE {LEFT}.{quote_identifier(first_left)} IS NULL"
    elif anti_side == "LR":
        sql += (
            f"\nWHERE {LEFT}.{quote_identifier(first_left)} IS NULL"
            f" OR {RIGHT}.{quote_identifier(first_right)} IS NULL"
        )
    return sql


def generate_concatenate(ctx: SqlContext) -> str:
    if not ctx.predecessors:
        raise ctx.error("no inputs")
    if not ctx.output_schema:
        raise ctx.error("inputs have no columns in common")

    intersection = get_bool(get_model(ctx.settings), "intersection_of_columns")
    parts = []
    for ref in ctx.predecessors:
        items = []
        for col in ctx.output_schema:
            if col in ref.schema:
                items.append(quote_identifier(col))
            else:
                items.append(f"NULL AS {quote_identifier(col)}")
        parts.append("SELECT\n  " + ",\n  ".join(items) + f"\nFROM {quote_identifier(ref.alias)}")

    if len(parts) == 1:
        return parts[0]
    operator = "UNION" if intersection else "UNION ALL"
    return f"\n{operator}\n".join(parts)
