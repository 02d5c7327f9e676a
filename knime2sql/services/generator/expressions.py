"""
SQL for expression-based nodes: String Manipulation, Expression, Rule Engine.

Only the subset of each KNIME expression language that has a direct SQL
equivalent is translated; anything else raises GenerationError.
"""
import logging
import re
from typing import Dict, List, Optional

from knime2sql.core.errors import ErrorCode
from knime2sql.services.generator.sql_utils import (
    SqlContext,
    quote_identifier,
    quote_literal,
    select_statement,
)
from knime2sql.services.resolver.column_rules import (
    expression_specs,
    rule_engine_target,
    string_manipulation_target,
)
from knime2sql.services.settings.settings_tree import (
    children_of,
    find_child,
    get_array_values,
    get_value,
)

logger = logging.getLogger(__name__)

REGEX_REPLACE_PATTERN = re.compile(
    r'^regexReplace\(\s*\$(.*?)\$\s*,\s*"((?:\\"|[^"])*)"\s*,\s*"((?:\\"|[^"])*)"\s*\)$'
)
STRING_LITERAL_PATTERN = re.compile(r'^"((?:\\"|[^"])*)"$')
NUMBER_PATTERN = re.compile(r"^[+-]?\d+(\.\d+)?$")
# $["col"] (expression node) and $col$ (legacy syntax)
BRACKET_REF_PATTERN = re.compile(r'\$\[\s*"((?:\\"|[^"])*)"\s*\]')
DOLLAR_REF_PATTERN = re.compile(r"\$([^$\[\]]+)\$")
STRING_CALL_PATTERN = re.compile(r"^string\((.*)\)$")
CONDITION_PATTERN = re.compile(r"^\$(.+?)\$\s*(<=|>=|<>|=|<|>)\s*(.+)$")
MISSING_PATTERN = re.compile(r"^MISSING\s+\$(.+?)\$$", re.IGNORECASE)


def _unescape(value: str) -> str:
    return value.replace('\\"', '"')


def _project(ctx: SqlContext, computed: Dict[str, str]) -> str:
    """Select the output columns, substituting computed ones."""
    parts = []
    for col in ctx.output_schema:
        if col in computed:
            parts.append(f"{computed[col]} AS {quote_identifier(col)}")
        else:
            parts.append(quote_identifier(col))
    return select_statement(parts, ctx.source())


# ---------------------------------------------------------------------------
# String Manipulation
# ---------------------------------------------------------------------------

def translate_string_manipulation(expression: str) -> Optional[str]:
    match = REGEX_REPLACE_PATTERN.match(expression.strip())
    if not match:
        return None
    column, pattern, replacement = match.groups()
    return (
        f"REGEXP_REPLACE({quote_identifier(column)}, "
        f"{quote_literal(_unescape(pattern))}, {quote_literal(_unescape(replacement))})"
    )


def generate_string_manipulation(ctx: SqlContext) -> str:
    model = ctx.model()
    target, _ = string_manipulation_target(model)
    source_expression = get_value(model, "expression") or ""
    expression = translate_string_manipulation(source_expression)
    if expression is None:
        raise ctx.error(
            f"unsupported expression {source_expression!r}; only regexReplace is translated",
            code=ErrorCode.GENERATION_UNSUPPORTED,
        )
    return _project(ctx, {target: expression})


# ---------------------------------------------------------------------------
# Expression
# ---------------------------------------------------------------------------

def _split_concatenation(script: str) -> List[str]:
    """Split on '+' outside string literals."""
    parts = []
    current = []
    in_string = False
    previous = ""
    for char in script:
        if char == '"' and previous != "\\":
            in_string = not in_string
        if char == "+" and not in_string:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        previous = char
    parts.append("".join(current).strip())
    return parts


def translate_expression_token(token: str) -> str:
    literal = STRING_LITERAL_PATTERN.match(token)
    if literal:
        return quote_literal(_unescape(literal.group(1)))
    if NUMBER_PATTERN.match(token):
        return token
    call = STRING_CALL_PATTERN.match(token)
    if call:
        return f"CAST({translate_expression_token(call.group(1).strip())} AS VARCHAR)"
    token = BRACKET_REF_PATTERN.sub(lambda m: quote_identifier(_unescape(m.group(1))), token)
    return DOLLAR_REF_PATTERN.sub(lambda m: quote_identifier(m.group(1)), token)


def translate_expression(script: str) -> str:
    """KNIME expression to SQL: '+' becomes '||', literals and references quoted."""
    tokens = [t for t in _split_concatenation(script.strip()) if t]
    if not tokens:
        raise ValueError(f"empty expression {script!r}")
    return " || ".join(translate_expression_token(t) for t in tokens)


def generate_expression(ctx: SqlContext) -> str:
    specs = expression_specs(ctx.model())
    computed: Dict[str, str] = {}
    for spec in specs:
        try:
            computed[spec.column] = translate_expression(spec.script)
        except ValueError as e:
            raise ctx.error(f"expression ({spec.source}): {e}")
    return _project(ctx, computed)


# ---------------------------------------------------------------------------
# Rule Engine
# ---------------------------------------------------------------------------

def translate_rule_operand(operand: str) -> Optional[str]:
    operand = operand.strip()
    column = re.match(r"^\$(.+?)\$$", operand)
    if column:
        return quote_identifier(column.group(1).strip())
    literal = STRING_LITERAL_PATTERN.match(operand)
    if literal:
        return quote_literal(_unescape(literal.group(1)))
    if NUMBER_PATTERN.match(operand):
        return operand
    return None


def translate_rule_condition(condition: str) -> Optional[str]:
    condition = condition.strip()
    if condition.upper() == "TRUE":
        return "TRUE"
    missing = MISSING_PATTERN.match(condition)
    if missing:
        return f"{quote_identifier(missing.group(1).strip())} IS NULL"
    comparison = CONDITION_PATTERN.match(condition)
    if comparison:
        column, operator, value = comparison.groups()
        sql_value = translate_rule_operand(value)
        if sql_value is None:
            return None
        return f"{quote_identifier(column.strip())} {operator} {sql_value}"
    return translate_rule_operand(condition)


def rules_to_case(rules: List[str]) -> str:
    """
    Rules 'condition => result' as a CASE expression.

    A TRUE condition becomes the ELSE branch (last one wins); without one the
    CASE falls back to NULL. Raises ValueError listing untranslatable rules.
    """
    whens = []
    default = None
    failed = []
    for rule in rules:
        parts = rule.split("=>")
        if len(parts) != 2:
            failed.append(rule)
            continue
        condition = translate_rule_condition(parts[0])
        result = translate_rule_operand(parts[1])
        if condition is None or result is None:
            failed.append(rule)
            continue
        if condition == "TRUE":
            if default is not None:
                logger.warning("Multiple TRUE rules; the last one is the default")
            default = result
        else:
            whens.append(f"WHEN {condition} THEN {result}")

    if failed:
        raise ValueError("cannot translate rule(s): " + "; ".join(repr(r) for r in failed))
    if not whens:
        return default or "NULL"
    lines = ["CASE"] + [f"    {w}" for w in whens] + [f"    ELSE {default or 'NULL'}", "  END"]
    return "\n".join(lines)


def generate_rule_engine(ctx: SqlContext) -> str:
    model = ctx.model()
    target, _ = rule_engine_target(model)
    rules = get_array_values(find_child(children_of(model), "rules"))
    if not rules:
        logger.warning(f"Node {ctx.node_id}: no rules; {target!r} is NULL")
        return _project(ctx, {target: "NULL"})
    try:
        case = rules_to_case(rules)
    except ValueError as e:
        raise ctx.error(str(e), code=ErrorCode.GENERATION_UNSUPPORTED)
    return _project(ctx, {target: case})
