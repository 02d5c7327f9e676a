"""SQL for file readers: the file path stands in for a table name."""
from knime2sql.services.generator.sql_utils import SqlContext, quote_identifier
from knime2sql.services.resolver.column_rules import reader_path
from knime2sql.services.settings.settings_tree import children_of, find_child, get_value


def _select_from_file(ctx: SqlContext) -> str:
    path = reader_path(ctx.model())
    if not path:
        raise ctx.error("reader has no file path")
    if not ctx.output_schema:
        raise ctx.error("reader has no columns")
    columns = ",\n  ".join(quote_identifier(col) for col in ctx.output_schema)
    return f"SELECT\n  {columns}\nFROM {quote_identifier(path)}"


def generate_csv_reader(ctx: SqlContext) -> str:
    return _select_from_file(ctx)


def generate_excel_reader(ctx: SqlContext) -> str:
    sql = _select_from_file(ctx)
    model = ctx.model()
    sheet = get_value(model, "sheet_name") or get_value(
        find_child(children_of(model), "settings"), "sheet_name"
    )
    if sheet:
        sql = f"-- Sheet: {' '.join(str(sheet).split())}\n{sql}"
    return sql
