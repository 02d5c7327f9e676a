"""Generator services module exports."""
from knime2sql.services.generator.sql_dispatcher import SQL_GENERATORS, SqlDispatcher, SqlFragment
from knime2sql.services.generator.sql_utils import SqlContext, quote_identifier, quote_literal

__all__ = [
    "SQL_GENERATORS",
    "SqlContext",
    "SqlDispatcher",
    "SqlFragment",
    "quote_identifier",
    "quote_literal",
]
