"""Settings tree accessor exports."""
from knime2sql.services.settings.settings_tree import (
    find_child,
    find_path,
    get_array_values,
    get_bool,
    get_model,
    get_raw_value,
    get_value,
)

__all__ = [
    "find_child",
    "find_path",
    "get_array_values",
    "get_bool",
    "get_model",
    "get_raw_value",
    "get_value",
]
