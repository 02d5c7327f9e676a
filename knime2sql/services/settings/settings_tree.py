"""
Settings Tree Accessor - read-only lookups over a node's settings tree.

A settings tree is the JSON form of KNIME's settings.xml:

    {"key": "model",
     "entry": [{"key": "outputName", "type": "xstring", "value": "merged"}],
     "config": [{"key": "column-filter", "entry": [...], "config": [...]}]}

`entry` and `config` may each be a single mapping or a list of them.
Attributes (key, value, type, isnull) may sit directly on the mapping or
under an `_attributes` sub-mapping. Every accessor here is total: malformed
input yields None or [] and never raises.
"""
import logging
from typing import Any, List, Mapping, Optional, Union

logger = logging.getLogger(__name__)

Block = Mapping[str, Any]

ARRAY_SIZE_KEY = "array-size"


def _as_list(value: Any) -> List[Any]:
    """Normalize the single-or-list shape of `entry`/`config` children."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _attr(item: Any, name: str) -> Any:
    if not isinstance(item, Mapping):
        return None
    attributes = item.get("_attributes")
    if isinstance(attributes, Mapping) and name in attributes:
        return attributes[name]
    return item.get(name)


def key_of(item: Any) -> Optional[str]:
    """Key attribute of an entry or block, or None."""
    key = _attr(item, "key")
    return str(key) if key is not None else None


def entries_of(block: Any) -> List[Block]:
    if not isinstance(block, Mapping):
        return []
    return [e for e in _as_list(block.get("entry")) if isinstance(e, Mapping)]


def children_of(block: Any) -> List[Block]:
    """Nested config blocks of a block, in declaration order."""
    if not isinstance(block, Mapping):
        return []
    return [c for c in _as_list(block.get("config")) if isinstance(c, Mapping)]


def find_entry(block: Any, key: str) -> Optional[Block]:
    for entry in entries_of(block):
        if key_of(entry) == key:
            return entry
    return None


def get_raw_value(block: Any, key: str) -> Optional[str]:
    """
    Value of entry `key` with the empty string kept.

    Returns None when the entry is absent or tagged isnull, "" when it is
    present and empty.
    """
    entry = find_entry(block, key)
    if entry is None:
        return None
    if str(_attr(entry, "isnull")).lower() == "true":
        return None
    value = _attr(entry, "value")
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def get_value(block: Any, key: str) -> Optional[Union[str, bool]]:
    """
    Value of entry `key`.

    - isnull="true" -> None
    - type="xboolean" -> value == "true"
    - otherwise the raw string, or None when it is empty
    """
    entry = find_entry(block, key)
    if entry is None:
        return None
    if str(_attr(entry, "isnull")).lower() == "true":
        return None
    value = _attr(entry, "value")
    if _attr(entry, "type") == "xboolean":
        if isinstance(value, bool):
            return value
        return str(value).lower() == "true"
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def get_bool(block: Any, key: str, default: bool = False) -> bool:
    """Entry `key` as a boolean, also accepting untyped "true"/"false"."""
    value = get_value(block, key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return value.strip().lower() == "true"


def find_child(blocks: Any, key: str) -> Optional[Block]:
    """
    First block named `key` among `blocks`.

    `blocks` may be a single block, a list of blocks, or a parent block whose
    `config` children are searched.
    """
    if blocks is None:
        return None
    if isinstance(blocks, Mapping):
        if key_of(blocks) == key:
            return blocks
        candidates = children_of(blocks)
    else:
        candidates = [b for b in _as_list(blocks) if isinstance(b, Mapping)]
    for candidate in candidates:
        if key_of(candidate) == key:
            return candidate
    return None


def find_path(block: Any, *keys: str) -> Optional[Block]:
    """Walk nested blocks: find_path(settings, "model", "column-filter")."""
    current = block
    for key in keys:
        current = find_child(children_of(current), key)
        if current is None:
            return None
    return current


def get_array_values(block: Any) -> List[str]:
    """
    Ordered string values of an array-encoded block.

    KNIME stores lists as an `array-size` entry plus entries keyed "0", "1",
    ... Positions that are missing or not string-typed are skipped. Without
    `array-size`, every other valued entry is returned in declaration order.
    """
    entries = entries_of(block)
    if not entries:
        return []

    by_key = {}
    for entry in entries:
        by_key.setdefault(key_of(entry), entry)

    size_entry = by_key.get(ARRAY_SIZE_KEY)
    if size_entry is None:
        values = []
        for entry in entries:
            if key_of(entry) == ARRAY_SIZE_KEY:
                continue
            value = _attr(entry, "value")
            if value:
                values.append(str(value))
        return values

    try:
        size = int(_attr(size_entry, "value"))
    except (TypeError, ValueError):
        logger.warning(f"Invalid array-size {_attr(size_entry, 'value')!r} in block {key_of(block)!r}")
        return []

    values = []
    for index in range(size):
        entry = by_key.get(str(index))
        entry_type = _attr(entry, "type") if entry is not None else None
        if entry is None or entry_type not in (None, "xstring"):
            logger.warning(
                f"Skipping array entry {index} in block {key_of(block)!r}: "
                f"expected xstring, got {entry_type if entry is not None else 'nothing'}"
            )
            continue
        if str(_attr(entry, "isnull")).lower() == "true":
            continue
        value = _attr(entry, "value")
        values.append("" if value is None else str(value))
    return values


def get_model(settings: Any) -> Optional[Block]:
    """The `model` block, where every KNIME node keeps its configuration."""
    return find_child(children_of(settings), "model")
