"""Result formatting pipeline.

Raw search results come back in the traditional directory client shape::

    {
        "count": 1,
        0: {
            "mail": ["jdoe@example.com"],
            0: "mail",
            "count": 1,
            "dn": "CN=John Doe,OU=Users,DC=example,DC=com",
        },
    }

Every attribute is duplicated under a numeric alias and every level carries a
``count`` pseudo-key.  :func:`format_result` reshapes such data into something
friendlier.  The transforms are selected with :class:`Format` flags and always
run in the same order:

1. ``REMOVE_COUNTS``: drop every ``count`` key, at any depth
2. ``NO_NUM_INDEX``: drop numeric aliases of named attributes
3. ``FLATTEN_VALUES``: unwrap single element value lists
4. ``KEYS_LOWER`` / ``KEYS_UPPER``: case-fold keys (upper wins if both)
5. ``SORT_BY_ATTRIBUTES``: natural, case-insensitive key order

The input is never modified; each stage is a pure function returning a new
structure.

The ``__attributes`` key holds the attribute names of an entry and is derived
once when a result is loaded (:func:`with_attributes`).
"""
from __future__ import annotations

import copy
import enum
import re
from typing import Any, Callable, Iterable, Mapping

from .core.constants import ATTRIBUTES_KEY, COUNT_KEY
from .errors import FormatFlagError

__all__ = [
    "Format",
    "Level",
    "format_result",
    "natural_key",
    "derive_attributes",
    "with_attributes",
]


class Format(enum.IntFlag):
    """Formatting flags, combinable with ``|``."""

    REMOVE_COUNTS = 1
    NO_NUM_INDEX = 2
    FLATTEN_VALUES = 4
    KEYS_LOWER = 8
    KEYS_UPPER = 16
    SORT_BY_ATTRIBUTES = 32

    DEFAULT = REMOVE_COUNTS | NO_NUM_INDEX | FLATTEN_VALUES | KEYS_LOWER


class Level(enum.Enum):
    """Nesting level of the structure handed to :func:`format_result`."""

    ROOT = 1  # a sequence of entries
    ITEM = 2  # a single entry


_KNOWN_BITS = (
    Format.REMOVE_COUNTS
    | Format.NO_NUM_INDEX
    | Format.FLATTEN_VALUES
    | Format.KEYS_LOWER
    | Format.KEYS_UPPER
    | Format.SORT_BY_ATTRIBUTES
)

_NATURAL_SPLIT = re.compile(r"(\d+)")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def natural_key(text: Any) -> tuple:
    """Sort key giving case-insensitive natural order (``attr2`` < ``attr10``)."""
    text = str(text)
    parts = [int(p) if p.isdigit() else p.casefold() for p in _NATURAL_SPLIT.split(text)]
    return parts, text


def _is_numeric_key(key: Any) -> bool:
    if isinstance(key, bool):
        return False
    if isinstance(key, int):
        return True
    return isinstance(key, str) and key.isdigit()


def _is_value_list(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _coerce_flags(flags: int | Iterable[int] | None) -> Format:
    """Validate *flags* and return them as a :class:`Format` mask."""
    if flags is None:
        return Format(0)

    if isinstance(flags, int) and not isinstance(flags, bool):
        if flags < 0 or flags & ~int(_KNOWN_BITS):
            raise FormatFlagError(f"Unknown formatter flags in mask {flags!r}")
        return Format(flags)

    mask = 0
    for flag in flags:
        if isinstance(flag, bool) or not isinstance(flag, int):
            raise FormatFlagError(f"Formatter flag {flag!r} is not an integer")
        # every single flag has to own exactly one bit
        if flag <= 0 or flag & (flag - 1):
            raise FormatFlagError(f"The given flag {flag!r} is not a power of 2")
        if not flag & _KNOWN_BITS:
            raise FormatFlagError(f"Unknown formatter flag {flag!r}")
        mask |= flag
    return Format(mask)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def _remove_counts(data: Any, level: Level) -> Any:
    if isinstance(data, Mapping):
        out: dict = {}
        for key, value in data.items():
            if key == COUNT_KEY:
                continue
            if key == ATTRIBUTES_KEY and _is_value_list(value):
                out[key] = [name for name in value if name != COUNT_KEY]
            else:
                out[key] = _remove_counts(value, level)
        return out
    if _is_value_list(data):
        return [_remove_counts(item, level) for item in data]
    return data


def _no_num_index_item(entry: Any) -> Any:
    if not isinstance(entry, Mapping):
        return entry
    out: dict = {}
    for key, value in entry.items():
        # numeric keys whose value names a present attribute are aliases
        if _is_numeric_key(key) and isinstance(value, str) and value in entry:
            continue
        out[key] = value
    return out


def _no_num_index(data: Any, level: Level) -> Any:
    if level is Level.ITEM:
        return _no_num_index_item(data)
    if isinstance(data, Mapping):
        return {k: _no_num_index_item(v) for k, v in data.items()}
    if _is_value_list(data):
        return [_no_num_index_item(entry) for entry in data]
    return data


def _flatten_item(entry: Any) -> Any:
    if not isinstance(entry, Mapping):
        return entry
    out: dict = {}
    for key, value in entry.items():
        if key != ATTRIBUTES_KEY and _is_value_list(value) and len(value) == 1:
            out[key] = value[0]
        else:
            out[key] = value
    return out


def _flatten_values(data: Any, level: Level) -> Any:
    if level is Level.ITEM:
        return _flatten_item(data)
    if isinstance(data, Mapping):
        return {k: _flatten_item(v) for k, v in data.items()}
    if _is_value_list(data):
        return [_flatten_item(entry) for entry in data]
    return data


def _fold_keys(data: Any, fold: Callable[[str], str]) -> Any:
    if isinstance(data, Mapping):
        out: dict = {}
        for key, value in data.items():
            if key == ATTRIBUTES_KEY and _is_value_list(value):
                out[key] = [fold(name) if isinstance(name, str) else name for name in value]
                continue
            new_key = fold(key) if isinstance(key, str) else key
            out[new_key] = _fold_keys(value, fold)
        return out
    if _is_value_list(data):
        return [_fold_keys(item, fold) for item in data]
    return data


def _keys_lower(data: Any, level: Level) -> Any:
    return _fold_keys(data, str.lower)


def _keys_upper(data: Any, level: Level) -> Any:
    return _fold_keys(data, str.upper)


def _sort_item(entry: Any) -> Any:
    if not isinstance(entry, Mapping):
        return entry
    out: dict = {}
    for key in sorted(entry, key=natural_key):
        value = entry[key]
        out[key] = _sort_item(value) if isinstance(value, Mapping) else value
    return out


def _sort_by_attributes(data: Any, level: Level) -> Any:
    if level is Level.ITEM:
        return _sort_item(data)
    # entry order is kept, only the keys inside each entry move
    if isinstance(data, Mapping):
        return {k: _sort_item(v) for k, v in data.items()}
    if _is_value_list(data):
        return [_sort_item(entry) for entry in data]
    return data


_PIPELINE: tuple[tuple[Format, Callable[[Any, Level], Any]], ...] = (
    (Format.REMOVE_COUNTS, _remove_counts),
    (Format.NO_NUM_INDEX, _no_num_index),
    (Format.FLATTEN_VALUES, _flatten_values),
    (Format.KEYS_LOWER, _keys_lower),
    (Format.KEYS_UPPER, _keys_upper),
    (Format.SORT_BY_ATTRIBUTES, _sort_by_attributes),
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def format_result(
    raw: Any,
    flags: int | Iterable[int] | None = 0,
    level: Level | None = Level.ROOT,
) -> Any:
    """Return a formatted copy of *raw*.

    Parameters
    ----------
    raw:
        A sequence of entries (``Level.ROOT``) or a single entry mapping
        (``Level.ITEM``).
    flags:
        :class:`Format` bit mask, or an iterable of single flags.
    level:
        ``Level.ROOT`` (default, also used for ``None``) or ``Level.ITEM``.

    Raises
    ------
    FormatFlagError
        If a flag is not a single known power of two.
    """
    mask = _coerce_flags(flags)
    level = level or Level.ROOT

    result = copy.deepcopy(raw)
    for flag, stage in _PIPELINE:
        if mask & flag:
            result = stage(result, level)
    return result


def derive_attributes(entry: Mapping[Any, Any]) -> list[str]:
    """Return the de-duplicated, naturally sorted attribute names of *entry*.

    Numeric aliases contribute the attribute name they point to; every other
    key contributes itself.
    """
    seen: dict[str, None] = {}
    for key, value in entry.items():
        if key == ATTRIBUTES_KEY:
            continue
        if _is_numeric_key(key) and isinstance(value, str):
            name = value
        else:
            name = str(key)
        seen.setdefault(name, None)
    return sorted(seen, key=natural_key)


def with_attributes(entries: Iterable[Any]) -> list[Any]:
    """Copy *entries*, adding an ``__attributes`` listing to each mapping."""
    out: list[Any] = []
    for entry in entries:
        if isinstance(entry, Mapping):
            enriched = dict(entry)
            enriched[ATTRIBUTES_KEY] = derive_attributes(entry)
            out.append(enriched)
        else:
            out.append(entry)
    return out
