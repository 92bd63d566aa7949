"""LDAP filter builder utility.

This module provides :func:`build_filter`, which turns either a raw filter
string or a nested parameter structure into a parenthesis-balanced LDAP
search filter.

Structure accepted:

    * a string: enclosed once in parentheses.  ``"cn=joe"`` becomes
      ``"(cn=joe)"``; ``"(cn=joe)"`` is returned untouched; a string starting
      with an operator (``&``, ``|``, ``!``) is wrapped as a whole.
    * a sequence: the first operator token is emitted verbatim, every other
      string is enclosed on its own and every nested sequence is built
      recursively and then enclosed.  The concatenation is enclosed once more.

Example::

    >>> build_filter(["&", "objectClass=User", ["|", "cn=a", "cn=b"]])
    '(&(objectClass=User)(|(cn=a)(cn=b)))'

Empty input yields an empty string.  Elements of any other type are skipped.
"""
from __future__ import annotations

from typing import Any, Sequence

from ldap3.utils.conv import escape_filter_chars

__all__ = ["AND", "OR", "NOT", "OPERATORS", "build_filter", "escape_value"]

AND = "&"
OR = "|"
NOT = "!"

OPERATORS = (AND, OR, NOT)


def _normalize(val: Any) -> str | None:
    """Return stripped string or ``None`` if empty/not a string."""
    if not isinstance(val, str):
        return None
    val = val.strip()
    return val or None


def _is_sequence(val: Any) -> bool:
    return isinstance(val, Sequence) and not isinstance(val, (str, bytes, bytearray))


def _enclose(flt: str) -> str:
    """Enclose *flt* in exactly one pair of parentheses, never doubling them."""
    if not flt:
        return ""
    if flt[0] == "(":
        return flt if flt.endswith(")") else f"{flt})"
    if flt[0] in OPERATORS:
        return f"({flt})"
    return f"({flt})" if not flt.endswith(")") else f"({flt}"


def _build_level(params: Sequence[Any]) -> str:
    parts: list[str] = []
    operator_seen = False

    for param in params:
        if _is_sequence(param):
            parts.append(_enclose(_build_level(param)))
            continue

        value = _normalize(param)
        if value is None:
            continue

        if value in OPERATORS and not operator_seen:
            operator_seen = True
            parts.append(value)
        else:
            parts.append(_enclose(value))

    return "".join(parts)


def build_filter(params: str | Sequence[Any] | None = None) -> str:
    """Build an LDAP filter string from a raw string or a nested structure.

    Parameters
    ----------
    params: str | Sequence | None
        Raw filter fragment or a (possibly nested) sequence whose first
        operator token combines the remaining children.

    Returns
    -------
    str
        Enclosed filter, or ``""`` when nothing usable was supplied.
    """
    if isinstance(params, str):
        return _enclose(params.strip())
    if _is_sequence(params):
        return _enclose(_build_level(params))
    return ""


def escape_value(value: str) -> str:
    """Escape a value for safe inclusion in a filter leaf (RFC 4515)."""
    return escape_filter_chars(value)
