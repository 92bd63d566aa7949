"""Search execution against a bound :class:`~ldap_access.directory.Directory`."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Iterable, List

from .core.constants import ALL_ATTRIBUTES, DEFAULT_ATTRIBUTES, DEFAULT_FILTER, REQUIRED_ATTRIBUTES
from .errors import DirectoryConnectionError, DirectoryOperationError
from .filter_builder import build_filter
from .result import Result

if TYPE_CHECKING:
    from .directory import Directory

logger = logging.getLogger("ldap_access.query")

__all__ = ["Query", "parse_attributes"]


def parse_attributes(attributes: str | Iterable[str] | None) -> List[str]:
    """Normalise *attributes* to a list of names.

    Accepts a comma separated string, an iterable of names or ``None``.
    Blank names are dropped.
    """
    if attributes is None:
        return []
    if isinstance(attributes, str):
        attributes = attributes.split(",")
    return [a.strip() for a in attributes if isinstance(a, str) and a.strip()]


def _dedupe(names: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    out: List[str] = []
    for name in names:
        folded = name.lower()
        if folded not in seen:
            seen.add(folded)
            out.append(name)
    return out


def _effective_attributes(attributes: str | Iterable[str] | None) -> List[str]:
    requested = parse_attributes(attributes) or list(DEFAULT_ATTRIBUTES)
    if requested == [ALL_ATTRIBUTES]:
        return requested
    return _dedupe(requested + REQUIRED_ATTRIBUTES)


class Query:
    """A filter bound to one directory instance."""

    def __init__(self, directory: "Directory", search_filter: Any = "") -> None:
        self._directory = directory
        self._filter = ""
        self.set_filter(search_filter)

    def __repr__(self) -> str:
        return f"Query(directory={self._directory.name!r}, filter={self._filter!r})"

    @property
    def directory(self) -> "Directory":
        return self._directory

    @property
    def filter(self) -> str:
        return self._filter

    def set_filter(self, search_filter: Any) -> None:
        """Set the filter from a filter string or a nested builder sequence."""
        self._filter = build_filter(search_filter) if search_filter else ""

    def execute(
        self,
        directory_dn: str = "",
        attributes: str | Iterable[str] | None = None,
        limit: int = 0,
    ) -> Result:
        """Run the search and return its :class:`Result`.

        *directory_dn* is prepended to the discovered base DN.  A failed
        search is not raised: the returned result carries the error.

        Raises
        ------
        DirectoryConnectionError
            When no connection or no binding can be established.
        """
        directory = self._directory
        if not directory.is_connected(try_connect=True):
            raise DirectoryConnectionError("Cannot query: there is no connection to the LDAP server.")
        if not directory.is_bound(try_bind=True):
            raise DirectoryConnectionError("Cannot query: there is no binding to the LDAP server.")

        branch = directory_dn.strip() if isinstance(directory_dn, str) else ""
        base = f"{branch},{directory.base_dn}" if branch else directory.base_dn
        search_filter = self._filter or DEFAULT_FILTER
        fields = _effective_attributes(attributes)
        size_limit = max(int(limit or 0), 0)

        result = Result(directory, owner=self)
        logger.debug("Searching %r under %r for %s (limit %d)", search_filter, base, fields, size_limit)
        raw = directory.transport.search(
            base,
            search_filter,
            fields,
            size_limit=size_limit,
            time_limit=directory.config.timeout,
        )
        if raw is not None:
            result.load(raw, owner=self)
            logger.debug("Search %r returned %d entries", search_filter, result.count())
        else:
            error = directory.get_error() or DirectoryOperationError(0, "Unknown error while executing the query.")
            result.set_error(error, owner=self)
            logger.warning("Search %r under %r failed: %s", search_filter, base, error)
        return result
