"""Read-only search result with a cursor.

A :class:`Result` is created empty by its owning :class:`~ldap_access.query.Query`
and filled exactly once, either with entries (:meth:`Result.load`) or with an
error (:meth:`Result.set_error`).  Both methods take the owner as an explicit
capability; nobody else may call them.  Once loaded the result is immutable:
item assignment and deletion raise :class:`ImmutabilityViolation` and every
accessor hands out copies.
"""
from __future__ import annotations

import copy
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping

from .core.constants import COUNT_KEY
from .errors import AccessViolation, DirectoryOperationError, ImmutabilityViolation
from .formatter import Format, Level, format_result, with_attributes

if TYPE_CHECKING:
    from .directory import Directory

__all__ = ["Result"]

Entry = Dict[Any, Any]


class Result:
    def __init__(self, directory: "Directory", owner: object) -> None:
        self._directory = directory
        self._owner = owner
        self._entries: List[Entry] = []
        self._total = 0
        self._loaded = False
        self._error: DirectoryOperationError | None = None
        self._position = 0

    def __repr__(self) -> str:
        return f"Result(count={self.count()}, error={self._error!s})" if self._error else f"Result(count={self.count()})"

    # Owner only -------------------------------------------------------------

    def _check_owner(self, owner: object, operation: str) -> None:
        if owner is not self._owner:
            raise AccessViolation(f"Result.{operation}() may only be called by the query that owns the result")

    def load(self, raw: Mapping[Any, Any], owner: object) -> None:
        """Fill the result from a raw search result and derive ``__attributes``."""
        self._check_owner(owner, "load")
        if self._loaded:
            raise ImmutabilityViolation("The result has already been loaded")

        total = raw.get(COUNT_KEY, 0) if isinstance(raw, Mapping) else 0
        self._total = int(total or 0)
        entries = [raw[i] for i in range(self._total) if i in raw]
        self._entries = with_attributes(copy.deepcopy(entries))
        self._loaded = True
        self._position = 0

    def set_error(self, error: DirectoryOperationError, owner: object) -> None:
        self._check_owner(owner, "set_error")
        self._error = error

    # Errors -----------------------------------------------------------------

    @property
    def error(self) -> DirectoryOperationError | None:
        return self._error

    def has_error(self) -> bool:
        return self._error is not None

    @property
    def directory(self) -> "Directory":
        return self._directory

    # Random access ----------------------------------------------------------

    def count(self) -> int:
        """Total reported by the directory's ``count`` annotation.

        Positions the directory announced but did not deliver are counted
        here, yet are not addressable; ``len()`` gives the delivered entries.
        """
        return self._total

    def __len__(self) -> int:
        return len(self._entries)

    def exists(self, position: Any) -> bool:
        return (
            isinstance(position, int)
            and not isinstance(position, bool)
            and 0 <= position < len(self._entries)
        )

    def get(self, position: Any) -> Entry | None:
        """Copy of the raw entry at *position*, ``None`` when out of range."""
        if not self.exists(position):
            return None
        return copy.deepcopy(self._entries[position])

    def __getitem__(self, position: Any) -> Entry | None:
        return self.get(position)

    def __contains__(self, position: Any) -> bool:
        return self.exists(position)

    def __setitem__(self, position: Any, value: Any) -> None:
        raise ImmutabilityViolation("Search results are read-only")

    def __delitem__(self, position: Any) -> None:
        raise ImmutabilityViolation("Search results are read-only")

    def __iter__(self) -> Iterator[Entry]:
        for entry in self._entries:
            yield copy.deepcopy(entry)

    def __reversed__(self) -> Iterator[Entry]:
        for entry in reversed(self._entries):
            yield copy.deepcopy(entry)

    # Cursor -----------------------------------------------------------------

    def valid(self) -> bool:
        return self.exists(self._position)

    def key(self) -> int | None:
        return self._position if self.valid() else None

    def current(self) -> Entry | None:
        return self.get(self._position)

    def next(self) -> Entry | None:
        """Advance the cursor and return the entry under it."""
        if self._position < len(self._entries):
            self._position += 1
        return self.current()

    def prev(self) -> Entry | None:
        if self._position >= 0:
            self._position -= 1
        return self.current()

    def rewind(self) -> Entry | None:
        self._position = 0
        return self.current()

    def end(self) -> Entry | None:
        self._position = len(self._entries) - 1
        return self.current()

    def seek(self, position: int) -> bool:
        """Move the cursor to *position*.  Out of range leaves it untouched."""
        if not self.exists(position):
            return False
        self._position = position
        return True

    # Export -----------------------------------------------------------------

    def as_list(self) -> List[Entry]:
        return copy.deepcopy(self._entries)

    def formatted(self, flags: Any = Format.DEFAULT) -> List[Entry]:
        return format_result(self._entries, flags, Level.ROOT)

    def entry(self, position: int, flags: Any = Format.DEFAULT) -> Entry | None:
        """Entry at *position* formatted on its own, ``None`` when out of range."""
        if not self.exists(position):
            return None
        return format_result(self._entries[position], flags, Level.ITEM)
