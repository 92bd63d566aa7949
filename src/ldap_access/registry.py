"""Named directory instances.

One :class:`DirectoryRegistry` is built per process (or per application) and
handed to whatever needs to look instances up by name::

    registry = DirectoryRegistry()
    corp = registry.forge("corp", settings)
    ...
    registry.get("corp") is corp   # True

Creation, lookup and removal are serialised by a re-entrant lock, so two
threads forging the same new name end up with the same instance.  The
instances themselves are not thread-safe.
"""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Mapping

from .config import DirectoryConfig
from .directory import Directory
from .ldap_client import DirectoryTransport

logger = logging.getLogger("ldap_access.registry")

__all__ = ["DirectoryRegistry"]

Name = str | int


class DirectoryRegistry:
    """Owner of named :class:`Directory` instances."""

    def __init__(self, transport_factory: Callable[[], DirectoryTransport] | None = None) -> None:
        self._lock = threading.RLock()
        self._instances: Dict[Name, Directory] = {}
        self._next_id = 0
        self._transport_factory = transport_factory

    def __repr__(self) -> str:
        return f"DirectoryRegistry(names={self.names()!r})"

    def _anonymous_name(self) -> int:
        while self._next_id in self._instances:
            self._next_id += 1
        name = self._next_id
        self._next_id += 1
        return name

    def forge(
        self,
        name: Name | None = None,
        config: DirectoryConfig | Mapping[str, Any] | None = None,
        *,
        override: bool = False,
        transport_factory: Callable[[], DirectoryTransport] | None = None,
    ) -> Directory:
        """Return the instance called *name*, creating it when needed.

        ``name=None`` always creates an instance named by the next free
        integer.  With ``override=True`` an existing instance is disconnected
        and replaced.
        """
        with self._lock:
            if name is None or name == "":
                name = self._anonymous_name()
            existing = self._instances.get(name)
            if existing is not None:
                if not override:
                    return existing
                logger.debug("Replacing directory instance %r", name)
                existing.disconnect()

            directory = Directory(
                name,
                config,
                transport_factory=transport_factory or self._transport_factory,
            )
            self._instances[name] = directory
            logger.debug("Forged directory instance %r", name)
            return directory

    def get(self, name: Name | None = None) -> Directory | None:
        """Instance called *name*; the first registered one when *name* is unknown."""
        with self._lock:
            if name is not None and name in self._instances:
                return self._instances[name]
            return next(iter(self._instances.values()), None)

    def has(self, name: Name) -> bool:
        with self._lock:
            return name in self._instances

    def names(self) -> List[Name]:
        with self._lock:
            return list(self._instances)

    def remove(self, name: Name) -> bool:
        """Disconnect and drop the instance.  ``False`` when it does not exist."""
        with self._lock:
            directory = self._instances.pop(name, None)
        if directory is None:
            return False
        directory.disconnect()
        logger.debug("Removed directory instance %r", name)
        return True

    def __contains__(self, name: object) -> bool:
        return self.has(name)  # type: ignore[arg-type]

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)

    def __iter__(self) -> Iterator[Directory]:
        with self._lock:
            return iter(list(self._instances.values()))
