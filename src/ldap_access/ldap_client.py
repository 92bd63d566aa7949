"""Directory transport built on *ldap3*.

:class:`Ldap3Transport` exposes the handful of primitives the directory state
machine needs (open, start TLS, bind, unbind, search, read, last error) and
hides every ldap3 detail behind them:

* The connection is opened unbound, with protocol version 3 and referral
  chasing disabled.
* ``ldaps://`` hosts (or ``use_ssl=True``) are wrapped in SSL; certificate
  validation can be relaxed or pinned to a CA file like any ldap3
  :class:`~ldap3.Tls`.
* Search results are converted to the traditional directory client layout
  (numeric attribute aliases and ``count`` keys, see
  :mod:`ldap_access.formatter`).
* ldap3 exceptions never escape; they are logged, remembered as the last
  error and reported as a failed (``False`` / ``None``) return value.
"""
from __future__ import annotations

import logging
import math
import ssl
from typing import Any, Dict, Protocol, Sequence, Tuple

from ldap3 import ANONYMOUS, BASE, NONE, SIMPLE, SUBTREE, Connection, Server, Tls
from ldap3.core.exceptions import LDAPException

from .core.constants import COUNT_KEY, DN_KEY

logger = logging.getLogger("ldap_access.ldap")

__all__ = ["DirectoryTransport", "Ldap3Transport", "to_raw_result"]

RawSearchResult = Dict[Any, Any]

# success, sizeLimitExceeded (partial result is still a result)
_OK_CODES = (0, 4)


class DirectoryTransport(Protocol):
    """Primitive operations against one directory server connection."""

    connected: bool

    def open(self, host: str, port: int, *, use_ssl: bool = False, timeout: float | None = None) -> bool: ...

    def start_tls(self) -> bool: ...

    def bind(self, user: str, password: str) -> bool: ...

    def unbind(self) -> bool: ...

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: Sequence[str],
        size_limit: int = 0,
        time_limit: float = 0,
    ) -> RawSearchResult | None: ...

    def read(self, base: str, search_filter: str, attributes: Sequence[str]) -> RawSearchResult | None: ...

    def last_error(self) -> Tuple[int, str]: ...


# Helper ---------------------------------------------------------------------


def _socket_timeout(timeout: float | None) -> float | None:
    """Seconds for ldap3 socket timeouts; ``None`` waits forever.

    A zero timeout would make ldap3 switch the socket to non-blocking mode.
    """
    if timeout is None or not math.isfinite(timeout) or timeout <= 0:
        return None
    return float(timeout)


def _time_limit(value: float) -> int:
    """Server side search time limit in whole seconds, ``0`` for none."""
    if not math.isfinite(value) or value <= 0:
        return 0
    return int(value)


def _build_server(
    host: str,
    port: int,
    use_ssl: bool = False,
    ignore_cert: bool = False,
    ca_file: str | None = None,
    timeout: float | None = None,
) -> Server:
    """Build an ldap3 :class:`Server` with correct TLS settings."""
    use_ssl = use_ssl or host.lower().startswith("ldaps://")
    clean_host = host.replace("ldap://", "").replace("ldaps://", "")

    tls: Tls | None = None
    if ignore_cert:
        tls = Tls(validate=ssl.CERT_NONE)
    elif ca_file:
        tls = Tls(validate=ssl.CERT_REQUIRED, ca_certs_file=ca_file)
    return Server(clean_host, port=port, use_ssl=use_ssl, get_info=NONE, tls=tls, connect_timeout=timeout)


def to_raw_result(response: Sequence[Dict[str, Any]] | None) -> RawSearchResult:
    """Convert an ldap3 response list to the traditional raw result layout."""
    raw: RawSearchResult = {}
    index = 0
    for item in response or ():
        if item.get("type") != "searchResEntry":
            # referrals and intermediate messages are not entries
            continue
        entry: Dict[Any, Any] = {}
        position = 0
        for name, values in (item.get("attributes") or {}).items():
            if values is None or values == [] or values == "":
                continue
            if not isinstance(values, list):
                values = [values]
            entry[name] = list(values)
            entry[position] = name
            position += 1
        entry[COUNT_KEY] = position
        entry[DN_KEY] = item.get("dn", "")
        raw[index] = entry
        index += 1
    raw[COUNT_KEY] = index
    return raw


# Public API -----------------------------------------------------------------


class Ldap3Transport:
    """ldap3 backed implementation of :class:`DirectoryTransport`."""

    def __init__(self, *, ignore_cert: bool = False, ca_file: str | None = None) -> None:
        self._ignore_cert = ignore_cert
        self._ca_file = ca_file
        self._conn: Connection | None = None
        self._error: Tuple[int, str] = (0, "")

    def __repr__(self) -> str:  # pragma: no cover
        server = self._conn.server if self._conn is not None else None
        return f"Ldap3Transport(server={server!r}, connected={self.connected})"

    @property
    def connected(self) -> bool:
        return self._conn is not None and not self._conn.closed

    def _fail(self, operation: str, exc: Exception) -> None:
        self._error = (-1, str(exc))
        logger.warning("LDAP %s failed: %s", operation, exc)

    def _remember_result(self) -> None:
        result = (self._conn.result or {}) if self._conn is not None else {}
        self._error = (
            int(result.get("result", 0) or 0),
            str(result.get("message") or result.get("description") or ""),
        )

    def open(self, host: str, port: int, *, use_ssl: bool = False, timeout: float | None = None) -> bool:
        timeout = _socket_timeout(timeout)
        server = _build_server(
            host,
            port,
            use_ssl=use_ssl,
            ignore_cert=self._ignore_cert,
            ca_file=self._ca_file,
            timeout=timeout,
        )
        try:
            conn = Connection(
                server,
                version=3,
                auto_referrals=False,
                authentication=ANONYMOUS,
                receive_timeout=timeout,
                return_empty_attributes=False,
            )
            conn.open()
        except LDAPException as exc:
            self._fail(f"connect to {host}:{port}", exc)
            return False
        self._conn = conn
        self._error = (0, "")
        logger.debug("Opened LDAP connection to %s:%s (ssl=%s)", host, port, server.ssl)
        return True

    def start_tls(self) -> bool:
        if self._conn is None:
            return False
        try:
            ok = bool(self._conn.start_tls())
        except LDAPException as exc:
            self._fail("StartTLS", exc)
            return False
        self._remember_result()
        return ok

    def bind(self, user: str, password: str) -> bool:
        if self._conn is None:
            return False
        try:
            if user:
                ok = bool(self._conn.rebind(user=user, password=password, authentication=SIMPLE))
            else:
                # rebind() keeps the previous user name and password
                self._conn.user = None
                self._conn.password = None
                ok = bool(self._conn.rebind(authentication=ANONYMOUS))
        except LDAPException as exc:
            self._fail("bind", exc)
            return False
        self._remember_result()
        return ok

    def unbind(self) -> bool:
        if self._conn is None:
            return True
        try:
            return bool(self._conn.unbind())
        except LDAPException as exc:
            self._fail("unbind", exc)
            return False
        finally:
            self._conn = None

    def _search(self, base: str, search_filter: str, scope: str, attributes: Sequence[str], **kwargs: Any) -> RawSearchResult | None:
        if self._conn is None:
            return None
        try:
            self._conn.search(
                search_base=base,
                search_filter=search_filter,
                search_scope=scope,
                attributes=list(attributes) or None,
                **kwargs,
            )
        except LDAPException as exc:
            self._fail(f"search {search_filter!r} at {base!r}", exc)
            return None
        self._remember_result()
        if self._error[0] not in _OK_CODES:
            return None
        return to_raw_result(self._conn.response)

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: Sequence[str],
        size_limit: int = 0,
        time_limit: float = 0,
    ) -> RawSearchResult | None:
        return self._search(
            base,
            search_filter,
            SUBTREE,
            attributes,
            size_limit=max(int(size_limit), 0),
            time_limit=_time_limit(time_limit),
        )

    def read(self, base: str, search_filter: str, attributes: Sequence[str]) -> RawSearchResult | None:
        return self._search(base, search_filter, BASE, attributes)

    def last_error(self) -> Tuple[int, str]:
        return self._error
