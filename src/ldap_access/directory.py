"""Directory instance: connection and bind lifecycle.

A :class:`Directory` walks through ``disconnected -> connected -> bound``.
While bound it remembers *who* it is bound as: the configured master (service)
account or a user that authenticated with :meth:`Directory.bind_credentials`.

Typical use::

    directory = Directory("corp", DirectoryConfig.parse(settings))
    if directory.bind():
        result = directory.query(["&", "objectClass=user", "sAMAccountName=jdoe"]).execute()
    directory.disconnect()

Fatal conditions (no controllers configured, no connection possible, root DSE
unreadable, malformed identifier) raise; directory level failures are
reported through :meth:`Directory.get_error`.
"""
from __future__ import annotations

import enum
import logging
import random
from typing import Any, Callable, Mapping, Sequence

from .config import DirectoryConfig
from .core.constants import (
    DEFAULT_FILTER,
    ROOT_DSE_DEFAULT_CONTEXT,
    ROOT_DSE_NAMING_CONTEXTS,
)
from .errors import (
    ConfigurationError,
    DirectoryConnectionError,
    DirectoryOperationError,
    DiscoveryError,
    IdentifierFormatError,
)
from .ldap_client import DirectoryTransport, Ldap3Transport
from .query import Query

logger = logging.getLogger("ldap_access.directory")

__all__ = ["BindRole", "Directory", "full_qualified_id"]


class BindRole(enum.Enum):
    MASTER = "master"
    USER = "user"


def full_qualified_id(raw: str, domain_suffix: str = "") -> str:
    """Return *raw* as ``id@suffix``.

    An explicit suffix in *raw* wins over *domain_suffix*.  *domain_suffix*
    may carry one leading ``@``.  Without any suffix the bare id is returned.

    Raises
    ------
    IdentifierFormatError
        For an empty id part or more than one ``@`` in either argument.
    """
    identifier = (raw or "").strip()
    if identifier.count("@") > 1:
        raise IdentifierFormatError(f"Identifier {raw!r} contains more than one '@'")

    suffix = ""
    if "@" in identifier:
        identifier, suffix = (part.strip() for part in identifier.split("@", 1))

    if not identifier:
        raise IdentifierFormatError(f"Identifier {raw!r} has an empty id part")
    if suffix:
        return f"{identifier}@{suffix}"

    domain = (domain_suffix or "").strip()
    if not domain:
        return identifier
    if domain.count("@") > 1 or ("@" in domain and not domain.startswith("@")):
        raise IdentifierFormatError(f"Domain suffix {domain_suffix!r} is malformed")
    if domain.startswith("@"):
        return f"{identifier}{domain}"
    return f"{identifier}@{domain}"


def _first_value(raw: Mapping[Any, Any] | None, attribute: str) -> str:
    """First value of *attribute* (case-insensitive) in the first entry of *raw*."""
    if not raw:
        return ""
    entry = raw.get(0)
    if not isinstance(entry, Mapping):
        return ""
    wanted = attribute.lower()
    for key, values in entry.items():
        if isinstance(key, str) and key.lower() == wanted:
            if isinstance(values, (list, tuple)):
                values = values[0] if values else ""
            return str(values or "").strip()
    return ""


class Directory:
    """One named directory handle owning a single connection and its config."""

    def __init__(
        self,
        name: str | int = "",
        config: DirectoryConfig | Mapping[str, Any] | None = None,
        *,
        transport_factory: Callable[[], DirectoryTransport] | None = None,
    ) -> None:
        self._name = name
        self._config = self._coerce_config(config)
        self._transport_factory = transport_factory or Ldap3Transport
        self._transport: DirectoryTransport | None = None
        self._bound_as: BindRole | None = None
        self._base_dn = ""
        self._open_error: DirectoryOperationError | None = None

    def __repr__(self) -> str:
        return f"Directory(name={self._name!r}, connected={self.is_connected()}, bound_as={self._bound_as})"

    def __enter__(self) -> "Directory":
        if not self.is_connected(try_connect=True):
            raise DirectoryConnectionError("Cannot connect: no domain controller answered.")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()

    @staticmethod
    def _coerce_config(config: DirectoryConfig | Mapping[str, Any] | None) -> DirectoryConfig:
        if isinstance(config, DirectoryConfig):
            return config
        return DirectoryConfig.parse(config)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def name(self) -> str | int:
        return self._name

    @property
    def config(self) -> DirectoryConfig:
        return self._config

    def set_config(self, config: DirectoryConfig | Mapping[str, Any] | None) -> None:
        """Replace the config.  The instance is disconnected first."""
        self.disconnect()
        self._config = self._coerce_config(config)

    @property
    def transport(self) -> DirectoryTransport | None:
        return self._transport

    @property
    def base_dn(self) -> str:
        return self._base_dn

    @property
    def bound_as(self) -> BindRole | None:
        return self._bound_as if self.is_connected() else None

    def full_qualified_id(self, raw: str) -> str:
        return full_qualified_id(raw, self._config.suffix)

    # ------------------------------------------------------------------
    # State checks
    # ------------------------------------------------------------------

    def is_connected(self, try_connect: bool = False) -> bool:
        """Connected is not the same as bound."""
        if self._transport is not None and self._transport.connected:
            return True
        if try_connect:
            return self.connect()
        return False

    def is_bound(self, try_bind: bool = False, anonymous: bool = False) -> bool:
        if self._bound_as is not None and self.is_connected():
            return True
        if try_bind:
            return self.bind(anonymous)
        return False

    def get_error(self) -> DirectoryOperationError | None:
        """Last directory level error, ``None`` when the last operation succeeded."""
        if self._transport is not None:
            number, message = self._transport.last_error()
            if number:
                return DirectoryOperationError(number, message)
            return None
        return self._open_error

    def has_error(self) -> bool:
        return self.get_error() is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _random_domain_controller(self) -> str:
        controllers: Sequence[str] = self._config.controllers
        if not controllers:
            return ""
        return random.choice(controllers).strip()

    def connect(self) -> bool:
        """Open a connection to a random domain controller.

        Returns ``True`` when already connected.

        Raises
        ------
        ConfigurationError
            If no domain controller is configured.
        """
        if self.is_connected():
            return True

        host = self._random_domain_controller()
        if not host:
            raise ConfigurationError(
                "Cannot connect: there are no domain controllers to connect to. Please check your configuration."
            )

        transport = self._transport_factory()
        port = self._config.port
        if not transport.open(host, port, use_ssl=self._config.ssl, timeout=self._config.timeout):
            number, message = transport.last_error()
            self._open_error = DirectoryOperationError(number or -1, message or f"Cannot connect to {host}:{port}")
            logger.warning("Connection to %s:%s failed: %s", host, port, self._open_error)
            return False

        self._transport = transport
        self._open_error = None
        self._bound_as = None
        self._base_dn = ""

        if self._config.tls and not transport.start_tls():
            logger.warning("StartTLS on %s:%s failed, continuing without it", host, port)

        logger.info("Connected to %s:%s", host, port)
        return True

    def bind(self, anonymous: bool = False) -> bool:
        """Bind as the configured master account (or anonymously).

        Succeeds only when the bind worked *and* a base DN was discovered.
        Missing master credentials return ``False`` without a bind attempt.
        """
        if not self.is_connected(try_connect=True):
            raise DirectoryConnectionError("Cannot bind: there is no connection to the LDAP server.")

        if anonymous:
            user, password = "", ""
        else:
            if not self._config.master_user.strip() or not self._config.master_password.strip():
                logger.warning("Master bind skipped: master user or password is not configured")
                return False
            user = self.full_qualified_id(self._config.master_user)
            password = self._config.master_password

        if not self._transport.bind(user, password):
            self._bound_as = None
            logger.warning("Bind as %s failed: %s", user or "<anonymous>", self.get_error())
            return False

        self._bound_as = BindRole.MASTER
        self._base_dn = self._find_base_dn()
        logger.debug("Bound as %s, base DN %r", user or "<anonymous>", self._base_dn)
        return self._base_dn != ""

    def bind_credentials(self, identifier: str, password: str, rebind_as_master: bool = False) -> bool:
        """Bind with user credentials.

        The outcome of the optional master rebind is not returned; check
        :attr:`bound_as` / :meth:`is_bound` afterwards.
        """
        if not self.is_connected(try_connect=True):
            raise DirectoryConnectionError("Cannot bind: there is no connection to the LDAP server.")

        identifier = identifier.strip() if isinstance(identifier, str) else ""
        password = password.strip() if isinstance(password, str) else ""
        if not identifier or not password:
            return False

        full_id = self.full_qualified_id(identifier)
        response = self._transport.bind(full_id, password)
        if response:
            self._bound_as = BindRole.USER
            try:
                self._base_dn = self._find_base_dn() or self._base_dn
            except DiscoveryError as exc:
                logger.warning("Base DN discovery after binding %s failed: %s", full_id, exc)
            logger.info("Bound with credentials of %s", full_id)
        else:
            logger.info("Credential bind for %s rejected: %s", full_id, self.get_error())

        if rebind_as_master:
            try:
                self.bind()
            except DiscoveryError as exc:
                logger.warning("Master rebind could not discover the base DN: %s", exc)

        return response

    def unbind(self) -> bool:
        """Release the binding.  Never raises; safe to call repeatedly."""
        if self._bound_as is not None and self._transport is not None:
            try:
                self._transport.unbind()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Ignoring error while unbinding: %s", exc)
        self._bound_as = None
        return not self.is_bound()

    def disconnect(self) -> None:
        """Unbind and drop the connection.  The config is kept."""
        self.unbind()
        if self._transport is not None and self._transport.connected:
            try:
                self._transport.unbind()
            except Exception as exc:  # noqa: BLE001
                logger.debug("Ignoring error while closing the connection: %s", exc)
        self._transport = None
        self._base_dn = ""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def query(self, search_filter: Any = "") -> Query:
        return Query(self, search_filter)

    def _get_root_dse(self, attributes: Sequence[str]) -> Mapping[Any, Any] | None:
        if not self.is_connected():
            return None
        return self._transport.read("", DEFAULT_FILTER, list(attributes))

    def _find_base_dn(self) -> str:
        """Read the naming context from the root DSE.

        Active Directory publishes ``defaultNamingContext``; other servers only
        ``namingContexts``.  Empty when neither is published.
        """
        first = self._get_root_dse([ROOT_DSE_DEFAULT_CONTEXT])
        base_dn = _first_value(first, ROOT_DSE_DEFAULT_CONTEXT)
        if base_dn:
            return base_dn

        second = self._get_root_dse([ROOT_DSE_NAMING_CONTEXTS])
        if first is None and second is None:
            raise DiscoveryError("Cannot find base dn: the root DSE could not be read.")
        return _first_value(second, ROOT_DSE_NAMING_CONTEXTS)
