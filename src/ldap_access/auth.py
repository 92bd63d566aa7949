"""Directory backed login adapter.

:class:`LdapAuth` authenticates users with their directory credentials and
keeps two values in a caller supplied session mapping:

* ``username``: the account name (``sAMAccountName``) of the principal
* ``login_hash``: ``sha256(salt + account name + stamp)`` where *stamp* is the
  principal's ``pwdLastSet`` (default) or its login time

A later request calls :meth:`LdapAuth.perform_check`, which reloads the
principal through the master binding when needed and recomputes the hash.  A
password change in the directory therefore ends every session created before
it.

Authentication problems never raise; they are logged and reported as
``False`` with the session cleared.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, List, Mapping, MutableMapping, Tuple

from .config import AuthConfig
from .core.constants import SESSION_LOGIN_HASH_KEY, SESSION_USERNAME_KEY
from .errors import DirectoryConnectionError, DirectoryOperationError, IdentifierFormatError
from .filter_builder import escape_value
from .formatter import Format, Level, format_result
from .guid import guid_bin_to_str

if TYPE_CHECKING:
    from .directory import Directory

logger = logging.getLogger("ldap_access.auth")

__all__ = ["LdapAuth", "Principal"]

_ENTRY_FLAGS = Format.REMOVE_COUNTS | Format.NO_NUM_INDEX | Format.KEYS_LOWER


def _values(entry: Mapping[str, Any], name: str) -> List[Any]:
    value = entry.get(name)
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def _first(entry: Mapping[str, Any], name: str) -> Any:
    values = _values(entry, name)
    return values[0] if values else None


def _guid_text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)) and len(value) == 16:
        return guid_bin_to_str(bytes(value))
    if value is None:
        return ""
    return str(value).strip("{}").upper()


@dataclass(slots=True)
class Principal:
    """The authenticated user as stored in the directory."""

    dn: str
    guid: str
    account_name: str
    mail: str = ""
    display_name: str = ""
    groups: List[str] = field(default_factory=list)
    # raw pwdLastSet value
    password_last_set: str = ""
    login_time: datetime | None = None

    @classmethod
    def from_entry(cls, entry: Mapping[Any, Any]) -> "Principal":
        """Build a principal from a raw result entry."""
        flat = format_result(entry, _ENTRY_FLAGS, Level.ITEM)
        return cls(
            dn=str(flat.get("dn") or ""),
            guid=_guid_text(_first(flat, "objectguid")),
            account_name=str(_first(flat, "samaccountname") or ""),
            mail=str(_first(flat, "mail") or ""),
            display_name=str(_first(flat, "displayname") or ""),
            groups=[str(g) for g in _values(flat, "memberof")],
            password_last_set=str(_first(flat, "pwdlastset") or ""),
        )


class LdapAuth:
    """Login driver working on one :class:`~ldap_access.directory.Directory`."""

    def __init__(
        self,
        directory: "Directory",
        session: MutableMapping[str, Any],
        config: AuthConfig | None = None,
    ) -> None:
        self._directory = directory
        self._session = session
        self._config = config or AuthConfig()
        self._user: Principal | None = None

    @property
    def id(self) -> str | int:
        return self._directory.name

    @property
    def user(self) -> Principal | None:
        return self._user

    # Helper ------------------------------------------------------------------

    def _clear(self) -> None:
        self._user = None
        self._session.pop(SESSION_USERNAME_KEY, None)
        self._session.pop(SESSION_LOGIN_HASH_KEY, None)

    def _fetch_principal(self, account: str) -> Tuple[Principal | None, DirectoryOperationError | None]:
        """Load the principal owning *account*; exactly one entry must match."""
        query = self._directory.query(
            ["&", "objectCategory=Person", "objectClass=User", f"sAMAccountName={escape_value(account)}"]
        )
        try:
            result = query.execute(attributes=self._config.attributes)
        except DirectoryConnectionError as exc:
            return None, DirectoryOperationError(-1, str(exc))

        if result.has_error():
            return None, result.error
        if result.count() > 1:
            return None, DirectoryOperationError(
                0, f"Ambiguous directory state: {result.count()} entries match {account!r}"
            )
        entry = result.get(0)
        if entry is None:
            return None, DirectoryOperationError(0, f"User {account!r} not found")
        return Principal.from_entry(entry), None

    # Public API --------------------------------------------------------------

    def create_login_hash(self, principal: Principal | None = None) -> str:
        """Hash proving a verified session of *principal* (default: current user).

        Empty when there is no principal or no stamp to hash.
        """
        principal = principal or self._user
        if principal is None:
            return ""
        if self._config.hash_source == "login":
            if principal.login_time is None:
                return ""
            stamp = principal.login_time.isoformat()
        else:
            stamp = principal.password_last_set
        payload = f"{self._config.login_hash_salt}{principal.account_name}{stamp}"
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def login(self, username: str, password: str) -> bool:
        username = username.strip() if isinstance(username, str) else ""
        password = password.strip() if isinstance(password, str) else ""
        if not username or not password:
            return False

        try:
            authenticated = self._directory.bind_credentials(username, password, rebind_as_master=True)
        except IdentifierFormatError as exc:
            logger.info("Login rejected for %r: %s", username, exc)
            self._clear()
            return False

        if not authenticated:
            logger.info("Login failed for %r: invalid credentials", username)
            self._clear()
            return False

        account = username.split("@", 1)[0].strip()
        principal, error = self._fetch_principal(account)
        if principal is None:
            logger.warning("Login for %r failed: %s", username, error)
            self._clear()
            return False

        principal.login_time = datetime.now(timezone.utc)
        self._user = principal
        self._session[SESSION_USERNAME_KEY] = principal.account_name
        self._session[SESSION_LOGIN_HASH_KEY] = self.create_login_hash()
        logger.info("User %s logged in", principal.account_name)
        return True

    def perform_check(self) -> bool:
        """Re-validate the session.  A hash mismatch logs the user out."""
        username = self._session.get(SESSION_USERNAME_KEY)
        login_hash = self._session.get(SESSION_LOGIN_HASH_KEY)
        if not username or not login_hash:
            self._user = None
            return False

        if self._user is None or self._user.account_name.lower() != str(username).lower():
            principal, error = self._fetch_principal(str(username))
            if principal is None:
                logger.warning("Session check for %r failed: %s", username, error)
                self._clear()
                return False
            self._user = principal

        expected = self.create_login_hash().encode("utf-8")
        if hmac.compare_digest(expected, str(login_hash).encode("utf-8")):
            return True

        logger.info("Session of %r is no longer valid", username)
        self._clear()
        return False

    def logout(self) -> bool:
        self._clear()
        return True

    def get_user_id(self) -> Tuple[str, str] | None:
        if self._user is None:
            return None
        return self._config.driver_id, self._user.guid

    def get_groups(self) -> List[Tuple[str, str]]:
        if self._user is None:
            return []
        return [(self._config.driver_id, group) for group in self._user.groups]

    def get_email(self) -> str | None:
        if self._user is None:
            return None
        return self._user.mail or None

    def get_screen_name(self) -> str | None:
        if self._user is None:
            return None
        return self._user.display_name or self._user.account_name
