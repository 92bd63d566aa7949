"""Directory and auth configuration dataclasses.

Configuration arrives either as a nested mapping (the same layout the
directory package has always used)::

    {
        "domain": {"suffix": "example.com", "controllers": ["dc1", "dc2"]},
        "connection": {"port": 389, "timeout": 60, "ssl": False, "tls": False},
        "master": {"user": "svc-ldap", "password": "..."},
    }

or from environment variables (:meth:`DirectoryConfig.from_env`).  Every leaf
has a default.  Each key owns a validator; a value that fails validation is
reported as a :class:`ConfigIssue` and replaced by the default, it never
fails the parse.
"""
from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping

from .core.constants import (
    DEFAULT_PORT,
    DEFAULT_SSL_PORT,
    DEFAULT_TIMEOUT,
    YES_VALUES,
)

logger = logging.getLogger("ldap_access.config")

__all__ = [
    "AuthConfig",
    "ConfigIssue",
    "DirectoryConfig",
    "validate_config",
]


def _env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip() in YES_VALUES


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "").strip()
    return [s for s in [p.strip() for p in raw.split(",")] if s]


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------


def _is_string(value: Any) -> bool:
    return isinstance(value, str)


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_controllers(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _is_port(value: Any) -> bool:
    number = _as_number(value)
    return number is not None and float(number).is_integer() and 0 <= number <= 65535


def _is_timeout(value: Any) -> bool:
    number = _as_number(value)
    return number is not None and math.isfinite(number) and number >= 0


_VALIDATORS: Dict[str, Callable[[Any], bool]] = {
    "domain.suffix": _is_string,
    "domain.controllers": _is_controllers,
    "connection.port": _is_port,
    "connection.timeout": _is_timeout,
    "connection.ssl": _is_bool,
    "connection.tls": _is_bool,
    "master.user": _is_string,
    "master.password": _is_string,
}

_ALIASES = {"master.pwd": "master.password"}


@dataclass(frozen=True, slots=True)
class ConfigIssue:
    """A configuration value rejected by its validator."""

    key: str
    value: Any
    reason: str

    def __str__(self) -> str:
        return f"{self.key}: {self.reason} (got {self.value!r})"


def _flatten(mapping: Mapping[str, Any]) -> Dict[str, Any]:
    """Collapse the nested layout to ``section.key`` leaves."""
    flat: Dict[str, Any] = {}
    for section, body in mapping.items():
        if isinstance(body, Mapping):
            for key, value in body.items():
                dotted = f"{section}.{key}"
                flat[_ALIASES.get(dotted, dotted)] = value
        else:
            flat[_ALIASES.get(section, section)] = body
    return flat


def validate_config(mapping: Mapping[str, Any]) -> List[ConfigIssue]:
    """Validate every recognised leaf of *mapping*.

    Unknown keys are ignored.  Returns the list of rejected values, empty when
    everything supplied is acceptable.
    """
    issues: List[ConfigIssue] = []
    if not isinstance(mapping, Mapping):
        return [ConfigIssue("", mapping, "configuration is not a mapping")]
    for key, value in _flatten(mapping).items():
        validator = _VALIDATORS.get(key)
        if validator is not None and not validator(value):
            issues.append(ConfigIssue(key, value, f"invalid value, {validator.__name__.lstrip('_')} failed"))
    return issues


# ---------------------------------------------------------------------------
# Directory configuration
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class DirectoryConfig:
    """Settings for one directory instance."""

    # Domain ------------------------------------------------------------
    suffix: str = ""
    controllers: List[str] = field(default_factory=list)

    # Connection --------------------------------------------------------
    port: int = DEFAULT_PORT
    timeout: float = DEFAULT_TIMEOUT
    ssl: bool = False
    tls: bool = False

    # Master (service account) -----------------------------------------
    master_user: str = ""
    master_password: str = ""

    @classmethod
    def parse(cls, mapping: Mapping[str, Any] | None) -> "DirectoryConfig":
        """Build a config from the nested mapping layout.

        Missing or invalid leaves fall back to their defaults; every rejected
        value is logged as a warning.
        """
        if mapping is None:
            return cls()
        issues = validate_config(mapping)
        for issue in issues:
            logger.warning("Invalid config value ignored, using default: %s", issue)
        if not isinstance(mapping, Mapping):
            return cls()
        rejected = {issue.key for issue in issues}
        values = {k: v for k, v in _flatten(mapping).items() if k in _VALIDATORS and k not in rejected}
        return cls._from_leaves(values)

    @classmethod
    def from_env(cls) -> "DirectoryConfig":
        """Runtime configuration derived from environment variables."""
        mapping: Dict[str, Dict[str, Any]] = {
            "domain": {
                "suffix": os.getenv("LDAP_DOMAIN_SUFFIX", ""),
                "controllers": _env_list("LDAP_DOMAIN_CONTROLLERS"),
            },
            "connection": {
                "ssl": _env_bool("LDAP_SSL", False),
                "tls": _env_bool("LDAP_TLS", False),
            },
            "master": {
                "user": os.getenv("LDAP_MASTER_USER", ""),
                "password": os.getenv("LDAP_MASTER_PASSWORD", ""),
            },
        }
        if os.getenv("LDAP_PORT"):
            mapping["connection"]["port"] = os.getenv("LDAP_PORT")
        if os.getenv("LDAP_TIMEOUT"):
            mapping["connection"]["timeout"] = os.getenv("LDAP_TIMEOUT")
        return cls.parse(mapping)

    @classmethod
    def _from_leaves(cls, values: Mapping[str, Any]) -> "DirectoryConfig":
        ssl = values.get("connection.ssl", False)
        port = values.get("connection.port")
        return cls(
            suffix=values.get("domain.suffix", "").strip(),
            controllers=[c.strip() for c in values.get("domain.controllers", []) if c.strip()],
            port=int(float(port)) if port is not None else (DEFAULT_SSL_PORT if ssl else DEFAULT_PORT),
            timeout=float(values.get("connection.timeout", DEFAULT_TIMEOUT)),
            ssl=ssl,
            tls=values.get("connection.tls", False),
            master_user=values.get("master.user", ""),
            master_password=values.get("master.password", ""),
        )

    def replace_items(self, mapping: Mapping[str, Any]) -> "DirectoryConfig":
        """Return a copy with only the valid supplied leaves changed."""
        issues = validate_config(mapping)
        for issue in issues:
            logger.warning("Invalid config value ignored, keeping current value: %s", issue)
        if not isinstance(mapping, Mapping):
            return self._from_leaves(self.as_leaves())
        rejected = {issue.key for issue in issues}
        leaves = self.as_leaves()
        leaves.update({k: v for k, v in _flatten(mapping).items() if k in _VALIDATORS and k not in rejected})
        return self._from_leaves(leaves)

    def as_leaves(self) -> Dict[str, Any]:
        return {
            "domain.suffix": self.suffix,
            "domain.controllers": list(self.controllers),
            "connection.port": self.port,
            "connection.timeout": self.timeout,
            "connection.ssl": self.ssl,
            "connection.tls": self.tls,
            "master.user": self.master_user,
            "master.password": self.master_password,
        }

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        """Nested mapping form, suitable for :meth:`parse`."""
        nested: Dict[str, Dict[str, Any]] = {}
        for dotted, value in self.as_leaves().items():
            section, key = dotted.split(".", 1)
            nested.setdefault(section, {})[key] = value
        return nested

    def masked(self) -> Dict[str, Dict[str, Any]]:
        """:meth:`as_dict` with secrets replaced, for logging."""
        nested = self.as_dict()
        if nested["master"]["password"]:
            nested["master"]["password"] = "***"
        return nested


# ---------------------------------------------------------------------------
# Auth adapter configuration
# ---------------------------------------------------------------------------

HASH_SOURCES = ("password", "login")


@dataclass(slots=True)
class AuthConfig:
    """Settings of :class:`ldap_access.auth.LdapAuth`."""

    attributes: List[str] = field(default_factory=lambda: ["*"])
    login_hash_salt: str = "put_some_salt_in_here"
    # "password": salt + account + pwdLastSet, "login": salt + account + login time
    hash_source: str = "password"
    driver_id: str = "ldapauth"

    def __post_init__(self) -> None:
        if self.hash_source not in HASH_SOURCES:
            logger.warning("Unknown login hash source %r, using 'password'", self.hash_source)
            self.hash_source = "password"

    @classmethod
    def from_env(cls) -> "AuthConfig":
        cfg = cls()
        attributes = _env_list("LDAP_AUTH_ATTRIBUTES")
        if attributes:
            cfg.attributes = attributes
        salt = os.getenv("LDAP_AUTH_SALT")
        if salt:
            cfg.login_hash_salt = salt
        source = os.getenv("LDAP_AUTH_HASH_SOURCE")
        if source:
            cfg.hash_source = source.strip().lower()
            cfg.__post_init__()
        return cfg
