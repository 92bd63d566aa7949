"""Shared fixtures: an in-memory directory server and a transport talking to it."""
from __future__ import annotations

import re
from typing import Any, Dict, List, Sequence, Tuple

import pytest

from ldap_access.config import DirectoryConfig
from ldap_access.directory import Directory
from ldap_access.ldap_client import to_raw_result

BASE_DN = "DC=example,DC=com"

_LEAF = re.compile(r"\(([^()&|!=]+)=([^()]*)\)")


def _person(account: str, name: str, groups: Sequence[str] = (), pwd_last_set: str = "133000000000000000") -> Tuple[str, Dict[str, Any]]:
    dn = f"CN={name},OU=Users,{BASE_DN}"
    return dn, {
        "objectClass": ["top", "person", "organizationalPerson", "user"],
        "objectCategory": ["Person"],
        "sAMAccountName": [account],
        "displayName": [name],
        "mail": [f"{account}@example.com"],
        "memberOf": list(groups),
        "objectGUID": [bytes(range(16))],
        "pwdLastSet": [pwd_last_set],
    }


class FakeServer:
    """State shared by every transport opened against the fake directory."""

    def __init__(self) -> None:
        self.accounts: Dict[str, str] = {
            "svc-ldap@example.com": "master-secret",
            "jdoe@example.com": "s3cret",
        }
        self.root_dse: Dict[str, List[str]] = {"defaultNamingContext": [BASE_DN]}
        self.entries: List[Tuple[str, Dict[str, Any]]] = [
            _person("jdoe", "John Doe", ["CN=Staff,OU=Groups," + BASE_DN, "CN=VPN,OU=Groups," + BASE_DN]),
            _person("asmith", "Anna Smith"),
        ]
        self.fail_open = False
        self.fail_root_dse = False
        self.fail_search = False
        self.unbind_raises = False
        self.hosts: List[str] = []
        self.binds: List[str] = []
        self.searches: List[Dict[str, Any]] = []
        self.tls_started = 0

    def add_person(self, account: str, name: str, **kwargs: Any) -> None:
        self.entries.append(_person(account, name, **kwargs))

    def matches(self, attrs: Dict[str, Any], search_filter: str) -> bool:
        folded = {k.lower(): [str(v).lower() for v in values] for k, values in attrs.items()}
        for name, value in _LEAF.findall(search_filter):
            if value == "*":
                continue
            if value.lower() not in folded.get(name.strip().lower(), []):
                return False
        return True


class FakeTransport:
    """In-memory :class:`~ldap_access.ldap_client.DirectoryTransport`."""

    def __init__(self, server: FakeServer) -> None:
        self.server = server
        self.connected = False
        self._error: Tuple[int, str] = (0, "")

    def open(self, host: str, port: int, *, use_ssl: bool = False, timeout: float | None = None) -> bool:
        if self.server.fail_open:
            self._error = (-1, "Can't contact LDAP server")
            return False
        self.server.hosts.append(host)
        self.connected = True
        self._error = (0, "")
        return True

    def start_tls(self) -> bool:
        self.server.tls_started += 1
        return True

    def bind(self, user: str, password: str) -> bool:
        self.server.binds.append(user)
        if not user or self.server.accounts.get(user.lower()) == password:
            self._error = (0, "")
            return True
        self._error = (49, "Invalid credentials")
        return False

    def unbind(self) -> bool:
        self.connected = False
        if self.server.unbind_raises:
            raise RuntimeError("socket already closed")
        return True

    def read(self, base: str, search_filter: str, attributes: Sequence[str]) -> Dict[Any, Any] | None:
        if self.server.fail_root_dse:
            self._error = (-1, "Root DSE unavailable")
            return None
        self._error = (0, "")
        wanted = {a.lower() for a in attributes}
        attrs = {k: v for k, v in self.server.root_dse.items() if k.lower() in wanted}
        return to_raw_result([{"type": "searchResEntry", "dn": "", "attributes": attrs}])

    def search(
        self,
        base: str,
        search_filter: str,
        attributes: Sequence[str],
        size_limit: int = 0,
        time_limit: float = 0,
    ) -> Dict[Any, Any] | None:
        self.server.searches.append(
            {"base": base, "filter": search_filter, "attributes": list(attributes), "size_limit": size_limit, "time_limit": time_limit}
        )
        if self.server.fail_search:
            self._error = (32, "No such object")
            return None
        self._error = (0, "")
        wanted = {a.lower() for a in attributes}
        response = []
        for dn, attrs in self.server.entries:
            if not self.server.matches(attrs, search_filter):
                continue
            if "*" not in wanted:
                attrs = {k: v for k, v in attrs.items() if k.lower() in wanted}
            response.append({"type": "searchResEntry", "dn": dn, "attributes": attrs})
            if size_limit and len(response) >= size_limit:
                break
        return to_raw_result(response)

    def last_error(self) -> Tuple[int, str]:
        return self._error


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def transport_factory(server):
    return lambda: FakeTransport(server)


@pytest.fixture
def config() -> DirectoryConfig:
    return DirectoryConfig.parse(
        {
            "domain": {"suffix": "example.com", "controllers": ["dc1.example.com", "dc2.example.com"]},
            "connection": {"port": 389, "timeout": 5},
            "master": {"user": "svc-ldap", "pwd": "master-secret"},
        }
    )


@pytest.fixture
def directory(config, transport_factory) -> Directory:
    return Directory("test", config, transport_factory=transport_factory)
