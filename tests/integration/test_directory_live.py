"""Tests against a real directory server.

Skipped unless ``LDAP_TEST_CONTROLLER`` is set (environment or project ``.env``).

    LDAP_TEST_CONTROLLER   host name or ldap(s):// URL of a domain controller
    LDAP_TEST_SUFFIX       domain suffix appended to bare account names
    LDAP_TEST_MASTER_USER / LDAP_TEST_MASTER_PASSWORD
    LDAP_TEST_USER / LDAP_TEST_PASSWORD   an ordinary account for login tests
"""
import os
from pathlib import Path
from typing import Dict

import pytest

from ldap_access.auth import LdapAuth
from ldap_access.config import DirectoryConfig
from ldap_access.directory import BindRole
from ldap_access.registry import DirectoryRegistry

# ---------------------------------------------------------------------------
# Helpers for loading LDAP connection variables
# ---------------------------------------------------------------------------


def _parse_dotenv(dotenv_path: Path) -> Dict[str, str]:
    env: Dict[str, str] = {}
    if not dotenv_path.exists():
        return env
    for line in dotenv_path.read_text().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, v = line.split("=", 1)
        env[k.strip()] = v.strip()
    return env


ROOT = Path(__file__).resolve().parents[2]
DOTENV = ROOT / ".env"
if DOTENV.exists():
    os.environ.update({k: v for k, v in _parse_dotenv(DOTENV).items() if k not in os.environ})

pytestmark = pytest.mark.skipif(
    not os.getenv("LDAP_TEST_CONTROLLER"),
    reason="LDAP_TEST_CONTROLLER is not set, no directory server to test against",
)


@pytest.fixture
def registry():
    reg = DirectoryRegistry()
    yield reg
    for name in reg.names():
        reg.remove(name)


@pytest.fixture
def live(registry):
    cfg = DirectoryConfig.parse(
        {
            "domain": {
                "suffix": os.getenv("LDAP_TEST_SUFFIX", ""),
                "controllers": [os.getenv("LDAP_TEST_CONTROLLER", "")],
            },
            "connection": {"ssl": os.getenv("LDAP_TEST_CONTROLLER", "").lower().startswith("ldaps://"), "timeout": 10},
            "master": {
                "user": os.getenv("LDAP_TEST_MASTER_USER", ""),
                "password": os.getenv("LDAP_TEST_MASTER_PASSWORD", ""),
            },
        }
    )
    return registry.forge("live", cfg)


def test_master_bind_discovers_base_dn(live):
    assert live.bind() is True
    assert live.bound_as is BindRole.MASTER
    assert "DC=" in live.base_dn.upper()


def test_query_returns_required_attributes(live):
    result = live.query(["&", "objectCategory=Person", "objectClass=User"]).execute(limit=5)
    assert not result.has_error(), result.error
    assert 0 < result.count() <= 5
    entry = result.entry(0)
    assert "samaccountname" in entry
    assert "dn" in entry


def test_wrong_password_is_not_an_exception(live):
    assert live.bind_credentials(os.getenv("LDAP_TEST_MASTER_USER", "nobody"), "definitely-wrong") is False
    assert live.has_error()


@pytest.mark.skipif(not os.getenv("LDAP_TEST_USER"), reason="LDAP_TEST_USER is not set")
def test_login_round_trip(live):
    session: Dict[str, str] = {}
    auth = LdapAuth(live, session)
    assert auth.login(os.environ["LDAP_TEST_USER"], os.getenv("LDAP_TEST_PASSWORD", "")) is True
    assert session["username"]
    assert auth.perform_check() is True
    auth.logout()
    assert session == {}
