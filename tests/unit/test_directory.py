import pytest

from ldap_access.config import DirectoryConfig
from ldap_access.directory import BindRole, Directory, full_qualified_id
from ldap_access.errors import (
    ConfigurationError,
    DirectoryConnectionError,
    DirectoryOperationError,
    DiscoveryError,
    IdentifierFormatError,
)

from conftest import BASE_DN


# ---------------------------------------------------------------------------
# Full qualification
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "raw,suffix,expected",
    [
        ("jdoe", "example.com", "jdoe@example.com"),
        ("jdoe@corp.local", "example.com", "jdoe@corp.local"),
        ("  jdoe  ", "@example.com", "jdoe@example.com"),
        ("jdoe", "", "jdoe"),
        ("jdoe@", "example.com", "jdoe@example.com"),
        ("jdoe @ corp.local", "", "jdoe@corp.local"),
    ],
)
def test_full_qualified_id(raw, suffix, expected):
    assert full_qualified_id(raw, suffix) == expected


@pytest.mark.parametrize(
    "raw,suffix",
    [
        ("@corp.local", ""),
        ("jdoe@a@b", ""),
        ("", "example.com"),
        ("   ", "example.com"),
        ("jdoe", "@@example.com"),
        ("jdoe", "example@com"),
    ],
)
def test_full_qualified_id_rejects_malformed_input(raw, suffix):
    with pytest.raises(IdentifierFormatError):
        full_qualified_id(raw, suffix)


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------


def test_connect_picks_a_configured_controller(directory, server):
    assert directory.is_connected() is False
    assert directory.connect() is True
    assert directory.is_connected() is True
    assert server.hosts[0] in ("dc1.example.com", "dc2.example.com")
    # no-op when already connected
    assert directory.connect() is True
    assert len(server.hosts) == 1


def test_connect_without_controllers_is_a_configuration_error(transport_factory):
    directory = Directory("empty", DirectoryConfig(), transport_factory=transport_factory)
    with pytest.raises(ConfigurationError):
        directory.connect()


def test_connect_failure_is_reported_as_error(directory, server):
    server.fail_open = True
    assert directory.connect() is False
    assert directory.is_connected() is False
    assert directory.has_error()
    assert directory.get_error().number == -1


def test_connect_starts_tls_when_configured(config, transport_factory, server):
    directory = Directory("tls", config.replace_items({"connection": {"tls": True}}), transport_factory=transport_factory)
    directory.connect()
    assert server.tls_started == 1


# ---------------------------------------------------------------------------
# Bind
# ---------------------------------------------------------------------------


def test_bind_as_master_discovers_base_dn(directory, server):
    assert directory.bind() is True
    assert directory.is_bound() is True
    assert directory.bound_as is BindRole.MASTER
    assert directory.base_dn == BASE_DN
    assert server.binds == ["svc-ldap@example.com"]


def test_bind_falls_back_to_naming_contexts(directory, server):
    server.root_dse = {"namingContexts": ["DC=other,DC=org", "CN=Configuration,DC=other,DC=org"]}
    assert directory.bind() is True
    assert directory.base_dn == "DC=other,DC=org"


def test_bind_without_naming_context_reports_failure(directory, server):
    server.root_dse = {}
    assert directory.bind() is False
    assert directory.base_dn == ""
    # the bind itself worked
    assert directory.bound_as is BindRole.MASTER


def test_bind_fails_hard_when_root_dse_is_unreadable(directory, server):
    server.fail_root_dse = True
    with pytest.raises(DiscoveryError):
        directory.bind()


def test_bind_without_master_credentials_returns_false(transport_factory, server):
    cfg = DirectoryConfig.parse({"domain": {"controllers": ["dc1"]}})
    directory = Directory("nomaster", cfg, transport_factory=transport_factory)
    assert directory.bind() is False
    assert directory.is_connected() is True
    assert server.binds == []


def test_anonymous_bind(transport_factory, server):
    cfg = DirectoryConfig.parse({"domain": {"controllers": ["dc1"]}})
    directory = Directory("anon", cfg, transport_factory=transport_factory)
    assert directory.bind(anonymous=True) is True
    assert server.binds == [""]


def test_bind_with_wrong_master_password(config, transport_factory):
    cfg = config.replace_items({"master": {"password": "wrong"}})
    directory = Directory("bad", cfg, transport_factory=transport_factory)
    assert directory.bind() is False
    assert directory.is_bound() is False
    assert directory.get_error() == DirectoryOperationError(49, "Invalid credentials")


def test_bind_raises_when_no_connection_can_be_made(directory, server):
    server.fail_open = True
    with pytest.raises(DirectoryConnectionError):
        directory.bind()


def test_is_bound_can_try_to_bind(directory):
    assert directory.is_bound() is False
    assert directory.is_bound(try_bind=True) is True


# ---------------------------------------------------------------------------
# Bind with credentials
# ---------------------------------------------------------------------------


def test_bind_credentials_as_user(directory, server):
    assert directory.bind_credentials("jdoe", "s3cret") is True
    assert directory.bound_as is BindRole.USER
    assert directory.base_dn == BASE_DN
    assert server.binds == ["jdoe@example.com"]


def test_bind_credentials_then_rebind_as_master(directory, server):
    assert directory.bind_credentials("jdoe", "s3cret", rebind_as_master=True) is True
    assert directory.bound_as is BindRole.MASTER
    assert server.binds == ["jdoe@example.com", "svc-ldap@example.com"]


def test_failed_master_rebind_leaves_directory_unbound(config, transport_factory, server):
    cfg = config.replace_items({"master": {"password": "wrong"}})
    directory = Directory("bad", cfg, transport_factory=transport_factory)

    # the user credentials were valid, only the rebind failed
    assert directory.bind_credentials("jdoe", "s3cret", rebind_as_master=True) is True
    assert directory.bound_as is None
    assert directory.is_bound() is False
    assert directory.get_error() == DirectoryOperationError(49, "Invalid credentials")
    assert server.binds == ["jdoe@example.com", "svc-ldap@example.com"]


def test_master_rebind_without_master_credentials_keeps_user_binding(transport_factory, server):
    cfg = DirectoryConfig.parse({"domain": {"suffix": "example.com", "controllers": ["dc1"]}})
    directory = Directory("nomaster", cfg, transport_factory=transport_factory)

    assert directory.bind_credentials("jdoe", "s3cret", rebind_as_master=True) is True
    assert directory.bound_as is BindRole.USER
    assert directory.is_bound() is True
    assert server.binds == ["jdoe@example.com"]


@pytest.mark.parametrize("identifier,password", [("", "pw"), ("jdoe", ""), ("  ", "  "), (None, "pw")])
def test_bind_credentials_requires_identifier_and_password(directory, server, identifier, password):
    assert directory.bind_credentials(identifier, password) is False
    assert server.binds == []


def test_bind_credentials_rejects_malformed_identifier(directory):
    with pytest.raises(IdentifierFormatError):
        directory.bind_credentials("jdoe@a@b", "pw")


def test_failed_credential_bind_keeps_previous_master_tag(directory):
    directory.bind()
    assert directory.bind_credentials("jdoe", "wrong") is False
    assert directory.bound_as is BindRole.MASTER
    assert directory.get_error().number == 49


def test_bind_credentials_does_not_fail_without_base_dn(directory, server):
    server.root_dse = {}
    assert directory.bind_credentials("jdoe", "s3cret") is True
    assert directory.base_dn == ""


# ---------------------------------------------------------------------------
# Unbind / disconnect
# ---------------------------------------------------------------------------


def test_unbind_is_idempotent(directory):
    directory.bind()
    assert directory.unbind() is True
    assert directory.unbind() is True
    assert directory.bound_as is None


def test_unbind_never_raises(directory, server):
    directory.bind()
    server.unbind_raises = True
    assert directory.unbind() is True
    assert directory.is_bound() is False


def test_disconnect_keeps_config(directory, config):
    directory.bind()
    directory.disconnect()
    directory.disconnect()
    assert directory.is_connected() is False
    assert directory.base_dn == ""
    assert directory.config is config


def test_set_config_disconnects(directory, config):
    directory.connect()
    directory.set_config({"domain": {"controllers": ["dc9"]}})
    assert directory.is_connected() is False
    assert directory.config.controllers == ["dc9"]


def test_context_manager_disconnects(directory):
    with directory as d:
        assert d.bind() is True
    assert directory.is_connected() is False


def test_end_to_end_query(directory, server):
    assert directory.connect() is True
    assert server.hosts[0] in ("dc1.example.com", "dc2.example.com")
    assert directory.bind() is True
    assert directory.base_dn

    result = directory.query("(sAMAccountName=jdoe)").execute()
    assert result.count() == 1
    assert result.entry(0)["samaccountname"] == "jdoe"
