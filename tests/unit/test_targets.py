"""Tests for target updaters (noop, HTTP API keys, PostgreSQL roles)."""
import json

import httpx
import pytest
from unittest.mock import MagicMock
from sqlalchemy.exc import OperationalError

from rotator.adapters.targets.http_api import HttpApiKeyUpdater
from rotator.adapters.targets.noop import NoopTargetUpdater
from rotator.adapters.targets.postgres import PostgresRoleUpdater, quote_ident, quote_literal
from rotator.adapters.memory_store.vault import MemoryVault
from rotator.domain.rotation.models import AccessLevel, StagingLabel
from rotator.domain.rotation.service import RotationService
from rotator.errors import ApplyError, IdentityNotFound, ValidationError


# --- noop ---

def test_noop_verify_checks_required_fields():
    updater = NoopTargetUpdater(required_fields=["authMasterKey"])
    updater.apply({"authMasterKey": "x"}, {})
    updater.verify({"authMasterKey": "x"}, AccessLevel.READ)

    with pytest.raises(ValidationError, match="authMasterKey"):
        updater.verify({"authMasterKey": ""}, AccessLevel.READ)


# --- http ---

class FakeKeyService:
    """In-process stand-in for the key-management API."""

    def __init__(self, keys=None, admin="admin-key"):
        self.keys = dict(keys or {})
        self.admin = admin
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        bearer = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if request.url.path == "/v1/auth/check":
            return httpx.Response(200 if bearer in self.keys.values() else 401)
        if bearer != self.admin and bearer not in self.keys.values():
            return httpx.Response(403)
        if request.method == "PUT":
            key_id = request.url.path.rsplit("/", 1)[-1]
            if key_id not in self.keys:
                return httpx.Response(404)
            self.keys[key_id] = json.loads(request.content)["key"]
            return httpx.Response(200)
        if request.method == "POST" and request.url.path == "/v1/keys":
            body = json.loads(request.content)
            if body["id"] in self.keys:
                return httpx.Response(409)
            self.keys[body["id"]] = body["key"]
            return httpx.Response(201, json=body)
        return httpx.Response(400)


def http_updater(service: FakeKeyService) -> HttpApiKeyUpdater:
    client = httpx.Client(transport=httpx.MockTransport(service), base_url="https://keys.test")
    return HttpApiKeyUpdater(client=client)


def test_http_requires_base_url():
    with pytest.raises(ValueError):
        HttpApiKeyUpdater()


def test_http_apply_replaces_key():
    service = FakeKeyService({"k1": "old"})
    updater = http_updater(service)

    updater.apply({"keyId": "k1", "authMasterKey": "new"}, {"keyId": "k1", "authMasterKey": "old"})

    assert service.keys["k1"] == "new"
    updater.verify({"keyId": "k1", "authMasterKey": "new"}, AccessLevel.READ)


def test_http_apply_skips_when_already_accepted():
    service = FakeKeyService({"k1": "new"})
    updater = http_updater(service)

    updater.apply({"keyId": "k1", "authMasterKey": "new"}, {"authMasterKey": "admin-key"})

    assert [r.method for r in service.requests] == ["GET"]


def test_http_apply_missing_key_raises_identity_not_found():
    updater = http_updater(FakeKeyService())
    with pytest.raises(IdentityNotFound):
        updater.apply({"keyId": "k9", "authMasterKey": "new"}, {"authMasterKey": "admin-key"})


def test_http_apply_rejected_authority():
    updater = http_updater(FakeKeyService({"k1": "old"}))
    with pytest.raises(ApplyError):
        updater.apply({"keyId": "k1", "authMasterKey": "new"}, {"authMasterKey": "wrong"})


def test_http_create_identity_clones_scopes():
    service = FakeKeyService({"k1": "old"})
    updater = http_updater(service)

    updater.create_identity(
        {"keyId": "k2", "authMasterKey": "new"},
        {"authMasterKey": "admin-key"},
        clone_from={"keyId": "k1"},
    )

    body = json.loads(service.requests[-1].content)
    assert body["clone_scopes_from"] == "k1"
    assert service.keys["k2"] == "new"

    # Second attempt sees 409 and succeeds
    updater.create_identity({"keyId": "k2", "authMasterKey": "new"}, {"authMasterKey": "admin-key"})


def test_http_verify_read_write_uses_post():
    service = FakeKeyService({"k1": "new"})
    http_updater(service).verify({"keyId": "k1", "authMasterKey": "new"}, AccessLevel.READ_WRITE)
    assert service.requests[-1].method == "POST"


def test_http_verify_rejected():
    updater = http_updater(FakeKeyService({"k1": "old"}))
    with pytest.raises(ValidationError):
        updater.verify({"keyId": "k1", "authMasterKey": "new"}, AccessLevel.READ)


def test_http_unreachable_is_apply_error():
    def boom(request):
        raise httpx.ConnectError("refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(boom), base_url="https://keys.test")
    with pytest.raises(ApplyError):
        HttpApiKeyUpdater(client=client).apply({"keyId": "k1", "authMasterKey": "x"}, {"authMasterKey": "a"})


# --- postgres ---

def test_quoting():
    assert quote_ident('we"ird') == '"we""ird"'
    assert quote_literal("it's") == "'it''s'"


class FakeEngines:
    """engine_factory returning mocks; only passwords in ``accepting`` can connect."""

    def __init__(self, accepting, role_exists=True, memberships=()):
        self.accepting = set(accepting)
        self.role_exists = role_exists
        self.memberships = list(memberships)
        self.statements = []
        self.urls = []

    def __call__(self, url, **kwargs):
        self.urls.append(url)
        engine = MagicMock()
        if url.password not in self.accepting:
            engine.connect.side_effect = OperationalError("connect", {}, Exception("auth failed"))
            engine.begin.side_effect = OperationalError("connect", {}, Exception("auth failed"))
            return engine

        conn = MagicMock()
        result = conn.execute.return_value
        result.scalar.return_value = 1 if self.role_exists else None
        result.scalars.return_value.all.return_value = self.memberships
        conn.execute.side_effect = lambda stmt, *a: self.statements.append(str(stmt)) or result
        engine.connect.return_value.__enter__.return_value = conn
        engine.begin.return_value.__enter__.return_value = conn
        return engine


PENDING = {"host": "db.internal", "port": 5432, "dbname": "app", "username": "app", "password": "new"}
ADMIN = {"host": "admin.internal", "username": "admin", "password": "root"}


def test_postgres_apply_alters_role():
    engines = FakeEngines(accepting={"root"})
    PostgresRoleUpdater(engine_factory=engines).apply(PENDING, ADMIN)

    assert any(s == "ALTER ROLE \"app\" WITH PASSWORD 'new'" for s in engines.statements)
    # Authority connects to the pending secret's host
    assert engines.urls[-1].host == "db.internal"
    assert engines.urls[-1].username == "admin"


def test_postgres_apply_skips_when_password_already_set():
    engines = FakeEngines(accepting={"new", "root"})
    PostgresRoleUpdater(engine_factory=engines).apply(PENDING, ADMIN)

    assert not any(s.startswith("ALTER ROLE") for s in engines.statements)


def test_postgres_apply_missing_role():
    engines = FakeEngines(accepting={"root"}, role_exists=False)
    with pytest.raises(IdentityNotFound):
        PostgresRoleUpdater(engine_factory=engines).apply(PENDING, ADMIN)


def test_postgres_apply_bad_authority():
    engines = FakeEngines(accepting=set())
    with pytest.raises(ApplyError):
        PostgresRoleUpdater(engine_factory=engines).apply(PENDING, ADMIN)


def test_postgres_create_identity_clones_memberships():
    engines = FakeEngines(accepting={"root"}, role_exists=False, memberships=["reader", "writer"])
    PostgresRoleUpdater(engine_factory=engines).create_identity(
        {**PENDING, "username": "app_clone"}, ADMIN, clone_from=PENDING
    )

    assert "CREATE ROLE \"app_clone\" WITH LOGIN PASSWORD 'new'" in engines.statements
    assert 'GRANT "reader" TO "app_clone"' in engines.statements
    assert 'GRANT "writer" TO "app_clone"' in engines.statements


def test_postgres_verify():
    engines = FakeEngines(accepting={"new"})
    updater = PostgresRoleUpdater(engine_factory=engines)

    updater.verify(PENDING, AccessLevel.READ_WRITE)
    assert any("rotator_write_check" in s for s in engines.statements)

    with pytest.raises(ValidationError):
        updater.verify({**PENDING, "password": "wrong"}, AccessLevel.READ)


def test_postgres_custom_credential_field():
    engines = FakeEngines(accepting={"root"})
    updater = PostgresRoleUpdater(engine_factory=engines, credential_field="dbPassword")

    updater.apply(
        {"host": "db.internal", "username": "app", "dbPassword": "new"},
        {"username": "admin", "dbPassword": "root"},
    )

    assert "ALTER ROLE \"app\" WITH PASSWORD 'new'" in engines.statements


def test_postgres_rotation_changes_the_role_password():
    engines = FakeEngines(accepting={"old"})
    vault = MemoryVault()
    vault.seed("db", "v0", {"host": "db.internal", "username": "app", "password": "old"}, [StagingLabel.CURRENT])
    service = RotationService(vault, PostgresRoleUpdater(engine_factory=engines), rotated_fields=["password"])

    service.create_secret("db", "t1")
    service.set_secret("db", "t1")

    new_password = vault.get_secret_version("db", StagingLabel.PENDING).value["password"]
    assert new_password != "old"
    assert f"ALTER ROLE \"app\" WITH PASSWORD '{new_password}'" in engines.statements


def test_postgres_apply_without_authority():
    engines = FakeEngines(accepting=set())
    with pytest.raises(ApplyError, match="Authority"):
        PostgresRoleUpdater(engine_factory=engines).apply(PENDING, {})


def test_postgres_verify_incomplete_pending_is_validation_error():
    engines = FakeEngines(accepting={"new"})
    with pytest.raises(ValidationError, match="username"):
        PostgresRoleUpdater(engine_factory=engines).verify({"password": "new"}, AccessLevel.READ)
    assert engines.urls == []


def test_http_apply_without_authority():
    updater = http_updater(FakeKeyService({"k1": "old"}))
    with pytest.raises(ApplyError, match="Authority"):
        updater.apply({"keyId": "k1", "authMasterKey": "new"}, {})


def test_http_verify_incomplete_pending_is_validation_error():
    service = FakeKeyService({"k1": "new"})
    with pytest.raises(ValidationError, match="authMasterKey"):
        http_updater(service).verify({"keyId": "k1"}, AccessLevel.READ)
    assert service.requests == []
