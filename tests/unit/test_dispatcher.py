import pytest
from unittest.mock import MagicMock

from rotator.domain.rotation.dispatcher import STEP_HANDLERS, dispatch, dispatch_request
from rotator.domain.rotation.models import RotationRequest
from rotator.domain.rotation.ports import TargetUpdater, VaultClient
from rotator.domain.rotation.service import RotationService
from rotator.errors import SecretNotFound


@pytest.fixture
def mock_vault():
    return MagicMock(spec=VaultClient)


@pytest.fixture
def mock_service():
    return MagicMock(spec=RotationService)


def test_step_table_is_fixed():
    assert set(STEP_HANDLERS) == {"createSecret", "setSecret", "testSecret", "finishSecret"}


@pytest.mark.parametrize("step,method", [
    ("createSecret", "create_secret"),
    ("setSecret", "set_secret"),
    ("testSecret", "test_secret"),
    ("finishSecret", "finish_secret"),
])
def test_dispatch_routes_to_handler(monkeypatch, mock_service, step, method):
    called = {}

    def fake(self, secret_id, token):
        called["args"] = (self, secret_id, token)

    monkeypatch.setitem(STEP_HANDLERS, step, fake)
    assert dispatch(mock_service, step, "s1", "t1") is None
    assert called["args"] == (mock_service, "s1", "t1")


def test_unknown_step_makes_no_vault_calls(mock_vault):
    service = RotationService(mock_vault, MagicMock(spec=TargetUpdater))

    assert dispatch(service, "rollbackSecret", "s1", "t1") is None
    assert mock_vault.mock_calls == []


def test_step_names_are_case_sensitive(mock_vault):
    service = RotationService(mock_vault, MagicMock(spec=TargetUpdater))

    dispatch(service, "createsecret", "s1", "t1")
    assert mock_vault.mock_calls == []


def test_dispatch_request_uses_orchestrator_fields(mock_vault):
    mock_vault.get_secret_version.side_effect = SecretNotFound("none")
    mock_vault.generate_random_secret.return_value = "generated"
    service = RotationService(mock_vault, MagicMock(spec=TargetUpdater))

    request = RotationRequest.model_validate(
        {"Step": "createSecret", "ClientRequestToken": "t1", "SecretId": "arn:s1"}
    )
    dispatch_request(service, request)

    args = mock_vault.put_secret_version.call_args[0]
    assert args[0] == "arn:s1"
    assert args[1] == {"authMasterKey": "generated"}
    assert args[3] == "t1"
