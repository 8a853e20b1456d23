"""AWS Secrets Manager Vault Adapter."""
import json
import logging
from typing import Any, Dict, Iterable, Optional

import boto3
from botocore.exceptions import ClientError

from rotator.domain.rotation.models import PasswordPolicy, SecretVersion, StagingLabel
from rotator.domain.rotation.ports import VaultClient
from rotator.errors import GenerationError, SecretNotFound, StaleVersionError, VersionConflict

logger = logging.getLogger(__name__)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _error_message(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Message", str(error))


class SecretsManagerVault(VaultClient):
    """Vault adapter backed by the Secrets Manager API.

    Secret values are JSON objects stored in ``SecretString``. Conditional-write
    semantics are the service's own: ``PutSecretValue`` is idempotent per
    ``ClientRequestToken`` and ``UpdateSecretVersionStage`` refuses to move a
    label whose holder is not ``RemoveFromVersionId``.
    """

    def __init__(self, client=None, region_name: Optional[str] = None, endpoint_url: Optional[str] = None):
        self._client = client or boto3.client(
            "secretsmanager", region_name=region_name, endpoint_url=endpoint_url
        )

    def generate_random_secret(self, policy: PasswordPolicy) -> str:
        params: Dict[str, Any] = {
            "PasswordLength": policy.length,
            "ExcludePunctuation": policy.exclude_punctuation,
            "ExcludeNumbers": policy.exclude_numbers,
            "ExcludeUppercase": policy.exclude_uppercase,
            "ExcludeLowercase": policy.exclude_lowercase,
            "IncludeSpace": policy.include_space,
            "RequireEachIncludedType": policy.require_each_included_type,
        }
        if policy.exclude_characters:
            params["ExcludeCharacters"] = policy.exclude_characters
        try:
            response = self._client.get_random_password(**params)
        except ClientError as e:
            raise GenerationError(f"GetRandomPassword failed: {_error_message(e)}") from e
        logger.debug("Retrieved random password from Secrets Manager")
        return response["RandomPassword"]

    def get_secret_version(self, secret_id: str, staging_label: StagingLabel) -> SecretVersion:
        try:
            response = self._client.get_secret_value(
                SecretId=secret_id, VersionStage=staging_label.value
            )
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                raise SecretNotFound(
                    f"No version of {secret_id} holds {staging_label.value}"
                ) from e
            raise

        labels = set()
        for stage in response.get("VersionStages", [staging_label.value]):
            try:
                labels.add(StagingLabel(stage))
            except ValueError:
                continue
        return SecretVersion(
            version_id=response["VersionId"],
            value=json.loads(response.get("SecretString") or "{}"),
            labels=labels,
        )

    def put_secret_version(
        self,
        secret_id: str,
        value: Dict[str, Any],
        labels: Iterable[StagingLabel],
        request_token: str,
    ) -> None:
        try:
            response = self._client.put_secret_value(
                SecretId=secret_id,
                ClientRequestToken=request_token,
                SecretString=json.dumps(value),
                VersionStages=[label.value for label in labels],
            )
        except ClientError as e:
            if _error_code(e) == "ResourceExistsException":
                raise VersionConflict(
                    f"Version {request_token} of {secret_id} already exists with a different value"
                ) from e
            raise
        logger.info(f"Put version {response.get('VersionId', request_token)} of {secret_id}")

    def move_staging_label(
        self,
        secret_id: str,
        label: StagingLabel,
        to_version_id: str,
        from_version_id: Optional[str] = None,
    ) -> None:
        params: Dict[str, Any] = {
            "SecretId": secret_id,
            "VersionStage": label.value,
            "MoveToVersionId": to_version_id,
        }
        if from_version_id:
            params["RemoveFromVersionId"] = from_version_id
        try:
            self._client.update_secret_version_stage(**params)
        except ClientError as e:
            # The service rejects a move whose RemoveFromVersionId is not the label's holder
            if _error_code(e) in ("InvalidParameterException", "InvalidRequestException") and \
                    "RemoveFromVersionId" in _error_message(e):
                raise StaleVersionError(
                    f"{label.value} of {secret_id} is no longer held by {from_version_id}: {_error_message(e)}"
                ) from e
            raise
        logger.info(f"Moved {label.value} of {secret_id} from {from_version_id} to {to_version_id}")
