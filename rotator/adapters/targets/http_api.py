"""API-key rotation against an HTTP service.

The service exposes a small key-management surface:

    GET/POST /v1/auth/check      authenticated check (read / read-write)
    PUT      /v1/keys/{key_id}   replace a key's secret (admin)
    POST     /v1/keys            create a key, optionally cloning scopes (admin)
"""
import logging
from typing import Any, Dict, Optional, Sequence, Type

import httpx

from rotator.domain.rotation.models import AccessLevel
from rotator.domain.rotation.ports import TargetUpdater
from rotator.errors import ApplyError, IdentityNotFound, RotationError, ValidationError

logger = logging.getLogger(__name__)


class HttpApiKeyUpdater(TargetUpdater):
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
        identity_field: str = "keyId",
        credential_field: str = "authMasterKey",
    ):
        if client is None and not base_url:
            raise ValueError("TARGET_HTTP_BASE_URL is required for the http target")
        self._client = client or httpx.Client(base_url=base_url, timeout=timeout)
        self.identity_field = identity_field
        self.credential_field = credential_field

    def _check_creds(
        self, creds: Dict[str, Any], fields: Sequence[str], role: str, error: Type[RotationError]
    ) -> None:
        missing = [f for f in fields if not creds.get(f)]
        if missing:
            raise error(f"{role} credentials are missing {', '.join(missing)}")

    def _bearer(self, creds: Dict[str, Any]) -> Dict[str, str]:
        return {"Authorization": f"Bearer {creds[self.credential_field]}"}

    def _check_auth(self, creds: Dict[str, Any], access_level: AccessLevel) -> httpx.Response:
        if access_level is AccessLevel.READ_WRITE:
            return self._client.post("/v1/auth/check", headers=self._bearer(creds), json={"access": "readwrite"})
        return self._client.get("/v1/auth/check", headers=self._bearer(creds))

    def apply(self, pending: Dict[str, Any], authority: Dict[str, Any]) -> None:
        self._check_creds(pending, (self.identity_field, self.credential_field), "Pending", ApplyError)
        key_id = pending[self.identity_field]
        try:
            if self._check_auth(pending, AccessLevel.READ).is_success:
                logger.info(f"Key {key_id} already accepts the pending secret")
                return

            self._check_creds(authority, (self.credential_field,), "Authority", ApplyError)
            response = self._client.put(
                f"/v1/keys/{key_id}",
                headers=self._bearer(authority),
                json={"key": pending[self.credential_field]},
            )
        except httpx.HTTPError as e:
            raise ApplyError(f"Target unreachable while updating key {key_id}: {e}") from e

        if response.status_code == 404:
            raise IdentityNotFound(f"Key {key_id} does not exist on target")
        if not response.is_success:
            raise ApplyError(f"Target rejected update of key {key_id}: HTTP {response.status_code}")
        logger.info(f"Updated key {key_id} on target")

    def create_identity(
        self,
        pending: Dict[str, Any],
        authority: Dict[str, Any],
        clone_from: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._check_creds(pending, (self.identity_field, self.credential_field), "Pending", ApplyError)
        self._check_creds(authority, (self.credential_field,), "Authority", ApplyError)
        key_id = pending[self.identity_field]
        body: Dict[str, Any] = {"id": key_id, "key": pending[self.credential_field]}
        template = (clone_from or {}).get(self.identity_field)
        if template and template != key_id:
            body["clone_scopes_from"] = template
        try:
            response = self._client.post("/v1/keys", headers=self._bearer(authority), json=body)
        except httpx.HTTPError as e:
            raise ApplyError(f"Target unreachable while creating key {key_id}: {e}") from e

        if response.status_code == 409:
            # Created by an earlier attempt
            logger.info(f"Key {key_id} already exists on target")
            return
        if not response.is_success:
            raise ApplyError(f"Target rejected creation of key {key_id}: HTTP {response.status_code}")
        logger.info(f"Created key {key_id} on target")

    def verify(self, pending: Dict[str, Any], access_level: AccessLevel) -> None:
        self._check_creds(pending, (self.credential_field,), "Pending", ValidationError)
        try:
            response = self._check_auth(pending, access_level)
        except httpx.HTTPError as e:
            raise ValidationError(f"Target unreachable during {access_level.value} check: {e}") from e
        if not response.is_success:
            raise ValidationError(
                f"Pending secret failed {access_level.value} check: HTTP {response.status_code}"
            )
