"""Target updater selection by configuration."""
from typing import Callable, Dict, Optional

from rotator.core.config import Settings
from rotator.domain.rotation.ports import TargetUpdater
from .http_api import HttpApiKeyUpdater
from .noop import NoopTargetUpdater
from .postgres import PostgresRoleUpdater

# Field of the secret value each backend authenticates with, unless TARGET_CREDENTIAL_FIELD is set
DEFAULT_CREDENTIAL_FIELDS: Dict[str, Optional[str]] = {
    "noop": None,
    "postgres": "password",
    "http": "authMasterKey",
}

TARGET_UPDATERS: Dict[str, Callable[[Settings, Optional[str]], TargetUpdater]] = {
    "noop": lambda s, field: NoopTargetUpdater(required_fields=s.ROTATED_FIELDS),
    "postgres": lambda s, field: PostgresRoleUpdater(credential_field=field),
    "http": lambda s, field: HttpApiKeyUpdater(
        base_url=s.TARGET_HTTP_BASE_URL,
        timeout=s.TARGET_HTTP_TIMEOUT_SECONDS,
        credential_field=field,
    ),
}


def build_target_updater(settings: Settings) -> TargetUpdater:
    backend = settings.TARGET_BACKEND.lower()
    factory = TARGET_UPDATERS.get(backend)
    if factory is None:
        raise ValueError(
            f"Unknown TARGET_BACKEND '{settings.TARGET_BACKEND}'. "
            f"Expected one of: {', '.join(sorted(TARGET_UPDATERS))}"
        )

    field = settings.TARGET_CREDENTIAL_FIELD or DEFAULT_CREDENTIAL_FIELDS[backend]
    if field is not None and field not in settings.ROTATED_FIELDS:
        # The credential the target checks must be regenerated on every rotation
        raise ValueError(
            f"TARGET_BACKEND '{backend}' authenticates with '{field}', which is not in "
            f"ROTATED_FIELDS {settings.ROTATED_FIELDS}"
        )
    return factory(settings, field)
