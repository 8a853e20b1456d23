"""Dependency Injection Module."""
import logging
from functools import lru_cache
from typing import Optional

from rotator.adapters.targets.registry import build_target_updater
from rotator.core.config import Settings, settings as default_settings
from rotator.domain.rotation.models import AccessLevel, PasswordPolicy
from rotator.domain.rotation.ports import TargetUpdater, VaultClient
from rotator.domain.rotation.service import RotationService

logger = logging.getLogger(__name__)


def build_password_policy(settings: Settings) -> PasswordPolicy:
    return PasswordPolicy(
        length=settings.PASSWORD_LENGTH,
        exclude_punctuation=settings.EXCLUDE_PUNCTUATION,
        exclude_numbers=settings.EXCLUDE_NUMBERS,
        exclude_uppercase=settings.EXCLUDE_UPPERCASE,
        exclude_lowercase=settings.EXCLUDE_LOWERCASE,
        exclude_characters=settings.EXCLUDE_CHARACTERS,
        include_space=settings.INCLUDE_SPACE,
        require_each_included_type=settings.REQUIRE_EACH_INCLUDED_TYPE,
    )


def build_vault_client(settings: Settings) -> VaultClient:
    backend = settings.VAULT_BACKEND.lower()
    if backend == "aws":
        from rotator.adapters.aws.secrets_manager import SecretsManagerVault
        return SecretsManagerVault(
            region_name=settings.AWS_REGION, endpoint_url=settings.AWS_ENDPOINT_URL
        )
    if backend == "sql":
        from rotator.adapters.sql.vault import SqlVault
        from rotator.domain.secrets.kek_provider import get_kek_provider
        kek = get_kek_provider(settings.MASTER_KEY, settings.KEK_ID, dev_mode=settings.DEV_MODE)
        return SqlVault.from_url(settings.DATABASE_URL, kek)
    if backend == "memory":
        if settings.MODE == "prod":
            raise RuntimeError("In PROD, VAULT_BACKEND must not be 'memory'")
        from rotator.adapters.memory_store.vault import MemoryVault
        logger.warning("Using in-memory vault; rotation state is lost when the process exits.")
        return MemoryVault()
    raise ValueError(f"Unknown VAULT_BACKEND '{settings.VAULT_BACKEND}'. Expected aws, sql or memory")


def build_rotation_service(
    settings: Settings,
    vault: Optional[VaultClient] = None,
    updater: Optional[TargetUpdater] = None,
) -> RotationService:
    return RotationService(
        vault=vault or build_vault_client(settings),
        updater=updater or build_target_updater(settings),
        policy=build_password_policy(settings),
        rotated_fields=settings.ROTATED_FIELDS,
        access_level=AccessLevel(settings.TARGET_ACCESS_LEVEL.lower()),
        admin_secret_id=settings.ADMIN_SECRET_ID,
    )


@lru_cache(maxsize=1)
def get_rotation_service() -> RotationService:
    """Process-wide service wired from the environment."""
    service = build_rotation_service(default_settings)
    logger.info(
        f"Rotation service ready (vault={default_settings.VAULT_BACKEND}, "
        f"target={default_settings.TARGET_BACKEND}, access={service.access_level.value})"
    )
    return service
