"""SqlVault - Database-backed versioned secret storage with envelope encryption."""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from sqlalchemy import create_engine, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from rotator.adapters.sql.models import Base, SecretVersionRow, StagingLabelRow
from rotator.domain.rotation.models import PasswordPolicy, SecretVersion, StagingLabel
from rotator.domain.rotation.password import generate_password
from rotator.domain.rotation.ports import VaultClient
from rotator.domain.secrets.kek_provider import EncryptedEnvelope, KekProvider
from rotator.errors import SecretNotFound, StaleVersionError, VersionConflict

logger = logging.getLogger(__name__)


class SqlVault(VaultClient):
    """Vault adapter over a relational database.

    Label moves are compare-and-swap ``UPDATE ... WHERE version_id = :from``
    statements checked by rowcount; version inserts rely on the
    ``(secret_id, version_id)`` primary key for token idempotency.
    """

    def __init__(self, session_factory: sessionmaker, kek_provider: KekProvider):
        """Initialize vault.

        Args:
            session_factory: SQLAlchemy session factory
            kek_provider: Port for encryption/decryption
        """
        self._session_factory = session_factory
        self._kek = kek_provider

    @classmethod
    def from_url(cls, database_url: str, kek_provider: KekProvider) -> "SqlVault":
        engine = create_engine(database_url, pool_pre_ping=True)
        Base.metadata.create_all(engine)
        return cls(sessionmaker(autocommit=False, autoflush=False, bind=engine), kek_provider)

    def generate_random_secret(self, policy: PasswordPolicy) -> str:
        return generate_password(policy)

    def get_secret_version(self, secret_id: str, staging_label: StagingLabel) -> SecretVersion:
        with self._session_factory() as db:
            label_row = db.query(StagingLabelRow).filter(
                StagingLabelRow.secret_id == secret_id,
                StagingLabelRow.label == staging_label.value,
            ).first()
            if not label_row:
                raise SecretNotFound(f"No version of {secret_id} holds {staging_label.value}")

            version_id = label_row.version_id
            row = self._get_version_row(db, secret_id, version_id)
            if row is None:
                raise SecretNotFound(f"Version {version_id} of {secret_id} does not exist")

            labels = {
                StagingLabel(r.label)
                for r in db.query(StagingLabelRow).filter(
                    StagingLabelRow.secret_id == secret_id,
                    StagingLabelRow.version_id == version_id,
                ).all()
            }
            return SecretVersion(
                version_id=version_id,
                value=self._open(row),
                labels=labels,
            )

    def put_secret_version(
        self,
        secret_id: str,
        value: Dict[str, Any],
        labels: Iterable[StagingLabel],
        request_token: str,
    ) -> None:
        labels = list(labels)
        with self._session_factory() as db:
            existing = self._get_version_row(db, secret_id, request_token)
            if existing is not None:
                self._check_same_value(existing, secret_id, request_token, value)
                return

            envelope = self._kek.seal_value(value, aad=self._aad(secret_id, request_token))
            try:
                db.add(SecretVersionRow(
                    secret_id=secret_id,
                    version_id=request_token,
                    ciphertext=envelope.ciphertext,
                    iv=envelope.iv,
                    tag=envelope.tag,
                    key_id=envelope.kek_id,
                    created_at=datetime.now(timezone.utc),
                ))
                db.flush()
                for label in labels:
                    self._attach(db, secret_id, label, request_token)
                db.commit()
            except IntegrityError as e:
                db.rollback()
                # Lost a race against a writer using the same token
                winner = self._get_version_row(db, secret_id, request_token)
                if winner is None:
                    raise StaleVersionError(
                        f"Concurrent label change on {secret_id} while storing {request_token}"
                    ) from e
                self._check_same_value(winner, secret_id, request_token, value)
                return

        logger.info(f"Stored version {request_token} of {secret_id} with labels {[label.value for label in labels]}")

    def move_staging_label(
        self,
        secret_id: str,
        label: StagingLabel,
        to_version_id: str,
        from_version_id: Optional[str] = None,
    ) -> None:
        with self._session_factory() as db:
            if self._get_version_row(db, secret_id, to_version_id) is None:
                raise SecretNotFound(f"Version {to_version_id} of {secret_id} does not exist")

            if from_version_id is None or from_version_id == to_version_id:
                holder = db.query(StagingLabelRow).filter(
                    StagingLabelRow.secret_id == secret_id,
                    StagingLabelRow.label == label.value,
                ).first()
                held_by = holder.version_id if holder else None
                if held_by != from_version_id:
                    raise StaleVersionError(
                        f"{label.value} of {secret_id} is held by {held_by}, expected {from_version_id}"
                    )
                if holder is None:
                    db.add(StagingLabelRow(secret_id=secret_id, label=label.value, version_id=to_version_id))
            else:
                # Compare-and-swap on the current holder
                result = db.execute(
                    update(StagingLabelRow)
                    .where(
                        StagingLabelRow.secret_id == secret_id,
                        StagingLabelRow.label == label.value,
                        StagingLabelRow.version_id == from_version_id,
                    )
                    .values(version_id=to_version_id, updated_at=datetime.now(timezone.utc))
                )
                if result.rowcount != 1:
                    db.rollback()
                    raise StaleVersionError(
                        f"{label.value} of {secret_id} is no longer held by {from_version_id}"
                    )
                if label is StagingLabel.CURRENT:
                    self._attach(db, secret_id, StagingLabel.PREVIOUS, from_version_id)

            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise StaleVersionError(f"Concurrent change to {label.value} of {secret_id}") from e

        logger.info(f"Moved {label.value} of {secret_id} from {from_version_id} to {to_version_id}")

    def _attach(self, db: Session, secret_id: str, label: StagingLabel, version_id: str) -> None:
        """Give ``label`` to ``version_id`` inside the caller's transaction."""
        row = db.query(StagingLabelRow).filter(
            StagingLabelRow.secret_id == secret_id,
            StagingLabelRow.label == label.value,
        ).with_for_update().first()

        old_holder = row.version_id if row else None
        if old_holder == version_id:
            return
        if row:
            row.version_id = version_id
        else:
            db.add(StagingLabelRow(secret_id=secret_id, label=label.value, version_id=version_id))
        db.flush()

        if label is StagingLabel.CURRENT and old_holder is not None:
            self._attach(db, secret_id, StagingLabel.PREVIOUS, old_holder)

    @staticmethod
    def _get_version_row(db: Session, secret_id: str, version_id: str) -> Optional[SecretVersionRow]:
        return db.query(SecretVersionRow).filter(
            SecretVersionRow.secret_id == secret_id,
            SecretVersionRow.version_id == version_id,
        ).first()

    def _check_same_value(self, row: SecretVersionRow, secret_id: str, version_id: str, value: Dict[str, Any]) -> None:
        if self._open(row) != value:
            raise VersionConflict(
                f"Version {version_id} of {secret_id} already exists with a different value"
            )
        logger.debug(f"Version {version_id} of {secret_id} already stored")

    def _open(self, row: SecretVersionRow) -> Dict[str, Any]:
        envelope = EncryptedEnvelope(
            kek_id=row.key_id,
            iv=row.iv,
            ciphertext=row.ciphertext,
            tag=row.tag,
        )
        return self._kek.open_value(envelope, aad=self._aad(row.secret_id, row.version_id))

    @staticmethod
    def _aad(secret_id: str, version_id: str) -> bytes:
        # Rule: rotator.version.v1:<secret_id>:<version_id>
        return f"rotator.version.v1:{secret_id}:{version_id}".encode("utf-8")
