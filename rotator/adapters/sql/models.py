"""SQLAlchemy Models for the SQL vault."""
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKeyConstraint, Index, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class SecretVersionRow(Base):
    """Immutable secret version sealed with AES-GCM envelope encryption."""
    __tablename__ = "secret_versions"
    secret_id = Column(String(512), primary_key=True)
    version_id = Column(String(64), primary_key=True)  # the request token that created it
    ciphertext = Column(Text, nullable=False)  # Hex
    iv = Column(String(24), nullable=False)    # Hex
    tag = Column(String(32), nullable=False)   # Hex
    key_id = Column(String(64), nullable=False, index=True)  # KEK version identifier
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class StagingLabelRow(Base):
    """One row per (secret, label): the primary key enforces a single holder."""
    __tablename__ = "secret_staging_labels"
    secret_id = Column(String(512), primary_key=True)
    label = Column(String(32), primary_key=True)
    version_id = Column(String(64), nullable=False)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        ForeignKeyConstraint(
            ["secret_id", "version_id"],
            ["secret_versions.secret_id", "secret_versions.version_id"],
        ),
        Index("ix_staging_labels_version", "secret_id", "version_id"),
    )
