"""PostgreSQL role rotation.

Secret values follow the usual database-secret layout::

    {"engine": "postgres", "host": ..., "port": 5432, "dbname": ...,
     "username": ..., "password": ...}

The password lives in ``credential_field`` ("password" unless configured),
which must be one of the rotated fields. The authority (admin secret, or the
CURRENT version when no admin secret is configured) connects to the pending
secret's host and database.
"""
import logging
from typing import Any, Callable, Dict, Optional, Type

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import NullPool

from rotator.domain.rotation.models import AccessLevel
from rotator.domain.rotation.ports import TargetUpdater
from rotator.errors import ApplyError, IdentityNotFound, RotationError, ValidationError

logger = logging.getLogger(__name__)

_MEMBERSHIPS_SQL = (
    "SELECT r.rolname FROM pg_auth_members m "
    "JOIN pg_roles r ON m.roleid = r.oid "
    "JOIN pg_roles u ON m.member = u.oid "
    "WHERE u.rolname = :name"
)


def quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def ddl(statement: str):
    # DDL cannot take bind parameters; escape colons so text() does not parse any
    return text(statement.replace(":", r"\:"))


class PostgresRoleUpdater(TargetUpdater):
    def __init__(
        self,
        engine_factory: Callable[..., Engine] = create_engine,
        connect_timeout: int = 5,
        credential_field: str = "password",
    ):
        self._engine_factory = engine_factory
        self._connect_timeout = connect_timeout
        self.credential_field = credential_field

    def _check_creds(self, creds: Dict[str, Any], role: str, error: Type[RotationError]) -> None:
        missing = [f for f in ("username", self.credential_field) if not creds.get(f)]
        if missing:
            raise error(f"{role} credentials are missing {', '.join(missing)}")

    def _engine(self, creds: Dict[str, Any], location: Optional[Dict[str, Any]] = None) -> Engine:
        location = location or creds
        url = URL.create(
            "postgresql+psycopg2",
            username=creds["username"],
            password=creds[self.credential_field],
            host=location.get("host", "localhost"),
            port=int(location.get("port", 5432)),
            database=location.get("dbname", "postgres"),
        )
        return self._engine_factory(
            url, poolclass=NullPool, connect_args={"connect_timeout": self._connect_timeout}
        )

    def _can_login(self, creds: Dict[str, Any]) -> bool:
        engine = self._engine(creds)
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False
        finally:
            engine.dispose()

    def apply(self, pending: Dict[str, Any], authority: Dict[str, Any]) -> None:
        self._check_creds(pending, "Pending", ApplyError)
        username = pending["username"]
        if self._can_login(pending):
            logger.info(f"Role {username} already accepts the pending password")
            return

        self._check_creds(authority, "Authority", ApplyError)
        engine = self._engine(authority, location=pending)
        try:
            with engine.begin() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_roles WHERE rolname = :name"), {"name": username}
                ).scalar()
                if not exists:
                    raise IdentityNotFound(f"Role {username} does not exist")
                conn.execute(ddl(
                    f"ALTER ROLE {quote_ident(username)} "
                    f"WITH PASSWORD {quote_literal(pending[self.credential_field])}"
                ))
        except SQLAlchemyError as e:
            raise ApplyError(f"Failed to set password for role {username}: {e.__class__.__name__}") from e
        finally:
            engine.dispose()
        logger.info(f"Set new password for role {username}")

    def create_identity(
        self,
        pending: Dict[str, Any],
        authority: Dict[str, Any],
        clone_from: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._check_creds(pending, "Pending", ApplyError)
        self._check_creds(authority, "Authority", ApplyError)
        username = pending["username"]
        engine = self._engine(authority, location=pending)
        try:
            with engine.begin() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_roles WHERE rolname = :name"), {"name": username}
                ).scalar()
                verb = "ALTER" if exists else "CREATE"
                conn.execute(ddl(
                    f"{verb} ROLE {quote_ident(username)} "
                    f"WITH LOGIN PASSWORD {quote_literal(pending[self.credential_field])}"
                ))

                template = (clone_from or {}).get("username")
                if template and template != username:
                    memberships = conn.execute(text(_MEMBERSHIPS_SQL), {"name": template}).scalars().all()
                    for role in memberships:
                        conn.execute(ddl(f"GRANT {quote_ident(role)} TO {quote_ident(username)}"))
                    logger.info(f"Cloned {len(memberships)} role grants from {template} to {username}")
        except SQLAlchemyError as e:
            raise ApplyError(f"Failed to create role {username}: {e.__class__.__name__}") from e
        finally:
            engine.dispose()

    def verify(self, pending: Dict[str, Any], access_level: AccessLevel) -> None:
        self._check_creds(pending, "Pending", ValidationError)
        engine = self._engine(pending)
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                conn.rollback()
                if access_level is AccessLevel.READ_WRITE:
                    conn.execute(text("CREATE TEMPORARY TABLE rotator_write_check (id integer)"))
                    conn.execute(text("INSERT INTO rotator_write_check (id) VALUES (1)"))
                    conn.rollback()
        except SQLAlchemyError as e:
            raise ValidationError(
                f"Role {pending.get('username')} failed {access_level.value} check: {e.__class__.__name__}"
            ) from e
        finally:
            engine.dispose()
