"""
Local Identity Store: the relational mirror of Clerk identity data.

Exposes the three operations the sync engine needs, all addressed by
natural keys:
- find(table, key) -> record | None
- upsert(table, key, fields, insert_fields) -> record
- delete_where(table, **where) -> number of rows deleted

CRITICAL: every write is keyed by a stable external identifier (or the
local id resolved from one). Read-modify-write without a key would let
concurrent deliveries of the same event race into divergent rows.

SQLAlchemy errors are translated into StoreTransientError (timeouts,
lost connections, racing inserts of one key) and StorePermanentError
(everything else) so the
dispatcher can decide between redelivery and giving up.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Mapping, Optional, Type

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.orm import Session

from identity_sync.errors import (
    MissingReferenceError,
    StorePermanentError,
    StoreTransientError,
)
from identity_sync.models import (
    Entity,
    EntityConfiguration,
    EntityMembership,
    EntitySocialLink,
    Profile,
)
from identity_sync.services.mutations import RecordRef, Table

logger = logging.getLogger(__name__)

_MODELS: Dict[Table, Type] = {
    Table.PROFILES: Profile,
    Table.ENTITIES: Entity,
    Table.ENTITY_MEMBERS: EntityMembership,
    Table.ENTITY_SOCIAL_LINKS: EntitySocialLink,
    Table.ENTITY_CONFIGURATIONS: EntityConfiguration,
}

_TRANSIENT_ERRORS = (OperationalError, PoolTimeoutError, DisconnectionError)

# PostgreSQL unique_violation
_UNIQUE_VIOLATION_SQLSTATE = "23505"


def _is_unique_violation(error: IntegrityError) -> bool:
    if getattr(error.orig, "sqlstate", None) == _UNIQUE_VIOLATION_SQLSTATE:
        return True
    return "UNIQUE constraint failed" in str(error.orig)


class IdentityStore:
    """
    Keyed access to profiles, entities and their dependent records.

    Wraps one SQLAlchemy session; the caller owns transaction boundaries
    through commit() and rollback().
    """

    def __init__(self, session: Session):
        """
        Initialize store with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    # =========================================================================
    # Lookups
    # =========================================================================

    def find(self, table: Table, key: Mapping[str, Any]) -> Optional[Any]:
        """
        Find one record by natural key.

        Args:
            table: Table to search
            key: Column/value pairs; RecordRef values are resolved first

        Returns:
            The record, or None if absent (including when a RecordRef in
            the key does not resolve)
        """
        model = _MODELS[table]
        try:
            resolved = self._resolve_key(key)
        except MissingReferenceError:
            return None
        with self._translate_errors("find", table):
            return self.session.query(model).filter_by(**resolved).first()

    def find_profile(self, clerk_user_id: str) -> Optional[Profile]:
        return self.find(Table.PROFILES, {"clerk_user_id": clerk_user_id})

    def find_entity(self, clerk_organization_id: str) -> Optional[Entity]:
        return self.find(Table.ENTITIES, {"clerk_organization_id": clerk_organization_id})

    def find_membership(self, entity_id: str, profile_id: str) -> Optional[EntityMembership]:
        return self.find(
            Table.ENTITY_MEMBERS,
            {"entity_id": entity_id, "profile_id": profile_id},
        )

    def resolve(self, ref: RecordRef) -> str:
        """
        Resolve a RecordRef to the referenced record's local id.

        Raises:
            MissingReferenceError: If the referenced record is not present
        """
        record = self.find(ref.table, ref.key)
        if record is None:
            raise MissingReferenceError(
                f"Referenced record not found: {ref}",
                table=ref.table.value,
                key=dict(ref.key),
            )
        return record.id

    # =========================================================================
    # Writes
    # =========================================================================

    def upsert(
        self,
        table: Table,
        key: Mapping[str, Any],
        fields: Optional[Mapping[str, Any]] = None,
        insert_fields: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """
        Insert the record if absent, otherwise patch the named fields.

        Args:
            table: Target table
            key: Natural key; RecordRef values are resolved to local ids
            fields: Written on insert and on update
            insert_fields: Written on insert only

        Returns:
            The inserted or updated record

        Raises:
            MissingReferenceError: If a RecordRef in the key does not resolve
            StoreTransientError: On timeouts, lost connections, or a
                concurrent insert of the same key (redelivery takes the
                update path)
            StorePermanentError: On any other store rejection, including
                NOT NULL and foreign key violations
        """
        model = _MODELS[table]
        resolved = self._resolve_key(key)
        fields = dict(fields or {})

        record = self.find(table, resolved)
        if record is not None:
            for name, value in fields.items():
                setattr(record, name, value)
            with self._translate_errors("update", table):
                self.session.flush()
            logger.debug("Patched record", extra={"table": table.value, "key": resolved})
            return record

        record = model(**resolved, **fields, **dict(insert_fields or {}))
        self.session.add(record)
        try:
            self.session.flush()
        except IntegrityError as e:
            if not _is_unique_violation(e):
                raise StorePermanentError(f"Store rejected insert into {table.value}: {e.orig}") from e
            # Another delivery of the same event inserted the key first.
            raise StoreTransientError(
                f"Conflicting insert into {table.value} for {resolved}: {e.orig}"
            ) from e
        except _TRANSIENT_ERRORS as e:
            raise StoreTransientError(f"Store unavailable during insert into {table.value}: {e}") from e
        except SQLAlchemyError as e:
            raise StorePermanentError(f"Store rejected insert into {table.value}: {e}") from e

        logger.debug("Inserted record", extra={"table": table.value, "key": resolved})
        return record

    def delete_where(self, table: Table, **where: Any) -> int:
        """
        Delete every record matching the filter.

        Idempotent: deleting rows that are already gone returns 0.

        Returns:
            Number of rows deleted
        """
        model = _MODELS[table]
        try:
            resolved = self._resolve_key(where)
        except MissingReferenceError:
            return 0
        with self._translate_errors("delete", table):
            deleted = (
                self.session.query(model)
                .filter_by(**resolved)
                .delete(synchronize_session="fetch")
            )
        logger.debug(
            "Deleted records",
            extra={"table": table.value, "where": resolved, "count": deleted},
        )
        return deleted

    # =========================================================================
    # Transactions
    # =========================================================================

    def commit(self) -> None:
        with self._translate_errors("commit"):
            self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _resolve_key(self, key: Mapping[str, Any]) -> Dict[str, Any]:
        return {
            name: self.resolve(value) if isinstance(value, RecordRef) else value
            for name, value in key.items()
        }

    @contextmanager
    def _translate_errors(self, operation: str, table: Optional[Table] = None) -> Iterator[None]:
        target = table.value if table else "store"
        try:
            yield
        except _TRANSIENT_ERRORS as e:
            logger.warning(
                "Transient store error",
                extra={"operation": operation, "table": target, "error": str(e)},
            )
            raise StoreTransientError(f"Store unavailable during {operation} on {target}: {e}") from e
        except SQLAlchemyError as e:
            logger.error(
                "Store rejected operation",
                extra={"operation": operation, "table": target, "error": str(e)},
            )
            raise StorePermanentError(f"Store rejected {operation} on {target}: {e}") from e
