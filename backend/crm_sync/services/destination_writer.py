"""
Upserts mapped leads into the scouter-management database.

Fields the destination table does not have are dropped before writing and
reported back, so a schema that lags behind the mapping still accepts the
rest of the record.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import column, inspect, select, table
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.types import TypeEngine

from crm_sync.services.field_mapper import coerce_row, split_known_fields

logger = logging.getLogger(__name__)


@dataclass
class UpsertResult:
    """Outcome of one destination upsert."""
    success: bool
    is_new: bool = False
    ignored_fields: List[str] = field(default_factory=list)
    error: Optional[str] = None


class DestinationWriter:
    """
    Writes records into ``table_name`` keyed by ``id``.

    Args:
        db: Session bound to the destination database
        table_name: Destination table
        columns: {column name: SQLAlchemy type}. Reflected from the live
            table on first use when omitted.
    """

    def __init__(
        self,
        db: AsyncSession,
        table_name: str = "leads",
        columns: Optional[Dict[str, TypeEngine]] = None
    ):
        self.db = db
        self.table_name = table_name
        self._columns = columns

    async def _load_columns(self) -> Dict[str, TypeEngine]:
        if self._columns is None:
            def reflect(sync_session):
                inspector = inspect(sync_session.connection())
                return inspector.get_columns(self.table_name)

            reflected = await self.db.run_sync(reflect)
            self._columns = {col["name"]: col["type"] for col in reflected}
            logger.info(f"Destination table '{self.table_name}' has {len(self._columns)} columns")

        return self._columns

    def _insert(self, target):
        if self.db.get_bind().dialect.name == "sqlite":
            return sqlite_insert(target)
        return pg_insert(target)

    async def upsert(self, record: Dict[str, Any]) -> UpsertResult:
        """INSERT ... ON CONFLICT (id) DO UPDATE for one record."""
        columns = await self._load_columns()

        known, ignored = split_known_fields(record, columns)
        if ignored:
            logger.warning(f"Destination has no column(s) {', '.join(ignored)}; ignoring for lead {record.get('id')}")

        row = coerce_row(columns, known)
        if row.get("id") is None:
            return UpsertResult(success=False, ignored_fields=ignored, error="Record has no id")

        target = table(self.table_name, *[column(name, columns[name]) for name in row])
        is_new = False

        try:
            existing = await self.db.execute(
                select(target.c.id).where(target.c.id == row["id"])
            )
            is_new = existing.first() is None

            stmt = self._insert(target).values(**row)
            update_values = {name: stmt.excluded[name] for name in row if name != "id"}
            if update_values:
                stmt = stmt.on_conflict_do_update(index_elements=["id"], set_=update_values)
            else:
                stmt = stmt.on_conflict_do_nothing(index_elements=["id"])

            await self.db.execute(stmt)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Upsert of lead {row['id']} failed: {e}")
            return UpsertResult(success=False, is_new=is_new, ignored_fields=ignored, error=str(e))

        return UpsertResult(success=True, is_new=is_new, ignored_fields=ignored)
