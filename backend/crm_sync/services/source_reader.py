"""Reads local leads modified on a given day, one page at a time."""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crm_sync.models import Lead

logger = logging.getLogger(__name__)


def day_window(day: date):
    """[day 00:00, next day 00:00) in UTC."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class SourceReader:
    """Pages through leads by ``updated_at`` for a single day."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def fetch_day(self, day: date, limit: int, offset: int = 0) -> List[Lead]:
        start, end = day_window(day)

        stmt = (
            select(Lead)
            .where(Lead.updated_at >= start, Lead.updated_at < end)
            .order_by(Lead.updated_at.desc(), Lead.id)
            .offset(offset)
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        leads = list(result.scalars().all())

        logger.debug(f"Fetched {len(leads)} leads for {day} (offset {offset})")
        return leads

    async def oldest_modified_date(self) -> Optional[date]:
        """Date of the oldest ``updated_at`` in the source, or None when empty."""
        result = await self.db.execute(select(func.min(Lead.updated_at)))
        oldest = result.scalar()
        if oldest is None:
            return None
        if oldest.tzinfo is not None:
            oldest = oldest.astimezone(timezone.utc)
        return oldest.date()
