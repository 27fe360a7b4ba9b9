"""PostgreSQL rate-limit counters."""

from datetime import datetime, timedelta

from sqlalchemy import case, delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from keystone.domain.repository import CounterStore
from keystone.persistence.tables import rate_counters_table


class PostgresCounterStore(CounterStore):
    """Fixed-window counters stored one row per key.

    ``increment`` is a single upsert so concurrent callers never lose a
    count.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def increment(self, key: str, window_seconds: int, now: datetime) -> int:
        """Increment within the current window, restarting a lapsed one."""
        table = rate_counters_table
        lapsed = table.c.window_start <= now - timedelta(seconds=window_seconds)

        stmt = pg_insert(table).values(key=key, window_start=now, count=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.key],
            set_={
                "window_start": case((lapsed, now), else_=table.c.window_start),
                "count": case((lapsed, 1), else_=table.c.count + 1),
            },
        ).returning(table.c.count)

        result = await self.session.execute(stmt)
        await self.session.flush()
        return result.scalar_one()

    async def get(self, key: str, window_seconds: int, now: datetime) -> int:
        """Current count in the window."""
        stmt = select(rate_counters_table).where(rate_counters_table.c.key == key)
        result = await self.session.execute(stmt)
        row = result.mappings().first()
        if not row:
            return 0
        if now - row["window_start"] >= timedelta(seconds=window_seconds):
            return 0
        return row["count"]

    async def reset(self, key: str) -> None:
        """Drop the counter."""
        stmt = delete(rate_counters_table).where(rate_counters_table.c.key == key)
        await self.session.execute(stmt)
        await self.session.flush()
