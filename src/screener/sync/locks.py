"""
Leased named locks in the shared database.

Only one instance across the fleet may run a given job type at a time.
Acquisition is a single statement:

    INSERT INTO sync_lock ... ON CONFLICT (name) DO UPDATE ...
    WHERE sync_lock.expires_at < :now OR sync_lock.holder_id = :me
    RETURNING holder_id

A row comes back only when the insert happened or the conditional update
matched, so success is decided by the database in one atomic write and
never by a follow-up read.
"""
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import and_, delete, or_, select, update

from screener.db.upsert import dialect_insert
from screener.models.sync import SyncLock, utcnow

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300


def default_holder_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class LockManager:
    def __init__(
        self,
        engine,
        holder_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.holder_id = holder_id or default_holder_id()
        self._clock = clock

    def acquire(self, name: str, ttl: float = DEFAULT_TTL_SECONDS) -> bool:
        """Create, re-take, or steal an expired lock. True if we now hold it."""
        table = SyncLock.__table__
        now = self._clock()
        with self.engine.begin() as conn:
            stmt = dialect_insert(conn, table).values(
                name=name,
                holder_id=self.holder_id,
                acquired_at=now,
                expires_at=now + timedelta(seconds=ttl),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["name"],
                set_={
                    "holder_id": stmt.excluded.holder_id,
                    "acquired_at": stmt.excluded.acquired_at,
                    "expires_at": stmt.excluded.expires_at,
                },
                where=or_(table.c.expires_at < now, table.c.holder_id == self.holder_id),
            ).returning(table.c.holder_id)
            row = conn.execute(stmt).first()

        acquired = row is not None and row[0] == self.holder_id
        if acquired:
            logger.debug("Lock %s acquired by %s", name, self.holder_id)
        else:
            logger.info("Lock %s is held by another instance", name)
        return acquired

    def release(self, name: str) -> None:
        """Delete the lock only if this holder owns it."""
        table = SyncLock.__table__
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(table).where(
                    and_(table.c.name == name, table.c.holder_id == self.holder_id)
                )
            )
        if result.rowcount == 0:
            logger.warning("Lock %s was not held by %s at release", name, self.holder_id)

    def extend(self, name: str, ttl: float = DEFAULT_TTL_SECONDS) -> bool:
        """Push expires_at forward. False if the lock was lost to another holder."""
        table = SyncLock.__table__
        with self.engine.begin() as conn:
            result = conn.execute(
                update(table)
                .where(and_(table.c.name == name, table.c.holder_id == self.holder_id))
                .values(expires_at=self._clock() + timedelta(seconds=ttl))
            )
        if result.rowcount == 0:
            logger.warning("Lock %s lost before extend (holder %s)", name, self.holder_id)
            return False
        return True

    def holder(self, name: str) -> Optional[str]:
        """Current holder of a non-expired lock, or None."""
        table = SyncLock.__table__
        with self.engine.connect() as conn:
            row = conn.execute(
                select(table.c.holder_id).where(
                    and_(table.c.name == name, table.c.expires_at >= self._clock())
                )
            ).first()
        return row[0] if row else None
