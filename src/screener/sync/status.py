"""
Per-(entity, data type) sync outcome tracking and retry scheduling.

retry_count resets to 0 on success and increments on failure. After a
failure the orchestrator calls schedule_retry(), which sets next_retry_at
from RETRY_DELAYS indexed by the current retry_count. Once retry_count
reaches len(RETRY_DELAYS) the entity is given up on: next_retry_at is
cleared and select_stale_entities() stops returning it until a manual
refresh succeeds.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import and_, or_, select, update
from sqlmodel import Session

from screener.db.upsert import dialect_insert
from screener.models.market import LatestSnapshot
from screener.models.sync import SyncStatus, utcnow

logger = logging.getLogger(__name__)

RETRY_DELAYS = (
    timedelta(minutes=5),
    timedelta(minutes=30),
    timedelta(hours=2),
    timedelta(hours=24),
)


class SyncStatusTracker:
    def __init__(self, engine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self._clock = clock

    def record_outcome(
        self,
        entity_id: str,
        data_type: str,
        success: bool,
        error: Optional[str] = None,
    ) -> None:
        table = SyncStatus.__table__
        now = self._clock()
        with self.engine.begin() as conn:
            stmt = dialect_insert(conn, table)
            if success:
                stmt = stmt.values(
                    entity_id=entity_id,
                    data_type=data_type,
                    last_synced_at=now,
                    last_status="success",
                    error_message=None,
                    retry_count=0,
                    next_retry_at=None,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["entity_id", "data_type"],
                    set_={
                        "last_synced_at": now,
                        "last_status": "success",
                        "error_message": None,
                        "retry_count": 0,
                        "next_retry_at": None,
                        "updated_at": now,
                    },
                )
            else:
                stmt = stmt.values(
                    entity_id=entity_id,
                    data_type=data_type,
                    last_status="failed",
                    error_message=error,
                    retry_count=1,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["entity_id", "data_type"],
                    set_={
                        "last_status": "failed",
                        "error_message": error,
                        "retry_count": table.c.retry_count + 1,
                        "updated_at": now,
                    },
                )
            conn.execute(stmt)

    def schedule_retry(self, entity_id: str, data_type: str) -> Optional[datetime]:
        """
        Set next_retry_at = now + RETRY_DELAYS[retry_count].

        Returns the scheduled time, or None if the entity has exhausted the
        delay table (or has no status row).
        """
        table = SyncStatus.__table__
        where = and_(table.c.entity_id == entity_id, table.c.data_type == data_type)
        with self.engine.begin() as conn:
            retry_count = conn.execute(select(table.c.retry_count).where(where)).scalar()
            if retry_count is None:
                return None
            if retry_count >= len(RETRY_DELAYS):
                conn.execute(update(table).where(where).values(next_retry_at=None))
                logger.error(
                    "Giving up on %s/%s after %d failures; manual refresh required",
                    entity_id,
                    data_type,
                    retry_count,
                )
                return None
            next_retry = self._clock() + RETRY_DELAYS[retry_count]
            conn.execute(update(table).where(where).values(next_retry_at=next_retry))
        logger.info("Retry for %s/%s scheduled at %s", entity_id, data_type, next_retry.isoformat())
        return next_retry

    def get(self, entity_id: str, data_type: str) -> Optional[SyncStatus]:
        with Session(self.engine) as s:
            return s.execute(
                select(SyncStatus).where(
                    SyncStatus.entity_id == entity_id,
                    SyncStatus.data_type == data_type,
                )
            ).scalars().first()

    def select_stale_entities(
        self,
        data_type: str,
        stale_after: timedelta,
        limit: int = 500,
    ) -> List[str]:
        """
        Symbols whose last successful `data_type` sync is missing or older
        than stale_after, highest volume first.

        Entities waiting out a retry delay, and entities that have been
        given up on, are left out.
        """
        snap = LatestSnapshot.__table__
        status = SyncStatus.__table__
        now = self._clock()
        threshold = now - stale_after

        stmt = (
            select(snap.c.symbol)
            .select_from(
                snap.outerjoin(
                    status,
                    and_(status.c.entity_id == snap.c.symbol, status.c.data_type == data_type),
                )
            )
            .where(or_(status.c.last_synced_at.is_(None), status.c.last_synced_at < threshold))
            .where(or_(status.c.next_retry_at.is_(None), status.c.next_retry_at <= now))
            .where(or_(status.c.retry_count.is_(None), status.c.retry_count < len(RETRY_DELAYS)))
            .order_by(snap.c.volume.desc(), snap.c.symbol)
            .limit(limit)
        )
        with self.engine.connect() as conn:
            return list(conn.execute(stmt).scalars())
