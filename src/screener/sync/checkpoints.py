"""Per-job-type resume cursor."""
from typing import Callable, List, Optional, Sequence, TypeVar

from sqlalchemy import delete
from sqlmodel import Session

from screener.db.upsert import upsert
from screener.models.sync import SyncCheckpoint, utcnow

T = TypeVar("T")


class CheckpointStore:
    def __init__(self, engine):
        self.engine = engine

    def save(self, job_type: str, last_key: str, processed_count: int, total_count: int) -> None:
        with self.engine.begin() as conn:
            upsert(
                conn,
                SyncCheckpoint,
                [{
                    "job_type": job_type,
                    "last_key": last_key,
                    "processed_count": processed_count,
                    "total_count": total_count,
                    "updated_at": utcnow(),
                }],
                index_elements=["job_type"],
            )

    def load(self, job_type: str) -> Optional[SyncCheckpoint]:
        with Session(self.engine) as s:
            return s.get(SyncCheckpoint, job_type)

    def clear(self, job_type: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(SyncCheckpoint.__table__).where(SyncCheckpoint.__table__.c.job_type == job_type))


def resume_after(
    items: Sequence[T],
    last_key: Optional[str],
    key: Callable[[T], str] = str,
) -> List[T]:
    """
    Items strictly after `last_key` in their original order.

    If last_key is None or no longer in the list (the work set changed
    since the checkpoint was written), the full list is returned.
    """
    if last_key is None:
        return list(items)
    for i, item in enumerate(items):
        if key(item) == last_key:
            return list(items[i + 1:])
    return list(items)
