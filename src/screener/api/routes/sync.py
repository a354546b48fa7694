"""Sync trigger and status routes."""
import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy import func
from sqlmodel import Session, select

from screener.db.engine import get_session
from screener.models.sync import SyncJobLog
from screener.services import get_orchestrator
from screener.sync.orchestrator import JOB_SPECS, REFRESHABLE_TYPES

logger = logging.getLogger(__name__)

router = APIRouter()


class RefreshRequest(BaseModel):
    data_types: List[str] = list(REFRESHABLE_TYPES)


class JobStatusResponse(BaseModel):
    job_type: str
    status: str
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    processed_count: Optional[int]
    failed_count: Optional[int]
    error_message: Optional[str]


async def _do_sync(job_type: str) -> None:
    """Background task: run one job and log the outcome."""
    result = await get_orchestrator().run(job_type)
    logger.info("Triggered %s sync finished: %s", job_type, result.as_dict())


async def _do_refresh(symbol: str, data_types: List[str]) -> None:
    results = await get_orchestrator().refresh_symbol(symbol, data_types)
    logger.info(
        "Refresh of %s finished: %s",
        symbol,
        {t: r.status for t, r in results.items()},
    )


@router.post("/refresh/{symbol}")
async def refresh_symbol(symbol: str, request: RefreshRequest, background_tasks: BackgroundTasks):
    """Re-sync selected data types for one symbol. Runs in background."""
    unknown = [t for t in request.data_types if t not in REFRESHABLE_TYPES]
    if unknown:
        raise HTTPException(status_code=422, detail=f"Not refreshable: {', '.join(unknown)}")
    symbol = symbol.upper()
    background_tasks.add_task(_do_refresh, symbol, request.data_types)
    return {"message": "Refresh started", "symbol": symbol, "data_types": request.data_types}


@router.post("/{job_type}")
async def trigger_sync(job_type: str, background_tasks: BackgroundTasks):
    """
    Trigger an on-demand sync job. Returns immediately; the job runs in
    background and is skipped if another instance holds its lock.
    """
    if job_type not in JOB_SPECS:
        raise HTTPException(status_code=404, detail=f"Unknown job type: {job_type}")
    background_tasks.add_task(_do_sync, job_type)
    return {"message": "Sync started", "job_type": job_type}


@router.get("/status", response_model=List[JobStatusResponse])
def sync_status(session: Session = Depends(get_session)):
    """Most recent run of each job type."""
    latest = (
        select(SyncJobLog.job_type, func.max(SyncJobLog.id).label("id"))
        .group_by(SyncJobLog.job_type)
        .subquery()
    )
    logs = session.exec(
        select(SyncJobLog)
        .join(latest, SyncJobLog.id == latest.c.id)
        .order_by(SyncJobLog.job_type)
    ).all()
    return [
        JobStatusResponse(
            job_type=log.job_type,
            status=log.status,
            started_at=log.started_at,
            completed_at=log.completed_at,
            processed_count=log.processed_count,
            failed_count=log.failed_count,
            error_message=log.error_message,
        )
        for log in logs
    ]
