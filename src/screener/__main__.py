"""
Main entrypoint: starts the sync scheduler in one process.

FastAPI runs separately under uvicorn.

Usage:
    python -m screener                      # scheduler + startup sync
    python -m screener sync <job_type>      # run one job now and exit
    python -m screener refresh <SYMBOL>     # re-sync fundamentals for one symbol
    uvicorn screener.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import json
import logging
import sys

from screener.config import get_settings

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


async def _run_once(job_type: str) -> int:
    from screener.services import get_orchestrator, shutdown

    try:
        result = await get_orchestrator().run(job_type)
    finally:
        await shutdown()
    print(json.dumps(result.as_dict()))
    return 0 if result.status != "failed" else 1


async def _run_refresh(symbol: str) -> int:
    from screener.services import get_orchestrator, shutdown
    from screener.sync.orchestrator import REFRESHABLE_TYPES

    try:
        results = await get_orchestrator().refresh_symbol(symbol.upper(), REFRESHABLE_TYPES)
    finally:
        await shutdown()
    print(json.dumps({t: r.as_dict() for t, r in results.items()}))
    return 0 if all(r.status != "failed" for r in results.values()) else 1


async def _run_scheduler() -> None:
    from screener.scheduler.jobs import build_scheduler, initial_sync
    from screener.services import get_orchestrator, shutdown

    settings = get_settings()
    orchestrator = get_orchestrator()

    scheduler = build_scheduler(orchestrator)
    scheduler.start()
    logger.info(
        "Scheduler started (daily sync at %02d:%02d %s)",
        settings.daily_sync_hour,
        settings.daily_sync_minute,
        settings.sync_timezone,
    )

    await initial_sync(orchestrator)

    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()
        await shutdown()
        logger.info("Goodbye.")


if __name__ == "__main__":
    # Dispatch on first argument: `sync <job>`, `refresh <symbol>`, or nothing
    args = sys.argv[1:]
    if len(args) == 2 and args[0] == "sync":
        sys.exit(asyncio.run(_run_once(args[1])))
    elif len(args) == 2 and args[0] == "refresh":
        sys.exit(asyncio.run(_run_refresh(args[1])))
    elif args:
        print(__doc__)
        sys.exit(2)
    else:
        asyncio.run(_run_scheduler())
