"""
Backfill script: load daily price history for symbols.

Usage:
    python -m screener.scripts.backfill --days 365 AAPL MSFT
    python -m screener.scripts.backfill --days 365 --top 100

With --top, the N highest-volume symbols in latest_snapshot are used.
Bars are upserted on (symbol, trade_date), so re-running is safe. Each
symbol's 52-week range is recomputed from the stored bars.
"""
import argparse
import asyncio
import logging
from typing import List

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


def _top_symbols(engine, n: int) -> List[str]:
    from sqlmodel import Session, select
    from screener.models.market import LatestSnapshot

    with Session(engine) as s:
        return list(s.exec(
            select(LatestSnapshot.symbol)
            .order_by(LatestSnapshot.volume.desc(), LatestSnapshot.symbol)
            .limit(n)
        ).all())


async def _backfill(symbols: List[str], days: int, top: int) -> int:
    from screener.db.engine import get_engine
    from screener.services import get_orchestrator, shutdown

    engine = get_engine()
    orchestrator = get_orchestrator()
    if top:
        symbols = symbols + [s for s in _top_symbols(engine, top) if s not in symbols]
    if not symbols:
        logger.error("No symbols given (pass symbols or --top N)")
        return 2

    total_bars = 0
    failed = []
    try:
        for symbol in symbols:
            result = await orchestrator.backfill_symbol(symbol.upper(), days=days)
            if result.status == "completed":
                total_bars += result.processed
            else:
                failed.append(symbol)
                logger.warning("Backfill failed for %s: %s", symbol, result.reason)
    finally:
        await shutdown()

    logger.info(
        "Backfill done: %d symbols, %d bars, %d failed",
        len(symbols),
        total_bars,
        len(failed),
    )
    return 1 if failed else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Backfill daily price history")
    parser.add_argument("symbols", nargs="*", help="Ticker symbols")
    parser.add_argument("--days", type=int, default=365, help="Days of history to fetch")
    parser.add_argument("--top", type=int, default=0, help="Also backfill the N highest-volume symbols")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(_backfill(args.symbols, args.days, args.top)))


if __name__ == "__main__":
    main()
