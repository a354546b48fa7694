"""
SyncOrchestrator: runs every sync job type on one shared skeleton.

Flow for a job run:
  1. Acquire the job's lease lock (sync:<job_type>). Held elsewhere -> "skipped".
  2. Create SyncJobLog (status="started")
  3. Build the work set: explicit symbols, the stale-entity selection for
     the job's data type, or a bulk upstream call (snapshot, news)
  4. Resume: drop everything up to and including the saved checkpoint key
  5. Process in fixed-size batches; each batch fans out concurrently and
     outcomes are applied in work-list order
  6. Every K items: save checkpoint, extend lock
  7. Per item: record success, or record failure + schedule retry and go on
  8. Completion: clear checkpoint, finalize log "completed"
  9. Job-level failure (breaker open, upstream unreachable, store error):
     keep/save checkpoint, finalize log "failed"
 10. Release the lock, always

Public methods never raise; they return a SyncResult.

Idempotency: every write is an upsert on a natural key, so a run that
overlaps with a peer after lock expiry only repeats work.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import desc, select, update
from sqlalchemy.engine import Connection

from screener.broadcast import ENTITY_UPDATED, SCREENER_UPDATED, BroadcastSink, NullBroadcaster
from screener.cache.results import ResultCache
from screener.db.upsert import insert_ignore, upsert
from screener.models.market import (
    CompanyDetails,
    DailyIndicator,
    DailyPrice,
    Dividend,
    FinancialRatio,
    FinancialStatement,
    LatestSnapshot,
    NewsArticle,
    NewsTicker,
    StockSplit,
)
from screener.models.sync import SyncJobLog, utcnow
from screener.sync.checkpoints import CheckpointStore, resume_after
from screener.sync.locks import DEFAULT_TTL_SECONDS, LockManager
from screener.sync.status import SyncStatusTracker
from screener.tasks import TaskSupervisor
from screener.upstream.analyst import AnalystTargetClient
from screener.upstream.errors import CircuitOpenError, UpstreamFailure, UpstreamUnavailable
from screener.upstream.market_data import MarketDataClient
from screener.upstream.normalizer import (
    compute_yoy_growth,
    normalize_aggregate,
    normalize_details,
    normalize_dividend,
    normalize_news,
    normalize_price_targets,
    normalize_ratios,
    normalize_snapshot,
    normalize_split,
    normalize_statement,
    snapshot_bar,
    trailing_dividend_yield,
    week52_range,
    TRADING_DAYS_PER_YEAR,
)

logger = logging.getLogger(__name__)

# An item raising one of these means the upstream as a whole is unusable:
# the job stops instead of burning through the rest of the work set.
JOB_LEVEL_ERRORS = (CircuitOpenError, UpstreamUnavailable)

DAILY_MIN_VOLUME = 100_000
DAILY_MAX_SYMBOLS = 1000
NEWS_LOOKBACK = timedelta(hours=1)
NEWS_LIMIT = 100
STATEMENT_LIMIT = 8
DIVIDEND_LIMIT = 20
SPLIT_LIMIT = 20


class JobFailure(Exception):
    """Orchestration-level failure; the run is finalized as failed."""


@dataclass
class SyncResult:
    status: str  # "completed", "skipped", "failed"
    processed: int = 0
    failed: int = 0
    reason: Optional[str] = None

    @classmethod
    def completed(cls, processed: int, failed: int) -> "SyncResult":
        return cls("completed", processed, failed)

    @classmethod
    def skipped(cls, reason: str) -> "SyncResult":
        return cls("skipped", reason=reason)

    @classmethod
    def failed_with(cls, reason: str, processed: int = 0, failed: int = 0) -> "SyncResult":
        return cls("failed", processed, failed, reason)

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"status": self.status, "processed": self.processed, "failed": self.failed}
        if self.reason is not None:
            out["reason"] = self.reason
        return out


@dataclass(frozen=True)
class JobSpec:
    job_type: str
    data_type: Optional[str]  # None: bulk job, not tracked per entity
    batch_size: int
    checkpoint_every: int
    stale_after: Optional[timedelta] = None
    resumable: bool = True
    limit: int = 500
    screenable: bool = True  # completion changes screener-visible fields

    @property
    def lock_name(self) -> str:
        return f"sync:{self.job_type}"


JOB_SPECS: Dict[str, JobSpec] = {
    s.job_type: s
    for s in (
        JobSpec("snapshot", None, batch_size=100, checkpoint_every=500, resumable=False),
        JobSpec("daily", "daily", batch_size=20, checkpoint_every=100),
        JobSpec("financials", "financials", batch_size=10, checkpoint_every=10, stale_after=timedelta(days=7)),
        JobSpec("ratios", "ratios", batch_size=10, checkpoint_every=50, stale_after=timedelta(hours=24)),
        JobSpec("dividends", "dividends", batch_size=10, checkpoint_every=50, stale_after=timedelta(days=7)),
        JobSpec("splits", "splits", batch_size=10, checkpoint_every=50, stale_after=timedelta(days=7), screenable=False),
        JobSpec("details", "details", batch_size=10, checkpoint_every=50, stale_after=timedelta(hours=24)),
        JobSpec("news", None, batch_size=20, checkpoint_every=100, resumable=False, screenable=False),
    )
}

REFRESHABLE_TYPES = ("financials", "ratios", "dividends", "splits", "details")


class SyncOrchestrator:
    """Composes upstream client, locks, status, checkpoints into job runners."""

    def __init__(
        self,
        market: MarketDataClient,
        engine,
        *,
        locks: Optional[LockManager] = None,
        status: Optional[SyncStatusTracker] = None,
        checkpoints: Optional[CheckpointStore] = None,
        cache: Optional[ResultCache] = None,
        broadcaster: Optional[BroadcastSink] = None,
        supervisor: Optional[TaskSupervisor] = None,
        analyst: Optional[AnalystTargetClient] = None,
        lock_ttl: float = DEFAULT_TTL_SECONDS,
    ):
        """
        Args:
            market: MarketDataClient (or AsyncMock in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            cache: When given, indicator sets fetched by the daily job are
                   cached for the screener's on-demand path, and cached
                   screener results are dropped when a screenable job
                   completes.
            broadcaster: Receives screener.updated / entity.updated events.
            analyst: Source of analyst price targets for the ratios job.
                     Without one, target fields stay empty.
        """
        self.market = market
        self.analyst = analyst
        self.engine = engine
        self.locks = locks or LockManager(engine)
        self.status = status or SyncStatusTracker(engine)
        self.checkpoints = checkpoints or CheckpointStore(engine)
        self.cache = cache
        self.broadcaster = broadcaster or NullBroadcaster()
        self.supervisor = supervisor or TaskSupervisor()
        self.lock_ttl = lock_ttl

    # ─── Job entry points ─────────────────────────────────────────────────────

    async def run(self, job_type: str, symbols: Optional[List[str]] = None) -> SyncResult:
        """Dispatch by job type name (scheduler, CLI and API use this)."""
        runners = {
            "snapshot": lambda: self.sync_snapshot(),
            "daily": lambda: self.sync_daily(),
            "financials": lambda: self.sync_financials(symbols),
            "ratios": lambda: self.sync_ratios(symbols),
            "dividends": lambda: self.sync_dividends(symbols),
            "splits": lambda: self.sync_splits(symbols),
            "details": lambda: self.sync_details(symbols),
            "news": lambda: self.sync_news(),
        }
        if job_type not in runners:
            return SyncResult.failed_with(f"Unknown job type: {job_type}")
        return await runners[job_type]()

    async def sync_snapshot(self) -> SyncResult:
        """Bulk market snapshot -> latest_snapshot price/volume columns."""
        return await self._run(
            JOB_SPECS["snapshot"],
            load_work=self._snapshot_rows,
            process_batch=self._write_snapshot_batch,
            key=lambda row: row["symbol"],
        )

    async def sync_daily(self) -> SyncResult:
        """End-of-day bars + indicators for the most liquid symbols."""
        return await self._run(
            JOB_SPECS["daily"],
            load_work=self._daily_candidates,
            process_batch=self._fan_out(self._sync_daily_item),
            key=lambda row: row["symbol"],
        )

    async def sync_financials(self, symbols: Optional[List[str]] = None, resume: bool = True) -> SyncResult:
        return await self._run_per_symbol("financials", self._sync_financials_item, symbols, resume)

    async def sync_ratios(self, symbols: Optional[List[str]] = None, resume: bool = True) -> SyncResult:
        return await self._run_per_symbol("ratios", self._sync_ratios_item, symbols, resume)

    async def sync_dividends(self, symbols: Optional[List[str]] = None, resume: bool = True) -> SyncResult:
        return await self._run_per_symbol("dividends", self._sync_dividends_item, symbols, resume)

    async def sync_splits(self, symbols: Optional[List[str]] = None, resume: bool = True) -> SyncResult:
        return await self._run_per_symbol("splits", self._sync_splits_item, symbols, resume)

    async def sync_details(self, symbols: Optional[List[str]] = None, resume: bool = True) -> SyncResult:
        return await self._run_per_symbol("details", self._sync_details_item, symbols, resume)

    async def sync_news(self) -> SyncResult:
        """Articles published in the last hour, with their ticker links."""
        return await self._run(
            JOB_SPECS["news"],
            load_work=self._recent_news,
            process_batch=self._fan_out(self._store_article),
            key=lambda article: article["id"],
        )

    async def refresh_symbol(self, symbol: str, data_types: Iterable[str]) -> Dict[str, SyncResult]:
        """
        Re-sync the given data types for one symbol right now.

        Runs each job with an explicit one-symbol work set, so it ignores
        staleness, retry schedules and give-ups, and never touches the
        full job's checkpoint. The symbol's own snapshot is written first so
        derived fields have a latest_snapshot row to land on.
        """
        await self._refresh_ticker_snapshot(symbol)
        results: Dict[str, SyncResult] = {}
        for data_type in data_types:
            if data_type not in REFRESHABLE_TYPES:
                results[data_type] = SyncResult.failed_with(f"Not refreshable: {data_type}")
                continue
            results[data_type] = await self.run(data_type, symbols=[symbol])
        self._publish(ENTITY_UPDATED, {
            "symbol": symbol,
            "data_types": [t for t, r in results.items() if r.status == "completed"],
        })
        return results

    async def backfill_symbol(self, symbol: str, days: int = 30) -> SyncResult:
        """Load `days` of daily bars for one symbol and refresh its 52-week range."""
        end = utcnow().date()
        start = end - timedelta(days=days)
        try:
            bars = await self.market.get_aggregates(symbol, start, end)
            rows = [normalize_aggregate(symbol, b) for b in bars]
            rows = [r for r in rows if r["trade_date"] is not None and r["close"] is not None]
            with self.engine.begin() as conn:
                upsert(conn, DailyPrice, rows, ["symbol", "trade_date"])
                self._refresh_week52(conn, symbol)
        except Exception as exc:
            logger.error("Backfill of %s failed: %s", symbol, exc)
            return SyncResult.failed_with(str(exc) or repr(exc))
        logger.info("Backfilled %d bars for %s (%s -> %s)", len(rows), symbol, start, end)
        return SyncResult.completed(len(rows), 0)

    def last_sync_time(self, job_type: Optional[str] = None) -> Optional[datetime]:
        """completed_at of the most recent completed run (of job_type, if given)."""
        table = SyncJobLog.__table__
        stmt = select(table.c.completed_at).where(table.c.status == "completed")
        if job_type is not None:
            stmt = stmt.where(table.c.job_type == job_type)
        with self.engine.connect() as conn:
            return conn.execute(stmt.order_by(desc(table.c.completed_at)).limit(1)).scalar()

    # ─── Shared skeleton ──────────────────────────────────────────────────────

    async def _run_per_symbol(
        self,
        job_type: str,
        handle: Callable[[str], Awaitable[None]],
        symbols: Optional[List[str]],
        resume: bool,
    ) -> SyncResult:
        spec = JOB_SPECS[job_type]
        explicit = symbols is not None

        async def load_work() -> List[str]:
            if explicit:
                return list(symbols)
            return self.status.select_stale_entities(spec.data_type, spec.stale_after, spec.limit)

        return await self._run(
            spec,
            load_work=load_work,
            process_batch=self._fan_out(handle),
            key=str,
            checkpointed=spec.resumable and not explicit,
            resume=resume,
        )

    async def _run(
        self,
        spec: JobSpec,
        load_work: Callable[[], Awaitable[List[Any]]],
        process_batch: Callable[[List[Any]], Awaitable[Sequence[Any]]],
        key: Callable[[Any], str],
        checkpointed: Optional[bool] = None,
        resume: bool = True,
    ) -> SyncResult:
        if checkpointed is None:
            checkpointed = spec.resumable

        try:
            if not self.locks.acquire(spec.lock_name, self.lock_ttl):
                return SyncResult.skipped("Another instance is running this job")
        except Exception as exc:
            logger.error("Could not acquire %s: %s", spec.lock_name, exc)
            return SyncResult.failed_with(f"Lock unavailable: {exc}")

        log_id: Optional[int] = None
        processed = failed = 0
        last_key: Optional[str] = None
        offset = total = 0

        try:
            log_id = self._start_job_log(spec.job_type)
            items = await load_work()
            total = len(items)

            if checkpointed and resume:
                checkpoint = self.checkpoints.load(spec.job_type)
                if checkpoint is not None:
                    remaining = resume_after(items, checkpoint.last_key, key)
                    if len(remaining) < len(items):
                        offset = checkpoint.processed_count
                        logger.info(
                            "Resuming %s after %s (%d of %d left)",
                            spec.job_type,
                            checkpoint.last_key,
                            len(remaining),
                            total,
                        )
                    items = remaining

            logger.info("Sync %s starting: %d item(s)", spec.job_type, len(items))
            since_checkpoint = 0

            for start in range(0, len(items), spec.batch_size):
                batch = items[start:start + spec.batch_size]
                outcomes = await process_batch(batch)

                for item, outcome in zip(batch, outcomes):
                    item_key = key(item)
                    if isinstance(outcome, JOB_LEVEL_ERRORS):
                        raise JobFailure(f"{spec.job_type} aborted at {item_key}: {outcome}") from outcome
                    if isinstance(outcome, Exception):
                        failed += 1
                        self._record_failure(spec, item_key, outcome)
                    elif isinstance(outcome, BaseException):
                        raise outcome
                    else:
                        processed += 1
                        self._record_success(spec, item_key)
                    last_key = item_key
                    since_checkpoint += 1

                    if since_checkpoint >= spec.checkpoint_every:
                        since_checkpoint = 0
                        if checkpointed:
                            self.checkpoints.save(spec.job_type, last_key, offset + processed + failed, total)
                        if not self.locks.extend(spec.lock_name, self.lock_ttl):
                            raise JobFailure(f"Lost lock {spec.lock_name}")

            if checkpointed:
                self.checkpoints.clear(spec.job_type)
            self._finish_job_log(log_id, "completed", processed, failed)
            logger.info("Sync %s completed: %d processed, %d failed", spec.job_type, processed, failed)
            if spec.screenable:
                await self._invalidate_results(spec.job_type)
                self._publish(SCREENER_UPDATED, {"job_type": spec.job_type, "processed": processed})
            return SyncResult.completed(processed, failed)

        except Exception as exc:
            reason = str(exc) or repr(exc)
            logger.error("Sync %s failed after %d item(s): %s", spec.job_type, processed, reason)
            self._preserve_progress(spec, checkpointed, last_key, offset + processed + failed, total)
            self._safe_finish(log_id, processed, failed, reason)
            return SyncResult.failed_with(reason, processed, failed)

        finally:
            try:
                self.locks.release(spec.lock_name)
            except Exception as exc:
                logger.error("Could not release %s: %s", spec.lock_name, exc)

    @staticmethod
    def _fan_out(handle: Callable[[Any], Awaitable[Any]]):
        async def process(batch: List[Any]) -> Sequence[Any]:
            return await asyncio.gather(*(handle(item) for item in batch), return_exceptions=True)
        return process

    def _record_success(self, spec: JobSpec, entity: str) -> None:
        if spec.data_type is not None:
            self.status.record_outcome(entity, spec.data_type, success=True)

    def _record_failure(self, spec: JobSpec, entity: str, exc: BaseException) -> None:
        logger.warning("Sync %s failed for %s: %s", spec.job_type, entity, exc)
        if spec.data_type is not None:
            self.status.record_outcome(entity, spec.data_type, success=False, error=str(exc) or repr(exc))
            self.status.schedule_retry(entity, spec.data_type)

    def _preserve_progress(
        self, spec: JobSpec, checkpointed: bool, last_key: Optional[str], count: int, total: int
    ) -> None:
        if not checkpointed or last_key is None:
            return
        try:
            self.checkpoints.save(spec.job_type, last_key, count, total)
        except Exception as exc:
            logger.error("Could not save %s checkpoint at %s: %s", spec.job_type, last_key, exc)

    async def _invalidate_results(self, job_type: str) -> None:
        if self.cache is None:
            return
        dropped = await self.cache.invalidate_results()
        logger.debug("Dropped %d cached screener result(s) after %s", dropped, job_type)

    def _publish(self, topic: str, payload: Dict[str, Any]) -> None:
        payload = {**payload, "timestamp": utcnow().isoformat()}
        self.supervisor.spawn(self.broadcaster.publish(topic, payload), name=f"publish:{topic}")

    # ─── Job log ──────────────────────────────────────────────────────────────

    def _start_job_log(self, job_type: str) -> int:
        table = SyncJobLog.__table__
        with self.engine.begin() as conn:
            result = conn.execute(
                table.insert().values(job_type=job_type, status="started", started_at=utcnow(),
                                      processed_count=0, failed_count=0)
            )
            return result.inserted_primary_key[0]

    def _finish_job_log(
        self,
        log_id: Optional[int],
        status: str,
        processed: int,
        failed: int,
        error_message: Optional[str] = None,
    ) -> None:
        """Finalize a started log row. Guarded by status so it happens at most once."""
        if log_id is None:
            return
        table = SyncJobLog.__table__
        with self.engine.begin() as conn:
            conn.execute(
                update(table)
                .where(table.c.id == log_id, table.c.status == "started")
                .values(
                    status=status,
                    processed_count=processed,
                    failed_count=failed,
                    completed_at=utcnow(),
                    error_message=error_message,
                )
            )

    def _safe_finish(self, log_id: Optional[int], processed: int, failed: int, reason: str) -> None:
        try:
            self._finish_job_log(log_id, "failed", processed, failed, reason)
        except Exception as exc:
            logger.error("Could not finalize job log %s: %s", log_id, exc)

    # ─── Work sets ────────────────────────────────────────────────────────────

    async def _snapshot_rows(self) -> List[Dict[str, Any]]:
        raw = await self.market.get_market_snapshot()
        rows = [r for r in (normalize_snapshot(t) for t in raw) if r is not None]
        logger.info("Snapshot returned %d tickers, %d with a usable price", len(raw), len(rows))
        return rows

    async def _daily_candidates(self) -> List[Dict[str, Any]]:
        rows = await self._snapshot_rows()
        liquid = [r for r in rows if (r.get("volume") or 0) > DAILY_MIN_VOLUME]
        liquid.sort(key=lambda r: (-r["volume"], r["symbol"]))
        return liquid[:DAILY_MAX_SYMBOLS]

    async def _recent_news(self) -> List[Dict[str, Any]]:
        raw = await self.market.get_news(utcnow() - NEWS_LOOKBACK, limit=NEWS_LIMIT)
        return [a for a in (normalize_news(r) for r in raw) if a is not None]

    # ─── Per-item handlers ────────────────────────────────────────────────────

    async def _write_snapshot_batch(self, rows: List[Dict[str, Any]]) -> List[None]:
        now = utcnow()
        with self.engine.begin() as conn:
            upsert(conn, LatestSnapshot, [{**r, "updated_at": now} for r in rows], ["symbol"])
        return [None] * len(rows)

    async def _refresh_ticker_snapshot(self, symbol: str) -> None:
        try:
            raw = await self.market.get_ticker_snapshot(symbol)
        except UpstreamFailure as exc:
            logger.warning("Snapshot for %s unavailable: %s", symbol, exc)
            return
        row = normalize_snapshot(raw) if raw is not None else None
        if row is None:
            return
        with self.engine.begin() as conn:
            upsert(conn, LatestSnapshot, [{**row, "updated_at": utcnow()}], ["symbol"])

    async def _sync_daily_item(self, row: Dict[str, Any]) -> None:
        symbol = row["symbol"]
        indicators = await self.market.get_indicators(symbol)

        with self.engine.begin() as conn:
            bar = snapshot_bar(row)
            if bar is not None:
                upsert(conn, DailyPrice, [bar], ["symbol", "trade_date"])
                upsert(
                    conn,
                    DailyIndicator,
                    [{"symbol": symbol, "trade_date": bar["trade_date"], **indicators}],
                    ["symbol", "trade_date"],
                )
            upsert(conn, LatestSnapshot, [{**row, **indicators, "updated_at": utcnow()}], ["symbol"])
            self._refresh_week52(conn, symbol)

        if self.cache is not None:
            await self.cache.put_indicators(symbol, indicators)

    async def _sync_financials_item(self, symbol: str) -> None:
        income, balance, cashflow = await asyncio.gather(
            self.market.get_income_statements(symbol, limit=STATEMENT_LIMIT),
            self.market.get_balance_sheets(symbol, limit=STATEMENT_LIMIT),
            self.market.get_cash_flow_statements(symbol, limit=STATEMENT_LIMIT),
        )
        rows = (
            [normalize_statement(symbol, "income", s) for s in income]
            + [normalize_statement(symbol, "balance", s) for s in balance]
            + [normalize_statement(symbol, "cashflow", s) for s in cashflow]
        )
        revenue_growth, eps_growth = compute_yoy_growth(income)

        with self.engine.begin() as conn:
            upsert(
                conn,
                FinancialStatement,
                rows,
                ["symbol", "statement_type", "timeframe", "fiscal_year", "fiscal_quarter"],
            )
            self._update_snapshot(conn, symbol, {
                "revenue_growth_yoy": revenue_growth,
                "eps_growth_yoy": eps_growth,
                "financials_last_sync": utcnow(),
            })

    async def _sync_ratios_item(self, symbol: str) -> None:
        raw, targets = await asyncio.gather(
            self.market.get_financial_ratios(symbol),
            self._price_targets(symbol),
        )
        if raw is None and targets is None:
            return
        fields = {"symbol": symbol}
        if raw is not None:
            fields.update(normalize_ratios(symbol, raw))
        if targets is not None:
            fields.update(normalize_price_targets(targets))
        with self.engine.begin() as conn:
            upsert(conn, FinancialRatio, [{**fields, "updated_at": utcnow()}], ["symbol"])
            self._update_snapshot(conn, symbol, {
                "pe_ratio": fields.get("pe_ratio"),
                "pb_ratio": fields.get("pb_ratio"),
                "gross_margin": fields.get("gross_margin"),
                "debt_to_equity": fields.get("debt_to_equity"),
                "target_mean_price": fields.get("target_mean_price"),
                "ratios_last_sync": utcnow(),
            })

    async def _price_targets(self, symbol: str) -> Optional[Dict[str, Any]]:
        if self.analyst is None:
            return None
        return await self.analyst.get_financial_data(symbol)

    async def _sync_dividends_item(self, symbol: str) -> None:
        raw = await self.market.get_dividends(symbol, limit=DIVIDEND_LIMIT)
        rows = [d for d in (normalize_dividend(symbol, r) for r in raw) if d is not None]
        snap = LatestSnapshot.__table__
        with self.engine.begin() as conn:
            upsert(conn, Dividend, rows, ["symbol", "ex_dividend_date"])
            price = conn.execute(select(snap.c.price).where(snap.c.symbol == symbol)).scalar()
            self._update_snapshot(conn, symbol, {
                "dividend_yield": trailing_dividend_yield(rows, price, utcnow().date()),
            })

    async def _sync_splits_item(self, symbol: str) -> None:
        raw = await self.market.get_splits(symbol, limit=SPLIT_LIMIT)
        rows = [s for s in (normalize_split(symbol, r) for r in raw) if s is not None]
        with self.engine.begin() as conn:
            upsert(conn, StockSplit, rows, ["symbol", "execution_date"])

    async def _sync_details_item(self, symbol: str) -> None:
        raw = await self.market.get_ticker_details(symbol)
        if raw is None:
            return
        fields = normalize_details(symbol, raw)
        with self.engine.begin() as conn:
            upsert(conn, CompanyDetails, [{**fields, "updated_at": utcnow()}], ["symbol"])
            self._update_snapshot(conn, symbol, {
                "name": fields["name"],
                "logo_url": fields["logo_url"],
                "market_cap": fields["market_cap"],
            })

    async def _store_article(self, article: Dict[str, Any]) -> None:
        fields = {k: v for k, v in article.items() if k != "tickers"}
        links = [{"article_id": article["id"], "symbol": t} for t in article["tickers"]]
        with self.engine.begin() as conn:
            insert_ignore(conn, NewsArticle, [fields], ["id"])
            insert_ignore(conn, NewsTicker, links, ["article_id", "symbol"])

    # ─── Derived fields ───────────────────────────────────────────────────────

    @staticmethod
    def _update_snapshot(conn: Connection, symbol: str, values: Dict[str, Any]) -> None:
        """Set non-None values on an existing latest_snapshot row (no-op if absent)."""
        values = {k: v for k, v in values.items() if v is not None}
        if not values:
            return
        snap = LatestSnapshot.__table__
        conn.execute(update(snap).where(snap.c.symbol == symbol).values(**values))

    def _refresh_week52(self, conn: Connection, symbol: str) -> None:
        prices = DailyPrice.__table__
        rows = conn.execute(
            select(prices.c.high, prices.c.low, prices.c.close)
            .where(prices.c.symbol == symbol)
            .order_by(desc(prices.c.trade_date))
            .limit(TRADING_DAYS_PER_YEAR)
        ).mappings().all()
        high, low = week52_range(reversed([dict(r) for r in rows]))
        self._update_snapshot(conn, symbol, {"week52_high": high, "week52_low": low})
