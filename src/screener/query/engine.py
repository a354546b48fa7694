"""
ScreenerEngine: evaluates a ScreenerFilter against market data.

Flow for evaluate(filter, page, page_size):
  1. Result cache hit -> return it
  2. Primary path (if StoreHealth allows): conditions and preset logic
     become SQL over latest_snapshot; count, sort, paginate in the DB
  3. Store error -> StoreHealth.mark_unavailable(), go to 4
     Zero rows for an indicator-dependent preset -> go to 4
  4. On-demand path: live market snapshot -> basic-field prefilter ->
     (only if indicators are referenced) top N by volume, indicators for
     just those from the cache or a bounded-concurrency fetch -> same
     conditions/preset logic in memory -> sort -> paginate. Zero here is
     a real answer; nothing is retried.
  5. Cache the result (30s)

Ordering is identical on both paths: sort value in the requested
direction, missing values last, ties broken by symbol ascending.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy import and_, func, nulls_last, select, true
from sqlalchemy.exc import SQLAlchemyError

from screener.cache.results import ResultCache
from screener.health import StoreHealth
from screener.models.market import LatestSnapshot
from screener.query.conditions import (
    INDICATOR_FIELDS,
    SNAPSHOT_FIELDS,
    MissingField,
    RecordView,
    ScreenerFilter,
    filter_clauses,
    record_matches,
)
from screener.query.presets import Preset, get_preset
from screener.upstream.errors import UpstreamFailure
from screener.upstream.market_data import MarketDataClient
from screener.upstream.normalizer import normalize_snapshot

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500
CANDIDATE_HARD_CAP = 250
ENRICH_CONCURRENCY = 20
DEFAULT_SORT_FIELD = "volume"


class ScreenerResult(BaseModel):
    entities: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int
    filter_id: str
    timestamp: datetime
    source: Literal["store", "on_demand"] = "store"


class ScreenerEngine:
    def __init__(
        self,
        engine,
        market: MarketDataClient,
        cache: ResultCache,
        health: StoreHealth,
        max_candidates: int = 100,
    ):
        """
        Args:
            engine: SQLAlchemy engine for the precomputed store.
            market: Upstream client used by the on-demand path.
            cache: Result and per-symbol indicator cache.
            health: Shared store-health state; decides whether the
                    primary path is attempted.
            max_candidates: On-demand candidate count (capped at 250).
        """
        self.engine = engine
        self.market = market
        self.cache = cache
        self.health = health
        self.max_candidates = min(max_candidates, CANDIDATE_HARD_CAP)

    async def evaluate(self, flt: ScreenerFilter, page: int = 1, page_size: int = 50) -> ScreenerResult:
        """
        Raises:
            UpstreamFailure: only when the on-demand path is needed and the
                live snapshot itself cannot be fetched.
        """
        page = max(page, 1)
        page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        cache_key = flt.cache_key()

        cached = await self.cache.get_result(cache_key, page, page_size)
        if cached is not None:
            return ScreenerResult.model_validate(cached)

        preset = get_preset(flt.id)
        result: Optional[ScreenerResult] = None

        if self.health.use_store():
            try:
                result = self._evaluate_store(flt, preset, page, page_size)
                self.health.mark_available()
            except SQLAlchemyError as exc:
                self.health.mark_unavailable(exc)
                result = None

            if result is not None and result.total == 0 and preset is not None and preset.indicator_dependent:
                logger.info("Store has no rows for %s; evaluating on demand", preset.id)
                result = None

        if result is None:
            result = await self._evaluate_on_demand(flt, preset, page, page_size)

        await self.cache.put_result(cache_key, page, page_size, result.model_dump(mode="json"))
        return result

    # ─── Shared pieces ────────────────────────────────────────────────────────

    @staticmethod
    def _sort_spec(flt: ScreenerFilter, preset: Optional[Preset]) -> Tuple[Callable[[Any], Any], str]:
        """(sort value as a function of a row accessor, 'asc'|'desc')."""
        if preset is not None and preset.sort_value is not None:
            return preset.sort_value, preset.sort_order
        field = flt.sort_field or DEFAULT_SORT_FIELD
        return (lambda r: getattr(r, field)), flt.sort_order

    @staticmethod
    def _preset_clauses(preset: Optional[Preset]):
        return preset.clauses if preset is not None else None

    # ─── Primary path ─────────────────────────────────────────────────────────

    def _evaluate_store(
        self, flt: ScreenerFilter, preset: Optional[Preset], page: int, page_size: int
    ) -> ScreenerResult:
        table = LatestSnapshot.__table__
        cols = table.c

        clauses = filter_clauses(flt.conditions, cols)
        extra = self._preset_clauses(preset)
        if extra is not None:
            clauses.extend(extra(cols))
        where = and_(*clauses) if clauses else true()

        sort_value, order = self._sort_spec(flt, preset)
        sort_expr = sort_value(cols)
        ordering = nulls_last(sort_expr.desc() if order == "desc" else sort_expr.asc())

        columns = list(table.columns)
        if preset is not None and preset.annotation:
            columns.append(sort_expr.label(preset.annotation))

        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(table).where(where)).scalar_one()
            rows = conn.execute(
                select(*columns)
                .where(where)
                .order_by(ordering, cols.symbol.asc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).mappings().all()

        return ScreenerResult(
            entities=[dict(r) for r in rows],
            total=total,
            page=page,
            page_size=page_size,
            filter_id=flt.id,
            timestamp=datetime.now(timezone.utc),
            source="store",
        )

    # ─── On-demand path ───────────────────────────────────────────────────────

    async def _evaluate_on_demand(
        self, flt: ScreenerFilter, preset: Optional[Preset], page: int, page_size: int
    ) -> ScreenerResult:
        raw = await self.market.get_market_snapshot()
        records = [r for r in (normalize_snapshot(t) for t in raw) if r is not None]

        basic = [c for c in flt.conditions if c.field in SNAPSHOT_FIELDS]
        records = [r for r in records if record_matches(r, basic)]
        candidates = records
        if self._needs_indicators(flt, preset):
            # Only the indicator fetch is capped; plain filters see every record.
            records.sort(key=lambda r: (-(r.get("volume") or 0), r["symbol"]))
            candidates = await self._enrich(records[:self.max_candidates])

        matched = [
            r for r in candidates
            if record_matches(r, flt.conditions, self._preset_clauses(preset))
        ]
        ordered = self._sort_records(matched, flt, preset)

        start = (page - 1) * page_size
        logger.info(
            "On-demand %s: %d candidates, %d matched", flt.id, len(candidates), len(matched)
        )
        return ScreenerResult(
            entities=ordered[start:start + page_size],
            total=len(ordered),
            page=page,
            page_size=page_size,
            filter_id=flt.id,
            timestamp=datetime.now(timezone.utc),
            source="on_demand",
        )

    @staticmethod
    def _needs_indicators(flt: ScreenerFilter, preset: Optional[Preset]) -> bool:
        fields = flt.referenced_fields()
        if preset is not None:
            fields |= set(preset.logic_fields)
        return bool(fields & INDICATOR_FIELDS)

    async def _enrich(self, candidates: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        semaphore = asyncio.Semaphore(ENRICH_CONCURRENCY)
        cached = await self.cache.all_indicators()

        async def one(record: Dict[str, Any]) -> Dict[str, Any]:
            indicators = cached.get(record["symbol"])
            if indicators is None:
                async with semaphore:
                    indicators = await self._fetch_indicators(record["symbol"])
            if indicators is None:
                return record
            return {**record, **{k: v for k, v in indicators.items() if v is not None}}

        return list(await asyncio.gather(*(one(r) for r in candidates)))

    async def _fetch_indicators(self, symbol: str) -> Optional[Dict[str, Any]]:
        """Live fetch, cached on success. None if the fetch failed."""
        try:
            values = await self.market.get_indicators(symbol)
        except UpstreamFailure as exc:
            logger.warning("Indicators unavailable for %s: %s", symbol, exc)
            return None
        await self.cache.put_indicators(symbol, values)
        return values

    def _sort_records(
        self, records: List[Dict[str, Any]], flt: ScreenerFilter, preset: Optional[Preset]
    ) -> List[Dict[str, Any]]:
        sort_value, order = self._sort_spec(flt, preset)
        annotation = preset.annotation if preset is not None else None

        keyed = []
        for record in records:
            try:
                value = sort_value(RecordView(record))
            except MissingField:
                value = None
            if annotation:
                record = {**record, annotation: value}
            keyed.append((value, record))

        present = [(v, r) for v, r in keyed if v is not None]
        missing = [r for v, r in keyed if v is None]
        present.sort(key=lambda vr: vr[1]["symbol"])
        present.sort(key=lambda vr: vr[0], reverse=(order == "desc"))
        missing.sort(key=lambda r: r["symbol"])
        return [r for _, r in present] + missing
