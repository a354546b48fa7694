"""
Integration tests for ScreenerEngine.

The store path runs against in-memory SQLite; the on-demand path gets a
MagicMock market client.

Key behaviours:
  - Store path: conditions + preset logic in SQL, sorted, paginated
  - Indicator-dependent preset with zero store rows -> on-demand path;
    zero on-demand rows is the final answer
  - Store error -> StoreHealth switches the process to on-demand mode
  - A candidate whose indicators cannot be fetched is kept, not dropped
  - Both paths order identically (missing values last, symbol tie-break)
  - Results are cached per filter and page
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from screener.cache.memory import MemoryCache
from screener.cache.results import ResultCache
from screener.health import StoreHealth
from screener.query.conditions import FilterCondition, ScreenerFilter
from screener.query.engine import ScreenerEngine
from screener.query.presets import get_preset
from screener.upstream.errors import UpstreamUnavailable


# ─── Helpers ──────────────────────────────────────────────────────────────────

def ticker(symbol, close, volume=1_000_000, change=1.0):
    updated = datetime(2025, 1, 15, 21, 0, tzinfo=timezone.utc)
    return {
        "ticker": symbol,
        "day": {"o": close, "h": close, "l": close, "c": close, "v": volume},
        "todaysChangePerc": change,
        "updated": int(updated.timestamp() * 1e9),
    }


def indicators_by_symbol(values, failing=()):
    async def side_effect(symbol, *args, **kwargs):
        if symbol in failing:
            raise UpstreamUnavailable("indicator fetch failed")
        return dict(values.get(symbol, {}))
    return side_effect


def make_market(tickers=(), indicators=None, failing=()):
    market = MagicMock()
    market.get_market_snapshot = AsyncMock(return_value=list(tickers))
    market.get_indicators = AsyncMock(side_effect=indicators_by_symbol(indicators or {}, failing))
    return market


def make_screener(engine, market=None, health=None):
    return ScreenerEngine(
        engine,
        market or make_market(),
        ResultCache(MemoryCache()),
        health or StoreHealth(reprobe_after=None),
    )


def symbols(result):
    return [e["symbol"] for e in result.entities]


GOLDEN = {"sma50": 100.0, "sma200": 90.0}


# ─── Store path ───────────────────────────────────────────────────────────────

class TestStorePath:
    @pytest.mark.asyncio
    async def test_golden_cross_from_store(self, engine, seed_snapshots):
        seed_snapshots(
            {"symbol": "AAA", "price": 105.0, "change_percent": 2.0, **GOLDEN},
            {"symbol": "BBB", "price": 105.0, "change_percent": 5.0, **GOLDEN},
            {"symbol": "CCC", "price": 95.0, "change_percent": 9.0, **GOLDEN},
            {"symbol": "DDD", "price": 105.0, "volume": 100_000, **GOLDEN},
            {"symbol": "EEE", "price": 105.0},
        )
        screener = make_screener(engine)

        result = await screener.evaluate(get_preset("goldenCross").to_filter())

        assert result.source == "store"
        assert result.total == 2
        assert symbols(result) == ["BBB", "AAA"]
        screener.market.get_market_snapshot.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_between_is_inclusive(self, engine, seed_snapshots):
        seed_snapshots(*(
            {"symbol": s, "price": p}
            for s, p in [("A10", 10.0), ("A20", 20.0), ("A15", 15.0), ("LOW", 9.999), ("HIGH", 20.001)]
        ))
        flt = ScreenerFilter(conditions=[FilterCondition(field="price", operator="between", value=(10, 20))])

        result = await make_screener(engine).evaluate(flt)

        assert sorted(symbols(result)) == ["A10", "A15", "A20"]

    @pytest.mark.asyncio
    async def test_annotation_attached(self, engine, seed_snapshots):
        seed_snapshots(
            {"symbol": "AAA", "price": 54.0, "week52_low": 50.0},
            {"symbol": "BBB", "price": 51.0, "week52_low": 50.0},
            {"symbol": "CCC", "price": 60.0, "week52_low": 50.0},
        )

        result = await make_screener(engine).evaluate(get_preset("near52WeekLow").to_filter())

        assert symbols(result) == ["BBB", "AAA"]
        assert result.entities[0]["week52_low_distance"] == pytest.approx(2.0)

    @pytest.mark.asyncio
    async def test_price_under_stale_low_ranks_by_distance(self, engine, seed_snapshots):
        seed_snapshots(
            {"symbol": "AAA", "price": 54.0, "week52_low": 50.0},
            {"symbol": "BBB", "price": 48.0, "week52_low": 50.0},
            {"symbol": "CCC", "price": 51.0, "week52_low": 50.0},
        )

        result = await make_screener(engine).evaluate(get_preset("near52WeekLow").to_filter())

        assert symbols(result) == ["CCC", "BBB", "AAA"]
        assert result.entities[1]["week52_low_distance"] == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_pagination_is_one_indexed(self, engine, seed_snapshots):
        seed_snapshots(*({"symbol": f"S{i}", "volume": 1000 * (i + 1)} for i in range(5)))

        result = await make_screener(engine).evaluate(ScreenerFilter(), page=3, page_size=2)

        assert result.total == 5
        assert symbols(result) == ["S0"]
        assert (result.page, result.page_size) == (3, 2)

    @pytest.mark.asyncio
    async def test_non_indicator_preset_zero_is_final(self, engine):
        screener = make_screener(engine)

        result = await screener.evaluate(get_preset("topGainers").to_filter())

        assert result.total == 0
        assert result.source == "store"
        screener.market.get_market_snapshot.assert_not_awaited()


# ─── On-demand fallback ───────────────────────────────────────────────────────

class TestOnDemandFallback:
    @pytest.mark.asyncio
    async def test_empty_store_for_indicator_preset(self, engine, seed_snapshots):
        seed_snapshots(*({"symbol": s, "price": 105.0} for s in ["AAA", "BBB", "CCC", "DDD", "EEE"]))
        market = make_market(
            tickers=[ticker("AAA", 105.0, change=1.0), ticker("BBB", 105.0, change=3.0),
                     ticker("CCC", 95.0), ticker("DDD", 105.0), ticker("EEE", 105.0)],
            indicators={
                "AAA": GOLDEN,
                "BBB": GOLDEN,
                "CCC": GOLDEN,
                "DDD": {"sma50": 110.0, "sma200": 90.0},
                "EEE": {"sma50": 100.0, "sma200": 120.0},
            },
        )
        screener = make_screener(engine, market)

        result = await screener.evaluate(get_preset("goldenCross").to_filter())

        assert result.source == "on_demand"
        assert result.total == 2
        assert symbols(result) == ["BBB", "AAA"]

    @pytest.mark.asyncio
    async def test_zero_on_demand_is_final(self, engine):
        market = make_market(tickers=[ticker("AAA", 80.0)], indicators={"AAA": GOLDEN})
        screener = make_screener(engine, market)

        result = await screener.evaluate(get_preset("goldenCross").to_filter())

        assert result.total == 0
        assert result.source == "on_demand"
        market.get_market_snapshot.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_prefilter_limits_indicator_fetches(self, engine):
        market = make_market(
            tickers=[ticker("BIG", 105.0, volume=5_000_000), ticker("TINY", 105.0, volume=1_000)],
            indicators={"BIG": GOLDEN, "TINY": GOLDEN},
        )
        screener = make_screener(engine, market)

        await screener.evaluate(get_preset("goldenCross").to_filter())

        market.get_indicators.assert_awaited_once_with("BIG")

    @pytest.mark.asyncio
    async def test_failed_enrichment_keeps_candidate(self, engine):
        market = make_market(
            tickers=[ticker("AAA", 10.0), ticker("BBB", 10.0), ticker("CCC", 10.0)],
            indicators={"AAA": {"rsi14": 40.0}, "CCC": {"rsi14": 60.0}},
            failing=("BBB",),
        )
        screener = make_screener(engine, market, StoreHealth(reprobe_after=None))
        screener.health.mark_unavailable()

        result = await screener.evaluate(ScreenerFilter(sort_field="rsi14"))

        assert result.total == 3
        assert symbols(result) == ["CCC", "AAA", "BBB"]
        assert "rsi14" not in result.entities[2]

    @pytest.mark.asyncio
    async def test_cached_indicators_skip_fetch(self, engine):
        market = make_market(tickers=[ticker("AAA", 105.0)], indicators={})
        screener = make_screener(engine, market)
        screener.health.mark_unavailable()
        await screener.cache.put_indicators("AAA", GOLDEN)

        result = await screener.evaluate(get_preset("goldenCross").to_filter())

        assert symbols(result) == ["AAA"]
        market.get_indicators.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_snapshot_failure_propagates(self, engine):
        market = make_market()
        market.get_market_snapshot.side_effect = UpstreamUnavailable("down")
        screener = make_screener(engine, market)
        screener.health.mark_unavailable()

        with pytest.raises(UpstreamUnavailable):
            await screener.evaluate(ScreenerFilter())

    @pytest.mark.asyncio
    async def test_plain_filter_is_not_capped_to_candidates(self, engine):
        market = make_market(tickers=[
            ticker(f"T{i:03d}", 50.0, volume=1_000_000 + i, change=4.0) for i in range(150)
        ])
        screener = ScreenerEngine(
            engine, market, ResultCache(MemoryCache()), StoreHealth(reprobe_after=None), max_candidates=100,
        )
        screener.health.mark_unavailable()

        result = await screener.evaluate(get_preset("topGainers").to_filter(), page_size=500)

        assert result.source == "on_demand"
        assert result.total == 150
        assert len(result.entities) == 150
        market.get_indicators.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_indicator_filter_is_capped_to_candidates(self, engine):
        market = make_market(
            tickers=[ticker(f"T{i:03d}", 105.0, volume=1_000_000 + i) for i in range(150)],
            indicators={f"T{i:03d}": GOLDEN for i in range(150)},
        )
        screener = ScreenerEngine(
            engine, market, ResultCache(MemoryCache()), StoreHealth(reprobe_after=None), max_candidates=100,
        )
        screener.health.mark_unavailable()

        result = await screener.evaluate(get_preset("goldenCross").to_filter())

        assert result.total == 100
        assert market.get_indicators.await_count == 100
        fetched = {c.args[0] for c in market.get_indicators.await_args_list}
        assert "T149" in fetched and "T049" not in fetched


# ─── Degradation ──────────────────────────────────────────────────────────────

class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_store_error_switches_to_on_demand(self):
        broken = MagicMock()
        broken.connect.side_effect = OperationalError("SELECT 1", {}, Exception("db down"))
        market = make_market(tickers=[ticker("AAA", 10.0)])
        health = StoreHealth(reprobe_after=None)
        screener = make_screener(broken, market, health)

        first = await screener.evaluate(ScreenerFilter(), page=1)
        second = await screener.evaluate(ScreenerFilter(), page=2)

        assert first.source == "on_demand"
        assert symbols(first) == ["AAA"]
        assert second.source == "on_demand"
        assert not health.available
        assert broken.connect.call_count == 1


# ─── Ordering and caching ─────────────────────────────────────────────────────

class TestOrderingParity:
    @pytest.mark.asyncio
    async def test_store_and_on_demand_order_alike(self, engine, seed_snapshots):
        rsi = {"AAA": 50.0, "BBB": 50.0, "DDD": 70.0}
        seed_snapshots(*(
            {"symbol": s, "price": 10.0, "rsi14": rsi.get(s)} for s in ["AAA", "BBB", "CCC", "DDD"]
        ))
        flt = ScreenerFilter(sort_field="rsi14", sort_order="desc")

        from_store = await make_screener(engine).evaluate(flt)

        market = make_market(
            tickers=[ticker(s, 10.0) for s in ["CCC", "BBB", "DDD", "AAA"]],
            indicators={s: {"rsi14": v} for s, v in rsi.items()},
        )
        on_demand = make_screener(engine, market)
        on_demand.health.mark_unavailable()
        from_live = await on_demand.evaluate(flt)

        assert symbols(from_store) == ["DDD", "AAA", "BBB", "CCC"]
        assert symbols(from_live) == symbols(from_store)


class TestResultCache:
    @pytest.mark.asyncio
    async def test_second_call_served_from_cache(self, engine, seed_snapshots):
        seed_snapshots({"symbol": "AAA", "change_percent": 5.0, "volume": 1_000_000})
        screener = make_screener(engine)
        flt = get_preset("topGainers").to_filter()

        first = await screener.evaluate(flt)
        seed_snapshots({"symbol": "BBB", "change_percent": 6.0, "volume": 1_000_000})
        second = await screener.evaluate(flt)

        assert first.total == second.total == 1
        assert symbols(second) == ["AAA"]

    @pytest.mark.asyncio
    async def test_pages_cached_separately(self, engine, seed_snapshots):
        seed_snapshots(*({"symbol": f"S{i}", "volume": 1000 * (i + 1)} for i in range(3)))
        screener = make_screener(engine)

        page1 = await screener.evaluate(ScreenerFilter(), page=1, page_size=2)
        page2 = await screener.evaluate(ScreenerFilter(), page=2, page_size=2)

        assert symbols(page1) == ["S2", "S1"]
        assert symbols(page2) == ["S0"]
