"""
Tests for MarketDataClient endpoint wrappers.

ResilientClient is replaced with an AsyncMock whose call() is routed by
endpoint, so these tests cover paths, params and payload extraction only.
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from screener.upstream.errors import CircuitOpenError, UpstreamError
from screener.upstream.market_data import MarketDataClient


# ─── Helpers ──────────────────────────────────────────────────────────────────

def make_market(route):
    """route(endpoint, params) -> payload, or raises."""
    client = MagicMock()
    client.call = AsyncMock(side_effect=route)
    client.aclose = AsyncMock()
    return MarketDataClient(client), client


def indicator_payload(**point):
    return {"results": {"values": [point]}}


def indicator_route(overrides=None):
    """Every indicator returns value=window; overrides map (path, window) -> exception."""
    overrides = overrides or {}

    async def route(endpoint, params=None):
        for (path, window), exc in overrides.items():
            if endpoint.endswith(path) and window in (None, params.get("window")):
                raise exc
        if "/macd/" in endpoint:
            return indicator_payload(value=1.5, signal=1.0, histogram=0.5)
        return indicator_payload(value=float(params["window"]))

    return route


# ─── Tests ────────────────────────────────────────────────────────────────────

class TestPagination:
    @pytest.mark.asyncio
    async def test_statements_follow_next_url_until_limit(self):
        def filing(year):
            return {"fiscal_year": str(year), "financials": {"income_statement": {}}}

        pages = [
            {"results": [filing(2024)], "next_url": "https://api.test/vX/reference/financials?cursor=2"},
            {"results": [filing(2023)], "next_url": "https://api.test/vX/reference/financials?cursor=3"},
            {"results": [filing(2022)]},
        ]
        market, client = make_market(lambda endpoint, params=None: pages.pop(0))

        rows = await market.get_income_statements("AAA", limit=2)

        assert [r["fiscal_year"] for r in rows] == ["2024", "2023"]
        assert client.call.await_count == 2
        second = client.call.call_args_list[1]
        assert second.args == ("https://api.test/vX/reference/financials?cursor=2", None)


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_market_snapshot_returns_tickers(self):
        market, _ = make_market(lambda e, p=None: {"tickers": [{"ticker": "AAA"}]})
        assert await market.get_market_snapshot() == [{"ticker": "AAA"}]

    @pytest.mark.asyncio
    async def test_ticker_snapshot(self):
        market, client = make_market(lambda e, p=None: {"ticker": {"ticker": "AAA"}})
        assert await market.get_ticker_snapshot("AAA") == {"ticker": "AAA"}
        assert client.call.call_args.args[0].endswith("/tickers/AAA")

    @pytest.mark.asyncio
    async def test_missing_payload_is_empty(self):
        market, _ = make_market(lambda e, p=None: {"status": "OK"})
        assert await market.get_market_snapshot() == []
        assert await market.get_dividends("AAA") == []


class TestIndicators:
    @pytest.mark.asyncio
    async def test_full_set(self):
        market, _ = make_market(indicator_route())

        values = await market.get_indicators("AAA")

        assert values["rsi14"] == 14.0
        assert values["sma50"] == 50.0
        assert values["sma200"] == 200.0
        assert values["ema26"] == 26.0
        assert values["macd_value"] == 1.5
        assert values["macd_histogram"] == 0.5

    @pytest.mark.asyncio
    async def test_rejected_indicator_becomes_none(self):
        market, _ = make_market(indicator_route({("/sma/AAA", 200): UpstreamError(404, "no data")}))

        values = await market.get_indicators("AAA")

        assert values["sma200"] is None
        assert values["sma50"] == 50.0

    @pytest.mark.asyncio
    async def test_circuit_open_propagates(self):
        market, _ = make_market(indicator_route({("/rsi/AAA", None): CircuitOpenError(30.0)}))

        with pytest.raises(CircuitOpenError):
            await market.get_indicators("AAA")

    @pytest.mark.asyncio
    async def test_without_macd(self):
        market, client = make_market(indicator_route())

        values = await market.get_indicators("AAA", include_macd=False)

        assert "macd_value" not in values
        assert all("/macd/" not in c.args[0] for c in client.call.call_args_list)


class TestStatements:
    @pytest.mark.asyncio
    async def test_section_is_flattened_with_filing_metadata(self):
        payload = {
            "results": [{
                "fiscal_year": "2024",
                "fiscal_period": "Q3",
                "timeframe": "quarterly",
                "end_date": "2024-09-30",
                "filing_date": "2024-11-01",
                "financials": {"income_statement": {"revenues": {"value": 1000.0}}},
            }],
        }
        market, client = make_market(lambda e, p=None: payload)

        rows = await market.get_income_statements("AAA", limit=4)

        assert rows == [{
            "revenues": {"value": 1000.0},
            "fiscal_year": "2024",
            "fiscal_period": "Q3",
            "timeframe": "quarterly",
            "start_date": None,
            "end_date": "2024-09-30",
            "filing_date": "2024-11-01",
        }]
        endpoint, params = client.call.call_args.args
        assert endpoint == "/vX/reference/financials"
        assert params["ticker"] == "AAA"
        assert params["limit"] == 4

    @pytest.mark.asyncio
    async def test_ratios_first_result_or_none(self):
        market, _ = make_market(lambda e, p=None: {"results": []})
        assert await market.get_financial_ratios("AAA") is None


class TestClose:
    @pytest.mark.asyncio
    async def test_aclose_closes_client(self):
        market, client = make_market(lambda e, p=None: {})
        await market.aclose()
        client.aclose.assert_awaited_once()
