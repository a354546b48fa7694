"""
Typed endpoint wrappers for the Massive (Polygon-compatible) REST API.

All HTTP goes through ResilientClient; this module only knows paths,
query parameters and where the payload lives in each response. Return
values are the raw upstream dicts; upstream/normalizer.py maps them onto
model fields.
"""
import asyncio
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from screener.upstream.client import ResilientClient
from screener.upstream.errors import RateLimitError, UpstreamError

logger = logging.getLogger(__name__)

# Indicator name -> (endpoint kind, window)
INDICATOR_SPECS = {
    "rsi14": ("rsi", 14),
    "sma20": ("sma", 20),
    "sma50": ("sma", 50),
    "sma200": ("sma", 200),
    "ema12": ("ema", 12),
    "ema26": ("ema", 26),
}

STATEMENT_SECTIONS = {
    "income": "income_statement",
    "balance": "balance_sheet",
    "cashflow": "cash_flow_statement",
}

# An indicator that is merely unavailable for one ticker becomes None.
# Breaker-open and transport failures are not swallowed.
_SOFT_INDICATOR_ERRORS = (UpstreamError, RateLimitError)


class MarketDataClient:
    """Endpoint-level API over a shared ResilientClient."""

    def __init__(self, client: ResilientClient):
        self.client = client

    async def aclose(self) -> None:
        await self.client.aclose()

    # ─── Snapshots ────────────────────────────────────────────────────────────────

    async def get_market_snapshot(self) -> List[Dict[str, Any]]:
        """Bulk snapshot of every US stock ticker in a single call."""
        data = await self.client.call("/v2/snapshot/locale/us/markets/stocks/tickers")
        return data.get("tickers") or []

    async def get_ticker_snapshot(self, symbol: str) -> Optional[Dict[str, Any]]:
        data = await self.client.call(f"/v2/snapshot/locale/us/markets/stocks/tickers/{symbol}")
        return data.get("ticker")

    async def get_aggregates(
        self,
        symbol: str,
        start: date,
        end: date,
        timespan: str = "day",
        limit: int = 5000,
    ) -> List[Dict[str, Any]]:
        """Daily bars, oldest first."""
        data = await self.client.call(
            f"/v2/aggs/ticker/{symbol}/range/1/{timespan}/{start.isoformat()}/{end.isoformat()}",
            {"adjusted": "true", "sort": "asc", "limit": limit},
        )
        return data.get("results") or []

    # ─── Technical indicators ─────────────────────────────────────────────────

    async def _latest_indicator(self, kind: str, symbol: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        data = await self.client.call(
            f"/v1/indicators/{kind}/{symbol}",
            {"timespan": "day", "series_type": "close", "order": "desc", "limit": 1, **params},
        )
        values = (data.get("results") or {}).get("values") or []
        return values[0] if values else None

    async def get_rsi(self, symbol: str, window: int = 14) -> Optional[float]:
        point = await self._latest_indicator("rsi", symbol, {"window": window})
        return point.get("value") if point else None

    async def get_sma(self, symbol: str, window: int) -> Optional[float]:
        point = await self._latest_indicator("sma", symbol, {"window": window})
        return point.get("value") if point else None

    async def get_ema(self, symbol: str, window: int) -> Optional[float]:
        point = await self._latest_indicator("ema", symbol, {"window": window})
        return point.get("value") if point else None

    async def get_macd(
        self,
        symbol: str,
        short_window: int = 12,
        long_window: int = 26,
        signal_window: int = 9,
    ) -> Optional[Dict[str, Optional[float]]]:
        point = await self._latest_indicator(
            "macd",
            symbol,
            {"short_window": short_window, "long_window": long_window, "signal_window": signal_window},
        )
        if not point:
            return None
        return {
            "value": point.get("value"),
            "signal": point.get("signal"),
            "histogram": point.get("histogram"),
        }

    async def get_indicators(self, symbol: str, include_macd: bool = True) -> Dict[str, Optional[float]]:
        """
        Fetch the standard indicator set concurrently.

        Returns a dict keyed rsi14/sma20/.../macd_histogram. A single
        indicator that the upstream rejects comes back as None.

        Raises:
            CircuitOpenError, UpstreamUnavailable: the upstream as a whole
                is not usable; callers decide whether that aborts their job.
        """
        names = list(INDICATOR_SPECS)
        calls = [
            self.get_rsi(symbol, w) if kind == "rsi"
            else self.get_sma(symbol, w) if kind == "sma"
            else self.get_ema(symbol, w)
            for kind, w in INDICATOR_SPECS.values()
        ]
        if include_macd:
            calls.append(self.get_macd(symbol))

        results = await asyncio.gather(*calls, return_exceptions=True)

        out: Dict[str, Optional[float]] = {}
        for name, res in zip(names, results):
            out[name] = self._soft_value(symbol, name, res)
        if include_macd:
            macd = self._soft_value(symbol, "macd", results[-1]) or {}
            out["macd_value"] = macd.get("value")
            out["macd_signal"] = macd.get("signal")
            out["macd_histogram"] = macd.get("histogram")
        return out

    @staticmethod
    def _soft_value(symbol: str, name: str, res: Any) -> Any:
        if isinstance(res, _SOFT_INDICATOR_ERRORS):
            logger.debug("Indicator %s unavailable for %s: %s", name, symbol, res)
            return None
        if isinstance(res, BaseException):
            raise res
        return res

    # ─── Fundamentals ─────────────────────────────────────────────────────────

    async def _get_statements(
        self, symbol: str, statement: str, timeframe: str, limit: int
    ) -> List[Dict[str, Any]]:
        """
        Financial statements newest-first by filing date, following next_url
        until `limit` filings are collected.

        Each returned dict is the statement section (e.g. income_statement)
        flattened together with the filing metadata: fiscal_year,
        fiscal_period, timeframe, start_date, end_date, filing_date.
        """
        section = STATEMENT_SECTIONS[statement]
        out: List[Dict[str, Any]] = []
        endpoint: Optional[str] = "/vX/reference/financials"
        params: Optional[Dict[str, Any]] = {
            "ticker": symbol,
            "timeframe": timeframe,
            "order": "desc",
            "sort": "filing_date",
            "limit": min(limit, 100),
        }
        while endpoint and len(out) < limit:
            page = await self.client.call(endpoint, params)
            for filing in page.get("results") or []:
                record = dict((filing.get("financials") or {}).get(section) or {})
                for key in ("fiscal_year", "fiscal_period", "timeframe", "start_date", "end_date", "filing_date"):
                    record[key] = filing.get(key)
                out.append(record)
            endpoint = page.get("next_url")
            params = None
        return out[:limit]

    async def get_income_statements(self, symbol: str, timeframe: str = "quarterly", limit: int = 8):
        return await self._get_statements(symbol, "income", timeframe, limit)

    async def get_balance_sheets(self, symbol: str, timeframe: str = "quarterly", limit: int = 8):
        return await self._get_statements(symbol, "balance", timeframe, limit)

    async def get_cash_flow_statements(self, symbol: str, timeframe: str = "quarterly", limit: int = 8):
        return await self._get_statements(symbol, "cashflow", timeframe, limit)

    async def get_financial_ratios(self, symbol: str) -> Optional[Dict[str, Any]]:
        data = await self.client.call("/stocks/financials/v1/ratios", {"ticker": symbol, "limit": 1})
        results = data.get("results") or []
        return results[0] if results else None

    async def get_dividends(self, symbol: str, limit: int = 20) -> List[Dict[str, Any]]:
        data = await self.client.call(
            "/v3/reference/dividends",
            {"ticker": symbol, "limit": limit, "order": "desc", "sort": "ex_dividend_date"},
        )
        return data.get("results") or []

    async def get_splits(self, symbol: str, limit: int = 20) -> List[Dict[str, Any]]:
        data = await self.client.call(
            "/v3/reference/splits",
            {"ticker": symbol, "limit": limit, "order": "desc", "sort": "execution_date"},
        )
        return data.get("results") or []

    async def get_news(self, published_since: datetime, limit: int = 100) -> List[Dict[str, Any]]:
        data = await self.client.call(
            "/v2/reference/news",
            {
                "published_utc.gte": published_since.strftime("%Y-%m-%dT%H:%M:%SZ"),
                "order": "desc",
                "sort": "published_utc",
                "limit": limit,
            },
        )
        return data.get("results") or []

    async def get_ticker_details(self, symbol: str) -> Optional[Dict[str, Any]]:
        data = await self.client.call(f"/v3/reference/tickers/{symbol}")
        return data.get("results")
