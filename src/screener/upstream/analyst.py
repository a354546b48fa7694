"""
Analyst price targets from the Yahoo Finance quote-summary endpoint.

The market-data API has no consensus target, so the ratios job reads it
from here. This source is secondary: any failure is logged and becomes
None, and never aborts a sync job.
"""
import logging
from typing import Any, Dict, Optional

from screener.upstream.client import ResilientClient
from screener.upstream.errors import UpstreamFailure

logger = logging.getLogger(__name__)

QUOTE_SUMMARY_PATH = "/v10/finance/quoteSummary/{symbol}"
USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.0.0 Safari/537.36"
)


class AnalystTargetClient:
    def __init__(self, client: ResilientClient):
        self.client = client

    async def aclose(self) -> None:
        await self.client.aclose()

    async def get_financial_data(self, symbol: str) -> Optional[Dict[str, Any]]:
        """The financialData module for one symbol, or None if unavailable."""
        try:
            data = await self.client.call(
                QUOTE_SUMMARY_PATH.format(symbol=symbol), {"modules": "financialData"}
            )
        except UpstreamFailure as exc:
            logger.warning("Analyst targets unavailable for %s: %s", symbol, exc)
            return None
        results = (data.get("quoteSummary") or {}).get("result") or []
        if not results:
            return None
        return results[0].get("financialData")
