"""
Named screener presets.

Most presets are plain conditions plus a sort. Some also need logic that
compares two fields or a derived ratio (golden cross, 52-week proximity,
analyst upside). That logic is a function of a row accessor, like
conditions.condition_clauses, so the SQL and in-memory paths share it.

A preset is indicator-dependent when its own logic reads technical
indicators. An empty store result for such a preset may just mean the
daily job has not populated indicators yet, so the engine retries it on
the on-demand path.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func

from screener.query.conditions import INDICATOR_FIELDS, FilterCondition, ScreenerFilter

Clauses = Callable[[Any], List[Any]]


@dataclass(frozen=True)
class Preset:
    id: str
    name: str
    description: str
    category: str
    conditions: Tuple[Tuple[str, str, Any], ...] = ()
    sort_field: str = "volume"
    sort_order: str = "desc"
    clauses: Optional[Clauses] = None
    logic_fields: Tuple[str, ...] = ()  # fields read by `clauses` / `sort_value`
    # Computed sort value; replaces sort_field and is attached to each result.
    sort_value: Optional[Callable[[Any], Any]] = None
    annotation: Optional[str] = None
    filter_conditions: List[FilterCondition] = field(init=False, default_factory=list)

    def __post_init__(self):
        object.__setattr__(
            self,
            "filter_conditions",
            [FilterCondition(field=f, operator=op, value=v) for f, op, v in self.conditions],
        )

    @property
    def indicator_dependent(self) -> bool:
        return bool(set(self.logic_fields) & INDICATOR_FIELDS)

    def to_filter(self) -> ScreenerFilter:
        return ScreenerFilter(
            id=self.id,
            name=self.name,
            conditions=list(self.filter_conditions),
            sort_field=self.sort_field,
            sort_order=self.sort_order,
        )

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "indicator_dependent": self.indicator_dependent,
        }


NEAR_LOW_BAND = 1.10   # price within 10% above the 52-week low
NEAR_HIGH_BAND = 0.95  # price within 5% below the 52-week high
HIGH_UPSIDE = 1.20     # target at least 20% above price


def _upside_percent(r):
    return (r.target_mean_price - r.price) / r.price * 100


def _magnitude(value):
    """abs() for in-memory numbers, ABS() for SQL expressions."""
    if isinstance(value, (int, float)):
        return abs(value)
    return func.abs(value)


PRESETS: Dict[str, Preset] = {p.id: p for p in (
    # Technical signals
    Preset(
        "oversold", "RSI Oversold", "RSI below 30, potentially undervalued", "technical",
        conditions=(("rsi14", "lt", 30), ("volume", "gt", 100_000)),
        sort_field="rsi14", sort_order="asc",
    ),
    Preset(
        "overbought", "RSI Overbought", "RSI above 70, potentially overextended", "technical",
        conditions=(("rsi14", "gt", 70), ("volume", "gt", 100_000)),
        sort_field="rsi14", sort_order="desc",
    ),
    Preset(
        "rsiNeutral", "RSI Neutral Zone", "RSI between 40 and 60", "technical",
        conditions=(("rsi14", "gte", 40), ("rsi14", "lte", 60), ("volume", "gt", 500_000)),
    ),
    Preset(
        "macdBullish", "MACD Bullish", "Positive MACD histogram", "technical",
        conditions=(("volume", "gt", 500_000),),
        sort_field="change_percent",
        clauses=lambda r: [r.macd_histogram > 0],
        logic_fields=("macd_histogram",),
    ),

    # Moving averages
    Preset(
        "goldenCross", "Golden Cross Setup", "Price above SMA50, SMA50 above SMA200", "moving_averages",
        conditions=(("volume", "gt", 200_000),),
        sort_field="change_percent",
        clauses=lambda r: [r.price > r.sma50, r.sma50 > r.sma200],
        logic_fields=("price", "sma50", "sma200"),
    ),
    Preset(
        "deathCross", "Death Cross Setup", "Price below SMA50, SMA50 below SMA200", "moving_averages",
        conditions=(("volume", "gt", 200_000),),
        sort_field="change_percent", sort_order="asc",
        clauses=lambda r: [r.price < r.sma50, r.sma50 < r.sma200],
        logic_fields=("price", "sma50", "sma200"),
    ),
    Preset(
        "aboveSma200", "Above 200 SMA", "Trading above the 200-day average", "moving_averages",
        conditions=(("volume", "gt", 100_000),),
        sort_field="change_percent",
        clauses=lambda r: [r.price > r.sma200],
        logic_fields=("price", "sma200"),
    ),
    Preset(
        "belowSma200", "Below 200 SMA", "Trading below the 200-day average", "moving_averages",
        conditions=(("volume", "gt", 100_000),),
        sort_field="change_percent", sort_order="asc",
        clauses=lambda r: [r.price < r.sma200],
        logic_fields=("price", "sma200"),
    ),
    Preset(
        "emaCrossover", "EMA 12/26 Bullish", "EMA12 above EMA26", "moving_averages",
        conditions=(("volume", "gt", 300_000),),
        sort_field="change_percent",
        clauses=lambda r: [r.ema12 > r.ema26],
        logic_fields=("ema12", "ema26"),
    ),

    # Price & volume
    Preset(
        "highVolume", "High Volume Movers", "Volume over 1M and up more than 2%", "price_volume",
        conditions=(("volume", "gt", 1_000_000), ("change_percent", "gt", 2)),
    ),
    Preset(
        "topGainers", "Top Gainers", "Biggest percentage gainers", "price_volume",
        conditions=(("change_percent", "gt", 3), ("volume", "gt", 500_000)),
        sort_field="change_percent",
    ),
    Preset(
        "topLosers", "Top Losers", "Biggest percentage losers", "price_volume",
        conditions=(("change_percent", "lt", -3), ("volume", "gt", 500_000)),
        sort_field="change_percent", sort_order="asc",
    ),
    Preset(
        "volumeSpike", "Volume Spike", "Unusually high trading volume", "price_volume",
        conditions=(("volume", "gt", 2_000_000),),
    ),
    Preset(
        "priceBreakout", "Price Breakout", "Up more than 5% on strong volume", "price_volume",
        conditions=(("change_percent", "gt", 5), ("volume", "gt", 1_000_000)),
        sort_field="change_percent",
    ),

    # Momentum
    Preset(
        "bullishMomentum", "Bullish Momentum", "Up move confirmed by RSI above 50", "momentum",
        conditions=(("change_percent", "gt", 1), ("rsi14", "gt", 50), ("volume", "gt", 500_000)),
        sort_field="change_percent",
    ),
    Preset(
        "bearishMomentum", "Bearish Momentum", "Down move confirmed by RSI below 50", "momentum",
        conditions=(("change_percent", "lt", -1), ("rsi14", "lt", 50), ("volume", "gt", 500_000)),
        sort_field="change_percent", sort_order="asc",
    ),
    Preset(
        "uptrend", "Strong Uptrend", "Price above SMA50 and SMA200", "momentum",
        conditions=(("change_percent", "gt", 0), ("volume", "gt", 100_000)),
        sort_field="change_percent",
        clauses=lambda r: [r.price > r.sma50, r.price > r.sma200],
        logic_fields=("price", "sma50", "sma200"),
    ),
    Preset(
        "downtrend", "Strong Downtrend", "Price below SMA50 and SMA200", "momentum",
        conditions=(("change_percent", "lt", 0), ("volume", "gt", 100_000)),
        sort_field="change_percent", sort_order="asc",
        clauses=lambda r: [r.price < r.sma50, r.price < r.sma200],
        logic_fields=("price", "sma50", "sma200"),
    ),

    # Fundamentals
    Preset(
        "valueStocks", "Value Stocks", "P/E under 15 and P/B under 2", "fundamentals",
        conditions=(("pe_ratio", "lt", 15), ("pe_ratio", "gt", 0), ("pb_ratio", "lt", 2),
                    ("volume", "gt", 500_000)),
        sort_field="pe_ratio", sort_order="asc",
    ),
    Preset(
        "growthStocks", "Growth Stocks", "Revenue growth over 20% and EPS growth over 15%", "fundamentals",
        conditions=(("revenue_growth_yoy", "gt", 20), ("eps_growth_yoy", "gt", 15),
                    ("volume", "gt", 300_000)),
        sort_field="revenue_growth_yoy",
    ),
    Preset(
        "dividendYielders", "Dividend Yielders", "Dividend yield over 3%", "fundamentals",
        conditions=(("dividend_yield", "gt", 3), ("pe_ratio", "gt", 0), ("volume", "gt", 200_000)),
        sort_field="dividend_yield",
    ),
    Preset(
        "highMargin", "High Margin", "Gross margin over 40%", "fundamentals",
        conditions=(("gross_margin", "gt", 40), ("market_cap", "gt", 1_000_000_000),
                    ("volume", "gt", 200_000)),
        sort_field="gross_margin",
    ),
    Preset(
        "lowDebt", "Low Debt", "Debt-to-equity under 0.5", "fundamentals",
        conditions=(("debt_to_equity", "lt", 0.5), ("debt_to_equity", "gte", 0),
                    ("volume", "gt", 300_000)),
        sort_field="market_cap",
    ),

    # 52-week range
    Preset(
        "near52WeekLow", "Near 52-Week Low", "Within 10% above the 52-week low", "price_range",
        clauses=lambda r: [r.week52_low > 0, r.price <= r.week52_low * NEAR_LOW_BAND],
        logic_fields=("price", "week52_low"),
        sort_value=lambda r: _magnitude(r.price - r.week52_low) / r.week52_low * 100,
        sort_order="asc",
        annotation="week52_low_distance",
    ),
    Preset(
        "near52WeekHigh", "Near 52-Week High", "Within 5% below the 52-week high", "price_range",
        clauses=lambda r: [r.week52_high > 0, r.price >= r.week52_high * NEAR_HIGH_BAND],
        logic_fields=("price", "week52_high"),
        sort_value=lambda r: _magnitude(r.week52_high - r.price) / r.week52_high * 100,
        sort_order="asc",
        annotation="week52_high_distance",
    ),

    # Analyst targets
    Preset(
        "highUpside", "High Upside", "Analyst target at least 20% above price", "analyst",
        clauses=lambda r: [r.price > 0, r.target_mean_price > r.price * HIGH_UPSIDE],
        logic_fields=("price", "target_mean_price"),
        sort_value=_upside_percent,
        sort_order="desc",
        annotation="upside_percent",
    ),
    Preset(
        "undervalued", "Undervalued", "Analyst target above current price", "analyst",
        clauses=lambda r: [r.price > 0, r.target_mean_price > r.price],
        logic_fields=("price", "target_mean_price"),
        sort_value=_upside_percent,
        sort_order="desc",
        annotation="upside_percent",
    ),
)}


def get_preset(preset_id: str) -> Optional[Preset]:
    return PRESETS.get(preset_id)
