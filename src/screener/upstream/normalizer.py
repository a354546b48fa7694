"""
Upstream response normalizer.

Converts raw dicts from the market-data API (and the analyst
quote-summary source) into clean field dicts that map directly onto
SQLModel columns. No DB access here; callers (the sync orchestrator)
handle persistence.

All functions return plain dicts (or plain numbers for the derived
fields) so they're easy to test without any SQLModel or DB dependencies.

Snapshot quirks:
  - Outside market hours `day` is all zeros; `prevDay` then carries the
    last full session and is used instead.
  - Price is the day close, falling back to the last trade. A snapshot
    without a positive price is dropped (returns None).
"""
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

FISCAL_QUARTERS = {"Q1": 1, "Q2": 2, "Q3": 3, "Q4": 4}

TRADING_DAYS_PER_YEAR = 252


def _value(node: Optional[Dict[str, Any]], key: str) -> Optional[float]:
    """Financial statement items are {"value": x, "unit": ...} objects."""
    item = (node or {}).get(key)
    if isinstance(item, dict):
        return item.get("value")
    return item


def _parse_date(s: Optional[str]) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(s[:10])
    except ValueError:
        return None


def _parse_timestamp(s: Optional[str]) -> Optional[datetime]:
    """ISO-8601 with trailing Z -> naive UTC datetime."""
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _ms_to_date(ms: Optional[int]) -> Optional[date]:
    if not ms:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).date()


def normalize_snapshot(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Map one /v2/snapshot ticker onto LatestSnapshot fields.

    Returns None when the ticker has no usable price.
    """
    symbol = raw.get("ticker")
    day = raw.get("day") or {}
    prev = raw.get("prevDay") or {}
    bar = day if day.get("v") else prev

    price = bar.get("c") or (raw.get("lastTrade") or {}).get("p")
    if not symbol or not price or price <= 0:
        return None

    updated_ns = raw.get("updated")
    data_date = (
        datetime.fromtimestamp(updated_ns / 1e9, tz=timezone.utc).date()
        if updated_ns
        else None
    )

    return {
        "symbol": symbol,
        "price": float(price),
        "open": bar.get("o"),
        "high": bar.get("h"),
        "low": bar.get("l"),
        "volume": bar.get("v") or 0,
        "vwap": bar.get("vw"),
        "change_percent": raw.get("todaysChangePerc"),
        "data_date": data_date,
    }


def normalize_aggregate(symbol: str, bar: Dict[str, Any]) -> Dict[str, Any]:
    """One aggregate bar ({t,o,h,l,c,v,vw,n}) -> DailyPrice fields."""
    return {
        "symbol": symbol,
        "trade_date": _ms_to_date(bar.get("t")),
        "open": bar.get("o"),
        "high": bar.get("h"),
        "low": bar.get("l"),
        "close": bar.get("c"),
        "volume": bar.get("v") or 0,
        "vwap": bar.get("vw"),
        "transactions": bar.get("n"),
    }


def snapshot_bar(snapshot_fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Build a DailyPrice row from normalized snapshot fields (needs data_date)."""
    if snapshot_fields.get("data_date") is None:
        return None
    return {
        "symbol": snapshot_fields["symbol"],
        "trade_date": snapshot_fields["data_date"],
        "open": snapshot_fields.get("open"),
        "high": snapshot_fields.get("high"),
        "low": snapshot_fields.get("low"),
        "close": snapshot_fields["price"],
        "volume": snapshot_fields.get("volume") or 0,
        "vwap": snapshot_fields.get("vwap"),
        "transactions": None,
    }


def fiscal_quarter(period: Optional[str]) -> int:
    """'Q1'..'Q4' -> 1..4. Anything else (FY, TTM) is filed under 4."""
    return FISCAL_QUARTERS.get((period or "").upper(), 4)


def normalize_statement(symbol: str, statement_type: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """One flattened statement record -> FinancialStatement fields."""
    fields = {
        "symbol": symbol,
        "statement_type": statement_type,
        "timeframe": raw.get("timeframe") or "quarterly",
        "fiscal_year": int(raw.get("fiscal_year") or 0),
        "fiscal_quarter": fiscal_quarter(raw.get("fiscal_period")),
        "period_end": _parse_date(raw.get("end_date")),
        "filing_date": _parse_date(raw.get("filing_date")),
        "revenue": None,
        "net_income": None,
        "eps": None,
        "total_assets": None,
        "total_liabilities": None,
        "operating_cash_flow": None,
    }
    if statement_type == "income":
        fields["revenue"] = _value(raw, "revenues")
        fields["net_income"] = _value(raw, "net_income_loss")
        fields["eps"] = _value(raw, "basic_earnings_per_share")
    elif statement_type == "balance":
        fields["total_assets"] = _value(raw, "assets")
        fields["total_liabilities"] = _value(raw, "liabilities")
    elif statement_type == "cashflow":
        fields["operating_cash_flow"] = _value(raw, "net_cash_flow_from_operating_activities")
    return fields


def _pct_change(latest: Optional[float], previous: Optional[float]) -> Optional[float]:
    if not latest or not previous:
        return None
    return (latest - previous) / abs(previous) * 100


def compute_yoy_growth(income: List[Dict[str, Any]]) -> Tuple[Optional[float], Optional[float]]:
    """
    Year-over-year revenue and EPS growth (percent) from quarterly income
    statements ordered newest first.

    Compares the newest quarter with the same fiscal period one fiscal
    year earlier. Fewer than five quarters -> (None, None).
    """
    if len(income) < 5:
        return None, None
    latest = income[0]
    try:
        year = int(latest.get("fiscal_year"))
    except (TypeError, ValueError):
        return None, None
    prior = next(
        (
            s for s in income[1:]
            if str(s.get("fiscal_year")) == str(year - 1)
            and s.get("fiscal_period") == latest.get("fiscal_period")
        ),
        None,
    )
    if prior is None:
        return None, None
    revenue_growth = _pct_change(_value(latest, "revenues"), _value(prior, "revenues"))
    eps_growth = _pct_change(
        _value(latest, "basic_earnings_per_share"),
        _value(prior, "basic_earnings_per_share"),
    )
    return revenue_growth, eps_growth


def normalize_ratios(symbol: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Ratio payload -> FinancialRatio fields."""
    return {
        "symbol": symbol,
        "pe_ratio": raw.get("price_to_earnings"),
        "pb_ratio": raw.get("price_to_book"),
        "ps_ratio": raw.get("price_to_sales"),
        "ev_to_ebitda": raw.get("ev_to_ebitda"),
        "peg_ratio": raw.get("peg_ratio"),
        "gross_margin": raw.get("gross_margin"),
        "operating_margin": raw.get("operating_margin"),
        "net_margin": raw.get("net_margin"),
        "roe": raw.get("return_on_equity"),
        "roa": raw.get("return_on_assets"),
        "current_ratio": raw.get("current"),
        "quick_ratio": raw.get("quick"),
        "debt_to_equity": raw.get("debt_to_equity"),
    }


def _raw(node: Dict[str, Any], key: str) -> Any:
    """Quote-summary numbers are {"raw": x, "fmt": "..."}; empty objects mean no value."""
    item = node.get(key)
    if isinstance(item, dict):
        return item.get("raw")
    return item


def normalize_price_targets(financial_data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Quote-summary financialData -> analyst target fields on FinancialRatio."""
    node = financial_data or {}
    return {
        "target_mean_price": _raw(node, "targetMeanPrice"),
        "target_high_price": _raw(node, "targetHighPrice"),
        "target_low_price": _raw(node, "targetLowPrice"),
        "analyst_count": _raw(node, "numberOfAnalystOpinions"),
        "recommendation_key": node.get("recommendationKey"),
    }


def normalize_dividend(symbol: str, raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    ex_date = _parse_date(raw.get("ex_dividend_date"))
    if ex_date is None or raw.get("cash_amount") is None:
        return None
    return {
        "symbol": symbol,
        "ex_dividend_date": ex_date,
        "pay_date": _parse_date(raw.get("pay_date")),
        "record_date": _parse_date(raw.get("record_date")),
        "declaration_date": _parse_date(raw.get("declaration_date")),
        "amount": float(raw["cash_amount"]),
        "frequency": raw.get("frequency"),
        "dividend_type": raw.get("dividend_type"),
    }


def trailing_dividend_yield(
    dividends: Iterable[Dict[str, Any]],
    price: Optional[float],
    as_of: date,
) -> Optional[float]:
    """
    Trailing-twelve-month dividend yield in percent.

    Sums normalized dividends with ex-date in the 365 days up to `as_of`.
    No price or no dividends in the window -> None.
    """
    if not price or price <= 0:
        return None
    cutoff = as_of - timedelta(days=365)
    annual = sum(d["amount"] for d in dividends if d["ex_dividend_date"] >= cutoff)
    if annual <= 0:
        return None
    return annual / price * 100


def normalize_split(symbol: str, raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    execution = _parse_date(raw.get("execution_date"))
    if execution is None:
        return None
    return {
        "symbol": symbol,
        "execution_date": execution,
        "split_from": raw.get("split_from"),
        "split_to": raw.get("split_to"),
    }


def normalize_news(raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """News article -> NewsArticle fields plus a `tickers` list (not a column)."""
    article_id = raw.get("id")
    published = _parse_timestamp(raw.get("published_utc"))
    if not article_id or published is None:
        return None
    publisher = raw.get("publisher") or {}
    return {
        "id": article_id,
        "published_at": published,
        "title": raw.get("title") or "",
        "author": raw.get("author"),
        "article_url": raw.get("article_url"),
        "image_url": raw.get("image_url"),
        "description": raw.get("description"),
        "publisher": publisher.get("name"),
        "tickers": list(raw.get("tickers") or []),
    }


def normalize_details(symbol: str, raw: Dict[str, Any]) -> Dict[str, Any]:
    """Ticker details -> CompanyDetails fields."""
    address = raw.get("address") or {}
    address_line = ", ".join(
        p for p in (address.get("address1"), address.get("city"), address.get("state")) if p
    )
    branding = raw.get("branding") or {}
    return {
        "symbol": symbol,
        "name": raw.get("name"),
        "description": raw.get("description"),
        "homepage_url": raw.get("homepage_url"),
        "phone_number": raw.get("phone_number"),
        "address": address_line or None,
        "sic_code": raw.get("sic_code"),
        "sic_description": raw.get("sic_description"),
        "total_employees": raw.get("total_employees"),
        "list_date": _parse_date(raw.get("list_date")),
        "market_cap": raw.get("market_cap"),
        "shares_outstanding": raw.get("share_class_shares_outstanding"),
        "logo_url": branding.get("logo_url"),
    }


def week52_range(bars: Iterable[Dict[str, Any]]) -> Tuple[Optional[float], Optional[float]]:
    """
    (high, low) over the most recent 252 daily bars.

    Bars must be ordered oldest first and carry high/low (falling back to
    close). Returns (None, None) when there are no usable bars.
    """
    recent = list(bars)[-TRADING_DAYS_PER_YEAR:]
    highs = [b.get("high") or b.get("close") for b in recent]
    lows = [b.get("low") or b.get("close") for b in recent]
    highs = [h for h in highs if h]
    lows = [lo for lo in lows if lo]
    if not highs or not lows:
        return None, None
    return max(highs), min(lows)
