"""
Market data tables.

latest_snapshot is the denormalized, one-row-per-symbol table the screener
queries. Every other table keeps history keyed by a natural key so sync
writes can be idempotent upserts.
"""
from datetime import date, datetime
from typing import Optional

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from screener.models.sync import utcnow


class LatestSnapshot(SQLModel, table=True):
    __tablename__ = "latest_snapshot"

    symbol: str = Field(primary_key=True)
    name: Optional[str] = None
    logo_url: Optional[str] = None

    # Price data
    price: float
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    volume: float = Field(default=0, index=True)
    vwap: Optional[float] = None
    change_percent: Optional[float] = None

    # Technical indicators
    rsi14: Optional[float] = None
    sma20: Optional[float] = None
    sma50: Optional[float] = None
    sma200: Optional[float] = None
    ema12: Optional[float] = None
    ema26: Optional[float] = None
    macd_value: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None

    # Fundamentals
    market_cap: Optional[float] = None
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    dividend_yield: Optional[float] = None
    gross_margin: Optional[float] = None
    debt_to_equity: Optional[float] = None
    revenue_growth_yoy: Optional[float] = None
    eps_growth_yoy: Optional[float] = None
    week52_high: Optional[float] = None
    week52_low: Optional[float] = None
    target_mean_price: Optional[float] = None

    data_date: Optional[date] = None
    financials_last_sync: Optional[datetime] = Field(default=None, sa_type=DateTime)
    ratios_last_sync: Optional[datetime] = Field(default=None, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class DailyPrice(SQLModel, table=True):
    __tablename__ = "daily_price"
    __table_args__ = (UniqueConstraint("symbol", "trade_date", name="uq_daily_price_symbol_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    trade_date: date
    open: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    close: float
    volume: float = 0
    vwap: Optional[float] = None
    transactions: Optional[int] = None


class DailyIndicator(SQLModel, table=True):
    __tablename__ = "daily_indicator"
    __table_args__ = (UniqueConstraint("symbol", "trade_date", name="uq_daily_indicator_symbol_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    trade_date: date
    rsi14: Optional[float] = None
    sma20: Optional[float] = None
    sma50: Optional[float] = None
    sma200: Optional[float] = None
    ema12: Optional[float] = None
    ema26: Optional[float] = None
    macd_value: Optional[float] = None
    macd_signal: Optional[float] = None
    macd_histogram: Optional[float] = None


class FinancialStatement(SQLModel, table=True):
    __tablename__ = "financial_statement"
    __table_args__ = (
        UniqueConstraint(
            "symbol", "statement_type", "timeframe", "fiscal_year", "fiscal_quarter",
            name="uq_financial_statement_period",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    statement_type: str  # "income", "balance", "cashflow"
    timeframe: str  # "quarterly", "annual", "ttm"
    fiscal_year: int
    fiscal_quarter: int
    period_end: Optional[date] = None
    filing_date: Optional[date] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    eps: Optional[float] = None
    total_assets: Optional[float] = None
    total_liabilities: Optional[float] = None
    operating_cash_flow: Optional[float] = None


class FinancialRatio(SQLModel, table=True):
    __tablename__ = "financial_ratio"

    symbol: str = Field(primary_key=True)
    pe_ratio: Optional[float] = None
    pb_ratio: Optional[float] = None
    ps_ratio: Optional[float] = None
    ev_to_ebitda: Optional[float] = None
    peg_ratio: Optional[float] = None
    gross_margin: Optional[float] = None
    operating_margin: Optional[float] = None
    net_margin: Optional[float] = None
    roe: Optional[float] = None
    roa: Optional[float] = None
    current_ratio: Optional[float] = None
    quick_ratio: Optional[float] = None
    debt_to_equity: Optional[float] = None
    target_mean_price: Optional[float] = None
    target_high_price: Optional[float] = None
    target_low_price: Optional[float] = None
    analyst_count: Optional[int] = None
    recommendation_key: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Dividend(SQLModel, table=True):
    __tablename__ = "dividend"
    __table_args__ = (UniqueConstraint("symbol", "ex_dividend_date", name="uq_dividend_symbol_exdate"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    ex_dividend_date: date
    pay_date: Optional[date] = None
    record_date: Optional[date] = None
    declaration_date: Optional[date] = None
    amount: float
    frequency: Optional[int] = None
    dividend_type: Optional[str] = None


class StockSplit(SQLModel, table=True):
    __tablename__ = "stock_split"
    __table_args__ = (UniqueConstraint("symbol", "execution_date", name="uq_stock_split_symbol_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    symbol: str = Field(index=True)
    execution_date: date
    split_from: Optional[float] = None
    split_to: Optional[float] = None


class NewsArticle(SQLModel, table=True):
    __tablename__ = "news_article"

    id: str = Field(primary_key=True)
    published_at: datetime = Field(index=True, sa_type=DateTime)
    title: str
    author: Optional[str] = None
    article_url: Optional[str] = None
    image_url: Optional[str] = None
    description: Optional[str] = None
    publisher: Optional[str] = None


class NewsTicker(SQLModel, table=True):
    __tablename__ = "news_ticker"
    __table_args__ = (UniqueConstraint("article_id", "symbol", name="uq_news_ticker"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    article_id: str = Field(foreign_key="news_article.id", index=True)
    symbol: str = Field(index=True)


class CompanyDetails(SQLModel, table=True):
    __tablename__ = "company_details"

    symbol: str = Field(primary_key=True)
    name: Optional[str] = None
    description: Optional[str] = None
    homepage_url: Optional[str] = None
    phone_number: Optional[str] = None
    address: Optional[str] = None
    sic_code: Optional[str] = None
    sic_description: Optional[str] = None
    total_employees: Optional[int] = None
    list_date: Optional[date] = None
    market_cap: Optional[float] = None
    shares_outstanding: Optional[float] = None
    logo_url: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
