from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    massive_api_key: str = ""
    massive_base_url: str = "https://api.polygon.io"
    database_url: str = "sqlite:///./screener.db"
    redis_url: str = ""  # empty: in-process cache only
    analyst_base_url: str = "https://query2.finance.yahoo.com"  # empty: no analyst targets

    # upstream client
    rate_limit_capacity: int = 100
    rate_limit_per_second: float = 5.0
    breaker_failure_threshold: int = 5
    breaker_reset_seconds: float = 60.0
    client_retries: int = 3
    client_backoff_base: float = 0.5
    client_timeout_seconds: float = 30.0

    # analyst target source (separate limiter and breaker)
    analyst_rate_limit_capacity: int = 5
    analyst_rate_limit_per_second: float = 2.0

    # sync + screener
    lock_ttl_seconds: int = 300
    store_reprobe_seconds: int = 300  # 0: stay on-demand for the process lifetime
    screener_max_candidates: int = 100
    memory_cache_size: int = 2048

    # schedule (market timezone)
    sync_timezone: str = "America/New_York"
    daily_sync_hour: int = 16
    daily_sync_minute: int = 30
    fundamentals_sync_hour: int = 2
    news_interval_minutes: int = 15

    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
