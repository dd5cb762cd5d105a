import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        default_currency: str,
        country: str,
        anthropic_api_key: Optional[str],
        anthropic_model: str,
        anthropic_timeout_secs: float,
        share_secret: str,
        share_base_url: str,
        metrics_cache_max_size: int,
        metrics_cache_ttl_secs: float,
        simulation_iterations: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.default_currency = default_currency
        self.country = country
        self.anthropic_api_key = anthropic_api_key
        self.anthropic_model = anthropic_model
        self.anthropic_timeout_secs = anthropic_timeout_secs
        self.share_secret = share_secret
        self.share_base_url = share_base_url
        self.metrics_cache_max_size = metrics_cache_max_size
        self.metrics_cache_ttl_secs = metrics_cache_ttl_secs
        self.simulation_iterations = simulation_iterations
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("IKPA_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ikpa.db"
    database_url = os.getenv("IKPA_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("IKPA_TIMEZONE", "Africa/Lagos")
    default_currency = os.getenv("IKPA_DEFAULT_CURRENCY", "NGN").upper()
    country = os.getenv("IKPA_COUNTRY", "NIGERIA").upper()
    anthropic_api_key = os.getenv("ANTHROPIC_API_KEY") or None
    anthropic_model = os.getenv("IKPA_ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
    anthropic_timeout_secs = float(os.getenv("IKPA_ANTHROPIC_TIMEOUT_SECS", "30"))
    share_secret = os.getenv(
        "IKPA_SHARE_SECRET",
        "3f9d0c2b7a41e85f6d1c9b0a2e4f7d6c8b5a3e1f0d9c7b6a5e4d3c2b1a0f9e8d",
    )
    share_base_url = os.getenv("IKPA_SHARE_BASE_URL", "https://ikpa.app/share").rstrip("/")
    metrics_cache_max_size = int(os.getenv("METRICS_LOCAL_CACHE_MAX_SIZE", "1000"))
    metrics_cache_ttl_secs = float(os.getenv("METRICS_LOCAL_CACHE_TTL", "60"))
    simulation_iterations = int(os.getenv("IKPA_SIMULATION_ITERATIONS", "10000"))
    log_level = os.getenv("IKPA_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        default_currency=default_currency,
        country=country,
        anthropic_api_key=anthropic_api_key,
        anthropic_model=anthropic_model,
        anthropic_timeout_secs=anthropic_timeout_secs,
        share_secret=share_secret,
        share_base_url=share_base_url,
        metrics_cache_max_size=metrics_cache_max_size,
        metrics_cache_ttl_secs=metrics_cache_ttl_secs,
        simulation_iterations=simulation_iterations,
        log_level=log_level,
    )
