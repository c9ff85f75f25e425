from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized application configuration."""

    app_name: str = "MAS Hedging"
    app_version: str = "2.0.0"
    environment: str = "dev"
    debug: bool = False
    api_prefix: str = "/api"

    # Data paths
    data_dir: Path = Path("./data")
    sqlite_path: Path = Path("./data/mas_hedging.db")

    # Security / Auth
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 24 * 60
    reset_token_expire_minutes: int = 60
    allowed_origins: List[str] = ["*"]
    default_admin_email: str = "admin@mashedging.com"
    default_admin_password: str = "admin123!"

    # Logging
    log_level: str = "INFO"

    # Market feed
    market_feed_mode: str = "simulated"  # simulated | live
    market_seed: Optional[int] = None
    market_cache_ttl_sec: float = 30.0
    market_freshness_minutes: int = 60
    market_max_move_pct: float = 2.0
    live_feed_url: str = "https://api.metals.live/v1/spot"
    live_feed_api_key: str = ""
    live_feed_timeout_sec: float = 10.0

    # Trading rules
    price_band_pct: float = 0.10
    var_pct: float = 0.05
    volatility_window_days: int = 30
    position_limits: Dict[str, int] = {"basic": 5, "pro": 25, "enterprise": 1000}

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    def ensure_dirs(self) -> None:
        """Create required local directories."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.sqlite_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    settings.ensure_dirs()
    return settings
