import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_CORS_ORIGINS = [
    "https://clouddept.io",
    "https://www.clouddept.io",
    "https://analytics.clouddept.io",
    "http://localhost:3000"
]


class Settings:
    """Runtime configuration read from the environment (and .env files)"""

    def __init__(
        self,
        database_url: Optional[str] = None,
        cors_origins: Optional[List[str]] = None,
        environment: Optional[str] = None,
        log_level: Optional[str] = None,
        geoip_provider: Optional[str] = None,
        geoip_db_path: Optional[str] = None,
        geoip_api_url: Optional[str] = None,
        geoip_timeout: Optional[float] = None,
    ):
        self.database_url = database_url or os.getenv("DATABASE_URL", "sqlite:///./analytics.db")
        self.cors_origins = cors_origins if cors_origins is not None else _parse_origins(os.getenv("CORS_ORIGINS"))
        self.environment = (environment or os.getenv("ENVIRONMENT", "production")).lower()
        self.log_level = (log_level or os.getenv("LOG_LEVEL", "INFO")).upper()
        self.geoip_provider = (geoip_provider or os.getenv("GEOIP_PROVIDER", "maxmind")).lower()
        self.geoip_db_path = geoip_db_path or os.getenv("GEOIP_DB_PATH", "./GeoLite2-City.mmdb")
        self.geoip_api_url = geoip_api_url or os.getenv("GEOIP_API_URL", "http://ip-api.com/json")
        self.geoip_timeout = geoip_timeout if geoip_timeout is not None else float(os.getenv("GEOIP_TIMEOUT", "3"))

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _parse_origins(value: Optional[str]) -> List[str]:
    if not value:
        return list(DEFAULT_CORS_ORIGINS)
    return [origin.strip() for origin in value.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    return Settings()
