import os
from functools import lru_cache
from typing import List, Optional


class Settings:
    def __init__(self) -> None:
        self.database_url: Optional[str] = os.getenv("DATABASE_URL") or None
        self.database_name: str = os.getenv("DATABASE_NAME", "marketplace")
        self.secret_key: str = os.getenv("SECRET_KEY", "supersecretkey")
        self.algorithm: str = "HS256"
        self.access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 24 * 60))
        self.db_connect_retries: int = int(os.getenv("DB_CONNECT_RETRIES", 3))
        self.db_retry_backoff_seconds: float = float(os.getenv("DB_RETRY_BACKOFF_SECONDS", 5))
        self.cors_origins: List[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
        self.port: int = int(os.getenv("PORT", 8000))


@lru_cache
def get_settings() -> Settings:
    return Settings()
