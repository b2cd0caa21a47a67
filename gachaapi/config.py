from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file="gachaapi/.env",
        env_file_encoding="utf-8",
        extra="allow",
    )
    # Application
    APP_NAME: str = "Gacha Draw API"
    PROJECT_NAME: str = "Gacha Draw API"
    API_V1_STR: str = "/api/v1"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    # CRITICAL 보상 실패 알림을 별도 파일로 남길 경로 (미설정 시 stderr만)
    RECONCILIATION_LOG_FILE: Optional[str] = None

    # Database
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USERNAME: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DATABASE: str = "gacha"
    POSTGRES_SCHEMA: str = "public"

    # Full URL override (e.g. sqlite for local runs); built from POSTGRES_* otherwise
    DATABASE_URL: Optional[str] = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    @property
    def database_url(self) -> str:
        """Construct database URL from individual components"""
        if self.DATABASE_URL:
            return self.DATABASE_URL

        # URL encode the password to handle special characters
        encoded_password = quote_plus(self.POSTGRES_PASSWORD)
        return f"postgresql+psycopg2://{self.POSTGRES_USERNAME}:{encoded_password}@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DATABASE}"

    # Redis (idempotency cache)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_ENABLED: bool = True
    IDEMPOTENCY_TTL_SECONDS: int = 86400  # 24h for ledger-affecting operations

    # External collaborators
    PAYMENT_API_BASE_URL: str = "http://localhost:8081"
    PAYMENT_API_KEY: str = ""
    PAYMENT_TIMEOUT_SECONDS: float = 1.0
    REWARD_API_BASE_URL: str = "http://localhost:8082"
    REWARD_API_KEY: str = ""
    REWARD_TIMEOUT_SECONDS: float = 0.5

    # Draw rules
    MAX_DRAW_COUNT: int = 10
    PITY_THRESHOLD: int = 50
    DRAW_LATENCY_BUDGET_SECONDS: float = 3.0  # 10연차 기준 목표 응답 시간

    # Ledger
    INTEGRITY_EPSILON: float = 0.01


settings = Settings()
