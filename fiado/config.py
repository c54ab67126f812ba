from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOCAL_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]


def normalize_db_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise RuntimeError("DATABASE_URL não configurada.")

    # Railway/Heroku: postgres://...
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg2://", 1)

    # postgresql://... (sem driver)
    if url.startswith("postgresql://") and "+psycopg2" not in url:
        url = url.replace("postgresql://", "postgresql+psycopg2://", 1)

    return url


class Settings(BaseSettings):
    DATABASE_URL: str

    # dia de vencimento usado quando a venda não define um
    DEFAULT_PAYMENT_DAY: int = Field(default=10, ge=1, le=31)

    LOG_LEVEL: str = "INFO"

    # só aplicado no PostgreSQL
    DB_STATEMENT_TIMEOUT_MS: int = 5000

    RECEIVABLES_CACHE_TTL_SECONDS: int = 30

    # lista separada por vírgula; FRONTEND_URLS tem prioridade
    FRONTEND_URLS: Optional[str] = None
    ALLOWED_ORIGINS: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    def __init__(self, **values):
        super().__init__(**values)
        self.DATABASE_URL = normalize_db_url(self.DATABASE_URL)

    def cors_origins(self) -> list[str]:
        raw = self.FRONTEND_URLS or self.ALLOWED_ORIGINS
        if not raw:
            return list(LOCAL_ORIGINS)
        return [o.strip() for o in raw.split(",") if o.strip()]


settings = Settings()
