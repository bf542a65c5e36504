import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_csv_set(name: str) -> set[str]:
    raw = _getenv(name)
    if raw is None:
        return set()
    parts = [p.strip().lower() for p in raw.split(",")]
    return {p for p in parts if p}


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./sql_app.db") or "sqlite:///./sql_app.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")

        self.jwt_secret = _getenv("JWT_SECRET")
        self.jwt_algorithm = _getenv("JWT_ALGORITHM", "HS256") or "HS256"
        self.jwt_audience = _getenv("JWT_AUDIENCE")
        self.jwt_issuer = _getenv("JWT_ISSUER")
        self.admin_emails = _getenv_csv_set("ADMIN_EMAILS")

        # Cron callers authenticate with "Authorization: Bearer <CRON_SECRET>".
        self.cron_secret = _getenv("CRON_SECRET")

        self.balance_cache_ttl_seconds = max(1, _getenv_int("BALANCE_CACHE_TTL_SECONDS", 60))
        self.balance_cache_max_items = max(1, _getenv_int("BALANCE_CACHE_MAX_ITEMS", 20000))
        self.transactions_default_page_size = max(1, _getenv_int("TRANSACTIONS_DEFAULT_PAGE_SIZE", 20))
        self.transactions_max_page_size = max(1, _getenv_int("TRANSACTIONS_MAX_PAGE_SIZE", 100))

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:3000", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
