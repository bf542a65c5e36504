import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text

from vibecredits.api.endpoints import account, admin, cron
from vibecredits.core.database import Base, engine
from vibecredits.core.settings import settings
from vibecredits.models import credit_transaction, user  # noqa: F401
from vibecredits.services.cache import clear_balance_cache


logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("vibecredits")

app = FastAPI(title="VibePhoto Credits API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _ensure_user_columns() -> None:
    inspector = inspect(engine)
    if "users" not in inspector.get_table_names():
        return
    existing = {c["name"] for c in inspector.get_columns("users")}
    missing: list[tuple[str, str]] = []
    if "billing_cycle" not in existing:
        missing.append(("billing_cycle", "VARCHAR"))
    if "subscription_status" not in existing:
        missing.append(("subscription_status", "VARCHAR"))
    if "subscription_started_at" not in existing:
        missing.append(("subscription_started_at", "TIMESTAMP"))
    if "last_credit_renewal_at" not in existing:
        missing.append(("last_credit_renewal_at", "TIMESTAMP"))
    if "credits_balance" not in existing:
        missing.append(("credits_balance", "INTEGER NOT NULL DEFAULT 0"))

    if missing:
        with engine.begin() as conn:
            for col, col_type in missing:
                conn.execute(text(f"ALTER TABLE users ADD COLUMN {col} {col_type}"))
        logger.info("startup.schema.users_columns_added columns=%s", [c for c, _ in missing])


@app.on_event("startup")
def startup() -> None:
    if settings.is_production and not settings.jwt_secret:
        raise RuntimeError("JWT_SECRET must be set in production")
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)
        _ensure_user_columns()
    clear_balance_cache()
    logger.info("startup.ready environment=%s", settings.environment)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("request.unhandled_error method=%s path=%s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# API Routes
app.include_router(account.router, prefix="/api", tags=["credits"])
app.include_router(cron.router, prefix="/api", tags=["cron"])
app.include_router(admin.router, prefix="/api", tags=["admin"])


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
