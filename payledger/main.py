"""
The payledger ASGI app.

  - lifespan: logging, tables, and the LedgerEngine on app.state
  - CORS for the marketplace frontends
  - LedgerError -> JSON error responses
  - member, ledger, admin and webhook routers, plus /health

Serve with:
    uvicorn payledger.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payledger.config import settings
from payledger.database import Base, engine
from payledger.engine import build_engine
from payledger.exceptions import register_exception_handlers
from payledger.logging_config import setup_logging
from payledger.routers import (
    admin,
    balances,
    ledger,
    payment_methods,
    webhooks,
    withdrawals,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Configure logging, create missing tables (production schemas come from
    migrations) and build the LedgerEngine handlers get through get_engine.
    The database engine is disposed on the way out.
    """
    # --- Startup ---
    setup_logging(settings.LOG_LEVEL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    app.state.engine = build_engine()
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    # --- Shutdown ---
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Payment ledger and settlement engine for the booking marketplace",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(balances.router, tags=["Balances"])
app.include_router(withdrawals.router, prefix="/withdrawals", tags=["Withdrawals"])
app.include_router(payment_methods.router, prefix="/payment-methods", tags=["Payment Methods"])
app.include_router(ledger.router, prefix="/ledger", tags=["Ledger"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Liveness probe for load balancers and orchestrators."""
    return {"status": "ok", "version": settings.APP_VERSION}
