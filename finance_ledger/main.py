# main.py
# Role: Application entry point for the finance ledger API.
#       Initializes the FastAPI app, configures logging, creates database tables,
#       seeds global categories, starts the recurring scheduler,
#       and registers all route modules and error handlers.

"""
Main FastAPI app for the finance ledger.

Here we only:
- create the FastAPI app (with a lifespan for startup / shutdown work)
- map domain errors to JSON responses
- include route modules

Run locally with:
    uvicorn finance_ledger.main:app --reload
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from finance_ledger import models  # noqa: F401  (registers tables on Base)
from finance_ledger.config import get_settings
from finance_ledger.db import Base, SessionLocal, engine
from finance_ledger.errors import DomainError, LedgerIntegrityError
from finance_ledger.logging_config import configure_logging
from finance_ledger.routes_accounts import router as accounts_router
from finance_ledger.routes_budgets import router as budgets_router
from finance_ledger.routes_categories import router as categories_router
from finance_ledger.routes_logs import router as logs_router
from finance_ledger.routes_recurring import router as recurring_router
from finance_ledger.routes_reports import router as reports_router
from finance_ledger.routes_root import router as root_router
from finance_ledger.routes_transactions import router as transactions_router
from finance_ledger.scheduler import recurring_loop
from finance_ledger.services.categories import seed_global_categories

logger = structlog.get_logger(__name__)


# -------------------------------------------------------------------
# Startup / shutdown
# -------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)

    # Create database tables (only if they don't exist yet)
    Base.metadata.create_all(bind=engine)

    if settings.seed_global_categories:
        db = SessionLocal()
        try:
            seed_global_categories(db)
        finally:
            db.close()

    scheduler_task = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(
            recurring_loop(SessionLocal, settings.recurring_run_hour)
        )

    logger.info("app_started", title=settings.app_title, scheduler=settings.scheduler_enabled)
    yield

    if scheduler_task is not None:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task
    logger.info("app_stopped")


# FastAPI application instance
app = FastAPI(title=get_settings().app_title, lifespan=lifespan)


# -------------------------------------------------------------------
# Error handlers
# -------------------------------------------------------------------

@app.exception_handler(LedgerIntegrityError)
async def ledger_integrity_handler(request: Request, exc: LedgerIntegrityError):
    logger.error("ledger_integrity_error", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    content = {"detail": exc.message}
    field = getattr(exc, "field", None)
    if field:
        content["field"] = field
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error("database_error", path=request.url.path, error=repr(exc))
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# -------------------------------------------------------------------
# Include routers
# -------------------------------------------------------------------

# Root / health
app.include_router(root_router)

# Accounts and the bank list
app.include_router(accounts_router)

# Category tree
app.include_router(categories_router)

# Ledger: income / expense / transfer
app.include_router(transactions_router)

# Recurring templates (posting runs in the scheduler)
app.include_router(recurring_router)

# Budgets and budget-vs-actual report
app.include_router(budgets_router)

# Summary, category breakdown, month comparison
app.include_router(reports_router)

# Audit trail
app.include_router(logs_router)


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run("finance_ledger.main:app", host="127.0.0.1", port=8000)
