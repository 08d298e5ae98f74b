import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from budget_ledger import __version__
from budget_ledger.config import get_settings
from budget_ledger.errors import LedgerError

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: create tables for local runs; production uses alembic
    if settings.AUTO_CREATE_TABLES:
        from budget_ledger.database import Base, engine
        import budget_ledger.models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Tables created (AUTO_CREATE_TABLES=true).")
    yield


app = FastAPI(
    title=settings.APP_NAME,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get(f"{settings.API_PREFIX}/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

from budget_ledger.routers import balances  # noqa: E402

app.include_router(balances.router, prefix=f"{settings.API_PREFIX}/balances", tags=["Balances"])

from budget_ledger.routers import allocations  # noqa: E402

app.include_router(
    allocations.router,
    prefix=f"{settings.API_PREFIX}/allocations",
    tags=["Allocations"],
)

# Request workflow
from budget_ledger.routers import requests  # noqa: E402

app.include_router(
    requests.router,
    prefix=f"{settings.API_PREFIX}/requests",
    tags=["Requests"],
)

# History, wallet and expenses
from budget_ledger.routers import transactions  # noqa: E402

app.include_router(
    transactions.router,
    prefix=f"{settings.API_PREFIX}/transactions",
    tags=["Transactions"],
)

# Reporting (JSON + Excel + PDF)
from budget_ledger.routers import reports  # noqa: E402

app.include_router(
    reports.router,
    prefix=f"{settings.API_PREFIX}/reports",
    tags=["Reports"],
)

# Membership sync hook
from budget_ledger.routers import memberships  # noqa: E402

app.include_router(
    memberships.router,
    prefix=f"{settings.API_PREFIX}/memberships",
    tags=["Memberships"],
)
