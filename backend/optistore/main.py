"""
OptiStore backend: order persistence for the optical shop counter.

ARCHITECTURE:
- Order card (front desk terminals): builds items, discounts and advances
- FastAPI backend: reconciliation, order writes, customer history
- SQL store: source of truth; generates total_advance and balance

WRITE MODEL:
- No cross-table transaction: header -> items -> payment, each committed
- A failed later step is compensated; a failed compensation is CRITICAL
- Uniqueness of order/prescription/reference numbers is enforced by the store
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from optistore.api.routes import customer_history, identifiers, orders, prescriptions
from optistore.core.config import settings
from optistore.core.logging_config import configure_logging
from optistore.db.init_db import init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    1. Configure logging (root + audit)
    2. Initialize database tables
    """
    configure_logging()
    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized")
    yield
    logger.info("Shutting down")


app = FastAPI(
    title="OptiStore API",
    description="Order cards, payments and customer history for the optical counter.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "Accept", "Origin"],
    max_age=600,  # Cache preflight for 10 minutes
)

app.include_router(orders.router, prefix="/orders", tags=["orders"])
app.include_router(identifiers.router, prefix="/identifiers", tags=["identifiers"])
app.include_router(prescriptions.router, prefix="/prescriptions", tags=["prescriptions"])
app.include_router(customer_history.router, prefix="/customer-history", tags=["customer-history"])


@app.get("/health")
def health():
    return {"status": "ok", "environment": settings.ENVIRONMENT}
