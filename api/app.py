"""FastAPI application factory for the billing ledger."""

import logging

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.invoices import create_invoices_router
from api.middleware import ActingUserMiddleware, RequestIDMiddleware
from api.payments import create_payments_router
from billing.audit import AuditLogger
from billing.config import BillingConfig
from billing.event_bus import EventBus
from billing.services.billing_service import BillingService
from clients.postgres_client import PostgresClient
from clients.vault_client import get_database_url

logger = logging.getLogger(__name__)


def build_billing_service(
    database_url: str | None = None,
    config: BillingConfig | None = None,
    event_bus: EventBus | None = None,
) -> BillingService:
    """Wire the billing service against PostgreSQL. The URL comes from Vault unless given."""
    postgres = PostgresClient(database_url or get_database_url())
    return BillingService(
        postgres,
        AuditLogger(postgres),
        event_bus or EventBus(),
        config=config,
    )


def create_app(billing: BillingService) -> FastAPI:
    """App with request ids, acting-user context, error handlers and billing routes."""
    app = FastAPI(title="Clinic Billing Ledger")

    # Last added runs first: request id is assigned before the acting user is read
    app.add_middleware(ActingUserMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_invoices_router(billing), prefix="/api")
    app.include_router(create_payments_router(billing), prefix="/api")

    logger.info("Billing API ready")
    return app
