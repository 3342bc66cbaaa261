"""Payment endpoints across invoices."""

from datetime import date

from fastapi import APIRouter, Query, Request

from api.base import success_response
from billing.models import PaymentFilters, PaymentMethod, PaymentStatus
from billing.services.billing_service import BillingService


def create_payments_router(billing: BillingService) -> APIRouter:
    router = APIRouter()

    @router.get("/payments/stats")
    def payment_stats(request: Request):
        stats = billing.payment_stats()
        return success_response(
            stats.model_dump(mode="json"),
            getattr(request.state, "request_id", None),
        ).model_dump(mode="json")

    @router.get("/payments")
    def list_payments(
        request: Request,
        invoice_id: int | None = Query(None),
        party_id: int | None = Query(None),
        method: PaymentMethod | None = Query(None),
        status: PaymentStatus | None = Query(None),
        start_date: date | None = Query(None),
        end_date: date | None = Query(None),
        page: int = Query(1, ge=1),
        limit: int | None = Query(None, ge=1),
        sort_by: str = Query("paid_at"),
        sort_order: str = Query("desc"),
    ):
        filters = PaymentFilters(
            invoice_id=invoice_id,
            party_id=party_id,
            method=method,
            status=status,
            start_date=start_date,
            end_date=end_date,
        )
        payments, info = billing.list_payments(filters, page, limit, sort_by, sort_order)
        return success_response(
            [payment.model_dump(mode="json") for payment in payments],
            getattr(request.state, "request_id", None),
            pagination=info.model_dump(),
        ).model_dump(mode="json")

    @router.get("/payments/{payment_id}")
    def get_payment(request: Request, payment_id: int):
        payment = billing.get_payment(payment_id)
        return success_response(
            payment.model_dump(mode="json"),
            getattr(request.state, "request_id", None),
        ).model_dump(mode="json")

    return router
