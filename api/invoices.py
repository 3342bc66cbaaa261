"""Invoice endpoints: creation, reads, item edits, payments and status."""

from datetime import date

from fastapi import APIRouter, Body, Query, Request

from api.base import success_response
from billing.models import (
    InvoiceCreate, InvoiceFilters, InvoiceItemCreate, InvoiceItemUpdate,
    InvoiceStatus, InvoiceType, PaymentCreate,
)
from billing.services.billing_service import BillingService


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def create_invoices_router(billing: BillingService) -> APIRouter:
    router = APIRouter()

    # -------------------------------------------------------------------------
    # Fixed paths (registered before /invoices/{invoice_id})
    # -------------------------------------------------------------------------

    @router.get("/invoices/overdue")
    def list_overdue(request: Request, limit: int | None = Query(None, ge=1)):
        invoices = billing.list_overdue(limit)
        return success_response(
            [invoice.model_dump(mode="json") for invoice in invoices],
            _request_id(request),
        ).model_dump(mode="json")

    @router.get("/invoices/stats")
    def invoice_stats(request: Request, party_id: int | None = Query(None)):
        stats = billing.invoice_stats(party_id)
        return success_response(stats.model_dump(mode="json"), _request_id(request)).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Collection
    # -------------------------------------------------------------------------

    @router.post("/invoices", status_code=201)
    def create_invoice(request: Request, body: InvoiceCreate):
        invoice = billing.create_invoice(body)
        return success_response(invoice.model_dump(mode="json"), _request_id(request)).model_dump(mode="json")

    @router.get("/invoices")
    def list_invoices(
        request: Request,
        party_id: int | None = Query(None),
        status: InvoiceStatus | None = Query(None),
        invoice_type: InvoiceType | None = Query(None),
        start_date: date | None = Query(None),
        end_date: date | None = Query(None),
        page: int = Query(1, ge=1),
        limit: int | None = Query(None, ge=1),
        sort_by: str = Query("created_at"),
        sort_order: str = Query("desc"),
        reconcile_status: bool = Query(False),
    ):
        filters = InvoiceFilters(
            party_id=party_id,
            status=status,
            invoice_type=invoice_type,
            start_date=start_date,
            end_date=end_date,
        )
        result = billing.list_invoices(
            filters,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
            reconcile_status=reconcile_status,
        )
        return success_response(
            [invoice.model_dump(mode="json") for invoice in result.invoices],
            _request_id(request),
            pagination=result.pagination.model_dump(),
        ).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Single invoice
    # -------------------------------------------------------------------------

    @router.get("/invoices/{invoice_id}")
    def get_invoice(request: Request, invoice_id: int):
        invoice = billing.get_invoice(invoice_id)
        return success_response(invoice.model_dump(mode="json"), _request_id(request)).model_dump(mode="json")

    @router.patch("/invoices/{invoice_id}")
    def update_invoice(request: Request, invoice_id: int, body: dict = Body(...)):
        invoice = billing.update_invoice(invoice_id, body)
        return success_response(invoice.model_dump(mode="json"), _request_id(request)).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/recompute-status")
    def recompute_status(request: Request, invoice_id: int):
        status = billing.recompute_status(invoice_id)
        return success_response(
            {"invoice_id": invoice_id, "status": status.value},
            _request_id(request),
        ).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    @router.post("/invoices/{invoice_id}/items", status_code=201)
    def add_item(request: Request, invoice_id: int, body: InvoiceItemCreate):
        invoice = billing.add_item(invoice_id, body)
        return success_response(invoice.model_dump(mode="json"), _request_id(request)).model_dump(mode="json")

    @router.patch("/invoices/{invoice_id}/items/{item_id}")
    def update_item(request: Request, invoice_id: int, item_id: int, body: InvoiceItemUpdate):
        invoice = billing.update_item(invoice_id, item_id, body)
        return success_response(invoice.model_dump(mode="json"), _request_id(request)).model_dump(mode="json")

    @router.delete("/invoices/{invoice_id}/items/{item_id}")
    def remove_item(request: Request, invoice_id: int, item_id: int):
        invoice = billing.remove_item(invoice_id, item_id)
        return success_response(invoice.model_dump(mode="json"), _request_id(request)).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Payments on an invoice
    # -------------------------------------------------------------------------

    @router.post("/invoices/{invoice_id}/payments", status_code=201)
    def record_payment(request: Request, invoice_id: int, body: PaymentCreate):
        payment = billing.record_payment(invoice_id, body)
        return success_response(payment.model_dump(mode="json"), _request_id(request)).model_dump(mode="json")

    @router.get("/invoices/{invoice_id}/payments")
    def list_invoice_payments(request: Request, invoice_id: int):
        payments = billing.list_payments_for_invoice(invoice_id)
        return success_response(
            [payment.model_dump(mode="json") for payment in payments],
            _request_id(request),
        ).model_dump(mode="json")

    return router
