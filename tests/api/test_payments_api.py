"""Tests for the payment endpoints."""

from decimal import Decimal

from billing.exceptions import NotFoundError
from billing.models import PageInfo, PaymentMethod, PaymentStats


class TestPayments:

    def test_list(self, client, billing, payment_factory):
        billing.list_payments.return_value = ([payment_factory()], PageInfo(page=1, limit=20, total=1, total_pages=1))

        response = client.get("/api/payments", params={"method": "cash", "sort_by": "amount"})

        assert response.status_code == 200
        assert response.json()["meta"]["pagination"]["total"] == 1
        filters, page, limit, sort_by, sort_order = billing.list_payments.call_args.args
        assert filters.method == PaymentMethod.CASH
        assert (page, limit, sort_by, sort_order) == (1, None, "amount", "desc")

    def test_list_inverted_dates(self, client, billing):
        response = client.get("/api/payments", params={"start_date": "2026-03-02", "end_date": "2026-03-01"})

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_get(self, client, billing, payment_factory):
        billing.get_payment.return_value = payment_factory()

        response = client.get("/api/payments/50")

        assert response.json()["data"]["id"] == 50

    def test_get_missing(self, client, billing):
        billing.get_payment.side_effect = NotFoundError("Payment 9 not found")

        response = client.get("/api/payments/9")

        assert response.status_code == 404

    def test_stats_route_not_shadowed(self, client, billing):
        billing.payment_stats.return_value = PaymentStats(
            total_payments=2, total_revenue=Decimal("100.00"),
            revenue_by_method={"cash": Decimal("100.00")},
            revenue_today=Decimal("0.00"), revenue_last_7_days=Decimal("100.00"),
            revenue_this_month=Decimal("100.00"), pending_payments=0, failed_payments=0,
        )

        response = client.get("/api/payments/stats")

        assert response.status_code == 200
        assert response.json()["data"]["revenue_by_method"] == {"cash": "100.00"}
        billing.get_payment.assert_not_called()
