from datetime import date, datetime

import pytest

from billing.core.exceptions import ValidationError
from billing.services import invoice_service, order_service
from billing.services.report_service import DashboardService, TimeRange, resolve_time_range


def _invoice(db, client, total_cents, issue_date):
    invoice = invoice_service.create_standalone(
        db,
        client_id=client.id,
        items=[{"name": "Service", "unit_price_cents": total_cents, "qty": 1}],
        issue_date=issue_date,
    )
    return invoice_service.issue_invoice(db, invoice.id)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("month", TimeRange(date(2026, 5, 1), date(2026, 5, 20))),
        ("quarter", TimeRange(date(2026, 4, 1), date(2026, 5, 20))),
        ("year", TimeRange(date(2026, 1, 1), date(2026, 5, 20))),
        ("all", TimeRange()),
    ],
)
def test_resolve_time_range(name, expected):
    assert resolve_time_range(name, today=date(2026, 5, 20)) == expected


def test_unknown_range_name():
    with pytest.raises(ValidationError):
        resolve_time_range("decade")


def test_inverted_range_rejected():
    with pytest.raises(ValidationError):
        TimeRange(date(2026, 2, 1), date(2026, 1, 1))


def test_empty_dashboard(db):
    data = DashboardService(db).get_dashboard("all")
    assert data["total_orders_month"] == 0
    assert data["total_invoices_month"] == 0
    assert data["payments_collected_month_cents"] == 0
    assert data["outstanding_invoices_count"] == 0
    assert data["revenue_by_month"] == []
    assert data["top_clients"] == []


def test_dashboard_rollups(db, make_client, products):
    alice = make_client("Alice")
    bob = make_client("Bob")
    carol = make_client("Carol")

    order_service.create_order(
        db, client_id=alice.id, items=[{"product_id": products[0].id, "qty": 1}], issue_date=date(2026, 3, 5)
    )
    order_service.create_order(
        db, client_id=alice.id, items=[{"product_id": products[1].id, "qty": 1}], issue_date=date(2026, 4, 5)
    )
    # Outside the range below
    order_service.create_order(
        db, client_id=bob.id, items=[{"product_id": products[1].id, "qty": 1}], issue_date=date(2025, 12, 30)
    )

    inv_a = _invoice(db, alice, 1000, date(2026, 3, 1))
    inv_b = _invoice(db, bob, 1000, date(2026, 3, 2))
    inv_c = _invoice(db, carol, 500, date(2026, 4, 2))

    invoice_service.record_payment(db, inv_a.id, 300, paid_at=datetime(2026, 3, 10, 12, 0))
    invoice_service.record_payment(db, inv_b.id, 1000, paid_at=datetime(2026, 3, 31, 23, 59))
    invoice_service.record_payment(db, inv_c.id, 300, paid_at=datetime(2026, 4, 1, 0, 0))
    outside = invoice_service.record_payment(db, inv_c.id, 100, paid_at=datetime(2026, 6, 1, 8, 0))
    assert outside.amount_cents == 100

    data = DashboardService(db).get_dashboard(TimeRange(date(2026, 1, 1), date(2026, 4, 30)))

    assert data["total_orders_month"] == 2
    assert data["total_invoices_month"] == 3
    assert data["payments_collected_month_cents"] == 1600
    # inv_a (700 left) and inv_c (100 left); inv_b is paid
    assert data["outstanding_invoices_count"] == 2
    assert data["revenue_by_month"] == [
        {"month": "2026-03", "revenue_cents": 1300},
        {"month": "2026-04", "revenue_cents": 300},
    ]
    assert data["top_clients"] == [
        {"id": bob.id, "name": "Bob", "order_count": 0, "total_paid_cents": 1000},
        {"id": alice.id, "name": "Alice", "order_count": 2, "total_paid_cents": 300},
        {"id": carol.id, "name": "Carol", "order_count": 0, "total_paid_cents": 300},
    ]


def test_reversals_reduce_revenue(db, client):
    invoice = _invoice(db, client, 1000, date(2026, 2, 1))
    payment = invoice_service.record_payment(db, invoice.id, 1000, paid_at=datetime(2026, 2, 3))
    invoice_service.reverse_payment(db, payment.id)

    data = DashboardService(db).get_dashboard("all")

    assert data["payments_collected_month_cents"] == 0
    assert data["outstanding_invoices_count"] == 1
    assert data["top_clients"][0]["total_paid_cents"] == 0


def test_top_clients_limit(db, make_client):
    service = DashboardService(db)
    for i in range(7):
        c = make_client(f"Client {i}")
        inv = _invoice(db, c, 1000, date(2026, 1, 1))
        invoice_service.record_payment(db, inv.id, 100 * (i % 3 + 1), paid_at=datetime(2026, 1, 2))

    top = service.top_clients(TimeRange(), limit=5)

    assert len(top) == 5
    paid = [row["total_paid_cents"] for row in top]
    assert paid == sorted(paid, reverse=True)
    # ties broken by ascending id
    for a, b in zip(top, top[1:]):
        if a["total_paid_cents"] == b["total_paid_cents"]:
            assert a["id"] < b["id"]
