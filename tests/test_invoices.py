from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest

from billing.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from billing.models.client import DebtAdjustmentType
from billing.models.invoice import InvoiceStatus, PaymentMethod
from billing.services import invoice_service, order_service
from billing.services.debt_ledger import DebtLedgerService


def _issued_standalone(db, client, total_cents=1000, **kwargs):
    invoice = invoice_service.create_standalone(
        db,
        client_id=client.id,
        items=[{"name": "Consulting", "unit_price_cents": total_cents, "qty": 1}],
        **kwargs,
    )
    return invoice_service.issue_invoice(db, invoice.id)


def _confirmed_order(db, client, products):
    widget, gadget = products
    order = order_service.create_order(
        db,
        client_id=client.id,
        items=[{"product_id": widget.id, "qty": 2}, {"product_id": gadget.id, "qty": 1}],
        discount_percent=10,
        tax_percent=5,
    )
    return order_service.confirm_order(db, order.id)


def _assert_balance_invariant(invoice):
    assert invoice.balance_cents == invoice.total_cents - sum(p.amount_cents for p in invoice.payments)
    if invoice.balance_cents == 0 and invoice.status != InvoiceStatus.draft:
        assert invoice.status == InvoiceStatus.paid


class TestGenerateFromOrder:
    def test_copies_lines_and_totals(self, db, client, products):
        order = _confirmed_order(db, client, products)

        invoice = invoice_service.generate_from_order(db, order.id)

        assert invoice.status == InvoiceStatus.draft
        assert invoice.invoice_number.startswith("INV-")
        assert invoice.order_id == order.id
        assert invoice.total_cents == 2363
        assert invoice.balance_cents == 2363
        assert [(i.name_snapshot, i.qty, i.total_cents) for i in invoice.items] == [
            (i.name_snapshot, i.qty, i.total_cents) for i in order.items
        ]

    def test_second_generation_conflicts(self, db, client, products):
        order = _confirmed_order(db, client, products)
        invoice_service.generate_from_order(db, order.id)

        with pytest.raises(ConflictError):
            invoice_service.generate_from_order(db, order.id)

    def test_draft_order_cannot_be_invoiced(self, db, client, products):
        order = order_service.create_order(db, client_id=client.id, items=[{"product_id": products[0].id, "qty": 1}])
        with pytest.raises(InvalidStateError):
            invoice_service.generate_from_order(db, order.id)

    def test_unknown_order(self, db):
        with pytest.raises(NotFoundError):
            invoice_service.generate_from_order(db, 404)

    def test_order_invoice_does_not_charge_again(self, db, client, products):
        order = _confirmed_order(db, client, products)
        invoice = invoice_service.generate_from_order(db, order.id)
        invoice_service.issue_invoice(db, invoice.id)

        db.refresh(client)
        assert client.debt_cents == 2363

    def test_later_order_edit_does_not_reach_invoice(self, db, client, products):
        order = _confirmed_order(db, client, products)
        invoice = invoice_service.generate_from_order(db, order.id)

        order_service.add_item(db, order.id, qty=5, product_id=products[1].id)

        invoice = invoice_service.get_invoice(db, invoice.id)
        assert invoice.total_cents == 2363
        assert len(invoice.items) == 2


class TestStandalone:
    def test_create_draft(self, db, client, products):
        invoice = invoice_service.create_standalone(
            db,
            client_id=client.id,
            items=[{"product_id": products[0].id, "qty": 3}],
            tax_percent=10,
        )
        assert invoice.status == InvoiceStatus.draft
        assert invoice.order_id is None
        assert invoice.subtotal_cents == 3000
        assert invoice.total_cents == 3300

    def test_requires_items(self, db, client):
        with pytest.raises(ValidationError):
            invoice_service.create_standalone(db, client_id=client.id, items=[])

    def test_issue_charges_client_debt(self, db, client):
        _issued_standalone(db, client, 1500)
        db.refresh(client)
        assert client.debt_cents == 1500
        assert DebtLedgerService(db).last_adjustment(client.id).type == DebtAdjustmentType.invoice_charge

    def test_update_draft(self, db, client):
        invoice = invoice_service.create_standalone(
            db, client_id=client.id, items=[{"name": "A", "unit_price_cents": 100, "qty": 1}]
        )
        invoice = invoice_service.update_draft_invoice(
            db,
            invoice.id,
            notes="revised",
            items=[{"name": "B", "unit_price_cents": 250, "qty": 2}],
        )
        assert invoice.notes == "revised"
        assert invoice.total_cents == 500
        assert [i.name_snapshot for i in invoice.items] == ["B"]

    def test_issued_invoice_cannot_be_edited(self, db, client):
        invoice = _issued_standalone(db, client)
        with pytest.raises(InvalidStateError):
            invoice_service.update_draft_invoice(db, invoice.id, notes="late")

    def test_order_invoice_lines_follow_the_order(self, db, client, products):
        order = _confirmed_order(db, client, products)
        invoice = invoice_service.generate_from_order(db, order.id)
        with pytest.raises(InvalidStateError):
            invoice_service.update_draft_invoice(db, invoice.id, tax_percent=0)
        assert invoice_service.update_draft_invoice(db, invoice.id, notes="ok").notes == "ok"


class TestPayments:
    def test_partial_then_full_payment(self, db, client):
        invoice = _issued_standalone(db, client, 1000)

        invoice_service.record_payment(db, invoice.id, 400)
        invoice = invoice_service.get_invoice(db, invoice.id)
        assert invoice.status == InvoiceStatus.partially_paid
        assert invoice.balance_cents == 600
        _assert_balance_invariant(invoice)

        invoice_service.record_payment(db, invoice.id, 600, method=PaymentMethod.TRANSFER)
        invoice = invoice_service.get_invoice(db, invoice.id)
        assert invoice.status == InvoiceStatus.paid
        assert invoice.balance_cents == 0
        _assert_balance_invariant(invoice)

        db.refresh(client)
        assert client.debt_cents == 0

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount(self, db, client, amount):
        invoice = _issued_standalone(db, client)
        with pytest.raises(ValidationError):
            invoice_service.record_payment(db, invoice.id, amount)

    def test_draft_cannot_be_paid(self, db, client):
        invoice = invoice_service.create_standalone(
            db, client_id=client.id, items=[{"name": "A", "unit_price_cents": 100, "qty": 1}]
        )
        with pytest.raises(InvalidStateError):
            invoice_service.record_payment(db, invoice.id, 100)

    def test_void_cannot_be_paid(self, db, client):
        invoice = _issued_standalone(db, client)
        invoice_service.void_invoice(db, invoice.id)
        with pytest.raises(InvalidStateError):
            invoice_service.record_payment(db, invoice.id, 100)

    def test_method_accepts_enum_and_string(self, db, client):
        invoice = _issued_standalone(db, client, 1000)

        by_default = invoice_service.record_payment(db, invoice.id, 100)
        as_enum = invoice_service.record_payment(db, invoice.id, 100, method=PaymentMethod.CARD)
        as_string = invoice_service.record_payment(db, invoice.id, 100, method="transfer")

        assert by_default.method == PaymentMethod.CASH
        assert as_enum.method == PaymentMethod.CARD
        assert as_string.method == PaymentMethod.TRANSFER

    def test_unknown_method(self, db, client):
        invoice = _issued_standalone(db, client)
        with pytest.raises(ValidationError):
            invoice_service.record_payment(db, invoice.id, 100, method="CHEQUE")

    def test_overpayment_kept_on_invoice_by_default(self, db, client):
        invoice = _issued_standalone(db, client, 1000)

        invoice_service.record_payment(db, invoice.id, 1200)

        invoice = invoice_service.get_invoice(db, invoice.id)
        db.refresh(client)
        assert invoice.status == InvoiceStatus.paid
        assert invoice.balance_cents == -200
        assert client.debt_cents == 0

    def test_overpayment_credited_when_asked(self, db, client):
        invoice = _issued_standalone(db, client, 1000)

        invoice_service.record_payment(db, invoice.id, 1200, credit_overpayment=True)

        db.refresh(client)
        assert client.debt_cents == -200
        assert DebtLedgerService(db).last_adjustment(client.id).type == DebtAdjustmentType.overpayment_credit

    def test_paid_at_is_stored(self, db, client):
        invoice = _issued_standalone(db, client)
        moment = datetime(2026, 3, 14, 9, 30)
        payment = invoice_service.record_payment(db, invoice.id, 100, paid_at=moment)
        assert payment.paid_at == moment


class TestReversal:
    def test_reversal_reopens_invoice_and_debt(self, db, client):
        invoice = _issued_standalone(db, client, 1000)
        invoice_service.record_payment(db, invoice.id, 400)
        payment = invoice_service.record_payment(db, invoice.id, 600)

        reversal = invoice_service.reverse_payment(db, payment.id)

        invoice = invoice_service.get_invoice(db, invoice.id)
        db.refresh(client)
        assert reversal.amount_cents == -600
        assert reversal.reversal_of_id == payment.id
        assert invoice.status == InvoiceStatus.partially_paid
        assert invoice.balance_cents == 600
        assert client.debt_cents == 600
        _assert_balance_invariant(invoice)

    def test_double_reversal_conflicts(self, db, client):
        invoice = _issued_standalone(db, client)
        payment = invoice_service.record_payment(db, invoice.id, 100)
        reversal = invoice_service.reverse_payment(db, payment.id)

        with pytest.raises(ConflictError):
            invoice_service.reverse_payment(db, payment.id)
        with pytest.raises(ConflictError):
            invoice_service.reverse_payment(db, reversal.id)

    def test_reversal_of_overpayment_undoes_full_credit(self, db, client):
        invoice = _issued_standalone(db, client, 1000)
        payment = invoice_service.record_payment(db, invoice.id, 1500, credit_overpayment=True)

        invoice_service.reverse_payment(db, payment.id)

        db.refresh(client)
        assert client.debt_cents == 1000
        assert invoice_service.get_invoice(db, invoice.id).status == InvoiceStatus.issued

    def test_reversal_lets_kept_excess_cover_reopened_balance(self, db, client):
        invoice = _issued_standalone(db, client, 1000)
        first = invoice_service.record_payment(db, invoice.id, 600)
        invoice_service.record_payment(db, invoice.id, 600)

        invoice_service.reverse_payment(db, first.id)

        invoice = invoice_service.get_invoice(db, invoice.id)
        db.refresh(client)
        assert invoice.balance_cents == 400
        assert invoice.status == InvoiceStatus.partially_paid
        assert client.debt_cents == 400
        last = DebtLedgerService(db).last_adjustment(client.id)
        assert last.type == DebtAdjustmentType.payment_reversal
        assert last.adjustment_cents == 400

    def test_reversal_does_not_double_count_credited_excess(self, db, client):
        invoice = _issued_standalone(db, client, 1000)
        first = invoice_service.record_payment(db, invoice.id, 600)
        invoice_service.record_payment(db, invoice.id, 600, credit_overpayment=True)
        db.refresh(client)
        assert client.debt_cents == -200

        invoice_service.reverse_payment(db, first.id)

        db.refresh(client)
        assert invoice_service.get_invoice(db, invoice.id).balance_cents == 400
        assert client.debt_cents == 400

    def test_reversal_keeps_credited_excess_still_paid(self, db, client):
        invoice = _issued_standalone(db, client, 1000)
        invoice_service.record_payment(db, invoice.id, 1200, credit_overpayment=True)
        extra = invoice_service.record_payment(db, invoice.id, 100, credit_overpayment=True)
        db.refresh(client)
        assert client.debt_cents == -300

        invoice_service.reverse_payment(db, extra.id)

        db.refresh(client)
        invoice = invoice_service.get_invoice(db, invoice.id)
        assert invoice.balance_cents == -200
        assert invoice.status == InvoiceStatus.paid
        assert client.debt_cents == -200


def test_concurrent_payments_settle_once(session_factory, db, client):
    workers = 8
    invoice = _issued_standalone(db, client, 100 * workers)

    def pay(_):
        session = session_factory()
        try:
            invoice_service.record_payment(session, invoice.id, 100)
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=workers) as pool:
        list(pool.map(pay, range(workers)))

    db.expire_all()
    invoice = invoice_service.get_invoice(db, invoice.id)
    db.refresh(client)
    assert len(invoice.payments) == workers
    assert invoice.balance_cents == 0
    assert invoice.status == InvoiceStatus.paid
    assert client.debt_cents == 0
    _assert_balance_invariant(invoice)


class TestVoid:
    def test_void_with_payment_conflicts(self, db, client):
        invoice = _issued_standalone(db, client, 1000)
        invoice_service.record_payment(db, invoice.id, 400)

        with pytest.raises(ConflictError):
            invoice_service.void_invoice(db, invoice.id)

        assert invoice_service.get_invoice(db, invoice.id).status == InvoiceStatus.partially_paid

    def test_void_after_reversal(self, db, client):
        invoice = _issued_standalone(db, client, 1000)
        payment = invoice_service.record_payment(db, invoice.id, 400)
        invoice_service.reverse_payment(db, payment.id)

        invoice = invoice_service.void_invoice(db, invoice.id)

        db.refresh(client)
        assert invoice.status == InvoiceStatus.void
        assert client.debt_cents == 0
        assert DebtLedgerService(db).last_adjustment(client.id).type == DebtAdjustmentType.invoice_void

    def test_paid_invoice_cannot_be_voided(self, db, client):
        invoice = _issued_standalone(db, client, 100)
        invoice_service.record_payment(db, invoice.id, 100)
        with pytest.raises(InvalidStateError):
            invoice_service.void_invoice(db, invoice.id)

    def test_void_twice(self, db, client):
        invoice = _issued_standalone(db, client)
        invoice_service.void_invoice(db, invoice.id)
        with pytest.raises(InvalidStateError):
            invoice_service.void_invoice(db, invoice.id)


class TestQueries:
    def test_detail(self, db, client):
        invoice = _issued_standalone(db, client, 1000)
        invoice_service.record_payment(db, invoice.id, 250)

        detail = invoice_service.get_invoice_detail(db, invoice.id)

        assert detail["client"].id == client.id
        assert len(detail["items"]) == 1
        assert len(detail["payments"]) == 1
        assert detail["paid_cents"] == 250
        assert detail["balance_cents"] == 750

    def test_list_search_and_filters(self, db, make_client):
        alice = make_client("Alice Store")
        bob = make_client("Bob Market")
        _issued_standalone(db, alice, notes="first batch")
        _issued_standalone(db, bob)
        invoice_service.create_standalone(
            db, client_id=bob.id, items=[{"name": "A", "unit_price_cents": 1, "qty": 1}]
        )

        rows, total = invoice_service.get_all_invoices(db, search="bob")
        assert total == 2

        rows, total = invoice_service.get_all_invoices(db, status=InvoiceStatus.draft)
        assert total == 1 and rows[0].client_id == bob.id

        rows, total = invoice_service.get_all_invoices(db, search="batch")
        assert total == 1 and rows[0].client_id == alice.id
