"""
Invoice Ledger

Invoices are derived from a confirmed order (lines and totals copied as they
stand) or created standalone. Payments are immutable rows; paid/balance are
always recomputed from them and the status is settled by one guard after
every payment-ledger mutation:

    draft -> issued -> partially_paid -> paid
    draft | issued | partially_paid -> void

Example:
- invoice total 1000, issued
- pay 400  -> paid 400,  balance 600, partially_paid
- pay 600  -> paid 1000, balance 0,   paid
- reverse the 600 payment -> paid 400, balance 600, partially_paid
"""

from contextlib import contextmanager
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from billing.core.config import settings
from billing.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from billing.models.client import Client, DebtAdjustment, DebtAdjustmentType
from billing.models.invoice import Invoice, InvoiceItem, InvoiceStatus, Payment, PaymentMethod
from billing.models.order import Order, OrderStatus
from billing.models.product import Product
from billing.services.client_service import get_client
from billing.services.debt_ledger import DebtLedgerService
from billing.services.pricing import apply_totals, line_total, recompute_totals
from billing.utils.db import atomic, clamp_page, search_pattern
from billing.utils.locks import client_locks, invoice_locks, order_locks
from billing.utils.money import ensure_cents, ensure_percent, normalize_currency
from billing.utils.numbering import next_document_number
from billing.utils.snapshot import LineSnapshot
from billing.utils.timeutils import to_naive_utc, today_utc, utcnow_naive
from billing.logger_config import logger


INVOICE_TRANSITIONS = {
    InvoiceStatus.draft: {InvoiceStatus.issued, InvoiceStatus.void},
    InvoiceStatus.issued: {InvoiceStatus.partially_paid, InvoiceStatus.paid, InvoiceStatus.void},
    InvoiceStatus.partially_paid: {InvoiceStatus.issued, InvoiceStatus.paid, InvoiceStatus.void},
    # A reversal can reopen a paid invoice
    InvoiceStatus.paid: {InvoiceStatus.issued, InvoiceStatus.partially_paid},
    InvoiceStatus.void: set(),
}

PAYABLE_STATUSES = frozenset({InvoiceStatus.issued, InvoiceStatus.partially_paid, InvoiceStatus.paid})


# ==================== HELPER FUNCTIONS ====================

def _load_invoice(db: Session, invoice_id: int, for_update: bool = False) -> Invoice:
    query = db.query(Invoice).options(
        joinedload(Invoice.items),
        joinedload(Invoice.payments),
        joinedload(Invoice.client),
    )
    if for_update:
        query = query.with_for_update(of=Invoice).populate_existing()
    invoice = query.filter(Invoice.id == invoice_id).one_or_none()
    if not invoice:
        logger.warning(f"Invoice not found: {invoice_id}")
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


@contextmanager
def _locked_invoice(db: Session, invoice_id: int, action: str):
    """Yield the invoice inside one transaction, holding its lock and its client's lock."""
    client_id = db.query(Invoice.client_id).filter(Invoice.id == invoice_id).scalar()
    if client_id is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")

    with invoice_locks.hold(invoice_id), client_locks.hold(client_id):
        with atomic(db, action):
            yield _load_invoice(db, invoice_id, for_update=True)


def _transition(invoice: Invoice, target: InvoiceStatus) -> None:
    if invoice.status == target:
        return
    if target not in INVOICE_TRANSITIONS[invoice.status]:
        raise InvalidStateError(
            f"Invoice {invoice.invoice_number} cannot move from {invoice.status.value} to {target.value}"
        )
    logger.info(f"Invoice {invoice.invoice_number}: {invoice.status.value} -> {target.value}")
    invoice.status = target


def _sum_payments(db: Session, invoice_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        .filter(Payment.invoice_id == invoice_id)
        .scalar()
    )
    return int(total or 0)


def settle_status(db: Session, invoice: Invoice) -> InvoiceStatus:
    """
    Recompute paid/balance from the payment rows and derive the status.

    Evaluated after every payment-ledger mutation; draft and void invoices
    keep their status.
    """
    db.flush()
    invoice.paid_cents = _sum_payments(db, invoice.id)
    invoice.balance_cents = invoice.total_cents - invoice.paid_cents

    if invoice.status in (InvoiceStatus.draft, InvoiceStatus.void):
        return invoice.status

    if invoice.balance_cents <= 0:
        target = InvoiceStatus.paid
    elif invoice.paid_cents > 0:
        target = InvoiceStatus.partially_paid
    else:
        target = InvoiceStatus.issued
    _transition(invoice, target)
    return invoice.status


def _coerce_method(method) -> PaymentMethod:
    if isinstance(method, PaymentMethod):
        return method
    try:
        return PaymentMethod(str(method).upper())
    except ValueError:
        raise ValidationError(f"Unknown payment method: {method!r}")


def _invoice_charged_cents(db: Session, invoice: Invoice) -> int:
    total = (
        db.query(func.coalesce(func.sum(DebtAdjustment.adjustment_cents), 0))
        .filter(
            DebtAdjustment.ref_type == "INVOICE",
            DebtAdjustment.ref_id == invoice.id,
        )
        .scalar()
    )
    return int(total or 0)


def _payments_credited_cents(db: Session, invoice: Invoice) -> int:
    """Debt credit currently standing for all payment rows of an invoice."""
    payment_ids = db.query(Payment.id).filter(Payment.invoice_id == invoice.id)
    total = (
        db.query(func.coalesce(func.sum(DebtAdjustment.adjustment_cents), 0))
        .filter(
            DebtAdjustment.ref_type == "PAYMENT",
            DebtAdjustment.ref_id.in_(payment_ids.scalar_subquery()),
        )
        .scalar()
    )
    return -int(total or 0)


def _covered_cents(paid_cents: int, total_cents: int) -> int:
    return max(min(paid_cents, max(total_cents, 0)), 0)


def _standalone_item(line: Dict, currency: str, db: Session) -> InvoiceItem:
    product_id = line.get("product_id")
    if product_id is not None:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        if not product.active:
            raise ValidationError(f"Product {product.name} is inactive")
        snapshot = LineSnapshot.from_product(product)
    else:
        name = line.get("name") or line.get("name_snapshot")
        if not name:
            raise ValidationError("A line needs either a product_id or a name")
        if line.get("unit_price_cents") is None:
            raise ValidationError(f"Unit price is required for manual line {name}")
        snapshot = LineSnapshot.manual(
            name=name,
            unit_price_cents=line["unit_price_cents"],
            currency=normalize_currency(line.get("currency"), currency),
            sku=line.get("sku") or line.get("sku_snapshot"),
        )

    if snapshot.currency != currency:
        raise ValidationError(f"Invoice lines must be in {currency}, got {snapshot.currency}")

    qty = line.get("qty")
    return InvoiceItem(
        product_id=snapshot.product_id,
        name_snapshot=snapshot.name,
        sku_snapshot=snapshot.sku,
        qty=qty,
        unit_price_cents=snapshot.unit_price_cents,
        currency=snapshot.currency,
        total_cents=line_total(qty, snapshot.unit_price_cents),
    )


def _recalculate(invoice: Invoice) -> None:
    totals = recompute_totals(invoice.items, invoice.discount_percent, invoice.tax_percent)
    apply_totals(invoice, totals)
    invoice.balance_cents = invoice.total_cents - (invoice.paid_cents or 0)


# ==================== INVOICE QUERIES ====================

def get_invoice(db: Session, invoice_id: int) -> Invoice:
    return _load_invoice(db, invoice_id)


def get_invoice_detail(db: Session, invoice_id: int) -> Dict:
    """Invoice + client + items + payments + paid/balance computed from the payments."""
    invoice = _load_invoice(db, invoice_id)
    paid = sum(p.amount_cents for p in invoice.payments)
    return {
        "invoice": invoice,
        "client": invoice.client,
        "items": list(invoice.items),
        "payments": list(invoice.payments),
        "paid_cents": paid,
        "balance_cents": invoice.total_cents - paid,
    }


def get_all_invoices(
    db: Session,
    skip: int = 0,
    limit: int = 20,
    search: Optional[str] = None,
    client_id: Optional[int] = None,
    status: Optional[InvoiceStatus] = None,
) -> tuple[List[Invoice], int]:
    """Get invoices with optional search (number, notes, client name) and filters."""
    limit, skip = clamp_page(limit, skip)

    query = db.query(Invoice).join(Client, Invoice.client_id == Client.id).options(joinedload(Invoice.client))

    if client_id:
        query = query.filter(Invoice.client_id == client_id)
        logger.debug(f"Filtering invoices by client_id: {client_id}")

    if status:
        query = query.filter(Invoice.status == status)
        logger.debug(f"Filtering invoices by status: {status}")

    search_term = search_pattern(search)
    if search_term:
        query = query.filter(
            or_(
                Invoice.invoice_number.ilike(search_term),
                Invoice.notes.ilike(search_term),
                Client.name.ilike(search_term),
            )
        )

    total = query.count()
    invoices = query.order_by(Invoice.issue_date.desc(), Invoice.id.desc()).offset(skip).limit(limit).all()

    logger.info(f"Retrieved {len(invoices)} invoices out of {total} total")
    return invoices, total


# ==================== CREATE INVOICE ====================

def generate_from_order(
    db: Session,
    order_id: int,
    issue_date: Optional[date] = None,
    due_date: Optional[date] = None,
    notes: Optional[str] = None,
) -> Invoice:
    """
    Derive a draft invoice from a confirmed/fulfilled order.

    Lines are copied verbatim (no product re-read) and the invoice totals are
    the order's totals at this moment; later order edits do not reach it.
    """
    logger.info(f"Generating invoice from order {order_id}")

    with order_locks.hold(order_id):
        with atomic(db, f"invoice generation for order {order_id}"):
            order = (
                db.query(Order)
                .options(joinedload(Order.items))
                .filter(Order.id == order_id)
                .with_for_update(of=Order)
                .populate_existing()
                .one_or_none()
            )
            if not order:
                logger.warning(f"Order not found: {order_id}")
                raise NotFoundError(f"Order {order_id} not found")
            if db.query(Invoice.id).filter(Invoice.order_id == order_id).first():
                raise ConflictError(f"Order {order.order_number} already has an invoice")
            if order.status in (OrderStatus.draft, OrderStatus.cancelled):
                raise InvalidStateError(
                    f"Cannot invoice order {order.order_number} in status {order.status.value}"
                )

            issue_date = issue_date or today_utc()
            order_totals = recompute_totals(order.items, order.discount_percent, order.tax_percent)

            invoice = Invoice(
                invoice_number=next_document_number(db, Invoice.invoice_number, "INV", issue_date),
                order_id=order.id,
                client_id=order.client_id,
                status=InvoiceStatus.draft,
                issue_date=issue_date,
                due_date=due_date or order.due_date,
                notes=notes if notes is not None else order.notes,
                discount_percent=order.discount_percent,
                tax_percent=order.tax_percent,
                currency=order.items[0].currency if order.items else settings.DEFAULT_CURRENCY,
            )
            for item in order.items:
                invoice.items.append(InvoiceItem(
                    product_id=item.product_id,
                    name_snapshot=item.name_snapshot,
                    sku_snapshot=item.sku_snapshot,
                    qty=item.qty,
                    unit_price_cents=item.unit_price_cents,
                    currency=item.currency,
                    total_cents=item.total_cents,
                ))
            invoice.subtotal_cents = order_totals.subtotal_cents
            invoice.total_cents = order_totals.total_cents
            invoice.paid_cents = 0
            invoice.balance_cents = order_totals.total_cents

            db.add(invoice)
            db.flush()

    logger.info(
        f"Invoice {invoice.invoice_number} generated from order {order.order_number} - "
        f"Total: {invoice.total_cents}"
    )
    return invoice


def create_standalone(
    db: Session,
    client_id: int,
    items: List[Dict],
    discount_percent: int = 0,
    tax_percent: int = 0,
    currency: Optional[str] = None,
    notes: Optional[str] = None,
    issue_date: Optional[date] = None,
    due_date: Optional[date] = None,
) -> Invoice:
    """Create a draft invoice without an order; same pricing rule as orders."""
    ensure_percent(discount_percent, "discount_percent")
    ensure_percent(tax_percent, "tax_percent")
    if not items:
        raise ValidationError("At least one item is required")
    issue_date = issue_date or today_utc()
    if due_date and due_date < issue_date:
        raise ValidationError("Due date cannot be before the issue date")

    get_client(db, client_id)
    currency = normalize_currency(currency or items[0].get("currency"), settings.DEFAULT_CURRENCY)

    logger.info(f"Starting standalone invoice creation - Client: {client_id}, Items: {len(items)}")

    with atomic(db, "standalone invoice creation"):
        invoice = Invoice(
            invoice_number=next_document_number(db, Invoice.invoice_number, "INV", issue_date),
            client_id=client_id,
            status=InvoiceStatus.draft,
            issue_date=issue_date,
            due_date=due_date,
            notes=notes,
            discount_percent=discount_percent,
            tax_percent=tax_percent,
            currency=currency,
            paid_cents=0,
        )
        for line in items:
            invoice.items.append(_standalone_item(line, currency, db))
        _recalculate(invoice)
        db.add(invoice)
        db.flush()

    logger.info(f"Standalone invoice created: {invoice.invoice_number} - Total: {invoice.total_cents}")
    return invoice


def update_draft_invoice(
    db: Session,
    invoice_id: int,
    notes: Optional[str] = None,
    due_date: Optional[date] = None,
    items: Optional[List[Dict]] = None,
    discount_percent: Optional[int] = None,
    tax_percent: Optional[int] = None,
) -> Invoice:
    """
    Edit a draft. Notes and due date are editable on any draft; lines and
    percentages only on standalone drafts (order invoices mirror their order).
    """
    with _locked_invoice(db, invoice_id, f"invoice {invoice_id} update") as invoice:
        if invoice.status != InvoiceStatus.draft:
            raise InvalidStateError(f"Only draft invoices can be edited ({invoice.status.value})")

        pricing_change = items is not None or discount_percent is not None or tax_percent is not None
        if pricing_change and not invoice.is_standalone:
            raise InvalidStateError("Lines and percentages of an order invoice follow the order")

        if notes is not None:
            invoice.notes = notes
        if due_date is not None:
            if due_date < invoice.issue_date:
                raise ValidationError("Due date cannot be before the issue date")
            invoice.due_date = due_date
        if discount_percent is not None:
            invoice.discount_percent = ensure_percent(discount_percent, "discount_percent")
        if tax_percent is not None:
            invoice.tax_percent = ensure_percent(tax_percent, "tax_percent")
        if items is not None:
            if not items:
                raise ValidationError("At least one item is required")
            invoice.items.clear()
            for line in items:
                invoice.items.append(_standalone_item(line, invoice.currency, db))
        _recalculate(invoice)

    logger.info(f"Draft invoice {invoice.invoice_number} updated - Total: {invoice.total_cents}")
    return invoice


# ==================== STATUS CHANGES ====================

def issue_invoice(db: Session, invoice_id: int) -> Invoice:
    """
    draft -> issued. Needs at least one line and a non-negative total.

    Issuing a standalone invoice charges its total to the client's debt;
    order invoices were already charged when the order was confirmed.
    """
    with _locked_invoice(db, invoice_id, f"invoice {invoice_id} issue") as invoice:
        if invoice.status != InvoiceStatus.draft:
            raise InvalidStateError(f"Only draft invoices can be issued ({invoice.status.value})")
        if not invoice.items:
            raise InvalidStateError("Cannot issue an invoice without items")
        if invoice.total_cents < 0:
            raise InvalidStateError("Cannot issue an invoice with a negative total")

        _transition(invoice, InvoiceStatus.issued)
        settle_status(db, invoice)

        if invoice.is_standalone and invoice.total_cents:
            DebtLedgerService(db).append(
                invoice.client,
                invoice.total_cents,
                DebtAdjustmentType.invoice_charge,
                notes=f"Invoice {invoice.invoice_number}",
                ref_type="INVOICE",
                ref_id=invoice.id,
            )

    logger.info(f"Invoice {invoice.invoice_number} issued - Total: {invoice.total_cents}")
    return invoice


def void_invoice(db: Session, invoice_id: int) -> Invoice:
    """
    Void a draft/issued/partially paid invoice.

    Refused while payments net to anything but zero (reverse them first).
    A standalone invoice's debt charge is reversed.
    """
    with _locked_invoice(db, invoice_id, f"invoice {invoice_id} void") as invoice:
        if invoice.status in (InvoiceStatus.paid, InvoiceStatus.void):
            raise InvalidStateError(f"Invoice {invoice.invoice_number} is {invoice.status.value}")
        if invoice.payments and _sum_payments(db, invoice.id) != 0:
            raise ConflictError(
                f"Invoice {invoice.invoice_number} has payments; reverse them before voiding"
            )

        _transition(invoice, InvoiceStatus.void)

        charged = _invoice_charged_cents(db, invoice)
        if charged:
            DebtLedgerService(db).append(
                invoice.client,
                -charged,
                DebtAdjustmentType.invoice_void,
                notes=f"Invoice {invoice.invoice_number} voided",
                ref_type="INVOICE",
                ref_id=invoice.id,
            )

    logger.info(f"Invoice {invoice.invoice_number} voided")
    return invoice


# ==================== PAYMENT OPERATIONS ====================

def record_payment(
    db: Session,
    invoice_id: int,
    amount_cents: int,
    method=PaymentMethod.CASH,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    paid_at: Optional[datetime] = None,
    credit_overpayment: Optional[bool] = None,
) -> Payment:
    """
    Record a payment against an issued invoice.

    Process:
        1. Validate amount and method
        2. Append the payment row
        3. Recompute paid/balance and settle the status
        4. Credit the client's debt with the part that covered the balance
        5. Credit the excess too only when ``credit_overpayment`` is on
    """
    ensure_cents(amount_cents, "amount_cents")
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    method = _coerce_method(method)
    if credit_overpayment is None:
        credit_overpayment = settings.CREDIT_OVERPAYMENTS

    logger.info(f"Starting payment creation - Invoice: {invoice_id}, Amount: {amount_cents}, Method: {method.value}")

    with _locked_invoice(db, invoice_id, f"payment on invoice {invoice_id}") as invoice:
        if invoice.status not in PAYABLE_STATUSES:
            raise InvalidStateError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value}; payments are not accepted"
            )

        balance_before = invoice.total_cents - _sum_payments(db, invoice.id)

        payment = Payment(
            invoice_id=invoice.id,
            amount_cents=amount_cents,
            method=method,
            reference=reference,
            notes=notes,
            paid_at=to_naive_utc(paid_at) if paid_at else utcnow_naive(),
        )
        invoice.payments.append(payment)
        settle_status(db, invoice)

        applied = min(amount_cents, max(balance_before, 0))
        excess = amount_cents - applied

        ledger = DebtLedgerService(db)
        if applied:
            ledger.append(
                invoice.client,
                -applied,
                DebtAdjustmentType.payment_credit,
                notes=f"Payment on {invoice.invoice_number}",
                ref_type="PAYMENT",
                ref_id=payment.id,
            )
        if excess and credit_overpayment:
            ledger.append(
                invoice.client,
                -excess,
                DebtAdjustmentType.overpayment_credit,
                notes=f"Overpayment on {invoice.invoice_number}",
                ref_type="PAYMENT",
                ref_id=payment.id,
            )
        elif excess:
            logger.warning(
                f"Invoice {invoice.invoice_number} overpaid by {excess}; kept as invoice credit"
            )

    logger.info(
        f"Payment {payment.id} recorded - Invoice: {invoice.invoice_number}, "
        f"Paid: {invoice.paid_cents}, Balance: {invoice.balance_cents}, Status: {invoice.status.value}"
    )
    return payment


def get_payment(db: Session, payment_id: int) -> Payment:
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def reverse_payment(db: Session, payment_id: int, notes: Optional[str] = None) -> Payment:
    """
    Compensate a payment with a negative payment row; the original is never
    edited. The client's debt is charged back with the credit the remaining
    payments no longer justify, so a later excess that now covers the
    reopened balance keeps counting.
    """
    original = get_payment(db, payment_id)
    if original.is_reversal:
        raise ConflictError(f"Payment {payment_id} is itself a reversal")

    with _locked_invoice(db, original.invoice_id, f"reversal of payment {payment_id}") as invoice:
        if invoice.status == InvoiceStatus.void:
            raise InvalidStateError(f"Invoice {invoice.invoice_number} is void")
        if db.query(Payment.id).filter(Payment.reversal_of_id == payment_id).first():
            raise ConflictError(f"Payment {payment_id} has already been reversed")

        paid_before = _sum_payments(db, invoice.id)
        credited_before = _payments_credited_cents(db, invoice)
        covered_before = _covered_cents(paid_before, invoice.total_cents)
        excess_credited = max(credited_before - covered_before, 0)

        reversal = Payment(
            invoice_id=invoice.id,
            amount_cents=-original.amount_cents,
            method=original.method,
            reference=original.reference,
            notes=notes or f"Reversal of payment {payment_id}",
            paid_at=utcnow_naive(),
            reversal_of_id=original.id,
        )
        invoice.payments.append(reversal)
        settle_status(db, invoice)

        # Credit left standing: what the remaining payments cover, plus any
        # excess already credited that the remaining payments still exceed by.
        covered_after = _covered_cents(invoice.paid_cents, invoice.total_cents)
        excess_after = min(excess_credited, max(invoice.paid_cents - invoice.total_cents, 0))
        undo = credited_before - (covered_after + excess_after)
        if undo:
            DebtLedgerService(db).append(
                invoice.client,
                undo,
                DebtAdjustmentType.payment_reversal,
                notes=f"Reversal of payment {payment_id} on {invoice.invoice_number}",
                ref_type="PAYMENT",
                ref_id=reversal.id,
            )

    logger.info(
        f"Payment {payment_id} reversed by {reversal.id} - Invoice: {invoice.invoice_number}, "
        f"Balance: {invoice.balance_cents}, Status: {invoice.status.value}"
    )
    return reversal
