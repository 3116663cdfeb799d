# billing/services/order_service.py

from contextlib import contextmanager
from datetime import date
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
from billing.models.invoice import InvoiceStatus
from billing.models.order import Order, OrderItem, OrderStatus
from billing.models.product import Product
from billing.services.client_service import get_client
from billing.services.debt_ledger import DebtLedgerService
from billing.services.pricing import Totals, apply_totals, line_total, recompute_totals
from billing.utils.db import atomic, clamp_page, search_pattern
from billing.utils.locks import client_locks, order_locks
from billing.utils.money import ensure_percent, normalize_currency
from billing.utils.numbering import next_document_number
from billing.utils.snapshot import LineSnapshot
from billing.utils.timeutils import today_utc
from billing.logger_config import logger


ORDER_TRANSITIONS = {
    OrderStatus.draft: {OrderStatus.confirmed, OrderStatus.cancelled},
    OrderStatus.confirmed: {OrderStatus.fulfilled, OrderStatus.cancelled},
    OrderStatus.fulfilled: set(),
    OrderStatus.cancelled: set(),
}

ORDER_SORTS = {
    "issue_date.desc": (Order.issue_date.desc(), Order.id.desc()),
    "issue_date.asc": (Order.issue_date.asc(), Order.id.asc()),
    "total.desc": (Order.total_cents.desc(), Order.id.desc()),
    "total.asc": (Order.total_cents.asc(), Order.id.asc()),
    "number.asc": (Order.order_number.asc(),),
    "number.desc": (Order.order_number.desc(),),
}


# ==================== HELPER FUNCTIONS ====================

def _load_order(db: Session, order_id: int, for_update: bool = False) -> Order:
    query = db.query(Order).options(joinedload(Order.items), joinedload(Order.client))
    if for_update:
        query = query.with_for_update(of=Order).populate_existing()
    order = query.filter(Order.id == order_id).one_or_none()
    if not order:
        logger.warning(f"Order not found: {order_id}")
        raise NotFoundError(f"Order {order_id} not found")
    return order


@contextmanager
def _locked_order(db: Session, order_id: int, action: str):
    """
    Yield the order inside one transaction while holding its lock and its
    client's lock (order before client, as everywhere else).
    """
    client_id = db.query(Order.client_id).filter(Order.id == order_id).scalar()
    if client_id is None:
        raise NotFoundError(f"Order {order_id} not found")

    with order_locks.hold(order_id), client_locks.hold(client_id):
        with atomic(db, action):
            yield _load_order(db, order_id, for_update=True)


def _ensure_mutable(order: Order) -> None:
    if order.is_terminal:
        raise InvalidStateError(
            f"Order {order.order_number} is {order.status.value}; its lines can no longer change"
        )


def _order_currency(order: Order) -> Optional[str]:
    return order.items[0].currency if order.items else None


def _snapshot_for_line(db: Session, order: Optional[Order], line: Dict) -> LineSnapshot:
    """
    Build the line snapshot from a product reference or a manual line.

    An inactive product may only be added again to an order that already
    references it.
    """
    product_id = line.get("product_id")
    if product_id is not None:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise NotFoundError(f"Product {product_id} not found")
        if not product.active:
            referenced = order is not None and any(i.product_id == product.id for i in order.items)
            if not referenced:
                raise ValidationError(f"Product {product.name} is inactive")
        return LineSnapshot.from_product(product)

    name = line.get("name") or line.get("name_snapshot")
    if not name:
        raise ValidationError("A line needs either a product_id or a name")
    if line.get("unit_price_cents") is None:
        raise ValidationError(f"Unit price is required for manual line {name}")
    return LineSnapshot.manual(
        name=name,
        unit_price_cents=line["unit_price_cents"],
        currency=normalize_currency(line.get("currency"), settings.DEFAULT_CURRENCY),
        sku=line.get("sku") or line.get("sku_snapshot"),
    )


def _build_item(snapshot: LineSnapshot, qty: int, discount_percent: int) -> OrderItem:
    return OrderItem(
        product_id=snapshot.product_id,
        name_snapshot=snapshot.name,
        sku_snapshot=snapshot.sku,
        qty=qty,
        unit_price_cents=snapshot.unit_price_cents,
        discount_percent=discount_percent,
        currency=snapshot.currency,
        total_cents=line_total(qty, snapshot.unit_price_cents, discount_percent),
    )


def _append_line(db: Session, order: Order, line: Dict) -> OrderItem:
    qty = line.get("qty")
    discount_percent = line.get("discount_percent", 0) or 0
    ensure_percent(discount_percent, "discount_percent")

    snapshot = _snapshot_for_line(db, order, line)
    item = _build_item(snapshot, qty, discount_percent)

    currency = _order_currency(order)
    if currency and item.currency != currency:
        raise ValidationError(f"Order lines must share one currency ({currency}), got {item.currency}")

    order.items.append(item)
    return item


def _recalculate(order: Order) -> Totals:
    totals = recompute_totals(order.items, order.discount_percent, order.tax_percent)
    apply_totals(order, totals)
    return totals


def _order_charged_cents(db: Session, order: Order) -> int:
    """Net debt currently charged to the client for this order."""
    total = (
        db.query(func.coalesce(func.sum(DebtAdjustment.adjustment_cents), 0))
        .filter(DebtAdjustment.ref_type == "ORDER", DebtAdjustment.ref_id == order.id)
        .scalar()
    )
    return int(total or 0)


def _sync_order_debt(db: Session, order: Order) -> None:
    """A confirmed order's client debt follows its total; post the difference."""
    if order.status != OrderStatus.confirmed:
        return
    delta = order.total_cents - _order_charged_cents(db, order)
    if delta:
        DebtLedgerService(db).append(
            order.client,
            delta,
            DebtAdjustmentType.order_revision,
            notes=f"Order {order.order_number} revised",
            ref_type="ORDER",
            ref_id=order.id,
        )


def _transition(order: Order, target: OrderStatus) -> None:
    if target not in ORDER_TRANSITIONS[order.status]:
        raise InvalidStateError(
            f"Order {order.order_number} cannot move from {order.status.value} to {target.value}"
        )
    logger.info(f"Order {order.order_number}: {order.status.value} -> {target.value}")
    order.status = target


# ==================== PRICING ====================

def compute_order_totals(order: Order) -> Totals:
    """Totals straight from the current lines; does not touch the stored columns."""
    return recompute_totals(order.items, order.discount_percent, order.tax_percent)


# ==================== ORDER QUERIES ====================

def get_order(db: Session, order_id: int) -> Order:
    return _load_order(db, order_id)


def get_order_detail(db: Session, order_id: int) -> Dict:
    """Order + client + items + totals computed from the items."""
    order = _load_order(db, order_id)
    totals = compute_order_totals(order)
    return {
        "order": order,
        "client": order.client,
        "items": list(order.items),
        "currency": _order_currency(order) or settings.DEFAULT_CURRENCY,
        **totals.as_dict(),
    }


def get_all_orders(
    db: Session,
    skip: int = 0,
    limit: int = 20,
    search: Optional[str] = None,
    client_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    sort: Optional[str] = None,
) -> tuple[List[Order], int]:
    """Get orders with optional search (number, notes, client name) and filters."""
    limit, skip = clamp_page(limit, skip)

    query = db.query(Order).join(Client, Order.client_id == Client.id).options(joinedload(Order.client))

    if client_id:
        query = query.filter(Order.client_id == client_id)
        logger.debug(f"Filtering orders by client_id: {client_id}")

    if status:
        query = query.filter(Order.status == status)

    search_term = search_pattern(search)
    if search_term:
        query = query.filter(
            or_(
                Order.order_number.ilike(search_term),
                Order.notes.ilike(search_term),
                Client.name.ilike(search_term),
            )
        )

    if sort and sort not in ORDER_SORTS:
        raise ValidationError(f"Unknown sort: {sort}")
    ordering = ORDER_SORTS[sort or "issue_date.desc"]

    total = query.count()
    orders = query.order_by(*ordering).offset(skip).limit(limit).all()

    logger.debug(f"Retrieved {len(orders)} orders out of {total} total")
    return orders, total


# ==================== CREATE / UPDATE ORDER ====================

def create_order(
    db: Session,
    client_id: int,
    items: Optional[List[Dict]] = None,
    discount_percent: int = 0,
    tax_percent: int = 0,
    notes: Optional[str] = None,
    issue_date: Optional[date] = None,
    due_date: Optional[date] = None,
) -> Order:
    """
    Create a draft order.

    ``items`` entries are either ``{"product_id", "qty", "discount_percent"}``
    or manual lines ``{"name", "sku", "unit_price_cents", "currency", "qty",
    "discount_percent"}``. Drafts never touch the client's debt.
    """
    ensure_percent(discount_percent, "discount_percent")
    ensure_percent(tax_percent, "tax_percent")
    issue_date = issue_date or today_utc()
    if due_date and due_date < issue_date:
        raise ValidationError("Due date cannot be before the issue date")

    get_client(db, client_id)

    logger.info(f"Starting order creation - Client: {client_id}, Items: {len(items or [])}")

    with atomic(db, "order creation"):
        order = Order(
            order_number=next_document_number(db, Order.order_number, "ORD", issue_date),
            client_id=client_id,
            status=OrderStatus.draft,
            notes=notes,
            discount_percent=discount_percent,
            tax_percent=tax_percent,
            issue_date=issue_date,
            due_date=due_date,
        )
        db.add(order)
        for line in items or []:
            _append_line(db, order, line)
        totals = _recalculate(order)
        db.flush()

    logger.info(f"Order created: {order.order_number} - Total: {totals.total_cents}")
    return order


def update_order(
    db: Session,
    order_id: int,
    notes: Optional[str] = None,
    discount_percent: Optional[int] = None,
    tax_percent: Optional[int] = None,
    due_date: Optional[date] = None,
) -> Order:
    """Update order-level fields; totals (and a confirmed order's debt) follow."""
    with _locked_order(db, order_id, f"order {order_id} update") as order:
        _ensure_mutable(order)
        if notes is not None:
            order.notes = notes
        if discount_percent is not None:
            order.discount_percent = ensure_percent(discount_percent, "discount_percent")
        if tax_percent is not None:
            order.tax_percent = ensure_percent(tax_percent, "tax_percent")
        if due_date is not None:
            if due_date < order.issue_date:
                raise ValidationError("Due date cannot be before the issue date")
            order.due_date = due_date
        _recalculate(order)
        _sync_order_debt(db, order)

    logger.info(f"Order {order.order_number} updated - Total: {order.total_cents}")
    return order


# ==================== LINE ITEMS ====================

def add_item(
    db: Session,
    order_id: int,
    qty: int,
    product_id: Optional[int] = None,
    discount_percent: int = 0,
    name: Optional[str] = None,
    sku: Optional[str] = None,
    unit_price_cents: Optional[int] = None,
    currency: Optional[str] = None,
) -> OrderItem:
    """Add a line from a product (price snapshotted now) or a manual line."""
    line = {
        "product_id": product_id,
        "qty": qty,
        "discount_percent": discount_percent,
        "name": name,
        "sku": sku,
        "unit_price_cents": unit_price_cents,
        "currency": currency,
    }
    with _locked_order(db, order_id, f"adding item to order {order_id}") as order:
        _ensure_mutable(order)
        item = _append_line(db, order, line)
        _recalculate(order)
        db.flush()
        _sync_order_debt(db, order)

    logger.info(f"Item added to {order.order_number}: {item.name_snapshot} x{item.qty} = {item.total_cents}")
    return item


def _find_item(order: Order, item_id: int) -> OrderItem:
    for item in order.items:
        if item.id == item_id:
            return item
    raise NotFoundError(f"Item {item_id} not found on order {order.order_number}")


def update_item(
    db: Session,
    order_id: int,
    item_id: int,
    qty: Optional[int] = None,
    discount_percent: Optional[int] = None,
) -> OrderItem:
    """Change a line's quantity or discount; the snapshot price is kept."""
    with _locked_order(db, order_id, f"updating item {item_id} of order {order_id}") as order:
        _ensure_mutable(order)
        item = _find_item(order, item_id)
        new_qty = item.qty if qty is None else qty
        new_discount = item.discount_percent if discount_percent is None else discount_percent
        item.total_cents = line_total(new_qty, item.unit_price_cents, new_discount)
        item.qty = new_qty
        item.discount_percent = new_discount
        _recalculate(order)
        _sync_order_debt(db, order)

    logger.info(f"Item {item_id} of {order.order_number} updated: x{item.qty} -{item.discount_percent}%")
    return item


def remove_item(db: Session, order_id: int, item_id: int) -> Order:
    with _locked_order(db, order_id, f"removing item {item_id} from order {order_id}") as order:
        _ensure_mutable(order)
        item = _find_item(order, item_id)
        order.items.remove(item)
        if order.status == OrderStatus.confirmed and not order.items:
            raise InvalidStateError("A confirmed order must keep at least one item")
        _recalculate(order)
        _sync_order_debt(db, order)

    logger.info(f"Item {item_id} removed from {order.order_number}")
    return order


# ==================== STATUS CHANGES ====================

def confirm_order(db: Session, order_id: int) -> Order:
    """
    draft -> confirmed. Charges the order total to the client's debt and
    keeps the resulting balance on the order for audit.
    """
    with _locked_order(db, order_id, f"order {order_id} confirmation") as order:
        if order.status == OrderStatus.draft and not order.items:
            raise InvalidStateError("Cannot confirm an order without items")
        _transition(order, OrderStatus.confirmed)
        _recalculate(order)

        ledger = DebtLedgerService(db)
        if order.total_cents:
            ledger.append(
                order.client,
                order.total_cents,
                DebtAdjustmentType.order_charge,
                notes=f"Order {order.order_number}",
                ref_type="ORDER",
                ref_id=order.id,
            )
        order.client_debt_snapshot_cents = ledger.current_balance(order.client_id)

    logger.info(
        f"Order {order.order_number} confirmed - Total: {order.total_cents}, "
        f"client debt now {order.client_debt_snapshot_cents}"
    )
    return order


def fulfill_order(db: Session, order_id: int) -> Order:
    with _locked_order(db, order_id, f"order {order_id} fulfilment") as order:
        _transition(order, OrderStatus.fulfilled)
    return order


def cancel_order(db: Session, order_id: int) -> Order:
    """
    Cancel a draft or confirmed order. Whatever was charged to the client for
    it is reversed by a compensating adjustment. Refused while a non-void
    invoice exists for the order.
    """
    with _locked_order(db, order_id, f"order {order_id} cancellation") as order:
        invoice = order.invoice
        if invoice is not None and invoice.status != InvoiceStatus.void:
            raise ConflictError(
                f"Order {order.order_number} has invoice {invoice.invoice_number}; void it first"
            )
        _transition(order, OrderStatus.cancelled)

        charged = _order_charged_cents(db, order)
        if charged:
            DebtLedgerService(db).append(
                order.client,
                -charged,
                DebtAdjustmentType.order_cancellation,
                notes=f"Order {order.order_number} cancelled",
                ref_type="ORDER",
                ref_id=order.id,
            )

    logger.info(f"Order {order.order_number} cancelled")
    return order


def get_order_statuses() -> List[str]:
    return [status.value for status in OrderStatus]
