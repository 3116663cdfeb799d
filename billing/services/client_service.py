from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import Optional, List

from billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from billing.models.client import Client, DebtAdjustment, DebtAdjustmentType
from billing.models.invoice import Invoice
from billing.models.order import Order, OrderStatus
from billing.services.debt_ledger import DebtLedgerService
from billing.utils.db import atomic, clamp_page, search_pattern
from billing.utils.locks import client_locks
from billing.utils.money import ensure_cents
from billing.logger_config import logger


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def get_client(db: Session, client_id: int) -> Client:
    """Get client by ID or raise NotFoundError."""
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        logger.warning(f"Client not found: {client_id}")
        raise NotFoundError(f"Client {client_id} not found")
    return client


def get_all_clients(
    db: Session,
    skip: int = 0,
    limit: int = 20,
    search: Optional[str] = None
) -> tuple[List[Client], int]:
    """Get all clients with optional search on name, phone and address."""
    limit, skip = clamp_page(limit, skip)
    query = db.query(Client)

    search_term = search_pattern(search)
    if search_term:
        query = query.filter(
            or_(
                Client.name.ilike(search_term),
                Client.phone.ilike(search_term),
                Client.address.ilike(search_term),
            )
        )

    total = query.count()
    clients = query.order_by(Client.name.asc(), Client.id.asc()).offset(skip).limit(limit).all()

    return clients, total


def create_client(
    db: Session,
    name: str,
    phone: Optional[str] = None,
    address: Optional[str] = None,
    opening_debt_cents: int = 0,
) -> Client:
    """
    Create a new client.

    A non-zero ``opening_debt_cents`` is recorded as the first entry of the
    client's debt ledger rather than written into ``debt_cents``.
    """
    name = _clean(name)
    if not name:
        raise ValidationError("Client name is required")
    ensure_cents(opening_debt_cents, "opening_debt_cents")

    client = Client(name=name, phone=_clean(phone), address=_clean(address), debt_cents=0)

    with atomic(db, "client creation"):
        db.add(client)
        db.flush()  # Flush to get client.id

        if opening_debt_cents:
            with client_locks.hold(client.id):
                DebtLedgerService(db).append(
                    client,
                    opening_debt_cents,
                    DebtAdjustmentType.opening_balance,
                    notes="Opening balance",
                )

    db.refresh(client)
    logger.info(f"Client created: {client.id} ({client.name}), opening debt {opening_debt_cents}")
    return client


def update_client(
    db: Session,
    client_id: int,
    name: Optional[str] = None,
    phone: Optional[str] = None,
    address: Optional[str] = None
) -> Client:
    """Update client contact information. The debt balance is never touched here."""
    client = get_client(db, client_id)

    with atomic(db, f"client {client_id} update"):
        if name is not None:
            name = _clean(name)
            if not name:
                raise ValidationError("Client name is required")
            client.name = name
        if phone is not None:
            client.phone = _clean(phone)
        if address is not None:
            client.address = _clean(address)

    db.refresh(client)
    logger.info(f"Client {client_id} updated")
    return client


def delete_client(db: Session, client_id: int) -> None:
    """
    Delete a client with no billing history.

    Refused while the client has non-cancelled orders, any invoice, or any
    debt ledger entry. Cancelled orders are removed together with the client.
    """
    client = get_client(db, client_id)

    active_orders = (
        db.query(Order)
        .filter(Order.client_id == client_id, Order.status != OrderStatus.cancelled)
        .count()
    )
    if active_orders:
        raise ConflictError("Cannot delete a client with orders that are not cancelled")

    if db.query(Invoice).filter(Invoice.client_id == client_id).count():
        raise ConflictError("Cannot delete a client with invoices")

    if db.query(DebtAdjustment).filter(DebtAdjustment.client_id == client_id).count():
        raise ConflictError("Cannot delete a client with debt history")

    with atomic(db, f"client {client_id} deletion"):
        for order in db.query(Order).filter(Order.client_id == client_id).all():
            db.delete(order)
        db.delete(client)

    logger.info(f"Client {client_id} deleted")
