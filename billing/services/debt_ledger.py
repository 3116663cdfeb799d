"""
Client Debt Ledger

A client's debt is never a freely writable number. Every change is one
append-only ``DebtAdjustment`` row carrying the balance before and after, and
``Client.debt_cents`` is only a cache of the newest row's ``new_debt_cents``.

Example:
- opening balance 0
- order confirmed for 2363  -> 0 -> 2363   (order_charge)
- payment of 1000           -> 2363 -> 1363 (payment_credit)
- manual correction of -63  -> 1363 -> 1300 (manual_adjustment)

Read-current + append + update-cache runs under the client's lock and inside
one transaction, so concurrent adjustments for the same client are strictly
ordered and none of them is lost.
"""

from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from billing.core.exceptions import ValidationError
from billing.models.client import Client, DebtAdjustment, DebtAdjustmentType
from billing.utils.db import atomic, clamp_page
from billing.utils.locks import client_locks
from billing.utils.money import ensure_cents
from billing.logger_config import logger


def coerce_adjustment_type(value) -> DebtAdjustmentType:
    try:
        return DebtAdjustmentType(value)
    except ValueError:
        raise ValidationError(f"Unknown debt adjustment type: {value!r}")


class DebtLedgerService:
    """Single source of truth for how much each client owes."""

    def __init__(self, db: Session):
        self.db = db

    # ================= READ =================

    def last_adjustment(self, client_id: int) -> Optional[DebtAdjustment]:
        return (
            self.db.query(DebtAdjustment)
            .filter(DebtAdjustment.client_id == client_id)
            .order_by(DebtAdjustment.id.desc())
            .first()
        )

    def current_balance(self, client_id: int) -> int:
        """New balance of the latest adjustment, or 0 when the client has none."""
        last = self.last_adjustment(client_id)
        return last.new_debt_cents if last else 0

    def replayed_balance(self, client_id: int) -> int:
        """Balance rebuilt from the deltas alone; equals ``current_balance`` on a healthy ledger."""
        total = (
            self.db.query(func.coalesce(func.sum(DebtAdjustment.adjustment_cents), 0))
            .filter(DebtAdjustment.client_id == client_id)
            .scalar()
        )
        return int(total or 0)

    def list_adjustments(
        self,
        client_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 20,
        adjustment_type: Optional[DebtAdjustmentType] = None,
    ) -> Tuple[List[DebtAdjustment], int]:
        limit, skip = clamp_page(limit, skip)

        query = self.db.query(DebtAdjustment).options(joinedload(DebtAdjustment.client))
        if client_id:
            query = query.filter(DebtAdjustment.client_id == client_id)
        if adjustment_type:
            query = query.filter(DebtAdjustment.type == adjustment_type)

        total = query.count()
        rows = query.order_by(DebtAdjustment.id.desc()).offset(skip).limit(limit).all()

        logger.debug(f"Retrieved {len(rows)} debt adjustments out of {total} (client={client_id})")
        return rows, total

    # ================= WRITE =================

    def lock_client(self, client_id: int) -> Optional[Client]:
        """Load the client row with a row lock where the backend supports one."""
        return (
            self.db.query(Client)
            .filter(Client.id == client_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def append(
        self,
        client: Client,
        delta_cents: int,
        adjustment_type: DebtAdjustmentType,
        notes: Optional[str] = None,
        ref_type: Optional[str] = None,
        ref_id: Optional[int] = None,
    ) -> DebtAdjustment:
        """
        Append one adjustment and refresh the client's cached balance.

        Does not commit. Callers must hold ``client_locks.hold(client.id)`` and
        commit (or roll back) inside it so the chain stays contiguous.
        """
        ensure_cents(delta_cents, "delta_cents")

        previous = self.current_balance(client.id)
        new = previous + delta_cents

        adjustment = DebtAdjustment(
            client_id=client.id,
            previous_debt_cents=previous,
            new_debt_cents=new,
            adjustment_cents=delta_cents,
            type=adjustment_type,
            ref_type=ref_type,
            ref_id=ref_id,
            notes=notes,
        )
        self.db.add(adjustment)
        client.debt_cents = new
        self.db.flush()

        logger.info(
            f"Debt adjusted - Client: {client.id}, Type: {adjustment_type.value}, "
            f"Delta: {delta_cents}, Balance: {previous} -> {new}"
        )
        return adjustment

    def adjust_debt(
        self,
        client_id: int,
        delta_cents: int,
        adjustment_type=DebtAdjustmentType.manual_adjustment,
        notes: Optional[str] = None,
    ) -> Tuple[Client, DebtAdjustment]:
        """
        Move a client's debt by ``delta_cents`` (negative = client owes less).

        No lower bound: a negative balance means the client is in credit.
        """
        ensure_cents(delta_cents, "delta_cents")
        if delta_cents == 0:
            raise ValidationError("Debt adjustment must not be zero")
        adjustment_type = coerce_adjustment_type(adjustment_type)

        with client_locks.hold(client_id):
            with atomic(self.db, f"debt adjustment for client {client_id}"):
                client = self.lock_client(client_id)
                if not client:
                    raise ValidationError(f"Client {client_id} does not exist")
                adjustment = self.append(client, delta_cents, adjustment_type, notes=notes)

        return client, adjustment
