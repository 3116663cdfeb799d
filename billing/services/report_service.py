from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from billing.core.config import settings
from billing.core.exceptions import ValidationError
from billing.models.client import Client
from billing.models.invoice import Invoice, InvoiceStatus, Payment
from billing.models.order import Order, OrderStatus
from billing.utils.timeutils import today_utc
from billing.logger_config import logger


NAMED_RANGES = ("month", "quarter", "year", "all")


@dataclass(frozen=True)
class TimeRange:
    """Inclusive date range; ``None`` bounds are open."""
    start: Optional[date] = None
    end: Optional[date] = None

    def __post_init__(self):
        if self.start and self.end and self.start > self.end:
            raise ValidationError("Range start cannot be after its end")

    def start_dt(self) -> Optional[datetime]:
        return datetime.combine(self.start, time.min) if self.start else None

    def end_dt(self) -> Optional[datetime]:
        # Exclusive upper bound for timestamp columns
        return datetime.combine(self.end + timedelta(days=1), time.min) if self.end else None


def resolve_time_range(name: str = "month", today: Optional[date] = None) -> TimeRange:
    """Turn ``month``/``quarter``/``year``/``all`` into a range ending today."""
    today = today or today_utc()
    name = (name or "month").lower()

    if name == "month":
        return TimeRange(today.replace(day=1), today)
    if name == "quarter":
        first_month = 3 * ((today.month - 1) // 3) + 1
        return TimeRange(today.replace(month=first_month, day=1), today)
    if name == "year":
        return TimeRange(today.replace(month=1, day=1), today)
    if name == "all":
        return TimeRange()
    raise ValidationError(f"Unknown time range {name!r}; expected one of {', '.join(NAMED_RANGES)}")


class DashboardService:
    """Read-only rollups over orders, invoices and payments."""

    def __init__(self, db: Session):
        self.db = db

    def _filter_date(self, query, column, time_range: TimeRange):
        if time_range.start:
            query = query.filter(column >= time_range.start)
        if time_range.end:
            query = query.filter(column <= time_range.end)
        return query

    def _filter_timestamp(self, query, column, time_range: TimeRange):
        if time_range.start:
            query = query.filter(column >= time_range.start_dt())
        if time_range.end:
            query = query.filter(column < time_range.end_dt())
        return query

    # ================= COUNTS =================

    def count_orders(self, time_range: TimeRange) -> int:
        query = self.db.query(func.count(Order.id)).filter(Order.status != OrderStatus.cancelled)
        return int(self._filter_date(query, Order.issue_date, time_range).scalar() or 0)

    def count_invoices(self, time_range: TimeRange) -> int:
        query = self.db.query(func.count(Invoice.id)).filter(Invoice.status != InvoiceStatus.void)
        return int(self._filter_date(query, Invoice.issue_date, time_range).scalar() or 0)

    def payments_collected(self, time_range: TimeRange) -> int:
        """Net of reversals."""
        query = self.db.query(func.coalesce(func.sum(Payment.amount_cents), 0))
        return int(self._filter_timestamp(query, Payment.paid_at, time_range).scalar() or 0)

    def outstanding_invoices(self) -> int:
        """Point-in-time: issued invoices that still carry a balance."""
        return (
            self.db.query(func.count(Invoice.id))
            .filter(
                Invoice.balance_cents > 0,
                Invoice.status.notin_([InvoiceStatus.draft, InvoiceStatus.void]),
            )
            .scalar()
            or 0
        )

    # ================= ROLLUPS =================

    def revenue_by_month(self, time_range: TimeRange) -> List[Dict]:
        """Payment amounts bucketed by the calendar month of ``paid_at``."""
        query = self.db.query(Payment.paid_at, Payment.amount_cents)
        rows = self._filter_timestamp(query, Payment.paid_at, time_range).all()

        buckets = defaultdict(int)
        for paid_at, amount in rows:
            buckets[paid_at.strftime("%Y-%m")] += int(amount)

        return [
            {"month": month, "revenue_cents": buckets[month]}
            for month in sorted(buckets)
        ]

    def top_clients(self, time_range: TimeRange, limit: Optional[int] = None) -> List[Dict]:
        """Clients ranked by amount paid in the range, ties broken by id."""
        limit = limit or settings.TOP_CLIENTS_LIMIT

        paid_query = (
            self.db.query(Invoice.client_id, func.sum(Payment.amount_cents))
            .join(Invoice, Payment.invoice_id == Invoice.id)
        )
        paid_rows = (
            self._filter_timestamp(paid_query, Payment.paid_at, time_range)
            .group_by(Invoice.client_id)
            .all()
        )

        order_query = (
            self.db.query(Order.client_id, func.count(Order.id))
            .filter(Order.status != OrderStatus.cancelled)
        )
        order_rows = (
            self._filter_date(order_query, Order.issue_date, time_range)
            .group_by(Order.client_id)
            .all()
        )

        paid = {client_id: int(total or 0) for client_id, total in paid_rows}
        orders = {client_id: int(count) for client_id, count in order_rows}
        client_ids = set(paid) | set(orders)
        if not client_ids:
            return []

        names = dict(
            self.db.query(Client.id, Client.name).filter(Client.id.in_(client_ids)).all()
        )
        ranked = sorted(client_ids, key=lambda cid: (-paid.get(cid, 0), cid))[:limit]

        return [
            {
                "id": cid,
                "name": names.get(cid),
                "order_count": orders.get(cid, 0),
                "total_paid_cents": paid.get(cid, 0),
            }
            for cid in ranked
        ]

    def get_dashboard(self, time_range: Union[TimeRange, str, None] = None) -> Dict:
        if time_range is None or isinstance(time_range, str):
            time_range = resolve_time_range(time_range or "month")

        logger.info(f"Building dashboard for {time_range.start} .. {time_range.end}")

        return {
            "start": time_range.start,
            "end": time_range.end,
            "total_orders_month": self.count_orders(time_range),
            "total_invoices_month": self.count_invoices(time_range),
            "payments_collected_month_cents": self.payments_collected(time_range),
            "outstanding_invoices_count": self.outstanding_invoices(),
            "revenue_by_month": self.revenue_by_month(time_range),
            "top_clients": self.top_clients(time_range),
        }
