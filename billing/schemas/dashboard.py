from pydantic import BaseModel
from typing import Optional
from datetime import date


class RevenueByMonth(BaseModel):
    month: str
    revenue_cents: int


class TopClient(BaseModel):
    id: int
    name: Optional[str] = None
    order_count: int
    total_paid_cents: int


class DashboardResponse(BaseModel):
    start: Optional[date] = None
    end: Optional[date] = None
    total_orders_month: int
    total_invoices_month: int
    payments_collected_month_cents: int
    outstanding_invoices_count: int
    revenue_by_month: list[RevenueByMonth]
    top_clients: list[TopClient]
