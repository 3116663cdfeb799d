from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import date, datetime

from billing.models.invoice import InvoiceStatus, PaymentMethod
from billing.schemas.client import ClientRef, ClientResponse
from billing.schemas.order import LineInput


class InvoiceFromOrder(BaseModel):
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None


class InvoiceCreate(BaseModel):
    client_id: int
    items: List[LineInput] = Field(..., min_length=1)
    discount_percent: int = Field(0, ge=0, le=100)
    tax_percent: int = Field(0, ge=0, le=100)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    notes: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None


class InvoiceUpdate(BaseModel):
    notes: Optional[str] = None
    due_date: Optional[date] = None
    items: Optional[List[LineInput]] = None
    discount_percent: Optional[int] = Field(None, ge=0, le=100)
    tax_percent: Optional[int] = Field(None, ge=0, le=100)


class InvoiceItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    name_snapshot: str
    sku_snapshot: Optional[str] = None
    qty: int
    unit_price_cents: int
    currency: str
    total_cents: int

    class Config:
        from_attributes = True


class InvoiceResponse(BaseModel):
    id: int
    invoice_number: str
    order_id: Optional[int] = None
    client_id: int
    status: InvoiceStatus
    issue_date: date
    due_date: Optional[date] = None
    notes: Optional[str] = None
    subtotal_cents: int
    discount_percent: int
    tax_percent: int
    total_cents: int
    currency: str
    paid_cents: int
    balance_cents: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    client: Optional[ClientRef] = None

    class Config:
        from_attributes = True


class InvoiceListResponse(BaseModel):
    data: list[InvoiceResponse]
    total: int


# ==================== PAYMENTS ====================

class PaymentCreate(BaseModel):
    amount_cents: int = Field(..., gt=0)
    method: PaymentMethod = PaymentMethod.CASH
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None
    paid_at: Optional[datetime] = None
    credit_overpayment: Optional[bool] = None


class PaymentReverse(BaseModel):
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: int
    invoice_id: int
    amount_cents: int
    method: PaymentMethod
    reference: Optional[str] = None
    paid_at: datetime
    notes: Optional[str] = None
    reversal_of_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InvoiceDetailResponse(BaseModel):
    invoice: InvoiceResponse
    client: ClientResponse
    items: list[InvoiceItemResponse]
    payments: list[PaymentResponse]
    paid_cents: int
    balance_cents: int
