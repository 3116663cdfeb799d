from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import date, datetime

from billing.models.order import OrderStatus
from billing.schemas.client import ClientRef, ClientResponse


class LineInput(BaseModel):
    """A line either references a product or carries its own name and price."""
    product_id: Optional[int] = None
    name: Optional[str] = Field(None, max_length=255)
    sku: Optional[str] = Field(None, max_length=64)
    unit_price_cents: Optional[int] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    qty: int = Field(..., gt=0)

    @model_validator(mode="after")
    def check_source(self):
        if self.product_id is None and not self.name:
            raise ValueError("A line needs either a product_id or a name")
        return self


class OrderItemCreate(LineInput):
    discount_percent: int = Field(0, ge=0, le=100)


class OrderItemUpdate(BaseModel):
    qty: Optional[int] = Field(None, gt=0)
    discount_percent: Optional[int] = Field(None, ge=0, le=100)


class OrderItemResponse(BaseModel):
    id: int
    product_id: Optional[int] = None
    name_snapshot: str
    sku_snapshot: Optional[str] = None
    qty: int
    unit_price_cents: int
    discount_percent: int
    currency: str
    total_cents: int

    class Config:
        from_attributes = True


class OrderCreate(BaseModel):
    client_id: int
    items: List[OrderItemCreate] = []
    discount_percent: int = Field(0, ge=0, le=100)
    tax_percent: int = Field(0, ge=0, le=100)
    notes: Optional[str] = None
    issue_date: Optional[date] = None
    due_date: Optional[date] = None


class OrderUpdate(BaseModel):
    notes: Optional[str] = None
    discount_percent: Optional[int] = Field(None, ge=0, le=100)
    tax_percent: Optional[int] = Field(None, ge=0, le=100)
    due_date: Optional[date] = None


class OrderResponse(BaseModel):
    id: int
    order_number: str
    client_id: int
    status: OrderStatus
    notes: Optional[str] = None
    discount_percent: int
    tax_percent: int
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
    issue_date: date
    due_date: Optional[date] = None
    client_debt_snapshot_cents: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    client: Optional[ClientRef] = None

    class Config:
        from_attributes = True


class OrderListResponse(BaseModel):
    data: list[OrderResponse]
    total: int


class OrderDetailResponse(BaseModel):
    order: OrderResponse
    client: ClientResponse
    items: list[OrderItemResponse]
    currency: str
    subtotal_cents: int
    discount_cents: int
    tax_cents: int
    total_cents: int
