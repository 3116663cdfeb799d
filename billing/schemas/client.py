from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from billing.models.client import DebtAdjustmentType


class ClientBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=500)


class ClientCreate(ClientBase):
    opening_debt_cents: int = 0


class ClientUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=500)


class ClientResponse(ClientBase):
    id: int
    debt_cents: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ClientListResponse(BaseModel):
    data: list[ClientResponse]
    total: int


class ClientRef(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


# ==================== DEBT LEDGER ====================

class DebtAdjustmentCreate(BaseModel):
    delta_cents: int
    type: DebtAdjustmentType = DebtAdjustmentType.manual_adjustment
    notes: Optional[str] = None


class DebtAdjustmentResponse(BaseModel):
    id: int
    client_id: int
    previous_debt_cents: int
    new_debt_cents: int
    adjustment_cents: int
    type: DebtAdjustmentType
    ref_type: Optional[str] = None
    ref_id: Optional[int] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DebtAdjustmentListResponse(BaseModel):
    data: list[DebtAdjustmentResponse]
    total: int


class ClientDebtResponse(BaseModel):
    client: ClientResponse
    adjustment: DebtAdjustmentResponse
