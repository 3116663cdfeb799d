from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = None
    unit_price_cents: int = Field(..., ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class ProductCreate(ProductBase):
    active: bool = True


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=64)
    description: Optional[str] = None
    unit_price_cents: Optional[int] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class ProductResponse(ProductBase):
    id: int
    currency: str
    active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProductListResponse(BaseModel):
    data: list[ProductResponse]
    total: int
