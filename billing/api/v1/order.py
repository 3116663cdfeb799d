from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional

from billing.core.dependencies import get_db
from billing.core.exceptions import BillingError
from billing.models.order import OrderStatus
from billing.services.order_service import (
    get_order_detail,
    get_all_orders,
    get_order_statuses,
    create_order,
    update_order,
    add_item,
    update_item,
    remove_item,
    confirm_order,
    fulfill_order,
    cancel_order,
)
from billing.services.invoice_service import generate_from_order
from billing.schemas.order import (
    OrderCreate,
    OrderUpdate,
    OrderItemCreate,
    OrderItemUpdate,
    OrderItemResponse,
    OrderResponse,
    OrderListResponse,
    OrderDetailResponse,
)
from billing.schemas.invoice import InvoiceFromOrder, InvoiceResponse
from billing.logger_config import logger

router = APIRouter()


@router.get("", response_model=OrderListResponse)
def get_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    client_id: Optional[int] = Query(None),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    sort: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """List orders; search matches the order number, notes and client name."""
    try:
        orders, total = get_all_orders(
            db, skip=skip, limit=limit, search=search,
            client_id=client_id, status=status_filter, sort=sort
        )
        return OrderListResponse(data=orders, total=total)
    except BillingError:
        raise
    except Exception as e:
        logger.error(f"Error fetching orders: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch orders"
        )


@router.get("/statuses")
def list_order_statuses():
    return {"data": get_order_statuses()}


@router.get("/{order_id}", response_model=OrderDetailResponse)
def get_order_route(order_id: int, db: Session = Depends(get_db)):
    return get_order_detail(db, order_id)


@router.post("", response_model=OrderDetailResponse, status_code=status.HTTP_201_CREATED)
def create_order_route(order_data: OrderCreate, db: Session = Depends(get_db)):
    order = create_order(
        db=db,
        client_id=order_data.client_id,
        items=[item.model_dump() for item in order_data.items],
        discount_percent=order_data.discount_percent,
        tax_percent=order_data.tax_percent,
        notes=order_data.notes,
        issue_date=order_data.issue_date,
        due_date=order_data.due_date,
    )
    return get_order_detail(db, order.id)


@router.put("/{order_id}", response_model=OrderDetailResponse)
def update_order_route(order_id: int, order_data: OrderUpdate, db: Session = Depends(get_db)):
    update_order(db=db, order_id=order_id, **order_data.model_dump())
    return get_order_detail(db, order_id)


# ==================== LINE ITEMS ====================

@router.post("/{order_id}/items", response_model=OrderItemResponse, status_code=status.HTTP_201_CREATED)
def add_order_item(order_id: int, item_data: OrderItemCreate, db: Session = Depends(get_db)):
    return add_item(db=db, order_id=order_id, **item_data.model_dump())


@router.put("/{order_id}/items/{item_id}", response_model=OrderItemResponse)
def update_order_item(order_id: int, item_id: int, item_data: OrderItemUpdate, db: Session = Depends(get_db)):
    return update_item(db=db, order_id=order_id, item_id=item_id, **item_data.model_dump())


@router.delete("/{order_id}/items/{item_id}", response_model=OrderDetailResponse)
def remove_order_item(order_id: int, item_id: int, db: Session = Depends(get_db)):
    remove_item(db, order_id, item_id)
    return get_order_detail(db, order_id)


# ==================== STATUS CHANGES ====================

@router.post("/{order_id}/confirm", response_model=OrderResponse)
def confirm_order_route(order_id: int, db: Session = Depends(get_db)):
    return confirm_order(db, order_id)


@router.post("/{order_id}/fulfill", response_model=OrderResponse)
def fulfill_order_route(order_id: int, db: Session = Depends(get_db)):
    return fulfill_order(db, order_id)


@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order_route(order_id: int, db: Session = Depends(get_db)):
    return cancel_order(db, order_id)


@router.post("/{order_id}/invoice", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
def generate_invoice_route(
    order_id: int,
    data: Optional[InvoiceFromOrder] = None,
    db: Session = Depends(get_db)
):
    """Derive a draft invoice from the order's current lines and totals."""
    data = data or InvoiceFromOrder()
    return generate_from_order(
        db, order_id, issue_date=data.issue_date, due_date=data.due_date, notes=data.notes
    )
