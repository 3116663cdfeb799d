from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional

from billing.core.dependencies import get_db
from billing.core.exceptions import BillingError
from billing.services.product_service import (
    get_product,
    get_all_products,
    create_product,
    update_product,
    activate_product,
    deactivate_product,
    delete_product,
)
from billing.schemas.product import (
    ProductCreate,
    ProductUpdate,
    ProductResponse,
    ProductListResponse,
)
from billing.logger_config import logger

router = APIRouter()


@router.get("", response_model=ProductListResponse)
def get_products(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    active: Optional[bool] = Query(None),
    db: Session = Depends(get_db)
):
    """Get products, optionally filtered by search text and active flag."""
    try:
        products, total = get_all_products(db, skip=skip, limit=limit, search=search, active=active)
        return ProductListResponse(data=products, total=total)
    except BillingError:
        raise
    except Exception as e:
        logger.error(f"Error fetching products: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch products"
        )


@router.get("/{product_id}", response_model=ProductResponse)
def get_product_route(product_id: int, db: Session = Depends(get_db)):
    return get_product(db, product_id)


@router.post("", response_model=ProductResponse, status_code=status.HTTP_201_CREATED)
def create_product_route(product_data: ProductCreate, db: Session = Depends(get_db)):
    return create_product(db=db, **product_data.model_dump())


@router.put("/{product_id}", response_model=ProductResponse)
def update_product_route(product_id: int, product_data: ProductUpdate, db: Session = Depends(get_db)):
    return update_product(db=db, product_id=product_id, **product_data.model_dump())


@router.post("/{product_id}/activate", response_model=ProductResponse)
def activate_product_route(product_id: int, db: Session = Depends(get_db)):
    return activate_product(db, product_id)


@router.post("/{product_id}/deactivate", response_model=ProductResponse)
def deactivate_product_route(product_id: int, db: Session = Depends(get_db)):
    return deactivate_product(db, product_id)


@router.delete("/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product_route(product_id: int, db: Session = Depends(get_db)):
    """Delete an unused product. Products already on order/invoice lines can only be deactivated."""
    delete_product(db, product_id)
    return None
