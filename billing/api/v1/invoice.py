from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional

from billing.core.dependencies import get_db
from billing.core.exceptions import BillingError
from billing.models.invoice import InvoiceStatus
from billing.services.invoice_service import (
    get_invoice_detail,
    get_all_invoices,
    create_standalone,
    update_draft_invoice,
    issue_invoice,
    void_invoice,
    record_payment,
    reverse_payment,
)
from billing.schemas.invoice import (
    InvoiceCreate,
    InvoiceUpdate,
    InvoiceResponse,
    InvoiceListResponse,
    InvoiceDetailResponse,
    PaymentCreate,
    PaymentReverse,
    PaymentResponse,
)
from billing.logger_config import logger

router = APIRouter()


@router.get("", response_model=InvoiceListResponse)
def get_invoices(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    client_id: Optional[int] = Query(None),
    status_filter: Optional[InvoiceStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db)
):
    """List invoices; search matches the invoice number, notes and client name."""
    try:
        invoices, total = get_all_invoices(
            db, skip=skip, limit=limit, search=search, client_id=client_id, status=status_filter
        )
        return InvoiceListResponse(data=invoices, total=total)
    except BillingError:
        raise
    except Exception as e:
        logger.error(f"Error fetching invoices: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch invoices"
        )


@router.get("/{invoice_id}", response_model=InvoiceDetailResponse)
def get_invoice_route(invoice_id: int, db: Session = Depends(get_db)):
    return get_invoice_detail(db, invoice_id)


@router.post("", response_model=InvoiceDetailResponse, status_code=status.HTTP_201_CREATED)
def create_invoice_route(invoice_data: InvoiceCreate, db: Session = Depends(get_db)):
    """Create a standalone draft invoice (not derived from an order)."""
    invoice = create_standalone(
        db=db,
        client_id=invoice_data.client_id,
        items=[item.model_dump() for item in invoice_data.items],
        discount_percent=invoice_data.discount_percent,
        tax_percent=invoice_data.tax_percent,
        currency=invoice_data.currency,
        notes=invoice_data.notes,
        issue_date=invoice_data.issue_date,
        due_date=invoice_data.due_date,
    )
    return get_invoice_detail(db, invoice.id)


@router.put("/{invoice_id}", response_model=InvoiceDetailResponse)
def update_invoice_route(invoice_id: int, invoice_data: InvoiceUpdate, db: Session = Depends(get_db)):
    items = invoice_data.items
    update_draft_invoice(
        db=db,
        invoice_id=invoice_id,
        notes=invoice_data.notes,
        due_date=invoice_data.due_date,
        items=[item.model_dump() for item in items] if items is not None else None,
        discount_percent=invoice_data.discount_percent,
        tax_percent=invoice_data.tax_percent,
    )
    return get_invoice_detail(db, invoice_id)


@router.post("/{invoice_id}/issue", response_model=InvoiceResponse)
def issue_invoice_route(invoice_id: int, db: Session = Depends(get_db)):
    return issue_invoice(db, invoice_id)


@router.post("/{invoice_id}/void", response_model=InvoiceResponse)
def void_invoice_route(invoice_id: int, db: Session = Depends(get_db)):
    return void_invoice(db, invoice_id)


# ==================== PAYMENTS ====================

@router.post("/{invoice_id}/payments", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def record_payment_route(invoice_id: int, payment_data: PaymentCreate, db: Session = Depends(get_db)):
    return record_payment(db=db, invoice_id=invoice_id, **payment_data.model_dump())


@router.post("/payments/{payment_id}/reverse", response_model=PaymentResponse, status_code=status.HTTP_201_CREATED)
def reverse_payment_route(
    payment_id: int,
    data: Optional[PaymentReverse] = None,
    db: Session = Depends(get_db)
):
    """Compensate a payment with a negative one; the original row is kept."""
    return reverse_payment(db, payment_id, notes=data.notes if data else None)
