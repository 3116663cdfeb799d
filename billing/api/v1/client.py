from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session
from typing import Optional

from billing.core.dependencies import get_db
from billing.core.exceptions import BillingError
from billing.models.client import DebtAdjustmentType
from billing.services.client_service import (
    get_client,
    get_all_clients,
    create_client,
    update_client,
    delete_client,
)
from billing.services.debt_ledger import DebtLedgerService
from billing.schemas.client import (
    ClientCreate,
    ClientUpdate,
    ClientResponse,
    ClientListResponse,
    ClientDebtResponse,
    DebtAdjustmentCreate,
    DebtAdjustmentListResponse,
)
from billing.logger_config import logger

router = APIRouter()


@router.get("", response_model=ClientListResponse)
def get_clients(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db)
):
    """Get all clients with optional search filtering."""
    try:
        clients, total = get_all_clients(db, skip=skip, limit=limit, search=search)
        return ClientListResponse(data=clients, total=total)
    except BillingError:
        raise
    except Exception as e:
        logger.error(f"Error fetching clients: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch clients"
        )


@router.get("/debt-adjustments", response_model=DebtAdjustmentListResponse)
def get_debt_adjustments(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    client_id: Optional[int] = Query(None),
    type: Optional[DebtAdjustmentType] = Query(None),
    db: Session = Depends(get_db)
):
    """Debt ledger entries across all clients, newest first."""
    rows, total = DebtLedgerService(db).list_adjustments(
        client_id=client_id, skip=skip, limit=limit, adjustment_type=type
    )
    return DebtAdjustmentListResponse(data=rows, total=total)


@router.get("/{client_id}", response_model=ClientResponse)
def get_client_route(client_id: int, db: Session = Depends(get_db)):
    return get_client(db, client_id)


@router.post("", response_model=ClientResponse, status_code=status.HTTP_201_CREATED)
def create_client_route(client_data: ClientCreate, db: Session = Depends(get_db)):
    """
    Create a new client.
    A non-zero opening debt becomes the first entry of the client's debt ledger.
    """
    client = create_client(
        db=db,
        name=client_data.name,
        phone=client_data.phone,
        address=client_data.address,
        opening_debt_cents=client_data.opening_debt_cents,
    )
    logger.info(f"client {client.id} created via API")
    return client


@router.put("/{client_id}", response_model=ClientResponse)
def update_client_route(client_id: int, client_data: ClientUpdate, db: Session = Depends(get_db)):
    return update_client(
        db=db,
        client_id=client_id,
        name=client_data.name,
        phone=client_data.phone,
        address=client_data.address,
    )


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client_route(client_id: int, db: Session = Depends(get_db)):
    delete_client(db, client_id)
    return None


# ==================== DEBT LEDGER ====================

@router.post("/{client_id}/debt", response_model=ClientDebtResponse, status_code=status.HTTP_201_CREATED)
def adjust_client_debt(client_id: int, data: DebtAdjustmentCreate, db: Session = Depends(get_db)):
    """Append one adjustment to the client's debt ledger."""
    client, adjustment = DebtLedgerService(db).adjust_debt(
        client_id, data.delta_cents, data.type, notes=data.notes
    )
    return ClientDebtResponse(client=client, adjustment=adjustment)


@router.get("/{client_id}/debt", response_model=DebtAdjustmentListResponse)
def get_client_debt_history(
    client_id: int,
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    get_client(db, client_id)
    rows, total = DebtLedgerService(db).list_adjustments(client_id=client_id, skip=skip, limit=limit)
    return DebtAdjustmentListResponse(data=rows, total=total)
