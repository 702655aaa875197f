from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from monthly_ledger.crud import crud_income_event
from monthly_ledger.models import income_event as income_event_models
from monthly_ledger.db.core import get_db, NotFoundError
from monthly_ledger.routers.dependencies import get_current_user_id

router = APIRouter(
    prefix="/income-events",
    tags=["income-events"],
)

@router.post("/", response_model=income_event_models.IncomeEventResponse, status_code=status.HTTP_201_CREATED)
def create_income_event(
    event: income_event_models.IncomeEventCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Record one-off income. It is filed under the month it was received in.
    """
    try:
        return crud_income_event.create_one_off_income_event(db=db, user_id=user_id, event_data=event)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.get("/{event_id}", response_model=income_event_models.IncomeEventResponse)
def read_income_event(
    event_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    db_event = crud_income_event.read_db_income_event(db=db, event_id=event_id, user_id=user_id)
    if db_event is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Income event not found")
    return db_event

@router.put("/{event_id}", response_model=income_event_models.IncomeEventResponse)
def update_income_event(
    event_id: int,
    event: income_event_models.IncomeEventUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Update an income event; changing the date can move it to another month.
    """
    try:
        return crud_income_event.update_db_income_event(db=db, event_id=event_id, user_id=user_id, event_updates=event)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.post("/{event_id}/toggle-deferral", response_model=income_event_models.IncomeEventResponse)
def toggle_income_event_deferral(
    event_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Count this income toward next month's budget, or back toward its own month.
    """
    try:
        return crud_income_event.toggle_income_event_deferral(db=db, event_id=event_id, user_id=user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.post("/{event_id}/mark-received", response_model=income_event_models.IncomeEventResponse)
def mark_income_event_received(
    event_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    try:
        return crud_income_event.mark_income_event_received(db=db, event_id=event_id, user_id=user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_income_event(
    event_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Delete one-off income. Income from a template is zeroed instead.
    """
    try:
        crud_income_event.delete_db_income_event(db=db, event_id=event_id, user_id=user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
