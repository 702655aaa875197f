from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from monthly_ledger.crud import crud_expense
from monthly_ledger.models import expense as expense_models
from monthly_ledger.db.core import get_db, NotFoundError
from monthly_ledger.routers.dependencies import get_current_user_id

router = APIRouter(
    prefix="/expenses",
    tags=["expenses"],
)

@router.get("/{expense_id}", response_model=expense_models.ExpenseResponse)
def read_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    db_expense = crud_expense.read_db_expense(db=db, expense_id=expense_id, user_id=user_id)
    if db_expense is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Expense not found")
    return db_expense

@router.put("/{expense_id}", response_model=expense_models.ExpenseResponse)
def update_expense(
    expense_id: int,
    expense: expense_models.ExpenseUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Update an expense's name, allotted amount, date or notes.
    """
    try:
        return crud_expense.update_db_expense(db=db, expense_id=expense_id, user_id=user_id, expense_updates=expense)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.delete("/{expense_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Delete a one-off expense. Template expenses are zeroed instead.
    """
    try:
        crud_expense.delete_db_expense(db=db, expense_id=expense_id, user_id=user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.post("/{expense_id}/payments", response_model=expense_models.PaymentResponse, status_code=status.HTTP_201_CREATED)
def add_payment(
    expense_id: int,
    payment: expense_models.PaymentCreate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    try:
        return crud_expense.add_payment(db=db, expense_id=expense_id, user_id=user_id, payment_data=payment)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.delete("/payments/{payment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_payment(
    payment_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    try:
        crud_expense.delete_payment(db=db, payment_id=payment_id, user_id=user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

@router.post("/{expense_id}/mark-paid", response_model=expense_models.PaymentResponse, status_code=status.HTTP_201_CREATED)
def mark_expense_paid(
    expense_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_current_user_id)
):
    """
    Pay whatever is left on a current-month expense in a single payment.
    """
    try:
        return crud_expense.mark_expense_paid(db=db, expense_id=expense_id, user_id=user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
