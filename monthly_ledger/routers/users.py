from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
from uuid import UUID

from monthly_ledger.crud import crud_user
from monthly_ledger.models import user as user_models
from monthly_ledger.db.core import get_db

router = APIRouter(
    prefix="/users",
    tags=["users"],
)

@router.post("/", response_model=user_models.UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(user: user_models.UserCreate, db: Session = Depends(get_db)):
    """
    Create a new user.
    """
    try:
        db_user = crud_user.create_db_user(db=db, user_data=user)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return db_user

@router.get("/", response_model=List[user_models.UserResponse])
def read_users(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    """
    Retrieve a list of users.
    """
    return crud_user.read_db_users(db, skip=skip, limit=limit)

@router.get("/{user_id}", response_model=user_models.UserResponse)
def read_user(user_id: int, db: Session = Depends(get_db)):
    """
    Retrieve a single user by their integer ID.
    """
    db_user = crud_user.read_db_user(db, user_id=user_id)
    if db_user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return db_user

@router.get("/uuid/{user_uuid}", response_model=user_models.UserResponse)
def read_user_by_uuid(user_uuid: UUID, db: Session = Depends(get_db)):
    db_user = crud_user.read_db_user(db, user_uuid=user_uuid)
    if db_user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return db_user
