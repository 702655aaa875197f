from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional, List
from uuid import uuid4, UUID
from datetime import datetime

from monthly_ledger.db.core import UserDB, NotFoundError
from monthly_ledger.models.user import UserCreate


# ===== DATABASE OPERATIONS =====

def create_db_user(db: Session, user_data: UserCreate) -> UserDB:
    """Create a new user in the database"""

    existing_user = db.query(UserDB).filter(UserDB.email == user_data.email).first()
    if existing_user:
        raise ValueError("Email already registered")

    existing_username = db.query(UserDB).filter(UserDB.username == user_data.username).first()
    if existing_username:
        raise ValueError("Username already taken")

    db_user = UserDB(
        id=uuid4(),
        email=user_data.email,
        username=user_data.username,
        display_name=user_data.display_name,
        created_at=datetime.utcnow(),
        updated_at=datetime.utcnow()
    )

    try:
        db.add(db_user)
        db.commit()
        db.refresh(db_user)
        return db_user
    except IntegrityError:
        db.rollback()
        raise ValueError("User creation failed due to database constraint")


def read_db_user(db: Session, user_id: int = None, user_uuid: UUID = None,
                 email: str = None, username: str = None) -> Optional[UserDB]:
    """Read a user from the database by various identifiers"""

    query = db.query(UserDB)

    if user_id:
        return query.filter(UserDB.db_id == user_id).first()
    elif user_uuid:
        return query.filter(UserDB.id == user_uuid).first()
    elif email:
        return query.filter(UserDB.email == email.lower()).first()
    elif username:
        return query.filter(UserDB.username == username.lower()).first()
    else:
        raise ValueError("Must provide at least one identifier (user_id, user_uuid, email, or username)")


def require_db_user(db: Session, user_id: int) -> UserDB:
    db_user = read_db_user(db, user_id=user_id)
    if not db_user:
        raise NotFoundError(f"User with id {user_id} not found")
    return db_user


def read_db_users(db: Session, skip: int = 0, limit: int = 100) -> List[UserDB]:
    return db.query(UserDB).order_by(UserDB.db_id).offset(skip).limit(limit).all()
