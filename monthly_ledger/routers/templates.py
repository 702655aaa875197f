"""
Routers for recurring templates.

Expense and income templates expose the same endpoints, so both routers are
built by ``build_template_router`` from their model and schema classes.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from monthly_ledger.crud import crud_template
from monthly_ledger.models import template as template_models
from monthly_ledger.db.core import ExpenseTemplateDB, IncomeTemplateDB, get_db, NotFoundError
from monthly_ledger.routers.dependencies import get_current_user_id


def build_template_router(prefix: str, tag: str, model, create_schema, update_schema, response_schema) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])

    @router.post("/", response_model=response_schema, status_code=status.HTTP_201_CREATED)
    def create_template(
        template: create_schema,
        db: Session = Depends(get_db),
        user_id: int = Depends(get_current_user_id)
    ):
        try:
            return crud_template.create_db_template(db=db, model=model, user_id=user_id, template_data=template)
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @router.get("/", response_model=List[response_schema])
    def read_templates(
        include_deleted: bool = False,
        deleted_only: bool = False,
        db: Session = Depends(get_db),
        user_id: int = Depends(get_current_user_id)
    ):
        """
        Retrieve the current user's templates; deleted ones only when asked for.
        """
        return crud_template.read_db_templates(
            db=db, model=model, user_id=user_id,
            include_deleted=include_deleted, deleted_only=deleted_only
        )

    @router.get("/{template_id}", response_model=response_schema)
    def read_template(
        template_id: int,
        db: Session = Depends(get_db),
        user_id: int = Depends(get_current_user_id)
    ):
        db_template = crud_template.read_db_template(db=db, model=model, template_id=template_id, user_id=user_id,
                                                     include_deleted=True)
        if db_template is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
        return db_template

    @router.put("/{template_id}", response_model=response_schema)
    def update_template(
        template_id: int,
        template: update_schema,
        db: Session = Depends(get_db),
        user_id: int = Depends(get_current_user_id)
    ):
        """
        Update a template. Expenses and income already created from it keep their amounts.
        """
        try:
            return crud_template.update_db_template(db=db, model=model, template_id=template_id,
                                                    user_id=user_id, template_updates=template)
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    @router.delete("/{template_id}", response_model=response_schema)
    def delete_template(
        template_id: int,
        db: Session = Depends(get_db),
        user_id: int = Depends(get_current_user_id)
    ):
        """
        Turn a template off. It stops appearing in new months; past entries stay.
        """
        try:
            return crud_template.soft_delete_db_template(db=db, model=model, template_id=template_id, user_id=user_id)
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @router.post("/{template_id}/reactivate", response_model=response_schema)
    def reactivate_template(
        template_id: int,
        db: Session = Depends(get_db),
        user_id: int = Depends(get_current_user_id)
    ):
        try:
            return crud_template.restore_db_template(db=db, model=model, template_id=template_id, user_id=user_id)
        except NotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return router


expense_templates_router = build_template_router(
    prefix="/expense-templates",
    tag="expense-templates",
    model=ExpenseTemplateDB,
    create_schema=template_models.ExpenseTemplateCreate,
    update_schema=template_models.ExpenseTemplateUpdate,
    response_schema=template_models.ExpenseTemplateResponse,
)

income_templates_router = build_template_router(
    prefix="/income-templates",
    tag="income-templates",
    model=IncomeTemplateDB,
    create_schema=template_models.IncomeTemplateCreate,
    update_schema=template_models.IncomeTemplateUpdate,
    response_schema=template_models.IncomeTemplateResponse,
)
