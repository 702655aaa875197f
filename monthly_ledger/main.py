from contextlib import asynccontextmanager

from fastapi import FastAPI

from monthly_ledger.db.core import init_db
from monthly_ledger.logging_config import setup_logging
from monthly_ledger.routers.budgets import router as budgets_router
from monthly_ledger.routers.expenses import router as expenses_router
from monthly_ledger.routers.income_events import router as income_events_router
from monthly_ledger.routers.templates import expense_templates_router, income_templates_router
from monthly_ledger.routers.users import router as users_router

logger = setup_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    init_db()
    logger.info("Monthly ledger API started")
    yield


app = FastAPI(title="Monthly Ledger", lifespan=lifespan)


app.include_router(users_router)
app.include_router(budgets_router)
app.include_router(expenses_router)
app.include_router(income_events_router)
app.include_router(expense_templates_router)
app.include_router(income_templates_router)


@app.get("/")
def read_root():
    return "Server is running."
