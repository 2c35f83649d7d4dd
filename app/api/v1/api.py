from fastapi import APIRouter
from app.api.v1.endpoints import clients, debts, stats, reminders

api_router = APIRouter()

api_router.include_router(clients.router, prefix="/clients", tags=["clients"])
api_router.include_router(debts.router, prefix="/debts", tags=["debts"])
api_router.include_router(stats.router, prefix="/stats", tags=["stats"])
api_router.include_router(reminders.router, prefix="/reminders", tags=["reminders"])
