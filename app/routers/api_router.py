from fastapi import APIRouter
from app.routers import salaries, debts

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(salaries.router, tags=["Salaries"])
api_router.include_router(debts.router, tags=["Company Debts"])
