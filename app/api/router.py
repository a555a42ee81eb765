from fastapi import APIRouter
from app.api.endpoints import assistant, reports

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(assistant.router)
api_router.include_router(reports.router)
