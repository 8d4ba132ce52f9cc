from fastapi import APIRouter
from app.api.endpoints import countries

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(countries.router)
