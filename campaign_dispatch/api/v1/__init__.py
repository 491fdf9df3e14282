"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import marketing

api_router = APIRouter()

api_router.include_router(
    marketing.router,
    prefix="/marketing",
    tags=["marketing"]
)
