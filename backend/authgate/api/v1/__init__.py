"""API v1 router configuration."""

from fastapi import APIRouter

from authgate.api.v1 import auth

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
