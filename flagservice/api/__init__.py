"""API router aggregation"""
from fastapi import APIRouter

from flagservice.api.v1 import feature_management, health

api_router = APIRouter()

# v1
v1_router = APIRouter(prefix="/v1")

v1_router.include_router(
    feature_management.router, prefix="/feature-management", tags=["feature-management"]
)
v1_router.include_router(health.router, tags=["health"])

api_router.include_router(v1_router)

__all__ = ["api_router"]
