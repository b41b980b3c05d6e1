"""API routers for the marketplace backend."""
from fastapi import APIRouter

from . import auth, checkout, health, orders, vendor, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(auth.router)
    api_router.include_router(checkout.router)
    api_router.include_router(orders.router)
    api_router.include_router(vendor.router)
    api_router.include_router(webhooks.router)
    return api_router
