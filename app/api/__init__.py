"""API routers package."""
from app.api.transactions import router as transactions_router
from app.api.notifications import router as notifications_router

__all__ = [
    "transactions_router",
    "notifications_router",
]
