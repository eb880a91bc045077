from fastapi import APIRouter

from app.api.v1.endpoints import checkout


# Create main API router
api_router = APIRouter(prefix="/api/v1")

# ==================== Checkout Funnel (Public) ====================
api_router.include_router(
    checkout.router,
    prefix="/checkout",
    tags=["Checkout"]
)
