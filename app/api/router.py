from fastapi import APIRouter

from app.api.v1.routes import auctions, conversations, countdowns, health, realtime

api_router = APIRouter()
api_router.include_router(health.router, prefix="/v1", tags=["health"])
api_router.include_router(
    conversations.router, prefix="/v1/conversations", tags=["conversations"]
)
api_router.include_router(
    conversations.admin_router,
    prefix="/v1/admin/conversations",
    tags=["admin-conversations"],
)
api_router.include_router(auctions.router, prefix="/v1/auctions", tags=["auctions"])
api_router.include_router(
    auctions.admin_router, prefix="/v1/admin/auctions", tags=["admin-auctions"]
)
api_router.include_router(countdowns.router, prefix="/v1/countdowns", tags=["countdowns"])
api_router.include_router(
    countdowns.admin_router, prefix="/v1/admin/countdowns", tags=["admin-countdowns"]
)
api_router.include_router(realtime.router, prefix="/v1/realtime", tags=["realtime"])
