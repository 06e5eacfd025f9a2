from fastapi import APIRouter
from botdesk.api.v1.routes import billing, bots, credentials

api_router = APIRouter()

api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
api_router.include_router(bots.router, prefix="/bots", tags=["bots"])
api_router.include_router(credentials.router, prefix="/credentials", tags=["credentials"])
