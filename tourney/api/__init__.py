"""API routers."""

from fastapi import APIRouter

from tourney.api import checkin, wallet

api_router = APIRouter()
api_router.include_router(checkin.router)
api_router.include_router(wallet.router)

__all__ = ["api_router"]
