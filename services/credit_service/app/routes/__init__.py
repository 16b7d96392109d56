from fastapi import APIRouter, FastAPI

from . import admin, auth, system, topups, transactions, wallet


def register_routes(app: FastAPI) -> None:
    router = APIRouter(prefix="/api/v1")
    router.include_router(auth.router, prefix="/auth", tags=["auth"])
    router.include_router(wallet.router, prefix="/wallet", tags=["wallet"])
    router.include_router(transactions.router, prefix="/transactions", tags=["transactions"])
    router.include_router(topups.router, prefix="/topups", tags=["topups"])
    router.include_router(admin.router, prefix="/admin", tags=["admin"])
    router.include_router(system.router, tags=["system"])
    app.include_router(router)
