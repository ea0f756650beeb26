from __future__ import annotations

from fastapi import APIRouter

from compound_access.api.routes import access, scans

api_router = APIRouter()

api_router.include_router(access.router, prefix="/access", tags=["access"])
api_router.include_router(scans.router, prefix="/access/scans", tags=["scan-ledger"])
