from __future__ import annotations

from fastapi import APIRouter

router = APIRouter(tags=["misc"])


@router.get("/api/ping")
@router.get("/healthz")
async def ping():
    return {"ok": True}
