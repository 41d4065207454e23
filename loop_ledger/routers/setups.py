from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from loop_ledger.auth.deps import get_services
from loop_ledger.core.errors import InvalidRequest
from loop_ledger.core.normalize import normalize_id
from loop_ledger.models import SaveSetupReq

router = APIRouter(tags=["setups"])


def _device_or_400(value: Any) -> str:
    device_id = normalize_id(value, "device_id")
    if not device_id:
        raise InvalidRequest("device_id required")
    return device_id


@router.post("/api/save-setup")
@router.post("/save-setup")
def save_setup(body: SaveSetupReq, services=Depends(get_services)) -> Dict[str, Any]:
    device_id = _device_or_400(body.device_id)
    item = services.setups.save(device_id, body.model_dump(exclude={"device_id"}))
    return {"ok": True, "setup_id": item["setup_id"]}


@router.get("/api/setups/{device_id}")
@router.get("/setups/{device_id}")
def list_setups(device_id: str, limit: int = 50, services=Depends(get_services)) -> Dict[str, Any]:
    return {"items": services.setups.list(_device_or_400(device_id), limit=limit)}
