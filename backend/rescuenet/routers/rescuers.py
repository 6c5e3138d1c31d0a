from __future__ import annotations
from typing import List

from fastapi import APIRouter, Body, Depends

from ..schemas import HeartbeatIn, RescuerIn, RescuerOut, RescuerRegistered
from ..state import Coordinator
from .deps import get_coordinator

router = APIRouter(prefix="/rescuers", tags=["rescuers"])


@router.post("/register", status_code=201, response_model=RescuerRegistered)
def register_rescuer(payload: RescuerIn = Body(...),
                     coord: Coordinator = Depends(get_coordinator)) -> RescuerRegistered:
    rescuer = coord.rescuers.register(payload.name, payload.phone, payload.organization)
    return RescuerRegistered(rescuer=rescuer)


@router.post("/heartbeat")
def heartbeat(payload: HeartbeatIn = Body(...), coord: Coordinator = Depends(get_coordinator)) -> dict:
    rescuer = coord.rescuers.heartbeat(payload.id)
    return {"ok": True, "lastSeen": rescuer.last_seen}


@router.get("", response_model=List[RescuerOut])
def list_rescuers(coord: Coordinator = Depends(get_coordinator)) -> List[RescuerOut]:
    return coord.rescuers.list()
