from __future__ import annotations
from fastapi import APIRouter, Depends

from ..schemas import Stats
from ..state import Coordinator
from .deps import get_coordinator

router = APIRouter(tags=["system"])


@router.get("/health")
def health_check(coord: Coordinator = Depends(get_coordinator)) -> dict:
    return coord.health()


@router.get("/stats", response_model=Stats)
def stats(coord: Coordinator = Depends(get_coordinator)) -> Stats:
    return coord.stats()
