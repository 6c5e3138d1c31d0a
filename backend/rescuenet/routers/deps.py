from __future__ import annotations
from fastapi import Request

from ..state import Coordinator


def get_coordinator(request: Request) -> Coordinator:
    return request.app.state.coordinator
