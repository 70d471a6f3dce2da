from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from .models import GroupHeader, PulseView
from .pulse_service import PulseService, get_pulse_service

router = APIRouter(prefix="/api")

ServiceDep = Annotated[PulseService, Depends(get_pulse_service)]


@router.get("/groups/{slug}", response_model=GroupHeader)
def get_group_route(slug: str, service: ServiceDep) -> GroupHeader:
    header = service.get_group_header(slug)
    if header is None:
        raise HTTPException(status_code=404, detail="Group not found.")
    return header


@router.get("/groups/{slug}/pulse", response_model=PulseView)
def get_group_pulse_route(
    slug: str,
    service: ServiceDep,
    refresh: bool = Query(default=False),
) -> PulseView:
    # Sync handler: FastAPI runs it in its threadpool, so the view cache's
    # per-key lock blocks only requests for the same group.
    view = service.get_pulse(slug, force_refresh=refresh)
    if view is None:
        raise HTTPException(status_code=404, detail="Group not found.")
    return view
