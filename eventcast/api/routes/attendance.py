"""
FastAPI routes for attendance tracking.

Selecting an event starts its periodic refresh; the current partition is
served from the reconciler cache.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from eventcast.api.dependencies import get_engine, http_error
from eventcast.schemas import RSVPUpdateNotification
from eventcast.services.base_service import ServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/attendance", tags=["attendance"])


@router.post("/{event_id}/select")
async def select_event(event_id: str, engine=Depends(get_engine)):
    try:
        engine.events.get_event(event_id)
    except ServiceError as e:
        raise http_error(e)
    engine.reconciler.select(event_id)
    return {"selected": event_id}


@router.post("/deselect")
async def deselect_event(engine=Depends(get_engine)):
    previous = engine.reconciler.selected_event_id
    engine.reconciler.deselect()
    return {"deselected": previous}


@router.post("/{event_id}/refresh")
async def refresh_attendance(event_id: str, engine=Depends(get_engine)):
    try:
        engine.events.get_event(event_id)
    except ServiceError as e:
        raise http_error(e)
    snapshot = await engine.reconciler.refresh(event_id)
    if snapshot is None:
        raise HTTPException(status_code=409, detail="Refresh discarded; event is no longer selected")
    return snapshot.model_dump(mode='json')


@router.get("/{event_id}")
async def current_attendance(event_id: str, engine=Depends(get_engine)):
    snapshot = engine.reconciler.partition(event_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No attendance loaded for this event")
    return snapshot.model_dump(mode='json')


@router.post("/updates")
async def push_update(notification: RSVPUpdateNotification, engine=Depends(get_engine)):
    """HTTP alternative to the Socket.IO stream for pushing RSVP state."""
    applied = await engine.reconciler.apply_update(notification)
    return {"applied": applied}
