"""
FastAPI routes for event CRUD, publication and scheduling.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from eventcast.api.dependencies import get_engine, http_error, result_response
from eventcast.schemas import (
    EventCreateRequest,
    EventUpdateRequest,
    PublishRequest,
    ScheduleRequest,
    ServiceResultResponse,
)
from eventcast.services.base_service import ServiceError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/events", tags=["events"])


@router.get("")
async def list_events(cycle_id: Optional[str] = None, engine=Depends(get_engine)):
    events = engine.events.list_events(cycle_id)
    return {"events": [event.to_dict() for event in events]}


@router.get("/{event_id}")
async def get_event(event_id: str, engine=Depends(get_engine)):
    try:
        return engine.events.get_event(event_id).to_dict()
    except ServiceError as e:
        raise http_error(e)


@router.post("", response_model=ServiceResultResponse, status_code=201)
async def create_event(request: EventCreateRequest, engine=Depends(get_engine)):
    """Create an event and optionally publish or schedule it."""
    try:
        result = await engine.events.create_event(request)
    except ServiceError as e:
        raise http_error(e)
    if not result.success:
        raise HTTPException(status_code=504, detail={'message': result.message, 'error_code': result.error_code})
    return result_response(result)


@router.put("/{event_id}", response_model=ServiceResultResponse)
async def update_event(event_id: str, request: EventUpdateRequest, engine=Depends(get_engine)):
    try:
        result = await engine.events.update_event(event_id, request)
    except ServiceError as e:
        raise http_error(e)
    return result_response(result)


@router.delete("/{event_id}", response_model=ServiceResultResponse)
async def delete_event(event_id: str, engine=Depends(get_engine)):
    try:
        result = await engine.events.delete_event(event_id)
    except ServiceError as e:
        raise http_error(e)
    return result_response(result)


@router.post("/{event_id}/publish", response_model=ServiceResultResponse)
async def publish_event(event_id: str, request: PublishRequest, engine=Depends(get_engine)):
    try:
        result = await engine.events.publish_event(
            event_id,
            channels=request.channels or None,
            reminder_settings=request.reminder_settings,
        )
    except ServiceError as e:
        raise http_error(e)
    if not result.success:
        logger.warning(f"Publish request for event {event_id} failed: {result.message}")
        raise HTTPException(
            status_code=502,
            detail={
                'message': result.message,
                'error_code': result.error_code,
                'errors': [e.to_dict() for e in result.errors],
            }
        )
    return result_response(result)


@router.post("/{event_id}/schedule", response_model=ServiceResultResponse)
async def schedule_publication(event_id: str, request: ScheduleRequest, engine=Depends(get_engine)):
    try:
        result = engine.events.schedule_publication(event_id, request.due_time)
    except ServiceError as e:
        raise http_error(e)
    return result_response(result)


@router.delete("/{event_id}/schedule", response_model=ServiceResultResponse)
async def cancel_scheduled_publication(event_id: str, engine=Depends(get_engine)):
    try:
        result = engine.events.cancel_scheduled_publication(event_id)
    except ServiceError as e:
        raise http_error(e)
    return result_response(result)
