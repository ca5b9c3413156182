"""
FastAPI routes for cycles.
"""

from fastapi import APIRouter, Depends

from eventcast.api.dependencies import get_engine, http_error, result_response
from eventcast.schemas import CycleCreateRequest, CycleUpdateRequest, ServiceResultResponse
from eventcast.services.base_service import ServiceError

router = APIRouter(prefix="/api/cycles", tags=["cycles"])


@router.get("")
async def list_cycles(engine=Depends(get_engine)):
    return {"cycles": engine.events.list_cycles()}


@router.get("/{cycle_id}")
async def get_cycle(cycle_id: str, engine=Depends(get_engine)):
    try:
        cycle = engine.events.get_cycle(cycle_id)
    except ServiceError as e:
        raise http_error(e)
    return cycle.to_dict(engine.events.now())


@router.post("", response_model=ServiceResultResponse, status_code=201)
async def create_cycle(request: CycleCreateRequest, engine=Depends(get_engine)):
    try:
        return result_response(engine.events.create_cycle(request))
    except ServiceError as e:
        raise http_error(e)


@router.put("/{cycle_id}", response_model=ServiceResultResponse)
async def update_cycle(cycle_id: str, request: CycleUpdateRequest, engine=Depends(get_engine)):
    try:
        return result_response(engine.events.update_cycle(cycle_id, request))
    except ServiceError as e:
        raise http_error(e)


@router.delete("/{cycle_id}", response_model=ServiceResultResponse)
async def delete_cycle(cycle_id: str, engine=Depends(get_engine)):
    try:
        return result_response(engine.events.delete_cycle(cycle_id))
    except ServiceError as e:
        raise http_error(e)
