# eventcast/api/dependencies.py

"""
Shared FastAPI dependencies and error mapping for the API routers.
"""

import logging

from fastapi import HTTPException, Request

from eventcast.schemas import ChannelErrorResponse, ServiceResultResponse
from eventcast.services.base_service import ConflictError, NotFoundError, ServiceError, ValidationError

logger = logging.getLogger(__name__)


async def get_engine(request: Request):
    """
    Dependency returning the engine attached to the app.

    Raises:
        HTTPException: 503 while the engine has not been assembled yet
    """
    engine = getattr(request.app.state, 'engine', None)
    if engine is None:
        logger.error("Engine requested before it was attached to the API")
        raise HTTPException(status_code=503, detail="Event engine is not ready")
    return engine


def http_error(error: ServiceError) -> HTTPException:
    if isinstance(error, ValidationError):
        status = 400
    elif isinstance(error, NotFoundError):
        status = 404
    elif isinstance(error, ConflictError):
        status = 409
    else:
        status = 500
    if status == 500:
        logger.error(f"Unhandled service error: {error.message}")
    return HTTPException(status_code=status, detail={'message': error.message, 'error_code': error.error_code})


def result_response(result) -> ServiceResultResponse:
    return ServiceResultResponse(
        success=result.success,
        message=result.message,
        data=result.data,
        errors=[ChannelErrorResponse(**e.to_dict()) for e in result.errors],
    )
