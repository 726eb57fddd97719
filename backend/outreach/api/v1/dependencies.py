"""
API Dependencies
Engine access and error mapping shared by the endpoints
"""
from fastapi import HTTPException, Request, status
from pydantic import ValidationError

from outreach.core.engine import Engine
from outreach.domain.errors import (
    ApprovalConflictError,
    InvalidStateError,
    NotFoundError,
    OutreachError,
    PipelineValidationError,
)


def get_engine(request: Request) -> Engine:
    """
    Engine built in the application lifespan.

    Raises:
        HTTPException: 503 if the engine is not initialized
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Outreach engine is not initialized"
        )
    return engine


def to_http_exception(error: Exception) -> HTTPException:
    """Map engine errors to HTTP status codes."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, (ApprovalConflictError, InvalidStateError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error.message)
    if isinstance(error, PipelineValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": error.message, "issues": error.issues}
        )
    if isinstance(error, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error))
    if isinstance(error, OutreachError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
