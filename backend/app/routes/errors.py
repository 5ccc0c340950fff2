from fastapi import HTTPException, status

from ..services.labs_errors import (
    ConcurrencyConflict,
    ConfigurationMissing,
    EntityNotFound,
    LabsPipelineError,
    StateConflict,
    ValidationError,
)

# purpose: translate labs service errors into specific HTTP responses
# status: active


def labs_http_error(exc: LabsPipelineError) -> HTTPException:
    if isinstance(exc, StateConflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.as_detail())
    if isinstance(exc, ConcurrencyConflict):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, (EntityNotFound, ConfigurationMissing)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
