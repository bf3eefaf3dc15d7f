# portal/backend/api/utilities/errors.py

from fastapi import HTTPException, status

from ...services.exceptions import (
    ServiceError, NotFoundError, TimingError, EligibilityError, InvalidRequestError, ConflictError
)

_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (TimingError, status.HTTP_400_BAD_REQUEST),
    (EligibilityError, status.HTTP_400_BAD_REQUEST),
    (InvalidRequestError, status.HTTP_400_BAD_REQUEST),
)

def to_http_exception(error: ServiceError) -> HTTPException:
    """Maps a service error to the HTTP status the client sees. Unclassified errors become 500."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))
