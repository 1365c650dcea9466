from fastapi import HTTPException, status

from quotebridge.services.errors import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryStaleError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)

_STATUS_BY_ERROR: tuple[tuple[type[RepositoryError], int], ...] = (
    (RepositoryValidationError, status.HTTP_422_UNPROCESSABLE_CONTENT),
    (RepositoryNotFoundError, status.HTTP_404_NOT_FOUND),
    (RepositoryForbiddenError, status.HTTP_403_FORBIDDEN),
    (RepositoryStaleError, status.HTTP_412_PRECONDITION_FAILED),
    (RepositoryConflictError, status.HTTP_409_CONFLICT),
    (RepositoryUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def http_error(exc: RepositoryError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="unexpected storage error")


def forbidden(exc: PermissionError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
