from fastapi import HTTPException, status

from ..exceptions import (
    InsufficientDataError, InvalidSessionStateError, PositionUnavailableError,
    RoutingOracleError, RoutingUnavailableError, SafePathError, SessionNotFoundError,
)


def http_error(exc: SafePathError) -> HTTPException:
    """Map a domain error onto the HTTP status the clients expect"""
    if isinstance(exc, SessionNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InsufficientDataError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, RoutingUnavailableError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Routing is temporarily unavailable. Continue on current route or try again shortly.",
        )
    if isinstance(exc, RoutingOracleError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidSessionStateError, PositionUnavailableError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
