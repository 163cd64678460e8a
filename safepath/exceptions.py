"""Domain errors raised by the SafePath services.

Routers translate these into HTTP responses; the messages are phrased as
continuation options because they may be shown to a traveler mid-trip.
"""


class SafePathError(Exception):
    """Base class for all SafePath domain errors."""


class InsufficientDataError(SafePathError):
    """A required ``overall`` slice has no reviews and no area statistics."""

    def __init__(self, location_id: str):
        self.location_id = location_id
        super().__init__(f"No reviews or area statistics available for location {location_id}")


class InvalidSessionStateError(SafePathError):
    """Operation not allowed in the navigation session's current state."""


class PositionUnavailableError(SafePathError):
    """The position stream could not be opened (e.g. permission denied)."""


class RoutingOracleError(SafePathError):
    """The directions provider rejected the request."""


class RoutingUnavailableError(RoutingOracleError):
    """The directions provider kept failing after all retries."""


class SessionNotFoundError(SafePathError):
    """No navigation session with the given id is running."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Navigation session {session_id} not found")
