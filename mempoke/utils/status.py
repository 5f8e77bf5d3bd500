"""Target health status and probe failure reasons."""

from enum import Enum


class TargetStatus(Enum):
    """Health status of a probed target."""

    UNKNOWN = "unknown"
    UP = "up"
    DOWN = "down"

    def to_gauge(self):
        """
        Convert status to the value of the up gauge.

        Returns:
            Optional[float]: 1.0 for UP, 0.0 for DOWN, None while UNKNOWN
        """
        return {
            TargetStatus.UP: 1.0,
            TargetStatus.DOWN: 0.0,
            TargetStatus.UNKNOWN: None
        }[self]


class FailureReason(Enum):
    """Why a single probe failed."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    PROTOCOL_ERROR = "protocol_error"
