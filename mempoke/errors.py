"""Exception hierarchy for mempoke."""

from .utils.status import FailureReason


class MempokeError(Exception):
    """Base class for all mempoke errors."""


class DiscoveryError(MempokeError):
    """Discovery query failed, timed out or returned a malformed payload."""


class ProbeError(MempokeError):
    """A single probe against one target failed."""

    def __init__(self, reason: FailureReason, message: str = ""):
        self.reason = reason
        self.message = message or reason.value
        super().__init__(f"{reason.value}: {self.message}")


class ReconciliationError(MempokeError):
    """Registry invariant violated while starting or stopping a probe loop."""
