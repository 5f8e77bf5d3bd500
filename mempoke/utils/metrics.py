"""Probe outcome and metric sample data structures."""

from dataclasses import dataclass, field
from typing import Dict, Optional
import time

from .status import TargetStatus, FailureReason


@dataclass(frozen=True)
class ProbeOutcome:
    """Result of one probe: success, or failure with a reason."""

    success: bool
    reason: Optional[FailureReason] = None
    message: str = ""

    @classmethod
    def ok(cls) -> "ProbeOutcome":
        return cls(success=True)

    @classmethod
    def failed(cls, reason: FailureReason, message: str = "") -> "ProbeOutcome":
        return cls(success=False, reason=reason, message=message)


@dataclass
class MetricSample:
    """One probe observation handed to the metrics collector."""

    target: str
    outcome: ProbeOutcome
    status: TargetStatus  # Target status after the outcome was recorded
    latency: Optional[float] = None  # Seconds, absent on failure
    observed_at: Optional[float] = None
    commands: Dict[str, float] = field(default_factory=dict)  # Seconds per protocol command

    def __post_init__(self):
        """Set observation time if not provided."""
        if self.observed_at is None:
            self.observed_at = time.time()
