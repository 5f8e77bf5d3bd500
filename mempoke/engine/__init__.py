"""Discovery-driven probing engine."""

from .collector import MetricsCollector, TargetMetrics
from .exposition import MetricsServer
from .poller import DiscoveryPoller, PollerState
from .probe_loop import ProbeLoop
from .registry import Target, TargetRegistry

__all__ = [
    "DiscoveryPoller",
    "MetricsCollector",
    "MetricsServer",
    "PollerState",
    "ProbeLoop",
    "Target",
    "TargetMetrics",
    "TargetRegistry",
]
