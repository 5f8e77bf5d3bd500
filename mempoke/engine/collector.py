"""Process-wide aggregate of probe metrics, exposed in Prometheus text format."""

import logging
import threading
from bisect import bisect_left
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import (
    CounterMetricFamily,
    GaugeMetricFamily,
    HistogramMetricFamily,
    Metric,
)
from prometheus_client.utils import floatToGoString

from ..discovery.base import service_of
from ..utils.metrics import MetricSample
from ..utils.status import FailureReason


@dataclass(frozen=True)
class HistogramSnapshot:
    """Per-bucket counts (last one is +Inf), sum and count of one histogram."""

    buckets: Tuple[int, ...]
    sum: float
    count: int


@dataclass(frozen=True)
class TargetMetrics:
    """Read-only copy of one target's series."""

    up: Optional[float]
    successes: int
    failures: Dict[FailureReason, int]
    latency_buckets: Tuple[int, ...]  # Per-bucket counts, last one is +Inf
    latency_sum: float
    latency_count: int
    commands: Dict[str, HistogramSnapshot] = field(default_factory=dict)  # set/get timings

    @property
    def failure_total(self) -> int:
        return sum(self.failures.values())


class _Histogram:
    __slots__ = ("buckets", "sum", "count")

    def __init__(self, bucket_count: int):
        self.buckets = [0] * (bucket_count + 1)
        self.sum = 0.0
        self.count = 0

    def observe(self, bounds: Tuple[float, ...], value: float) -> None:
        self.buckets[bisect_left(bounds, value)] += 1
        self.sum += value
        self.count += 1

    def freeze(self) -> HistogramSnapshot:
        return HistogramSnapshot(buckets=tuple(self.buckets), sum=self.sum, count=self.count)


class _TargetSeries:
    """Mutable series of one target, only touched under the collector lock."""

    __slots__ = ("up", "successes", "failures", "latency", "commands")

    def __init__(self, bucket_count: int):
        self.up: Optional[float] = None
        self.successes = 0
        self.failures = {reason: 0 for reason in FailureReason}
        self.latency = _Histogram(bucket_count)
        self.commands: Dict[str, _Histogram] = {}

    def freeze(self) -> TargetMetrics:
        latency = self.latency.freeze()
        return TargetMetrics(
            up=self.up,
            successes=self.successes,
            failures=dict(self.failures),
            latency_buckets=latency.buckets,
            latency_sum=latency.sum,
            latency_count=latency.count,
            commands={name: h.freeze() for name, h in self.commands.items()},
        )


class MetricsCollector:
    """
    Concurrency-safe metrics state keyed by target id.

    Probe loops write with ``observe``; the exposition server reads through
    ``render``. Each sample is applied to its counter, gauge and histogram in
    one critical section, and ``collect`` builds the exposition from a copy
    taken under the same lock, so a scrape never shows half a sample.

    The collector registers itself on a private ``CollectorRegistry`` rather
    than the prometheus_client default one, so evicted targets disappear from
    the output entirely.
    """

    def __init__(self, latency_buckets: Sequence[float], logger: logging.Logger):
        """
        Initialize metrics collector.

        Args:
            latency_buckets: Histogram upper bounds in seconds, strictly increasing
            logger: Logger instance
        """
        self.latency_buckets = tuple(float(b) for b in latency_buckets)
        self.logger = logger.getChild(self.__class__.__name__)

        self._series: Dict[str, _TargetSeries] = {}
        self._discovery_failures = 0
        self._forced_evictions = 0
        self._discovered_targets = 0
        self._lock = threading.Lock()

        self.registry = CollectorRegistry(auto_describe=False)
        self.registry.register(self)

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def track(self, target_id: str) -> None:
        """Start holding series for a newly probed target."""
        with self._lock:
            if target_id not in self._series:
                self._series[target_id] = _TargetSeries(len(self.latency_buckets))

    def observe(self, sample: MetricSample) -> bool:
        """
        Apply one probe sample.

        Increments exactly one of the success/failure counters, sets the up
        gauge from the sample status and, when latency is present, adds one
        histogram observation, plus one per timed protocol command.

        Returns:
            bool: False if the target is not tracked (e.g. already evicted)
        """
        with self._lock:
            series = self._series.get(sample.target)
            if series is None:
                return False

            if sample.outcome.success:
                series.successes += 1
            else:
                reason = sample.outcome.reason or FailureReason.PROTOCOL_ERROR
                series.failures[reason] += 1

            gauge = sample.status.to_gauge()
            if gauge is not None:
                series.up = gauge

            if sample.latency is not None:
                series.latency.observe(self.latency_buckets, sample.latency)

            for command, seconds in sample.commands.items():
                if command not in series.commands:
                    series.commands[command] = _Histogram(len(self.latency_buckets))
                series.commands[command].observe(self.latency_buckets, seconds)

        return True

    def evict(self, target_id: str) -> bool:
        """Remove every series of a target that left discovery."""
        with self._lock:
            evicted = self._series.pop(target_id, None) is not None
        if evicted:
            self.logger.debug(f"Evicted metrics of {target_id}")
        return evicted

    def record_discovery_failure(self) -> None:
        with self._lock:
            self._discovery_failures += 1

    def record_forced_eviction(self) -> None:
        with self._lock:
            self._forced_evictions += 1

    def set_discovered_targets(self, count: int) -> None:
        with self._lock:
            self._discovered_targets = count

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def get(self, target_id: str) -> Optional[TargetMetrics]:
        with self._lock:
            series = self._series.get(target_id)
            return series.freeze() if series is not None else None

    def targets(self) -> List[str]:
        with self._lock:
            return sorted(self._series)

    @property
    def discovery_failures(self) -> int:
        with self._lock:
            return self._discovery_failures

    @property
    def forced_evictions(self) -> int:
        with self._lock:
            return self._forced_evictions

    def render(self) -> str:
        """Prometheus text exposition of the current state, sorted by target id."""
        return generate_latest(self.registry).decode("utf-8")

    def collect(self) -> Iterator[Metric]:
        """prometheus_client collector protocol."""
        with self._lock:
            snapshot = sorted(
                (target_id, series.freeze()) for target_id, series in self._series.items()
            )
            discovery_failures = self._discovery_failures
            forced_evictions = self._forced_evictions
            discovered_targets = self._discovered_targets

        up = GaugeMetricFamily(
            "mempoke_target_up",
            "Whether the target is up (1) or down (0) after failure dampening",
            labels=["target"],
        )
        successes = CounterMetricFamily(
            "mempoke_probe_success",
            "Number of successful probes",
            labels=["target"],
        )
        failures = CounterMetricFamily(
            "mempoke_probe_failure",
            "Number of failed probes by reason",
            labels=["target", "reason"],
        )
        latency = HistogramMetricFamily(
            "mempoke_probe_latency_seconds",
            "Round-trip latency of successful probes",
            labels=["target"],
        )
        command_latency = HistogramMetricFamily(
            "mempoke_command_latency_seconds",
            "Latency of each protocol command of successful probes",
            labels=["target", "service", "command"],
        )

        for target_id, metrics in snapshot:
            if metrics.up is not None:
                up.add_metric([target_id], metrics.up)
            successes.add_metric([target_id], metrics.successes)
            for reason in FailureReason:
                failures.add_metric([target_id, reason.value], metrics.failures[reason])
            latency.add_metric(
                [target_id],
                buckets=self._cumulative_buckets(metrics.latency_buckets),
                sum_value=metrics.latency_sum,
            )
            for command, histogram in sorted(metrics.commands.items()):
                command_latency.add_metric(
                    [target_id, service_of(target_id), command],
                    buckets=self._cumulative_buckets(histogram.buckets),
                    sum_value=histogram.sum,
                )

        yield up
        yield successes
        yield failures
        yield latency
        yield command_latency
        yield GaugeMetricFamily(
            "mempoke_discovered_targets",
            "Number of targets returned by the last successful discovery query",
            value=discovered_targets,
        )
        yield CounterMetricFamily(
            "mempoke_discovery_failures",
            "Number of failed discovery queries",
            value=discovery_failures,
        )
        yield CounterMetricFamily(
            "mempoke_forced_evictions",
            "Number of probe loops that did not stop within the grace period",
            value=forced_evictions,
        )

    def _cumulative_buckets(self, counts: Tuple[int, ...]) -> List[Tuple[str, int]]:
        buckets = []
        total = 0
        for bound, count in zip(self.latency_buckets, counts):
            total += count
            buckets.append((floatToGoString(bound), total))
        buckets.append(("+Inf", total + counts[-1]))
        return buckets
