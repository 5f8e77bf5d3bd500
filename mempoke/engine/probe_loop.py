"""Per-target probe loop."""

import asyncio
import logging
import random
import time
from typing import Dict, Optional, Tuple

from ..config.models import ProbeConfig
from ..errors import ProbeError
from ..probes.base import ProbeClient
from ..utils.metrics import MetricSample, ProbeOutcome
from ..utils.status import FailureReason
from .collector import MetricsCollector
from .registry import TargetRegistry


async def wait_stopped(event: asyncio.Event, delay: float) -> bool:
    """Sleep ``delay`` seconds; return True early if ``event`` gets set."""
    try:
        await asyncio.wait_for(event.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False


class ProbeLoop:
    """
    Probe one target on a fixed interval until stopped.

    The loop keeps only the target id; the address is read from the registry
    on every iteration so an address change applies to the next probe. A
    failed probe never ends the loop, only ``stop()`` does.
    """

    def __init__(
        self,
        target_id: str,
        registry: TargetRegistry,
        probe_client: ProbeClient,
        collector: MetricsCollector,
        config: ProbeConfig,
        semaphore: asyncio.Semaphore,
        logger: logging.Logger
    ):
        """
        Initialize probe loop.

        Args:
            target_id: Id of the probed target
            registry: Registry holding the target's state
            probe_client: Client performing one round trip
            collector: Metrics sink for probe samples
            config: Probe interval, timeout and start spreading
            semaphore: Shared bound on concurrently running probes
            logger: Logger instance
        """
        self.target_id = target_id
        self.registry = registry
        self.probe_client = probe_client
        self.collector = collector
        self.config = config
        self.semaphore = semaphore
        self.logger = logger.getChild(self.__class__.__name__)
        self.stop_event = asyncio.Event()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def stop(self) -> None:
        self.stop_event.set()

    async def run(self) -> None:
        """Wait for the interval or the stop signal, probe, repeat."""
        interval = self.config.interval_s
        delay = random.uniform(0, interval) if self.config.spread_start else interval

        self.logger.debug(f"Probe loop for {self.target_id} started")
        while not await wait_stopped(self.stop_event, delay):
            await self.probe_once()
            delay = interval
        self.logger.debug(f"Probe loop for {self.target_id} stopped")

    async def probe_once(self) -> Optional[MetricSample]:
        """
        Run one probe and record its outcome.

        Returns:
            Optional[MetricSample]: The recorded sample, or None when the loop
            was stopped or the target left the registry meanwhile
        """
        address = self.registry.address_of(self.target_id)
        if address is None or self.stopped:
            return None

        async with self.semaphore:
            if self.stopped:
                return None
            outcome, latency, commands = await self._probe(address)

        if self.stopped:
            self.logger.debug(f"Discarding probe result of stopped target {self.target_id}")
            return None

        observed_at = time.time()
        target = self.registry.record(self.target_id, outcome, latency, observed_at)
        if target is None:
            return None

        sample = MetricSample(
            target=self.target_id,
            outcome=outcome,
            status=target.status,
            latency=latency,
            observed_at=observed_at,
            commands=commands
        )
        self.collector.observe(sample)
        return sample

    async def _probe(
        self,
        address: str
    ) -> Tuple[ProbeOutcome, Optional[float], Dict[str, float]]:
        timeout = self.config.timeout_s
        try:
            latency = await asyncio.wait_for(
                self.probe_client.probe(address, timeout),
                timeout=timeout
            )
            return ProbeOutcome.ok(), float(latency), dict(getattr(latency, "commands", {}))

        except ProbeError as e:
            self.logger.debug(f"Probe of {self.target_id} ({address}) failed: {e}")
            return ProbeOutcome.failed(e.reason, e.message), None, {}

        except asyncio.TimeoutError:
            self.logger.debug(f"Probe of {self.target_id} ({address}) timed out")
            return ProbeOutcome.failed(FailureReason.TIMEOUT, f"timed out after {timeout}s"), None, {}

        except Exception as e:
            self.logger.error(
                f"Unexpected probe error for {self.target_id} ({address}): {e}",
                exc_info=True
            )
            return ProbeOutcome.failed(FailureReason.PROTOCOL_ERROR, str(e)), None, {}
