"""Discovery poller: keeps the registry and probe loops in line with discovery."""

import asyncio
import logging
import random
from enum import Enum
from typing import Dict, List, Sequence, Tuple

from ..config.models import DiscoveryConfig, ProbeConfig
from ..discovery.base import DiscoveredTarget, DiscoveryClient
from ..errors import DiscoveryError, ReconciliationError
from ..probes.base import ProbeClient
from .collector import MetricsCollector
from .probe_loop import ProbeLoop, wait_stopped
from .registry import TargetRegistry

# Extra time granted to a removed loop beyond one probe timeout
STOP_GRACE_MARGIN_S = 1.0


class PollerState(Enum):
    IDLE = "idle"
    QUERYING = "querying"
    RECONCILING = "reconciling"


class DiscoveryPoller:
    """
    Poll discovery on a fixed interval and drive probe loop lifecycles.

    Each iteration moves IDLE -> QUERYING -> RECONCILING -> IDLE. A failed
    query leaves the registry and every running loop untouched
    (last-known-good). Removed targets are signalled, awaited, and only then
    deleted from the registry and evicted from the collector.
    """

    def __init__(
        self,
        config: DiscoveryConfig,
        probe_config: ProbeConfig,
        discovery: DiscoveryClient,
        probe_client: ProbeClient,
        registry: TargetRegistry,
        collector: MetricsCollector,
        logger: logging.Logger
    ):
        """
        Initialize discovery poller.

        Args:
            config: Tag, poll interval, query timeout and jitter
            probe_config: Configuration handed to every probe loop
            discovery: Discovery client
            probe_client: Probe client shared by all loops
            registry: Target registry
            collector: Metrics collector
            logger: Logger instance
        """
        self.config = config
        self.probe_config = probe_config
        self.discovery = discovery
        self.probe_client = probe_client
        self.registry = registry
        self.collector = collector
        self.logger = logger.getChild(self.__class__.__name__)

        self.state = PollerState.IDLE
        self.grace_period = probe_config.timeout_s + STOP_GRACE_MARGIN_S
        self._semaphore = asyncio.Semaphore(probe_config.max_concurrency)
        self._loops: Dict[str, Tuple[ProbeLoop, asyncio.Task]] = {}
        self._stop_event = asyncio.Event()

    @property
    def active_loops(self) -> List[str]:
        """Ids of targets with a probe task still running."""
        return sorted(tid for tid, (_, task) in self._loops.items() if not task.done())

    def stop(self) -> None:
        """Ask ``run`` to return after the current iteration."""
        self._stop_event.set()

    async def run(self) -> None:
        """Poll until stopped, then stop every probe loop and wait for them."""
        self.logger.info(
            f"Watching services tagged {self.config.tag} every {self.config.poll_interval_s}s"
        )
        try:
            while not self._stop_event.is_set():
                await self.poll_once()
                delay = self.config.poll_interval_s
                if self.config.jitter_s:
                    delay += random.uniform(0, self.config.jitter_s)
                if await wait_stopped(self._stop_event, delay):
                    break
        finally:
            await self.shutdown()

    async def poll_once(self) -> bool:
        """
        Run one query/reconcile iteration.

        Returns:
            bool: True if discovery answered and the registry was reconciled
        """
        self.state = PollerState.QUERYING
        try:
            discovered = await asyncio.wait_for(
                self.discovery.list(self.config.tag, self.config.timeout_s),
                timeout=self.config.timeout_s
            )
            discovered = self._validate(discovered)

        except (DiscoveryError, asyncio.TimeoutError) as e:
            self._discovery_failed(f"{str(e) or type(e).__name__}")
            return False

        except Exception as e:
            self._discovery_failed(f"unexpected {type(e).__name__}: {e}", exc_info=True)
            return False

        self.state = PollerState.RECONCILING
        try:
            await self.reconcile(discovered)
        finally:
            self.state = PollerState.IDLE
        return True

    async def reconcile(self, discovered: Sequence[DiscoveredTarget]) -> None:
        """Apply a discovery result: stop loops of removed targets, start new ones."""
        added, removed = self.registry.reconcile(discovered)
        self.collector.set_discovered_targets(len({t.id for t in discovered}))

        for target in removed:
            self.logger.info(f"Stop watching {target.id} ({target.address})")
        await asyncio.gather(*[self._stop_loop(target.id) for target in removed])

        for target in added:
            self.logger.info(f"Start watching {target.id} ({target.address})")
            self._start_loop(target.id)

    async def shutdown(self) -> None:
        """Stop every probe loop and wait for all of them to exit."""
        if self._loops:
            self.logger.info(f"Stopping {len(self._loops)} probe loops")
        for loop, _ in self._loops.values():
            loop.stop()
        await asyncio.gather(*[self._stop_loop(tid) for tid in list(self._loops)])
        self.state = PollerState.IDLE

    @staticmethod
    def _validate(discovered: Sequence[DiscoveredTarget]) -> List[DiscoveredTarget]:
        if discovered is None or isinstance(discovered, (str, bytes)):
            raise DiscoveryError(f"Discovery returned {type(discovered).__name__}, not a list of targets")
        targets = list(discovered)
        for target in targets:
            if not isinstance(target, DiscoveredTarget):
                raise DiscoveryError(f"Discovery returned a malformed target: {target!r}")
        return targets

    def _discovery_failed(self, reason: str, exc_info: bool = False) -> None:
        self.state = PollerState.IDLE
        self.collector.record_discovery_failure()
        self.logger.warning(
            f"Discovery query failed, keeping {len(self.registry)} known targets: {reason}",
            exc_info=exc_info
        )

    def _start_loop(self, target_id: str) -> None:
        loop = ProbeLoop(
            target_id,
            self.registry,
            self.probe_client,
            self.collector,
            self.probe_config,
            self._semaphore,
            self.logger
        )
        try:
            self.registry.attach(target_id, loop.stop_event)
        except ReconciliationError as e:
            self.logger.warning(f"Not starting probe loop: {e}")
            return

        self.collector.track(target_id)
        task = asyncio.create_task(loop.run(), name=f"probe:{target_id}")
        task.add_done_callback(self._log_loop_crash)
        self._loops[target_id] = (loop, task)

    async def _stop_loop(self, target_id: str) -> None:
        """Signal one loop, await its exit, then drop its state."""
        entry = self._loops.pop(target_id, None)
        if entry is not None:
            loop, task = entry
            loop.stop()
            done, _ = await asyncio.wait({task}, timeout=self.grace_period)
            if not done:
                error = ReconciliationError(
                    f"Probe loop for {target_id} did not stop within {self.grace_period}s"
                )
                self.logger.warning(f"{error}, forcing eviction")
                self.collector.record_forced_eviction()
                task.cancel()
                await asyncio.wait({task})

        self.registry.delete(target_id)
        self.collector.evict(target_id)

    def _log_loop_crash(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(
                f"Probe loop {task.get_name()} crashed: {error}",
                exc_info=error
            )
