"""Target registry: one entry per discovered endpoint and its health state."""

import asyncio
import dataclasses
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from ..discovery.base import DiscoveredTarget
from ..errors import ReconciliationError
from ..utils.metrics import ProbeOutcome
from ..utils.status import TargetStatus


@dataclass
class Target:
    """Health state of one discovered endpoint."""

    id: str
    address: str
    status: TargetStatus = TargetStatus.UNKNOWN
    consecutive_failures: int = 0
    last_latency: Optional[float] = None
    last_checked: Optional[float] = None
    # Stop signal of the probe loop owning this entry
    cancel_handle: Optional[asyncio.Event] = field(default=None, repr=False, compare=False)
    removing: bool = False


class TargetRegistry:
    """
    Registry of probed targets keyed by target id.

    Every mutation runs under a single lock held for one short critical
    section, so snapshots taken from another thread never observe a
    half-applied update. The registry owns target metadata only; probe loop
    lifecycles belong to the discovery poller.
    """

    def __init__(self, failure_threshold: int, logger: logging.Logger):
        """
        Initialize target registry.

        Args:
            failure_threshold: Consecutive failures needed to mark a target DOWN
            logger: Logger instance
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        self.failure_threshold = failure_threshold
        self.logger = logger.getChild(self.__class__.__name__)
        self._targets: Dict[str, Target] = {}
        self._lock = threading.Lock()

    def reconcile(
        self,
        discovered: Iterable[DiscoveredTarget]
    ) -> Tuple[List[Target], List[Target]]:
        """
        Align the registry with a fresh discovery result.

        New ids are created in UNKNOWN status. Ids absent from ``discovered``
        are marked as removing and their cancel handle is signalled; the
        caller deletes them once their probe loop has stopped. Known ids keep
        their state, with the address refreshed in place.

        Args:
            discovered: Endpoints from the latest successful discovery query

        Returns:
            Tuple[List[Target], List[Target]]: (added, removed), sorted by id
        """
        wanted = {t.id: t.address for t in discovered}
        added: List[Target] = []
        removed: List[Target] = []

        with self._lock:
            for target_id, target in self._targets.items():
                if target_id in wanted or target.removing:
                    continue
                target.removing = True
                if target.cancel_handle is not None:
                    target.cancel_handle.set()
                removed.append(dataclasses.replace(target))

            for target_id, address in wanted.items():
                target = self._targets.get(target_id)
                if target is None:
                    target = Target(id=target_id, address=address)
                    self._targets[target_id] = target
                    added.append(dataclasses.replace(target))
                elif target.removing:
                    self.logger.warning(
                        f"Target {target_id} rediscovered while its removal is pending"
                    )
                elif target.address != address:
                    self.logger.info(
                        f"Target {target_id} moved from {target.address} to {address}"
                    )
                    target.address = address

        added.sort(key=lambda t: t.id)
        removed.sort(key=lambda t: t.id)
        return added, removed

    def attach(self, target_id: str, cancel_handle: asyncio.Event) -> None:
        """
        Register the stop signal of the probe loop spawned for ``target_id``.

        Raises:
            ReconciliationError: Unknown id, or a live loop already owns the entry
        """
        with self._lock:
            target = self._targets.get(target_id)
            if target is None or target.removing:
                raise ReconciliationError(f"Cannot attach probe loop to missing target {target_id}")
            if target.cancel_handle is not None and not target.cancel_handle.is_set():
                raise ReconciliationError(f"Target {target_id} already has a running probe loop")
            target.cancel_handle = cancel_handle

    def record(
        self,
        target_id: str,
        outcome: ProbeOutcome,
        latency: Optional[float] = None,
        observed_at: Optional[float] = None
    ) -> Optional[Target]:
        """
        Apply one probe outcome to a target.

        Success marks the target UP and resets the failure streak. Failure
        extends the streak and marks the target DOWN once the threshold is
        reached; below it the previous status is kept.

        Returns:
            Optional[Target]: Copy of the updated target, or None if the
            target is gone or being removed
        """
        with self._lock:
            target = self._targets.get(target_id)
            if target is None or target.removing:
                return None

            previous = target.status
            if outcome.success:
                target.consecutive_failures = 0
                target.status = TargetStatus.UP
            else:
                target.consecutive_failures += 1
                if target.consecutive_failures >= self.failure_threshold:
                    target.status = TargetStatus.DOWN

            target.last_latency = latency
            target.last_checked = observed_at if observed_at is not None else time.time()
            updated = dataclasses.replace(target)

        if updated.status != previous:
            if updated.status == TargetStatus.DOWN:
                self.logger.warning(
                    f"Target {target_id} is DOWN after {updated.consecutive_failures} "
                    f"consecutive failures"
                )
            else:
                self.logger.info(f"Target {target_id} is {updated.status.name}")

        return updated

    def address_of(self, target_id: str) -> Optional[str]:
        """Current address of a live target, None if gone or being removed."""
        with self._lock:
            target = self._targets.get(target_id)
            if target is None or target.removing:
                return None
            return target.address

    def delete(self, target_id: str) -> bool:
        """Drop an entry whose probe loop has stopped. Returns False if absent."""
        with self._lock:
            return self._targets.pop(target_id, None) is not None

    def snapshot(self) -> List[Target]:
        """Copies of all live targets ordered by id."""
        with self._lock:
            targets = [
                dataclasses.replace(t) for t in self._targets.values() if not t.removing
            ]
        return sorted(targets, key=lambda t: t.id)

    def ids(self) -> List[str]:
        return [t.id for t in self.snapshot()]

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for t in self._targets.values() if not t.removing)

    def __contains__(self, target_id: str) -> bool:
        return self.address_of(target_id) is not None
