"""Shared pytest configuration and fixtures."""

import asyncio
import time
from typing import Dict, List, Union

import pytest

from mempoke.config.models import DiscoveryConfig, LoggingConfig, ProbeConfig
from mempoke.discovery.base import DiscoveredTarget, DiscoveryClient
from mempoke.engine.collector import MetricsCollector
from mempoke.engine.registry import TargetRegistry
from mempoke.errors import DiscoveryError, ProbeError
from mempoke.probes.base import ProbeClient
from mempoke.utils.logger import setup_logger
from mempoke.utils.status import FailureReason


HANG = object()  # Scripted discovery response that never answers


class FakeDiscovery(DiscoveryClient):
    """Discovery client replaying scripted responses; the last one repeats."""

    def __init__(self, logger, responses: List[Union[List[DiscoveredTarget], Exception, object]]):
        super().__init__(logger)
        self.responses = list(responses)
        self.calls = 0

    async def list(self, tag, timeout):
        self.calls += 1
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if response is HANG:
            await asyncio.sleep(3600)
        if isinstance(response, Exception):
            raise response
        return list(response)


class FakeProbeClient(ProbeClient):
    """
    Probe client replaying scripted results per address.

    A float is a successful latency, a FailureReason raises ProbeError.
    Addresses without a script succeed with ``default_latency``.
    """

    def __init__(self, logger, scripts: Dict[str, list] = None, default_latency: float = 0.005):
        super().__init__(logger)
        self.scripts = {address: list(results) for address, results in (scripts or {}).items()}
        self.default_latency = default_latency
        self.calls: List[str] = []

    async def probe(self, address, timeout):
        self.calls.append(address)
        script = self.scripts.get(address)
        result = script.pop(0) if script else self.default_latency
        if isinstance(result, FailureReason):
            raise ProbeError(result, "scripted failure")
        return result


def targets(*pairs) -> List[DiscoveredTarget]:
    """Build discovery results from (id, address) pairs."""
    return [DiscoveredTarget(id=tid, address=address) for tid, address in pairs]


async def wait_until(predicate, timeout: float = 2.0, step: float = 0.01) -> None:
    """Poll ``predicate`` until it is true or fail the test."""
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            pytest.fail("condition not met in time")
        await asyncio.sleep(step)


@pytest.fixture
def logger():
    """Create logger for tests."""
    return setup_logger("test", LoggingConfig(level="DEBUG"))


@pytest.fixture
def registry(logger):
    return TargetRegistry(failure_threshold=2, logger=logger)


@pytest.fixture
def collector(logger):
    return MetricsCollector([0.001, 0.005, 0.01, 0.1], logger)


@pytest.fixture
def discovery_config():
    return DiscoveryConfig(tag="memcached", poll_interval_s=0.02, timeout_s=0.1)


@pytest.fixture
def probe_config():
    """Slow probe loops: tests drive probes explicitly unless they say otherwise."""
    return ProbeConfig(interval_s=60, timeout_s=0.1, failure_threshold=2, spread_start=False)


@pytest.fixture
def discovery_failure():
    return DiscoveryError("consul unreachable")
