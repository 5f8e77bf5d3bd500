"""Tests for ProbeLoop."""

import asyncio

import pytest

from mempoke.config.models import ProbeConfig
from mempoke.engine.probe_loop import ProbeLoop, wait_stopped
from mempoke.probes.base import ProbeClient, RoundTrip
from mempoke.utils.status import FailureReason, TargetStatus
from tests.conftest import FakeProbeClient, targets, wait_until


def make_loop(target_id, registry, client, collector, config, logger, concurrency=4):
    known = [(t.id, t.address) for t in registry.snapshot()]
    registry.reconcile(targets(*known, (target_id, f"{target_id}:11211")))
    loop = ProbeLoop(
        target_id, registry, client, collector, config, asyncio.Semaphore(concurrency), logger
    )
    registry.attach(target_id, loop.stop_event)
    collector.track(target_id)
    return loop


class SlowProbeClient(ProbeClient):
    """Probe that takes ``delay`` seconds, then succeeds."""

    def __init__(self, logger, delay):
        super().__init__(logger)
        self.delay = delay
        self.started = asyncio.Event()

    async def probe(self, address, timeout):
        self.started.set()
        await asyncio.sleep(self.delay)
        return 0.001


class BrokenProbeClient(ProbeClient):

    async def probe(self, address, timeout):
        raise RuntimeError("bug in probe client")


@pytest.mark.asyncio
async def test_two_target_scenario(registry, collector, probe_config, logger):
    """A succeeds three times; B fails twice then succeeds (threshold 2)."""
    client = FakeProbeClient(logger, {
        "A:11211": [0.005, 0.005, 0.005],
        "B:11211": [FailureReason.TIMEOUT, FailureReason.CONNECTION_REFUSED, 0.007],
    })
    loop_a = make_loop("A", registry, client, collector, probe_config, logger)
    loop_b = make_loop("B", registry, client, collector, probe_config, logger)

    def up(target_id):
        return collector.registry.get_sample_value("mempoke_target_up", {"target": target_id})

    for _ in range(3):
        await loop_a.probe_once()

    await loop_b.probe_once()
    assert up("B") is None
    await loop_b.probe_once()
    assert up("B") == 0.0
    await loop_b.probe_once()
    assert up("B") == 1.0

    a, b = collector.get("A"), collector.get("B")
    assert a.successes == 3
    assert a.failure_total == 0
    assert up("A") == 1.0
    assert b.failure_total == 2
    assert b.successes == 1
    assert b.latency_count == 1


@pytest.mark.asyncio
async def test_probe_once_records_into_registry(registry, collector, probe_config, logger):
    client = FakeProbeClient(logger, {"A:11211": [0.002]})
    loop = make_loop("A", registry, client, collector, probe_config, logger)

    sample = await loop.probe_once()

    assert sample.outcome.success
    assert sample.latency == 0.002
    assert sample.status == TargetStatus.UP
    target = registry.snapshot()[0]
    assert target.last_latency == 0.002
    assert target.last_checked == sample.observed_at


@pytest.mark.asyncio
async def test_command_timings_reach_the_collector(registry, collector, probe_config, logger):
    client = FakeProbeClient(logger, {"A:11211": [RoundTrip(0.006, {"set": 0.002, "get": 0.003})]})
    loop = make_loop("A", registry, client, collector, probe_config, logger)

    sample = await loop.probe_once()

    assert sample.commands == {"set": 0.002, "get": 0.003}
    assert type(sample.latency) is float
    assert registry.snapshot()[0].last_latency == 0.006
    assert collector.get("A").commands["get"].sum == pytest.approx(0.003)


@pytest.mark.asyncio
async def test_failure_reason_is_kept(registry, collector, probe_config, logger):
    client = FakeProbeClient(logger, {"A:11211": [FailureReason.PROTOCOL_ERROR]})
    loop = make_loop("A", registry, client, collector, probe_config, logger)

    sample = await loop.probe_once()

    assert not sample.outcome.success
    assert sample.outcome.reason == FailureReason.PROTOCOL_ERROR
    assert sample.latency is None
    assert collector.get("A").failures[FailureReason.PROTOCOL_ERROR] == 1


@pytest.mark.asyncio
async def test_unexpected_exception_is_a_protocol_error(registry, collector, probe_config, logger):
    loop = make_loop("A", registry, BrokenProbeClient(logger), collector, probe_config, logger)

    sample = await loop.probe_once()

    assert sample.outcome.reason == FailureReason.PROTOCOL_ERROR
    assert "bug in probe client" in sample.outcome.message


@pytest.mark.asyncio
async def test_hanging_probe_times_out(registry, collector, logger):
    config = ProbeConfig(interval_s=1, timeout_s=0.05, spread_start=False)
    loop = make_loop("A", registry, SlowProbeClient(logger, delay=5), collector, config, logger)

    sample = await loop.probe_once()

    assert sample.outcome.reason == FailureReason.TIMEOUT


@pytest.mark.asyncio
async def test_address_is_read_fresh(registry, collector, probe_config, logger):
    client = FakeProbeClient(logger)
    loop = make_loop("A", registry, client, collector, probe_config, logger)

    await loop.probe_once()
    registry.reconcile(targets(("A", "10.1.1.1:11211")))
    await loop.probe_once()

    assert client.calls == ["A:11211", "10.1.1.1:11211"]


@pytest.mark.asyncio
async def test_stopped_loop_does_not_probe(registry, collector, probe_config, logger):
    client = FakeProbeClient(logger)
    loop = make_loop("A", registry, client, collector, probe_config, logger)
    loop.stop()

    assert await loop.probe_once() is None
    assert client.calls == []


@pytest.mark.asyncio
async def test_result_discarded_when_stopped_mid_probe(registry, collector, logger):
    config = ProbeConfig(interval_s=1, timeout_s=1, spread_start=False)
    client = SlowProbeClient(logger, delay=0.05)
    loop = make_loop("A", registry, client, collector, config, logger)

    task = asyncio.create_task(loop.probe_once())
    await client.started.wait()
    loop.stop()

    assert await task is None
    assert collector.get("A").successes == 0
    assert registry.snapshot()[0].last_checked is None


@pytest.mark.asyncio
async def test_run_probes_on_interval_until_stopped(registry, collector, logger):
    config = ProbeConfig(interval_s=0.01, timeout_s=0.01, spread_start=False)
    client = FakeProbeClient(logger)
    loop = make_loop("A", registry, client, collector, config, logger)

    task = asyncio.create_task(loop.run())
    await wait_until(lambda: collector.get("A").successes >= 3)
    loop.stop()
    await asyncio.wait_for(task, timeout=1)

    probes = len(client.calls)
    await asyncio.sleep(0.05)
    assert len(client.calls) == probes


@pytest.mark.asyncio
async def test_failures_never_stop_the_loop(registry, collector, logger):
    config = ProbeConfig(interval_s=0.01, timeout_s=0.01, spread_start=False)
    client = FakeProbeClient(logger, {"A:11211": [FailureReason.TIMEOUT] * 5})
    loop = make_loop("A", registry, client, collector, config, logger)

    task = asyncio.create_task(loop.run())
    await wait_until(lambda: collector.get("A").successes >= 1)
    loop.stop()
    await asyncio.wait_for(task, timeout=1)

    assert collector.get("A").failure_total == 5
    assert registry.snapshot()[0].status == TargetStatus.UP


@pytest.mark.asyncio
async def test_semaphore_bounds_concurrent_probes(registry, collector, logger):
    config = ProbeConfig(interval_s=1, timeout_s=1, spread_start=False)
    in_flight = []
    peak = []

    class CountingClient(ProbeClient):
        async def probe(self, address, timeout):
            in_flight.append(address)
            peak.append(len(in_flight))
            await asyncio.sleep(0.02)
            in_flight.remove(address)
            return 0.001

    client = CountingClient(logger)
    semaphore = asyncio.Semaphore(2)
    loops = []
    for target_id in ("A", "B", "C", "D", "E"):
        loop = make_loop(target_id, registry, client, collector, config, logger)
        loop.semaphore = semaphore
        loops.append(loop)

    await asyncio.gather(*[loop.probe_once() for loop in loops])

    assert max(peak) == 2
    assert all(collector.get(loop.target_id).successes == 1 for loop in loops)


@pytest.mark.asyncio
async def test_wait_stopped():
    event = asyncio.Event()
    assert await wait_stopped(event, 0.01) is False
    event.set()
    assert await wait_stopped(event, 10) is True
