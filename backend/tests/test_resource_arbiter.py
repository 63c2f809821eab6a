"""Unit tests for ResourceArbiter eviction."""

import signal
import pytest
from conftest import FakeDiscovery, FakeKill
from ptzcast.domain.resource_arbiter import ResourceArbiter
from ptzcast.ports.holder_discovery_port import ResourceId


DEVICE = "device:/dev/video0"


def _arbiter(strategies, logger, kill, own_pid=1):
    return ResourceArbiter(strategies, logger, grace_period=0, kill=kill, own_pid=own_pid)


@pytest.mark.asyncio
async def test_first_non_empty_strategy_wins(logger):
    first = FakeDiscovery("fuser", {DEVICE: [101]})
    second = FakeDiscovery("ps", {DEVICE: [202]})
    kill = FakeKill(alive=[101, 202])

    report = await _arbiter([first, second], logger, kill).free_device("/dev/video0")

    assert report.strategy == "fuser"
    assert report.pids == [101]
    assert second.queries == []
    assert kill.sent == [(101, signal.SIGTERM)]


@pytest.mark.asyncio
async def test_falls_back_when_strategy_empty_or_failing(logger):
    empty = FakeDiscovery("fuser")
    broken = FakeDiscovery("ps", error=FileNotFoundError("ps"))
    last = FakeDiscovery("ss", {"port:8081": [303, 303]})
    kill = FakeKill(alive=[303])

    report = await _arbiter([empty, broken, last], logger, kill).free_port(8081)

    assert report.strategy == "ss"
    assert report.pids == [303]
    assert report.terminated == [303]
    assert empty.queries == [ResourceId.port(8081)]


@pytest.mark.asyncio
async def test_survivors_are_killed(logger):
    strategy = FakeDiscovery("fuser", {DEVICE: [11, 12]})
    kill = FakeKill(alive=[11, 12], stubborn=[12])

    report = await _arbiter([strategy], logger, kill).free_device("/dev/video0")

    assert report.terminated == [11, 12]
    assert report.killed == [12]
    assert kill.sent == [(11, signal.SIGTERM), (12, signal.SIGTERM), (12, signal.SIGKILL)]
    assert kill.alive == set()


@pytest.mark.asyncio
async def test_own_pid_and_invalid_pids_excluded(logger):
    strategy = FakeDiscovery("fuser", {DEVICE: [0, -1, 500, 77]})
    kill = FakeKill(alive=[500, 77])

    report = await _arbiter([strategy], logger, kill, own_pid=500).free_device("/dev/video0")

    assert report.pids == [77]
    assert kill.alive == {500}


@pytest.mark.asyncio
async def test_nothing_found_is_not_an_error(logger):
    kill = FakeKill()
    report = await _arbiter([FakeDiscovery("fuser")], logger, kill).free_device("/dev/video0")
    assert report.pids == []
    assert report.strategy is None
    assert kill.sent == []


@pytest.mark.asyncio
async def test_vanished_holder_is_skipped(logger):
    strategy = FakeDiscovery("fuser", {DEVICE: [40]})
    report = await _arbiter([strategy], logger, FakeKill()).free_device("/dev/video0")
    assert report.pids == [40]
    assert report.terminated == []


@pytest.mark.asyncio
async def test_permission_error_does_not_raise(logger):
    def kill(pid, sig):
        raise PermissionError(pid)

    strategy = FakeDiscovery("fuser", {DEVICE: [9]})
    report = await _arbiter([strategy], logger, kill).free_device("/dev/video0")
    assert report.terminated == []
    assert report.to_dict()["resource"] == DEVICE
