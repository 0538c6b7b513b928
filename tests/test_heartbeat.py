import asyncio

import pytest

from tests.host_helpers import FakeHost
from widgetbridge.bus import MemoryMessageBus
from widgetbridge.heartbeat import Heartbeat


async def _fast_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


async def _spin(times: int = 10) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_mount_is_noop_when_not_embedded() -> None:
    bus = MemoryMessageBus("https://widget.example.com")
    heartbeat = Heartbeat(bus, sleep=_fast_sleep)

    assert heartbeat.mount() is False
    assert heartbeat.running is False
    heartbeat.unmount()


@pytest.mark.asyncio
async def test_beats_reach_host() -> None:
    widget_bus, host_bus = MemoryMessageBus.pair()
    host = FakeHost(host_bus)
    heartbeat = Heartbeat(widget_bus, sleep=_fast_sleep)

    assert heartbeat.mount() is True
    await _spin()
    heartbeat.unmount()

    assert heartbeat.beats >= 2
    assert len(host.heartbeats) == heartbeat.beats
    assert all(beat["type"] == "HEARTBEAT" for beat in host.heartbeats)
    assert all(isinstance(beat["timestamp"], int) for beat in host.heartbeats)


@pytest.mark.asyncio
async def test_resume_and_suspend_are_idempotent() -> None:
    widget_bus, _host_bus = MemoryMessageBus.pair()
    heartbeat = Heartbeat(widget_bus, sleep=_fast_sleep)

    heartbeat.resume()
    first = heartbeat._task
    heartbeat.resume()
    assert heartbeat._task is first

    heartbeat.suspend()
    heartbeat.suspend()
    await _spin(2)
    assert heartbeat.running is False
    assert first.cancelled()


@pytest.mark.asyncio
async def test_follows_transport_status() -> None:
    widget_bus, host_bus = MemoryMessageBus.pair()
    heartbeat = Heartbeat(widget_bus, sleep=_fast_sleep)
    heartbeat.mount()
    assert heartbeat.running is True

    widget_bus.disconnect()
    await _spin(2)
    assert heartbeat.running is False

    widget_bus.connect(host_bus)
    assert heartbeat.running is True
    heartbeat.unmount()
    assert heartbeat.running is False


@pytest.mark.asyncio
async def test_unmount_stops_beats() -> None:
    widget_bus, host_bus = MemoryMessageBus.pair()
    host = FakeHost(host_bus)
    heartbeat = Heartbeat(widget_bus, sleep=_fast_sleep)
    heartbeat.mount()
    await _spin()
    heartbeat.unmount()
    await _spin(2)

    count = len(host.heartbeats)
    await _spin()
    assert len(host.heartbeats) == count
