import asyncio
import math

import pytest

from audiobox.errors import PlaybackError, StaleSessionError, TransientBackendError, ValidationError
from audiobox.services.playback import PlaybackState, PlaybackTransport, format_time
from tests.fakes import FakeMediaElement, InMemoryBlobStore, make_record


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def blobs():
    return InMemoryBlobStore()


@pytest.fixture
def element():
    return FakeMediaElement(duration=200.0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport(blobs, element, clock):
    return PlaybackTransport(blobs, element, url_ttl_seconds=3600, clock=clock)


async def loaded(transport, element, record=None):
    record = record or make_record()
    await transport.load(record)
    element.emit("loadedmetadata")
    return record


@pytest.mark.asyncio
async def test_load_resolves_signed_url_and_binds_it(transport, blobs, element):
    record = make_record()

    session = await transport.load(record)

    assert transport.state == PlaybackState.READY
    assert ("sign", record.file_path, 3600) in blobs.calls
    assert element.src == session.resolved_url
    assert transport.record is record


@pytest.mark.asyncio
async def test_metadata_moves_ready_to_paused(transport, element):
    element.current_time = 0.0
    await loaded(transport, element)

    assert transport.state == PlaybackState.PAUSED
    assert transport.duration_seconds == 200.0
    assert transport.position_seconds == 0.0
    assert transport.is_playing is False


@pytest.mark.asyncio
async def test_play_pause_cycle(transport, element):
    await loaded(transport, element)

    transport.play()
    assert transport.state == PlaybackState.PLAYING
    assert transport.is_playing is True
    assert element.play_calls == 1

    transport.pause()
    assert transport.state == PlaybackState.PAUSED
    assert transport.is_playing is False
    assert element.pause_calls == 1

    transport.toggle()
    assert transport.state == PlaybackState.PLAYING


@pytest.mark.asyncio
async def test_element_play_event_starts_playing(transport, element):
    await loaded(transport, element)

    element.emit("playing")

    assert transport.state == PlaybackState.PLAYING


@pytest.mark.asyncio
async def test_position_mirrors_time_updates(transport, element):
    await loaded(transport, element)
    transport.play()

    for t in (1.0, 2.5, 7.25):
        element.current_time = t
        element.emit("timeupdate")
        assert transport.position_seconds == t


@pytest.mark.asyncio
async def test_ended_resets_playing_and_holds_position(transport, element):
    await loaded(transport, element)
    transport.play()
    element.current_time = 200.0

    element.emit("ended")

    assert transport.state == PlaybackState.ENDED
    assert transport.is_playing is False
    assert transport.position_seconds == 200.0


@pytest.mark.asyncio
async def test_play_after_end_restarts_from_zero(transport, element):
    await loaded(transport, element)
    transport.play()
    element.current_time = 200.0
    element.emit("ended")

    transport.play()

    assert transport.state == PlaybackState.PLAYING
    assert element.current_time == 0.0


@pytest.mark.asyncio
async def test_later_load_supersedes_pending_resolution(transport, blobs, element):
    record_a = make_record(file_name="a.mp3")
    record_b = make_record(file_name="b.mp3")
    gate = asyncio.Event()
    blobs.sign_gates[record_a.file_path] = gate

    pending_a = asyncio.create_task(transport.load(record_a))
    await asyncio.sleep(0)
    assert transport.state == PlaybackState.RESOLVING

    session_b = await transport.load(record_b)
    gate.set()
    result_a = await pending_a

    assert result_a is None
    assert transport.record is record_b
    assert element.src == session_b.resolved_url
    assert record_a.file_path not in element.src


@pytest.mark.asyncio
async def test_close_discards_pending_resolution(transport, blobs, element):
    record = make_record()
    gate = asyncio.Event()
    blobs.sign_gates[record.file_path] = gate

    pending = asyncio.create_task(transport.load(record))
    await asyncio.sleep(0)
    transport.close()
    gate.set()

    assert await pending is None
    assert transport.state == PlaybackState.IDLE
    assert element.src is None


@pytest.mark.asyncio
async def test_resolution_failure_returns_to_idle(transport, blobs, element):
    blobs.fail_sign = TransientBackendError("Object not found")

    with pytest.raises(PlaybackError):
        await transport.load(make_record())

    assert transport.state == PlaybackState.IDLE
    assert transport.record is None
    assert "Object not found" in transport.last_error
    assert element.src is None
    with pytest.raises(PlaybackError):
        transport.play()


@pytest.mark.asyncio
async def test_events_from_previous_binding_are_ignored(transport, element):
    await loaded(transport, element, make_record(file_name="first.mp3"))
    stale_handlers = list(element.listeners["timeupdate"])

    second = make_record(file_name="second.mp3")
    await transport.load(second)
    element.current_time = 99.0
    for handler in stale_handlers:
        handler()

    assert transport.position_seconds == 0.0
    assert transport.record is second
    assert len(element.listeners["timeupdate"]) == 1


@pytest.mark.asyncio
async def test_close_unsubscribes_everything(transport, element):
    await loaded(transport, element)

    transport.close()

    assert element.listener_count() == 0
    assert transport.state == PlaybackState.IDLE


@pytest.mark.asyncio
async def test_seek_is_clamped_and_keeps_play_state(transport, element):
    await loaded(transport, element)
    transport.play()

    assert transport.seek(50) == 50
    assert element.current_time == 50
    assert transport.state == PlaybackState.PLAYING

    assert transport.seek(1_000) == 200.0
    assert transport.seek(-5) == 0.0
    assert 0 <= transport.position_seconds <= transport.duration_seconds


@pytest.mark.asyncio
async def test_seek_requires_known_duration(transport, element):
    await transport.load(make_record())

    with pytest.raises(PlaybackError):
        transport.seek(10)


@pytest.mark.asyncio
async def test_seek_rejects_nan(transport, element):
    await loaded(transport, element)

    with pytest.raises(ValidationError):
        transport.seek(math.nan)
    with pytest.raises(ValidationError):
        transport.seek("10")
    with pytest.raises(ValidationError):
        transport.seek(None)


@pytest.mark.asyncio
async def test_volume_bounds(transport, element):
    await transport.load(make_record())

    transport.set_volume(0.0)
    transport.set_volume(1.0)
    transport.set_volume(0.35)
    assert element.volume == 0.35

    for bad in (-0.01, 1.01, math.nan, "0.5", None, True):
        with pytest.raises(ValidationError):
            transport.set_volume(bad)
        assert transport.volume == 0.35
        assert element.volume == 0.35


def test_volume_needs_a_bound_element(transport):
    with pytest.raises(PlaybackError):
        transport.set_volume(0.5)


@pytest.mark.asyncio
async def test_expired_url_fails_playback(transport, element, clock):
    await loaded(transport, element)
    clock.now += 3600

    with pytest.raises(StaleSessionError):
        transport.play()

    assert transport.state == PlaybackState.IDLE
    assert element.play_calls == 0


@pytest.mark.asyncio
async def test_load_none_goes_idle(transport, element):
    await loaded(transport, element)

    assert await transport.load(None) is None
    assert transport.state == PlaybackState.IDLE


def test_format_time():
    assert format_time(0) == "0:00"
    assert format_time(65.9) == "1:05"
    assert format_time(math.nan) == "0:00"
    assert format_time(None) == "0:00"


@pytest.mark.asyncio
async def test_snapshot_reports_transport_readout(transport, element):
    record = await loaded(transport, element)
    transport.play()
    element.current_time = 75.0
    element.emit("timeupdate")

    snap = transport.snapshot()

    assert snap["state"] == "PLAYING"
    assert snap["record_id"] == record.id
    assert snap["position_label"] == "1:15"
    assert snap["duration_label"] == "3:20"
    assert snap["error"] is None
