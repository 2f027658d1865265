import asyncio

import pytest

from iptvdeck.stats import (
    BYTES_PER_MB,
    StreamStatus,
    TelemetryPoller,
    TelemetrySnapshot,
    channel_id_for_stream,
    parse_status_payload,
    stream_id_for_channel,
    summarize_streams,
)


def _payload() -> dict:
    return {
        "streams": [
            {
                "stream_id": "channel_1",
                "active": True,
                "client_count": 3,
                "download_mbps": 2.5,
                "upload_mbps": 1.0,
                "bytes_read": 2 * BYTES_PER_MB,
                "bytes_written": 0,
            },
            {
                "stream_id": "channel_2",
                "active": False,
                "client_count": 0,
                "download_mbps": 1.5,
                "upload_mbps": 0.5,
                "bytes_read": BYTES_PER_MB,
                "bytes_written": BYTES_PER_MB,
            },
        ]
    }


def test_summary_sums_every_stream() -> None:
    summary = summarize_streams(parse_status_payload(_payload()))
    assert summary.total_download_mbps == pytest.approx(4.0)
    assert summary.total_upload_mbps == pytest.approx(1.5)
    assert summary.total_download_mb == pytest.approx(3.0)
    assert summary.total_upload_mb == pytest.approx(1.0)
    assert summary.active_streams == 1
    assert summary.as_labels() == {
        "download_mbps": "4.00",
        "upload_mbps": "1.50",
        "download_mb": "3.00",
        "upload_mb": "1.00",
    }


def test_stream_status_coerces_loose_values() -> None:
    status = StreamStatus.from_payload(
        {"stream_id": "channel_9", "active": 1, "download_mbps": "1.25", "bytes_read": None}
    )
    assert status.active is True
    assert status.download_mbps == pytest.approx(1.25)
    assert status.bytes_read == 0


def test_parse_status_payload_rejects_malformed_payloads() -> None:
    with pytest.raises(ValueError):
        parse_status_payload(["not", "an", "object"])
    with pytest.raises(ValueError):
        parse_status_payload({"streams": "nope"})
    assert parse_status_payload({"streams": None}) == []
    assert parse_status_payload({}) == []


def test_snapshot_matches_channels_by_stream_id() -> None:
    snapshot = TelemetrySnapshot.from_payload(_payload())
    assert stream_id_for_channel(1) == "channel_1"
    assert snapshot.is_streaming(1) is True
    assert snapshot.status_for_channel(1).client_count == 3
    assert snapshot.is_streaming(2) is False
    assert [status.stream_id for status in snapshot.active_streams()] == ["channel_1"]
    assert snapshot.status_for_channel(42) is None


def test_poller_rejects_non_positive_interval() -> None:
    async def fetch() -> dict:
        return {}

    with pytest.raises(ValueError):
        TelemetryPoller(fetch, interval=0)


def test_poll_failure_keeps_previous_snapshot() -> None:
    responses: list[object] = [_payload(), OSError("connection refused")]
    updates: list[TelemetrySnapshot] = []
    errors: list[Exception] = []

    async def fetch() -> object:
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    async def scenario() -> TelemetryPoller:
        poller = TelemetryPoller(fetch, on_update=updates.append, on_error=errors.append)
        assert await poller.poll_once() is True
        assert await poller.poll_once() is False
        return poller

    poller = asyncio.run(scenario())
    assert len(updates) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], OSError)
    assert poller.snapshot is updates[0]
    assert poller.snapshot.summary.total_download_mbps == pytest.approx(4.0)


def test_stop_discards_response_in_flight() -> None:
    updates: list[TelemetrySnapshot] = []

    async def scenario() -> tuple[bool, TelemetryPoller]:
        started = asyncio.Event()
        release = asyncio.Event()

        async def fetch() -> object:
            started.set()
            await release.wait()
            return _payload()

        poller = TelemetryPoller(fetch, on_update=updates.append)
        pending = asyncio.ensure_future(poller.poll_once())
        await started.wait()
        poller.stop()
        release.set()
        return await pending, poller

    applied, poller = asyncio.run(scenario())
    assert applied is False
    assert updates == []
    assert poller.snapshot.streams == {}


def test_start_twice_keeps_a_single_loop() -> None:
    calls: list[int] = []

    async def fetch() -> object:
        calls.append(1)
        return _payload()

    async def scenario() -> None:
        poller = TelemetryPoller(fetch, interval=60)
        poller.start()
        first = poller._task
        poller.start()
        second = poller._task
        await asyncio.sleep(0.05)
        assert first is not second
        assert first.cancelled()
        assert poller.running
        poller.stop()
        await asyncio.sleep(0)
        assert not poller.running

    asyncio.run(scenario())
    assert len(calls) == 1


def test_polling_loop_applies_updates() -> None:
    updates: list[TelemetrySnapshot] = []

    async def fetch() -> object:
        return _payload()

    async def scenario() -> None:
        poller = TelemetryPoller(fetch, interval=0.01, on_update=updates.append)
        poller.start()
        await asyncio.sleep(0.05)
        poller.stop()

    asyncio.run(scenario())
    assert len(updates) >= 2
    assert updates[-1].is_streaming(1)


def test_channel_id_for_stream() -> None:
    assert channel_id_for_stream("channel_42") == "42"
    assert channel_id_for_stream(stream_id_for_channel(7)) == "7"
    assert channel_id_for_stream("relay_3") is None
    assert channel_id_for_stream("channel_") is None
