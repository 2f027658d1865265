"""Utilities for polling and summarising stream bandwidth telemetry."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional

from .logging_utils import get_logger

log = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024
DEFAULT_POLL_INTERVAL = 3.0


def stream_id_for_channel(channel_id: object) -> str:
    """Return the telemetry stream identifier used for *channel_id*."""

    return f"channel_{channel_id}"


def channel_id_for_stream(stream_id: str) -> Optional[str]:
    """Return the channel id part of a ``channel_<id>`` stream id, or ``None``."""

    prefix, sep, channel_id = stream_id.partition("_")
    if prefix != "channel" or not sep or not channel_id:
        return None
    return channel_id


def _as_float(value: object) -> float:
    if isinstance(value, bool) or value is None:
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return 0.0
    return 0.0


def _as_int(value: object) -> int:
    return int(_as_float(value))


@dataclass(slots=True, frozen=True)
class StreamStatus:
    """Status of one relayed stream as reported by the backend."""

    stream_id: str
    active: bool = False
    client_count: int = 0
    download_mbps: float = 0.0
    upload_mbps: float = 0.0
    bytes_read: int = 0
    bytes_written: int = 0

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "StreamStatus":
        return cls(
            stream_id=str(payload.get("stream_id") or ""),
            active=bool(payload.get("active")),
            client_count=_as_int(payload.get("client_count")),
            download_mbps=_as_float(payload.get("download_mbps")),
            upload_mbps=_as_float(payload.get("upload_mbps")),
            bytes_read=_as_int(payload.get("bytes_read")),
            bytes_written=_as_int(payload.get("bytes_written")),
        )


@dataclass(slots=True, frozen=True)
class TelemetrySummary:
    """Dashboard totals across every stream in a snapshot."""

    total_download_mbps: float = 0.0
    total_upload_mbps: float = 0.0
    total_download_mb: float = 0.0
    total_upload_mb: float = 0.0
    active_streams: int = 0

    def as_labels(self) -> dict[str, str]:
        """Return the totals formatted with two decimals."""

        return {
            "download_mbps": f"{self.total_download_mbps:.2f}",
            "upload_mbps": f"{self.total_upload_mbps:.2f}",
            "download_mb": f"{self.total_download_mb:.2f}",
            "upload_mb": f"{self.total_upload_mb:.2f}",
        }


def summarize_streams(streams: Iterable[StreamStatus]) -> TelemetrySummary:
    """Sum rates and transferred bytes over *streams*.

    Inactive streams are included; the backend reports zero rates for them.
    """

    download_mbps = upload_mbps = 0.0
    bytes_read = bytes_written = 0
    active = 0
    for stream in streams:
        download_mbps += stream.download_mbps
        upload_mbps += stream.upload_mbps
        bytes_read += stream.bytes_read
        bytes_written += stream.bytes_written
        if stream.active:
            active += 1
    return TelemetrySummary(
        total_download_mbps=download_mbps,
        total_upload_mbps=upload_mbps,
        total_download_mb=bytes_read / BYTES_PER_MB,
        total_upload_mb=bytes_written / BYTES_PER_MB,
        active_streams=active,
    )


def parse_status_payload(payload: object) -> list[StreamStatus]:
    """Extract stream entries from a ``/api/streams/status`` response."""

    if not isinstance(payload, Mapping):
        raise ValueError("Stream status response is not a JSON object")
    raw_streams = payload.get("streams") or []
    if not isinstance(raw_streams, list):
        raise ValueError("Stream status 'streams' field is not a list")
    return [
        StreamStatus.from_payload(entry)
        for entry in raw_streams
        if isinstance(entry, Mapping)
    ]


@dataclass(slots=True, frozen=True)
class TelemetrySnapshot:
    """The most recent poll result, keyed by stream id."""

    streams: Mapping[str, StreamStatus] = field(default_factory=dict)
    summary: TelemetrySummary = field(default_factory=TelemetrySummary)

    @classmethod
    def from_streams(cls, streams: Iterable[StreamStatus]) -> "TelemetrySnapshot":
        entries = list(streams)
        return cls(
            streams={stream.stream_id: stream for stream in entries},
            summary=summarize_streams(entries),
        )

    @classmethod
    def from_payload(cls, payload: object) -> "TelemetrySnapshot":
        return cls.from_streams(parse_status_payload(payload))

    def status_for_channel(self, channel_id: object) -> Optional[StreamStatus]:
        return self.streams.get(stream_id_for_channel(channel_id))

    def is_streaming(self, channel_id: object) -> bool:
        """Return True if the channel's relay is currently active."""

        status = self.status_for_channel(channel_id)
        return bool(status and status.active)

    def active_streams(self) -> list[StreamStatus]:
        """Active streams ordered by stream id."""

        return [
            self.streams[stream_id]
            for stream_id in sorted(self.streams)
            if self.streams[stream_id].active
        ]


class TelemetryPoller:
    """Fetch stream status on a fixed period and keep the latest snapshot.

    Each :meth:`start` bumps a generation counter; a response that arrives for
    an older generation (after :meth:`stop` or a restart) is discarded.
    Within one generation ticks run back to back, so they never overlap.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[object]],
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        on_update: Optional[Callable[[TelemetrySnapshot], None]] = None,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("Polling interval must be positive")
        self._fetch = fetch
        self._interval = interval
        self._on_update = on_update
        self._on_error = on_error
        self._snapshot = TelemetrySnapshot()
        self._task: Optional[asyncio.Task[None]] = None
        self._generation = 0

    @property
    def snapshot(self) -> TelemetrySnapshot:
        return self._snapshot

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Begin polling, replacing any loop that is already running."""

        self._cancel_task()
        self._generation += 1
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation), name=f"telemetry-poll-{generation}"
        )
        log.info("Telemetry polling started (every %.1fs)", self._interval)

    def stop(self) -> None:
        """Stop polling; any response still in flight is dropped."""

        was_running = self.running
        self._generation += 1
        self._cancel_task()
        if was_running:
            log.info("Telemetry polling stopped")

    async def poll_once(self) -> bool:
        """Run a single fetch for the current generation."""

        return await self._tick(self._generation)

    def _cancel_task(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self, generation: int) -> None:
        while generation == self._generation:
            await self._tick(generation)
            await asyncio.sleep(self._interval)

    async def _tick(self, generation: int) -> bool:
        try:
            payload = await self._fetch()
            snapshot = TelemetrySnapshot.from_payload(payload)
        except asyncio.CancelledError:
            raise
        except (RuntimeError, OSError, ValueError, TypeError) as exc:
            log.warning("Telemetry poll failed; keeping previous snapshot: %s", exc)
            if self._on_error is not None and generation == self._generation:
                self._on_error(exc)
            return False
        if generation != self._generation:
            log.debug("Discarding telemetry response from stale poll %d", generation)
            return False
        self._snapshot = snapshot
        log.debug(
            "Telemetry updated: %d stream(s), %.2f Mbps down",
            len(snapshot.streams),
            snapshot.summary.total_download_mbps,
        )
        if self._on_update is not None:
            self._on_update(snapshot)
        return True


__all__ = [
    "BYTES_PER_MB",
    "StreamStatus",
    "TelemetryPoller",
    "TelemetrySnapshot",
    "TelemetrySummary",
    "channel_id_for_stream",
    "parse_status_payload",
    "stream_id_for_channel",
    "summarize_streams",
]
