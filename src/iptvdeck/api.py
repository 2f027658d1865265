"""Client for the IPTV panel backend HTTP API."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional
from urllib import error, request
from urllib.parse import quote, urlencode, urljoin, urlparse

from .catalog import Channel
from .config import normalize_base_url
from .logging_utils import get_logger

log = get_logger(__name__)

EXPIRY_WARNING_DAYS = 7


class ApiError(RuntimeError):
    """Raised when a backend request fails or returns an unusable payload."""

    def __init__(self, message: str, *, url: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


def _coerce_int(value: object) -> Optional[int]:
    """Convert ``value`` into an integer if possible."""

    if isinstance(value, bool):  # Guard against ``True``/``False`` being treated as 1/0.
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            try:
                numeric = float(text)
            except ValueError:
                return None
            if numeric.is_integer():
                return int(numeric)
    return None


def _parse_timestamp(value: object) -> Optional[datetime]:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        log.debug("Ignoring unparseable timestamp %r", value)
        return None


@dataclass(slots=True)
class UserAccount:
    """A subscriber as listed by ``/api/users``."""

    id: int | str
    username: str
    full_name: str = ""
    email: str = ""
    is_active: bool = True
    is_expired: bool = False
    expires_at: Optional[datetime] = None
    days_remaining: int = 0
    max_connections: int = 1

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "UserAccount":
        return cls(
            id=payload.get("id"),  # type: ignore[arg-type]
            username=str(payload.get("username") or ""),
            full_name=str(payload.get("full_name") or ""),
            email=str(payload.get("email") or ""),
            is_active=bool(payload.get("is_active", True)),
            is_expired=bool(payload.get("is_expired", False)),
            expires_at=_parse_timestamp(payload.get("expires_at")),
            days_remaining=_coerce_int(payload.get("days_remaining")) or 0,
            max_connections=_coerce_int(payload.get("max_connections")) or 1,
        )

    @property
    def display_name(self) -> str:
        return f"{self.username} - {self.full_name or self.username}"

    def status_label(self) -> str:
        """Return a human readable subscription status."""

        if self.is_expired:
            return "Expired"
        if not self.is_active:
            return "Disabled"
        if 0 < self.days_remaining <= EXPIRY_WARNING_DAYS:
            return f"{self.days_remaining} day{'s' if self.days_remaining != 1 else ''} left"
        return "Active"

    def expiry_label(self) -> str:
        if self.expires_at is None:
            return "Unlimited"
        return self.expires_at.strftime("%Y-%m-%d")


def _perform(
    url: str,
    *,
    method: str = "GET",
    body: Optional[Mapping[str, Any]] = None,
    timeout: float,
    user_agent: Optional[str] = None,
) -> tuple[int, bytes]:
    log.debug("%s %s (timeout=%s)", method, url, timeout)
    data = json.dumps(body).encode("utf8") if body is not None else None
    req = request.Request(url, data=data, method=method)
    req.add_header("Accept", "application/json")
    if data is not None:
        req.add_header("Content-Type", "application/json")
    if user_agent:
        req.add_header("User-Agent", user_agent)
    with request.urlopen(req, timeout=timeout) as response:  # type: ignore[call-arg]
        return response.status, response.read()


def _decode_json(payload: bytes) -> Any:
    try:
        return json.loads(payload.decode("utf8"))
    except UnicodeDecodeError:
        return json.loads(payload.decode("latin-1"))


class PanelClient:
    """Async wrapper around the panel backend endpoints."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        user_agent: Optional[str] = None,
    ) -> None:
        self.base_url = normalize_base_url(base_url)
        self.timeout = timeout
        self.user_agent = user_agent

    @property
    def host(self) -> str:
        """Return ``host[:port]`` of the backend, used in proxy URLs."""

        return urlparse(self.base_url).netloc

    def url_for(self, path: str) -> str:
        return urljoin(self.base_url + "/", path.lstrip("/"))

    async def _request(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Optional[Mapping[str, Any]] = None,
    ) -> tuple[int, bytes]:
        url = self.url_for(path)
        try:
            return await asyncio.to_thread(
                _perform,
                url,
                method=method,
                body=body,
                timeout=self.timeout,
                user_agent=self.user_agent,
            )
        except error.HTTPError as exc:
            log.error("%s %s failed with HTTP %s", method, url, exc.code)
            raise ApiError(f"HTTP {exc.code} from {url}", url=url, status=exc.code) from exc
        except (error.URLError, OSError) as exc:
            log.error("%s %s failed: %s", method, url, exc)
            raise ApiError(str(exc), url=url) from exc

    async def _request_json(
        self,
        path: str,
        *,
        method: str = "GET",
        body: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        status, payload = await self._request(path, method=method, body=body)
        url = self.url_for(path)
        try:
            return _decode_json(payload)
        except json.JSONDecodeError as exc:
            log.error("Invalid JSON from %s: %s", url, exc)
            raise ApiError(f"Invalid JSON from {url}", url=url, status=status) from exc

    async def search_channels(self, query: str = "") -> list[Channel]:
        """Return channels matching *query* (all channels for an empty query)."""

        path = "/api/channels/search?" + urlencode({"q": query})
        payload = await self._request_json(path)
        if not isinstance(payload, list):
            raise ApiError("Unexpected channel search response", url=self.url_for(path))
        channels: list[Channel] = []
        for entry in payload:
            if not isinstance(entry, Mapping):
                continue
            try:
                channels.append(Channel.from_payload(entry))
            except ValueError:
                log.warning("Skipping channel without id: %s", entry)
        log.info("Fetched %d channel(s) for query %r", len(channels), query)
        return channels

    async def toggle_channel(self, channel_id: object, active: bool) -> None:
        """Set the backend availability flag of *channel_id*."""

        await self._request(
            f"/api/channels/{channel_id}/toggle", method="POST", body={"active": active}
        )
        log.info("Channel %s set %s", channel_id, "active" if active else "inactive")

    async def fetch_stream_status(self) -> Any:
        """Return the raw ``/api/streams/status`` payload."""

        return await self._request_json("/api/streams/status")

    async def list_users(self) -> list[UserAccount]:
        payload = await self._request_json("/api/users")
        if not isinstance(payload, list):
            raise ApiError("Unexpected users response", url=self.url_for("/api/users"))
        users = [
            UserAccount.from_payload(entry) for entry in payload if isinstance(entry, Mapping)
        ]
        log.info("Fetched %d user(s)", len(users))
        return users

    async def save_generated_playlist(self, filename: str, content: str) -> str:
        """Store *content* on the backend and return its absolute URL."""

        path = "/api/generated-playlists"
        payload = await self._request_json(
            path, method="POST", body={"filename": filename, "content": content}
        )
        if not isinstance(payload, Mapping) or not payload.get("success"):
            raise ApiError(f"Backend refused to save {filename}", url=self.url_for(path))
        location = payload.get("url")
        if not isinstance(location, str) or not location:
            raise ApiError("Saved playlist response has no URL", url=self.url_for(path))
        url = self.url_for(location) if location.startswith("/") else location
        log.info("Saved playlist %s at %s", filename, url)
        return url

    async def fetch_user_playlist(self, username: str) -> Optional[str]:
        """Return the stored playlist text for *username*, or ``None`` if absent."""

        path = f"/playlists/playlist-{quote(username, safe='')}.m3u"
        try:
            _, payload = await self._request(path)
        except ApiError as exc:
            if exc.status == 404:
                log.info("No generated playlist stored for %s", username)
                return None
            raise
        return payload.decode("utf8", errors="replace")


__all__ = ["ApiError", "PanelClient", "UserAccount"]
