import asyncio
import json
from datetime import datetime
from urllib import error

import pytest

from iptvdeck.api import ApiError, PanelClient, UserAccount


def _json(payload) -> bytes:
    return json.dumps(payload).encode("utf8")


def test_search_channels(monkeypatch):
    calls = []

    def fake_perform(url: str, **kwargs):
        calls.append((url, kwargs))
        return 200, _json(
            [
                {"id": 1, "name": "BBC", "group": "News", "active": True},
                {"id": 2, "name": "Off", "category": "Misc", "active": False},
                {"name": "Broken"},
            ]
        )

    monkeypatch.setattr("iptvdeck.api._perform", fake_perform)

    client = PanelClient("panel.example:8080/", timeout=5.0)
    channels = asyncio.run(client.search_channels())
    assert [channel.id for channel in channels] == [1, 2]
    assert channels[1].group == "Misc"
    assert channels[1].active is False

    url, kwargs = calls[0]
    assert url == "http://panel.example:8080/api/channels/search?q="
    assert kwargs["method"] == "GET"
    assert kwargs["timeout"] == 5.0


def test_host_and_url_for():
    client = PanelClient("https://panel.example:9000/")
    assert client.base_url == "https://panel.example:9000"
    assert client.host == "panel.example:9000"
    assert client.url_for("/api/users") == "https://panel.example:9000/api/users"


def test_toggle_channel_posts_flag(monkeypatch):
    calls = []

    def fake_perform(url: str, **kwargs):
        calls.append((url, kwargs))
        return 200, b"{}"

    monkeypatch.setattr("iptvdeck.api._perform", fake_perform)

    asyncio.run(PanelClient("http://panel").toggle_channel(7, False))
    url, kwargs = calls[0]
    assert url == "http://panel/api/channels/7/toggle"
    assert kwargs["method"] == "POST"
    assert kwargs["body"] == {"active": False}


def test_http_error_becomes_api_error(monkeypatch):
    def fake_perform(url: str, **kwargs):
        raise error.HTTPError(url, 500, "Server Error", hdrs=None, fp=None)

    monkeypatch.setattr("iptvdeck.api._perform", fake_perform)

    with pytest.raises(ApiError) as excinfo:
        asyncio.run(PanelClient("http://panel").fetch_stream_status())
    assert excinfo.value.status == 500
    assert excinfo.value.url == "http://panel/api/streams/status"


def test_connection_error_becomes_api_error(monkeypatch):
    def fake_perform(url: str, **kwargs):
        raise error.URLError("connection refused")

    monkeypatch.setattr("iptvdeck.api._perform", fake_perform)

    with pytest.raises(ApiError) as excinfo:
        asyncio.run(PanelClient("http://panel").list_users())
    assert excinfo.value.status is None


def test_invalid_json_becomes_api_error(monkeypatch):
    monkeypatch.setattr("iptvdeck.api._perform", lambda url, **kwargs: (200, b"<html>"))

    with pytest.raises(ApiError):
        asyncio.run(PanelClient("http://panel").fetch_stream_status())


def test_list_users_parses_accounts(monkeypatch):
    def fake_perform(url: str, **kwargs):
        assert url == "http://panel/api/users"
        return 200, _json(
            [
                {
                    "id": 1,
                    "username": "alice",
                    "full_name": "Alice A",
                    "is_active": True,
                    "is_expired": False,
                    "expires_at": "2025-03-01T00:00:00Z",
                    "days_remaining": "3",
                    "max_connections": 2,
                },
                {"id": 2, "username": "bob", "is_active": False},
            ]
        )

    monkeypatch.setattr("iptvdeck.api._perform", fake_perform)

    users = asyncio.run(PanelClient("http://panel").list_users())
    alice, bob = users
    assert alice.display_name == "alice - Alice A"
    assert alice.days_remaining == 3
    assert alice.status_label() == "3 days left"
    assert alice.expiry_label() == "2025-03-01"
    assert bob.display_name == "bob - bob"
    assert bob.status_label() == "Disabled"
    assert bob.expiry_label() == "Unlimited"


def test_user_status_labels():
    assert UserAccount(id=1, username="x", is_expired=True).status_label() == "Expired"
    assert UserAccount(id=1, username="x", days_remaining=1).status_label() == "1 day left"
    assert UserAccount(id=1, username="x", days_remaining=30).status_label() == "Active"
    assert (
        UserAccount(id=1, username="x", expires_at=datetime(2030, 1, 2)).expiry_label()
        == "2030-01-02"
    )


def test_save_generated_playlist_returns_absolute_url(monkeypatch):
    calls = []

    def fake_perform(url: str, **kwargs):
        calls.append((url, kwargs))
        return 200, _json({"success": True, "url": "/playlists/playlist-alice.m3u"})

    monkeypatch.setattr("iptvdeck.api._perform", fake_perform)

    url = asyncio.run(
        PanelClient("http://panel:8080").save_generated_playlist("playlist-alice.m3u", "#EXTM3U\n")
    )
    assert url == "http://panel:8080/playlists/playlist-alice.m3u"
    posted_url, kwargs = calls[0]
    assert posted_url == "http://panel:8080/api/generated-playlists"
    assert kwargs["body"] == {"filename": "playlist-alice.m3u", "content": "#EXTM3U\n"}


def test_save_generated_playlist_rejects_failure(monkeypatch):
    monkeypatch.setattr(
        "iptvdeck.api._perform", lambda url, **kwargs: (200, _json({"success": False}))
    )

    with pytest.raises(ApiError):
        asyncio.run(PanelClient("http://panel").save_generated_playlist("a.m3u", ""))


def test_fetch_user_playlist(monkeypatch):
    def fake_perform(url: str, **kwargs):
        assert url == "http://panel/playlists/playlist-alice.m3u"
        return 200, b"#EXTM3U\n"

    monkeypatch.setattr("iptvdeck.api._perform", fake_perform)

    text = asyncio.run(PanelClient("http://panel").fetch_user_playlist("alice"))
    assert text == "#EXTM3U\n"


def test_fetch_user_playlist_missing_returns_none(monkeypatch):
    def fake_perform(url: str, **kwargs):
        raise error.HTTPError(url, 404, "Not Found", hdrs=None, fp=None)

    monkeypatch.setattr("iptvdeck.api._perform", fake_perform)

    assert asyncio.run(PanelClient("http://panel").fetch_user_playlist("ghost")) is None
