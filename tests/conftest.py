import json
from unittest.mock import MagicMock
from urllib.parse import parse_qs

import pytest

from scrobbler import lastfm_client
from scrobbler.lastfm_client import LastFMClient, TrackInfo
from scrobbler.session_store import Session, SessionStore


class FakeResponse:
    """Just enough of requests.Response for the client."""

    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        if text is None:
            text = json.dumps({} if payload is None else payload)
        self.text = text

    def json(self):
        return json.loads(self.text)


class FakeClock:
    def __init__(self, now=10_000):
        self.now = now

    def __call__(self):
        return self.now


def posted(http, index=-1) -> dict:
    """Decode the form body of a recorded http.post call."""
    body = http.post.call_args_list[index].kwargs["data"]
    return {k: v[0] for k, v in parse_qs(body, keep_blank_values=True).items()}


@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """Record transport backoff sleeps instead of sleeping."""
    calls = []
    monkeypatch.setattr(lastfm_client.time, "sleep", calls.append)
    return calls


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path) -> SessionStore:
    return SessionStore(str(tmp_path))


@pytest.fixture
def http():
    mock = MagicMock()
    mock.post.return_value = FakeResponse(200, {})
    mock.head.return_value = FakeResponse(200)
    return mock


@pytest.fixture
def client(http, store) -> LastFMClient:
    api = LastFMClient("apikey123", "secret456", session_store=store, http=http)
    api.set_session_key("sessionkey789")
    store.save(Session(key="sessionkey789", name="listener"))
    return api


@pytest.fixture
def track() -> TrackInfo:
    return TrackInfo(artist="Artist", title="Title", album="Album", album_artist="",
                     duration=200, track_number=3, timestamp=1000)
