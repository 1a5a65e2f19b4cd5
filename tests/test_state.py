"""Tests for turning playback events into now-playing updates and scrobbles."""

import pytest

from scrobbler.lastfm_client import TrackInfo
from scrobbler.state import PlaybackTracker


@pytest.fixture
def events():
    return {"now_playing": [], "scrobble": []}


@pytest.fixture
def tracker(events, clock):
    return PlaybackTracker(events["now_playing"].append, events["scrobble"].append,
                           percent=50, clock=clock)


def song(duration=200, artist="Artist", title="Title") -> TrackInfo:
    return TrackInfo(artist=artist, title=title, album="Album", duration=duration, track_number=1)


class TestNewTrack:
    def test_sends_now_playing(self, tracker, events, clock):
        tracker.on_new_track(song())
        [np] = events["now_playing"]
        assert np.title == "Title"
        assert np.timestamp == clock.now
        assert tracker.threshold == 100

    def test_threshold_capped_at_four_minutes(self, tracker):
        tracker.on_new_track(song(duration=1200))
        assert tracker.threshold == 240

    @pytest.mark.parametrize("track", [
        song(duration=0),
        song(duration=29),
        song(artist=""),
        song(title="   "),
    ])
    def test_unusable_tracks_are_ignored(self, tracker, events, track):
        tracker.on_new_track(track)
        tracker.on_position(10_000)
        assert events == {"now_playing": [], "scrobble": []}

    def test_disabled(self, events, clock):
        tracker = PlaybackTracker(events["now_playing"].append, events["scrobble"].append,
                                  enabled=False, clock=clock)
        tracker.on_new_track(song())
        tracker.on_position(150)
        assert events == {"now_playing": [], "scrobble": []}


class TestScrobbleThreshold:
    def test_scrobbles_once_past_threshold(self, tracker, events, clock):
        tracker.on_new_track(song())
        tracker.on_position(99)
        assert events["scrobble"] == []

        clock.now += 100
        tracker.on_position(100)
        tracker.on_position(150)
        [scrobble] = events["scrobble"]
        # Timestamp is when playback started, not when the threshold was crossed
        assert scrobble.timestamp == clock.now - 100

    def test_seek_back_rearms(self, tracker, events):
        tracker.on_new_track(song())
        tracker.on_position(120)
        tracker.on_seek(10)
        tracker.on_position(110)
        assert len(events["scrobble"]) == 2

    def test_seek_forward_does_not_rearm(self, tracker, events):
        tracker.on_new_track(song())
        tracker.on_position(120)
        tracker.on_seek(150)
        tracker.on_position(160)
        assert len(events["scrobble"]) == 1

    def test_paused_does_not_scrobble(self, tracker, events):
        tracker.on_new_track(song())
        tracker.on_pause(True)
        tracker.on_position(150)
        assert events["scrobble"] == []
        tracker.on_pause(False)
        tracker.on_position(151)
        assert len(events["scrobble"]) == 1

    def test_stop_forgets_track(self, tracker, events):
        tracker.on_new_track(song())
        tracker.on_stop()
        tracker.on_position(150)
        assert events["scrobble"] == []
        assert tracker.current is None

    def test_custom_percent(self, events, clock):
        tracker = PlaybackTracker(events["now_playing"].append, events["scrobble"].append,
                                  percent=90, clock=clock)
        tracker.on_new_track(song(duration=100))
        tracker.on_position(89)
        assert events["scrobble"] == []
        tracker.on_position(90)
        assert len(events["scrobble"]) == 1
