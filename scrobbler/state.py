from __future__ import annotations
import logging
import time
from dataclasses import replace
from typing import Callable

from scrobbler.lastfm_client import TrackInfo

log = logging.getLogger("playback")

MIN_TRACK_LENGTH = 30  # seconds; shorter tracks are never scrobbled
MAX_THRESHOLD = 240    # scrobble after 4 minutes at the latest


class PlaybackTracker:
    """Turns host player events into now-playing updates and scrobbles.

    Last.fm guideline: scrobble once `percent` of the track has played or after
    240s, whichever comes first. We only scrobble once per play unless the
    listener seeks back below the threshold.
    """

    def __init__(self, on_now_playing: Callable[[TrackInfo], object],
                 on_scrobble: Callable[[TrackInfo], object], *,
                 percent: int = 50, enabled: bool = True,
                 clock: Callable[[], float] = time.time):
        self.on_now_playing = on_now_playing
        self.on_scrobble = on_scrobble
        self.percent = percent
        self.enabled = enabled
        self._clock = clock

        self.current: TrackInfo | None = None
        self.threshold: float = 0
        self.scrobbled: bool = False
        self.paused: bool = False

    def _reset(self) -> None:
        self.current = None
        self.threshold = 0
        self.scrobbled = False
        self.paused = False

    def on_new_track(self, track: TrackInfo) -> None:
        self._reset()
        if not self.enabled:
            return
        if track.duration <= 0:
            log.info("Track length invalid or missing, skipping: %s — %s", track.artist, track.title)
            return
        if not track.artist.strip() or not track.title.strip():
            log.info("Missing artist or title, skipping track")
            return
        if track.duration < MIN_TRACK_LENGTH:
            log.debug("Track shorter than %ss, not scrobbling: %s — %s",
                      MIN_TRACK_LENGTH, track.artist, track.title)
            return

        self.current = replace(track, timestamp=int(self._clock()))
        self.threshold = min(MAX_THRESHOLD, self.percent / 100 * track.duration)
        log.debug("Now playing: %s — %s (threshold %.0fs)", track.artist, track.title, self.threshold)
        self.on_now_playing(self.current)

    def on_position(self, seconds: float) -> None:
        if not self.enabled or self.current is None or self.scrobbled or self.paused:
            return
        if seconds < self.threshold:
            return
        # Scrobble timestamp is when this play started, not when the threshold was hit
        track = replace(self.current, timestamp=int(self._clock() - seconds))
        self.scrobbled = True
        self.on_scrobble(track)

    def on_seek(self, seconds: float) -> None:
        # Seeking back below the threshold allows a re-scrobble
        if seconds < self.threshold:
            self.scrobbled = False

    def on_pause(self, paused: bool) -> None:
        self.paused = paused

    def on_stop(self) -> None:
        self._reset()
