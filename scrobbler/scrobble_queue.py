"""
Persistent scrobble queue with per-item backoff.

- Stores pending scrobbles on disk (JSON file) and rewrites it after every
  mutation, so a crash loses at most the request in flight.
- Each entry backs off on its own: 30s * 2^min(retries, 5), so one track the
  server keeps rejecting doesn't hold up the rest.
- drain() attempts at most `max_per_drain` eligible entries per call.
"""

from __future__ import annotations
import dataclasses
import json
import logging
import os
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from scrobbler.lastfm_client import LastFMClient, LastFMError, LastFMNetworkError, TrackInfo

log = logging.getLogger("scrobble_queue")

QUEUE_FILENAME = "lastfm_scrobble_queue.json"
QUEUE_VERSION = 1
MAX_PER_DRAIN = 10
BACKOFF_BASE = 30  # seconds
BACKOFF_MAX_EXPONENT = 5  # caps the gap at 960s


def backoff_seconds(retry_count: int) -> int:
    """Minimum gap between attempts for an entry that failed `retry_count` times."""
    return BACKOFF_BASE * 2 ** min(max(retry_count, 0), BACKOFF_MAX_EXPONENT)


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


@dataclass
class QueuedScrobble:
    track: TrackInfo
    retry_count: int = 0
    last_attempt: int = 0  # unix seconds, 0 = never tried

    def to_json(self) -> dict[str, Any]:
        t = self.track
        return {
            "artist": t.artist,
            "track": t.title,
            "album": t.album,
            "album_artist": t.album_artist,
            "duration": t.duration,
            "track_number": t.track_number,
            "timestamp": t.timestamp,
            "retry_count": self.retry_count,
            "last_attempt": self.last_attempt,
        }

    @classmethod
    def from_json(cls, item: dict[str, Any]) -> QueuedScrobble:
        # Missing fields fall back to "" / 0
        track = TrackInfo(
            artist=_as_str(item.get("artist")),
            title=_as_str(item.get("track")),
            album=_as_str(item.get("album")),
            album_artist=_as_str(item.get("album_artist")),
            duration=_as_int(item.get("duration")),
            track_number=_as_int(item.get("track_number")),
            timestamp=_as_int(item.get("timestamp")),
        )
        return cls(
            track=track,
            retry_count=_as_int(item.get("retry_count")),
            last_attempt=_as_int(item.get("last_attempt")),
        )


def read_queue_file(path: str) -> list[QueuedScrobble]:
    """Parse a queue file. Raises OSError / ValueError on unreadable content."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict) or not isinstance(data.get("queue"), list):
        raise ValueError("queue file has no 'queue' list")
    return [QueuedScrobble.from_json(item) for item in data["queue"] if isinstance(item, dict)]


def write_queue_file(path: str, items: list[QueuedScrobble]) -> None:
    """Write atomically: temp file, fsync, rename."""
    payload = {"version": QUEUE_VERSION, "queue": [item.to_json() for item in items]}
    tmp = f"{path}.tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        # ASCII escapes keep lone surrogates writable
        json.dump(payload, f, indent=2)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


class ScrobbleQueue:
    def __init__(self, path: str, api: LastFMClient, *,
                 max_per_drain: int = MAX_PER_DRAIN,
                 max_retries: int = 0,
                 max_age: int = 0,
                 clock: Callable[[], float] = time.time,
                 on_abandoned: Callable[[QueuedScrobble, str], None] | None = None):
        self.path = path
        self.api = api
        self.max_per_drain = max_per_drain
        self.max_retries = max_retries  # 0 = retry forever
        self.max_age = max_age          # seconds since play start, 0 = no limit
        self.on_abandoned = on_abandoned
        self._clock = clock
        self._lock = threading.Lock()
        self._q: list[QueuedScrobble] = []
        self._network_was_unavailable = False
        self._load()

    # -------- persistence --------
    def _load(self) -> None:
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            if not os.path.isfile(self.path):
                log.debug("Queue file does not exist (first run or empty queue)")
                return
            self._q = read_queue_file(self.path)
        except (OSError, ValueError, RecursionError) as e:
            # Corrupt or unreadable file? Start fresh.
            log.error("Failed to load queue from %s: %s", self.path, e)
            self._q = []
            return
        log.info("Loaded %d pending scrobbles from %s", len(self._q), self.path)

    def _save(self, items: list[QueuedScrobble]) -> bool:
        try:
            write_queue_file(self.path, items)
        except (OSError, TypeError, ValueError) as e:
            log.error("Failed to save queue to %s: %s", self.path, e)
            return False
        return True

    # -------- public API --------
    def enqueue(self, track: TrackInfo) -> None:
        with self._lock:
            items = self._q + [QueuedScrobble(track=track)]
            # Kept in memory even if the write fails; the next save retries it
            self._save(items)
            self._q = items
            log.debug("Track added to queue (%d total): %s — %s",
                      len(self._q), track.artist, track.title)

    def size(self) -> int:
        with self._lock:
            return len(self._q)

    def snapshot(self) -> list[QueuedScrobble]:
        with self._lock:
            return [dataclasses.replace(item) for item in self._q]

    def clear(self) -> None:
        with self._lock:
            self._q = []
            self._save(self._q)
        log.info("Scrobble queue cleared")

    def is_network_available(self) -> bool:
        """Probe Last.fm; log online/offline transitions once each."""
        if not self.api.ping():
            if not self._network_was_unavailable:
                log.warning("Network unavailable - scrobbling paused (%d tracks stored offline). "
                            "New tracks will continue to be queued.", self.size())
            self._network_was_unavailable = True
            return False
        if self._network_was_unavailable:
            self._network_was_unavailable = False
            log.info("Network connection restored - resuming queued scrobbles (%d tracks pending)",
                     self.size())
        return True

    def drain(self) -> int:
        """Try to deliver eligible entries. Returns how many were delivered."""
        if not self.api.is_authenticated():
            log.debug("Not authenticated; queue drain skipped")
            return 0
        if not self.is_network_available():
            return 0

        with self._lock:
            if not self._q:
                return 0
            log.debug("Processing queue with %d tracks", len(self._q))

            now = int(self._clock())
            pending = deque(self._q)
            remaining: list[QueuedScrobble] = []
            attempted = delivered = 0

            while pending:
                if attempted >= self.max_per_drain:
                    log.debug("Processed %d tracks this cycle - will continue later", attempted)
                    break
                if not self.api.is_authenticated():
                    log.info("Session lost while draining; %d tracks left queued", len(pending))
                    break

                item = pending.popleft()
                if self.max_age and item.track.timestamp and now - item.track.timestamp > self.max_age:
                    self._abandon(item, "too old")
                    continue
                if now - item.last_attempt < backoff_seconds(item.retry_count):
                    remaining.append(item)
                    continue

                attempted += 1
                try:
                    self.api.submit_scrobble(item.track)
                except LastFMNetworkError as e:
                    # Offline is not the entry's fault: leave it and the rest untouched
                    log.info("Network error while draining (%s); pausing", e)
                    self._network_was_unavailable = True
                    remaining.append(item)
                    break
                except Exception as e:
                    item.retry_count += 1
                    item.last_attempt = now
                    if isinstance(e, LastFMError):
                        log.warning("Failed to scrobble from queue (attempt %d): %s — %s: %s",
                                    item.retry_count, item.track.artist, item.track.title, e)
                    else:
                        log.exception("Unexpected error scrobbling from queue: %s — %s",
                                      item.track.artist, item.track.title)
                    if self.max_retries and item.retry_count >= self.max_retries:
                        self._abandon(item, f"{item.retry_count} failed attempts")
                    else:
                        remaining.append(item)
                    continue

                delivered += 1
                log.info("Scrobbled from queue: %s — %s", item.track.artist, item.track.title)

            remaining.extend(pending)
            self._q = remaining
            self._save(self._q)

        if delivered:
            log.info("Drained %d cached scrobbles. Queue size now %d", delivered, len(remaining))
        return delivered

    def _abandon(self, item: QueuedScrobble, reason: str) -> None:
        log.warning("Abandoning scrobble (%s): %s — %s", reason, item.track.artist, item.track.title)
        if self.on_abandoned is not None:
            self.on_abandoned(item, reason)
