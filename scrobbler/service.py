from __future__ import annotations
import logging
import os
import time
from concurrent.futures import Future
from typing import Any, Callable

import requests

from scrobbler.config import Settings
from scrobbler.dispatch import Dispatcher
from scrobbler.lastfm_client import AuthResult, LastFMClient, TrackInfo
from scrobbler.notifier import Notifier
from scrobbler.scheduler import DrainScheduler
from scrobbler.scrobble_queue import QUEUE_FILENAME, QueuedScrobble, ScrobbleQueue
from scrobbler.session_store import Session, SessionStore
from scrobbler.state import PlaybackTracker

log = logging.getLogger("scrobbler")


class ScrobblerService:
    """Owns the client, session store, queue, drain scheduler and tracker.

    Built once at startup and handed to whatever feeds playback events in.
    `start()` restores the session and starts draining; `stop()` joins the
    drain thread. Also usable as a context manager.
    """

    def __init__(self, settings: Settings, *,
                 notifier: Notifier | None = None,
                 http: requests.Session | None = None,
                 dispatch: Dispatcher | None = None,
                 clock: Callable[[], float] = time.time):
        self.settings = settings
        self.notifier = notifier or Notifier(None)
        self.username = ""

        self.session_store = SessionStore(settings.data_dir)
        self.api = LastFMClient(
            settings.api_key,
            settings.api_secret,
            session_store=self.session_store,
            on_session_invalidated=self._on_session_invalidated,
            dispatch=dispatch,
            http=http,
        )
        self.queue = ScrobbleQueue(
            os.path.join(settings.data_dir, QUEUE_FILENAME),
            self.api,
            max_retries=settings.max_retries,
            max_age=settings.max_age_seconds,
            clock=clock,
            on_abandoned=self._on_abandoned,
        )
        self.scheduler = DrainScheduler(self.queue.drain, interval=settings.drain_interval)
        self.tracker = PlaybackTracker(
            self.now_playing,
            self.submit,
            percent=settings.scrobble_percent,
            enabled=settings.enabled,
            clock=clock,
        )

    def __enter__(self) -> ScrobblerService:
        self.start()
        return self

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    # -------- lifecycle --------
    def start(self) -> None:
        self.restore_session()
        self.scheduler.start()
        log.info("Scrobbler started. Scrobbling %s, threshold %d%%, %d queued",
                 "enabled" if self.settings.enabled else "disabled",
                 self.settings.scrobble_percent, self.queue.size())
        if self.notifier.enabled:
            log.info("Operator alerts enabled")
            self.notifier.send("INFO", "Scrobbler started",
                               f"Data dir {self.settings.data_dir}; {self.queue.size()} queued.")

    def stop(self) -> None:
        log.info("Shutting down…")
        self.scheduler.stop()
        log.info("Shutdown complete (%d scrobbles still queued)", self.queue.size())

    def restore_session(self) -> bool:
        """Resolve the startup session: stored file, legacy key, then token."""
        if not self.api.has_credentials():
            log.warning("Missing LASTFM_API_KEY / LASTFM_API_SECRET; nothing will be sent")
            if self.session_store.load() is not None:
                log.warning("Cannot validate stored session without credentials; clearing it")
                self.session_store.clear()
            return False

        stored = self.session_store.load()
        if stored is not None:
            self.api.set_session_key(stored.key)
            if self.api.validate_session():
                self.username = stored.name
                log.info("Authenticated as: %s", stored.name)
                return True
            log.info("Saved session invalid, cleared")
            self.api.set_session_key("")
            self.session_store.clear()
        elif self.settings.session_key:
            self.api.set_session_key(self.settings.session_key)
            if self.api.validate_session():
                self.username = self.settings.username
                self.session_store.save(Session(key=self.api.session_key, name=self.username))
                log.info("Authenticated as: %s (migrated configured session key)", self.username)
                return True
            log.info("Configured session key invalid, ignoring it")
            self.api.set_session_key("")

        if self.settings.auth_token:
            if self.authenticate(self.settings.auth_token).ok:
                return True

        log.warning("Not authenticated - authorize at %s and set LASTFM_AUTH_TOKEN",
                    self.api.get_auth_url())
        return False

    # -------- operations --------
    def authenticate(self, token: str) -> AuthResult:
        result = self.api.authenticate(token)
        if result.session is not None:
            self.username = result.session.name
        return result

    def now_playing(self, track: TrackInfo) -> Future | None:
        """Fire-and-forget Now Playing update; never queued or retried."""
        if not self.settings.enabled or not self.api.is_authenticated():
            return None
        return self.api.update_now_playing_async(track)

    def submit(self, track: TrackInfo) -> None:
        """Queue a scrobble durably and wake the drain thread."""
        if not self.settings.enabled:
            return
        self.queue.enqueue(track)
        self.scheduler.trigger()

    @property
    def needs_reauth(self) -> bool:
        return not self.api.is_authenticated()

    def status(self) -> dict[str, Any]:
        return {
            "authenticated": self.api.is_authenticated(),
            "username": self.username,
            "queue_size": self.queue.size(),
            "draining": self.scheduler.running,
        }

    # -------- callbacks --------
    def _on_session_invalidated(self, reason: str) -> None:
        self.username = ""
        self.notifier.session_invalidated(reason, self.api.get_auth_url())

    def _on_abandoned(self, item: QueuedScrobble, reason: str) -> None:
        self.notifier.scrobble_abandoned(item.track.artist, item.track.title, reason, item.retry_count)
