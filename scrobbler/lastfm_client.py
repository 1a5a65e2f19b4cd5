from __future__ import annotations
import functools
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable

import requests

from scrobbler.dispatch import Dispatcher
from scrobbler.session_store import Session, SessionStore
from scrobbler.signing import encode_body, sign

log = logging.getLogger("lastfm")

API_URL = "https://ws.audioscrobbler.com/2.0/"
AUTH_URL = "https://www.last.fm/api/auth/?api_key="
USER_AGENT = "lastfm-scrobbler/0.1"

CONNECT_TIMEOUT = 5
READ_TIMEOUT = 15
MAX_ATTEMPTS = 3
BACKOFF_START = 0.2  # seconds, doubles per retry
BACKOFF_CAP = 1.6

# 403 here means a bad token, not a dead session
_AUTH_METHODS = ("auth.getSession", "auth.getToken")

# 4=Auth failed, 9=Invalid session, 14=Token not authorized
_AUTH_CODES = (4, 9, 14)
# 29=Rate limit exceeded
_RATE_LIMIT_CODES = (29,)


# Custom error classes so callers can branch
class LastFMError(Exception):
    def __init__(self, message: str = "", *, code: int | None = None, status: int | None = None):
        super().__init__(message)
        self.code = code
        self.status = status

class LastFMConfigError(LastFMError): ...
class LastFMNetworkError(LastFMError): ...
class LastFMAuthError(LastFMError): ...
class LastFMRateLimitError(LastFMError): ...
class LastFMServerError(LastFMError): ...
class LastFMResponseError(LastFMError): ...
class LastFMUnknownError(LastFMError): ...


def redact(value: str | None) -> str:
    """Mask a secret for logging: keep the first and last two characters."""
    if not value:
        return "<empty>"
    if len(value) <= 6:
        return "******"
    return f"{value[:2]}****{value[-2:]}"


def _sanitize(value: str) -> str:
    return "".join(c for c in value if c.isprintable() and not c.isspace())


@dataclass(frozen=True)
class TrackInfo:
    artist: str
    title: str
    album: str = ""
    album_artist: str = ""
    duration: int = 0       # seconds, 0 = unknown
    track_number: int = 0   # 0 = unknown
    timestamp: int = 0      # unix seconds when playback began


@dataclass(frozen=True)
class AuthResult:
    session: Session | None = None
    error_code: int | None = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.session is not None


class LastFMClient:
    """Signed-request client for the Last.fm 2.0 API.

    Owns the application credentials and the current session key. Public
    operations never raise `LastFMError`; they log and return a status. The
    `submit_*` methods raise so the queue can tell offline from rejected.
    """

    def __init__(self, api_key: str = "", api_secret: str = "", *,
                 session_store: SessionStore | None = None,
                 on_session_invalidated: Callable[[str], None] | None = None,
                 dispatch: Dispatcher | None = None,
                 http: requests.Session | None = None):
        self.api_key = ""
        self.api_secret = ""
        self.session_key = ""
        self.session_store = session_store
        self.on_session_invalidated = on_session_invalidated
        self.dispatch = dispatch
        if http is None:
            http = requests.Session()
            http.headers["User-Agent"] = USER_AGENT
        self.http = http
        self.set_credentials(api_key, api_secret)

    # -------- credentials / session --------
    def set_credentials(self, api_key: str | None, api_secret: str | None) -> None:
        api_key = api_key or ""
        api_secret = api_secret or ""
        log.debug("Credentials set (api_key: %s [len=%d], api_secret: %s [len=%d])",
                  redact(api_key), len(api_key), redact(api_secret), len(api_secret))
        if api_key != self.api_key or api_secret != self.api_secret:
            if self.session_key:
                log.info("Credentials changed - clearing session")
            self.session_key = ""
        self.api_key = api_key
        self.api_secret = api_secret

    def set_session_key(self, session_key: str | None) -> None:
        session_key = _sanitize(session_key or "")
        if session_key != self.session_key:
            self.session_key = session_key
            log.debug("Session key set (len=%d, value=%s)", len(session_key), redact(session_key))

    def is_authenticated(self) -> bool:
        return bool(self.session_key)

    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def get_auth_url(self) -> str:
        return AUTH_URL + self.api_key

    def _invalidate_session(self, reason: str) -> None:
        had_session = bool(self.session_key)
        self.session_key = ""
        if self.session_store is not None:
            self.session_store.clear()
        if had_session:
            log.warning("Session invalidated (%s); re-authentication required", reason)
            if self.on_session_invalidated is not None:
                self.on_session_invalidated(reason)

    # -------- transport --------
    def _request(self, params: dict[str, str]) -> dict[str, Any]:
        """Sign and POST `params`; return the decoded JSON body.

        Retries 429/5xx with exponential backoff. Raises a `LastFMError`
        subclass on any failure.
        """
        method = params.get("method", "")
        if not self.has_credentials():
            raise LastFMConfigError("Missing Last.fm API key or secret")

        signed = dict(params)
        if "sk" in signed:
            signed["sk"] = _sanitize(signed["sk"])
        signed["format"] = "json"
        signed["api_sig"] = sign(signed, self.api_secret)
        body = encode_body(signed)

        if log.isEnabledFor(logging.DEBUG):
            shown = {k: redact(v) if k in ("api_key", "sk", "token", "api_sig") else v
                     for k, v in signed.items()}
            log.debug("POST %s %s (body length %d)", method, shown, len(body))

        backoff = BACKOFF_START
        resp = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                resp = self.http.post(
                    API_URL,
                    data=body,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=(CONNECT_TIMEOUT, READ_TIMEOUT),
                    verify=True,
                    allow_redirects=False,
                )
            except requests.RequestException as e:
                raise LastFMNetworkError(f"{method}: {e}") from e

            status = resp.status_code
            if status in (401, 403):
                if method in _AUTH_METHODS:
                    log.debug("HTTP %s during %s (ignored for session state)", status, method)
                else:
                    self._invalidate_session(f"HTTP {status} from {method}")

            if 200 <= status < 300:
                break

            log.debug("HTTP %s from %s (attempt %d/%d)", status, method, attempt, MAX_ATTEMPTS)
            if (status == 429 or 500 <= status < 600) and attempt < MAX_ATTEMPTS:
                log.debug("Backing off for %d ms", int(backoff * 1000))
                time.sleep(backoff)
                backoff = min(backoff * 2, BACKOFF_CAP)
                continue
            break

        status = resp.status_code
        try:
            data = resp.json()
        except ValueError:
            data = None

        if not 200 <= status < 300:
            detail = f"HTTP {status} from {method}"
            code = None
            if isinstance(data, dict) and "error" in data:
                api_err = _api_error(data, status)
                code = api_err.code
                detail = f"{detail} ({api_err})"
            if status in (401, 403):
                raise LastFMAuthError(detail, code=code, status=status)
            if status == 429:
                raise LastFMRateLimitError(detail, code=code, status=status)
            raise LastFMServerError(detail, code=code, status=status)

        if not isinstance(data, dict):
            raise LastFMResponseError(f"{method}: response not valid JSON", status=status)
        if "error" in data:
            raise _api_error(data, status)
        return data

    def ping(self, connect_timeout: float = 3, timeout: float = 5) -> bool:
        """Lightweight reachability probe: any HTTP answer counts as online."""
        try:
            self.http.head(API_URL, timeout=(connect_timeout, timeout), allow_redirects=False)
        except requests.RequestException as e:
            log.debug("Reachability probe failed: %s", e)
            return False
        return True

    # -------- authentication --------
    def _exchange_token(self, token: str) -> AuthResult:
        log.debug("Starting authentication (token length: %d)", len(token))
        try:
            data = self._request({"method": "auth.getSession", "api_key": self.api_key, "token": token})
        except LastFMError as e:
            log.error("Authentication failed: %s", e)
            return AuthResult(error_code=e.code, message=str(e))

        session = data.get("session")
        if not isinstance(session, dict) or not session.get("key"):
            log.error("Unexpected auth.getSession response (missing session)")
            return AuthResult(message="Unexpected response format (missing session)")
        return AuthResult(session=Session(key=_sanitize(str(session["key"])),
                                          name=str(session.get("name", ""))))

    def _apply_auth(self, result: AuthResult) -> None:
        if result.session is None:
            return
        self.session_key = result.session.key
        if self.session_store is not None:
            self.session_store.save(result.session)
        log.info("Authenticated as: %s", result.session.name)

    def authenticate(self, token: str) -> AuthResult:
        """Exchange a one-time token for a session and persist it."""
        result = self._exchange_token(token)
        self._apply_auth(result)
        return result

    def validate_session(self) -> bool:
        """Probe the current session.

        Offline keeps the session (True). HTTP 401/403 or an auth error code
        clears it in memory and on disk (False). Anything else keeps it.
        """
        if not self.session_key:
            return False
        try:
            self._request({"method": "auth.getSessionInfo", "api_key": self.api_key, "sk": self.session_key})
        except LastFMNetworkError as e:
            log.info("Offline mode detected, skipping session validation (%s)", e)
            return True
        except LastFMAuthError as e:
            self._invalidate_session(str(e))
            return False
        except LastFMConfigError as e:
            log.warning("Cannot validate session: %s", e)
            return False
        except LastFMError as e:
            log.warning("Session validation inconclusive, keeping session: %s", e)
            return True
        log.info("Session key validated (length: %d)", len(self.session_key))
        return True

    # -------- track calls --------
    def _track_params(self, method: str, track: TrackInfo, *, with_timestamp: bool) -> dict[str, str]:
        if not self.is_authenticated():
            raise LastFMConfigError("Not authenticated")
        if not track.artist.strip() or not track.title.strip():
            raise LastFMConfigError("Missing artist or title")

        params = {
            "method": method,
            "api_key": self.api_key,
            "sk": self.session_key,
            "artist": track.artist,
            "track": track.title,
        }
        if with_timestamp:
            params["timestamp"] = str(int(track.timestamp))
        if track.album:
            params["album"] = track.album
        if track.album_artist:
            params["albumArtist"] = track.album_artist
        if track.duration > 0:
            params["duration"] = str(int(track.duration))
        if track.track_number > 0:
            params["trackNumber"] = str(int(track.track_number))
        return params

    def submit_now_playing(self, track: TrackInfo) -> dict[str, Any]:
        return self._request(self._track_params("track.updateNowPlaying", track, with_timestamp=False))

    def submit_scrobble(self, track: TrackInfo) -> dict[str, Any]:
        data = self._request(self._track_params("track.scrobble", track, with_timestamp=True))
        scrobbles = data.get("scrobbles")
        attr = scrobbles.get("@attr") if isinstance(scrobbles, dict) else None
        if isinstance(attr, dict) and str(attr.get("ignored", "0")) not in ("0", ""):
            log.warning("Last.fm ignored scrobble: %s — %s", track.artist, track.title)
        return data

    def update_now_playing(self, track: TrackInfo) -> bool:
        """Push a Now Playing update. Non-fatal on failure."""
        try:
            self.submit_now_playing(track)
        except LastFMError as e:
            # NOW PLAYING failures aren't critical; log at DEBUG
            log.debug("update_now_playing failed: %s", e)
            return False
        return True

    def scrobble(self, track: TrackInfo) -> bool:
        """Submit a scrobble with its start timestamp (unix seconds)."""
        try:
            self.submit_scrobble(track)
        except LastFMConfigError as e:
            log.debug("Scrobble not sent: %s", e)
            return False
        except LastFMError as e:
            log.warning("Scrobble failed: %s — %s: %s", track.artist, track.title, e)
            return False
        log.info("Scrobbled: %s — %s%s", track.artist, track.title,
                 f" [{track.album}]" if track.album else "")
        return True

    # -------- background variants --------
    def _spawn(self, work: Callable[[], Any], *,
               callback: Callable[[Any], None] | None = None,
               on_result: Callable[[Any], None] | None = None,
               dispatch: Dispatcher | None = None) -> Future:
        """Run `work` on a fresh daemon thread.

        When a callback (or `on_result`) is given, the result is handed to the
        dispatcher so both run on the caller's designated thread; the returned
        future resolves there too. Otherwise the future resolves on the worker.
        """
        dispatch = dispatch or self.dispatch
        needs_dispatch = callback is not None or on_result is not None
        if needs_dispatch and dispatch is None:
            raise ValueError("a dispatcher is required to deliver completion callbacks")

        future: Future = Future()

        def complete(result: Any) -> None:
            if on_result is not None:
                on_result(result)
            future.set_result(result)
            if callback is not None:
                callback(result)

        def worker() -> None:
            try:
                result = work()
            except Exception as e:
                log.exception("Background Last.fm request failed")
                future.set_exception(e)
                return
            if needs_dispatch:
                dispatch(functools.partial(complete, result))
            else:
                future.set_result(result)

        threading.Thread(target=worker, name="lastfm-request", daemon=True).start()
        return future

    def authenticate_async(self, token: str, callback: Callable[[AuthResult], None] | None = None,
                           dispatch: Dispatcher | None = None) -> Future:
        # The session is applied on the dispatcher thread, not the worker
        return self._spawn(functools.partial(self._exchange_token, token),
                           callback=callback, on_result=self._apply_auth, dispatch=dispatch)

    def update_now_playing_async(self, track: TrackInfo, callback: Callable[[bool], None] | None = None,
                                 dispatch: Dispatcher | None = None) -> Future:
        return self._spawn(functools.partial(self.update_now_playing, track),
                           callback=callback, dispatch=dispatch)

    def scrobble_async(self, track: TrackInfo, callback: Callable[[bool], None] | None = None,
                       dispatch: Dispatcher | None = None) -> Future:
        return self._spawn(functools.partial(self.scrobble, track),
                           callback=callback, dispatch=dispatch)


def _api_error(data: dict[str, Any], status: int) -> LastFMError:
    """Map an `{"error": code, "message": ...}` body to an exception."""
    try:
        code = int(data.get("error"))
    except (TypeError, ValueError):
        code = None
    msg = str(data.get("message", ""))
    if code in _AUTH_CODES:
        cls = LastFMAuthError
    elif code in _RATE_LIMIT_CODES:
        cls = LastFMRateLimitError
    else:
        cls = LastFMUnknownError
    return cls(f"Last.fm API error {code}: {msg}", code=code, status=status)
