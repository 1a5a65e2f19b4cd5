"""
Durable Last.fm session storage.

- One small JSON file: {"session_key": ..., "username": ...}.
- Written via temp file + os.replace so a crash leaves the old or new content.
- Never raises on I/O or parse problems; a broken file reads as "no session".
"""

from __future__ import annotations
import json
import logging
import os
from dataclasses import dataclass

log = logging.getLogger("session_store")

SESSION_FILENAME = "lastfm_session.json"


@dataclass(frozen=True)
class Session:
    key: str
    name: str


class SessionStore:
    def __init__(self, data_dir: str, filename: str = SESSION_FILENAME):
        self.path = os.path.join(data_dir, filename)
        log.debug("Session store ready (path: %s)", self.path)

    def load(self) -> Session | None:
        if not os.path.isfile(self.path):
            log.debug("No existing session file at %s", self.path)
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError, RecursionError) as e:
            log.error("Failed to read session file %s: %s", self.path, e)
            return None

        if not isinstance(data, dict):
            log.warning("Session file %s is not a JSON object; ignoring", self.path)
            return None
        key = data.get("session_key")
        name = data.get("username")
        if not isinstance(key, str) or not isinstance(name, str) or not key:
            log.warning("Session file %s is missing required fields; ignoring", self.path)
            return None

        log.debug("Session loaded from disk (username: %s)", name)
        return Session(key=key, name=name)

    def save(self, session: Session) -> bool:
        tmp = f"{self.path}.tmp"
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump({"session_key": session.key, "username": session.name}, f, indent=4)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            log.error("Cannot write session file %s: %s", self.path, e)
            return False
        log.debug("Saved session for user %s (key length: %d)", session.name, len(session.key))
        return True

    def clear(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return
        except OSError as e:
            log.error("Failed to delete session file %s: %s", self.path, e)
            return
        log.debug("Session file deleted: %s", self.path)
