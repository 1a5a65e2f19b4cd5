"""Reliable Last.fm scrobbling: signed API client, durable queue, session store."""

__version__ = "0.1.0"
