import asyncio
import hashlib
import logging
import os
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from . import config
from .content import ContentSourceError
from .supervisor import spawn

DISCOVERED = 'discovered'
UPLOADED = 'uploaded'


@dataclass
class SubtitleTrack:
    name: str
    path: str
    lang: str
    origin: str
    # Torrent file for discovered tracks, stored sidecar path for uploads.
    source: Any = field(default=None, repr=False)
    ext: str = ''

    def as_dict(self):
        return {'name': self.name, 'path': self.path, 'lang': self.lang, 'origin': self.origin}


class Session:
    def __init__(self, token):
        self.id = token
        self.content = None
        self.selected = None
        self.subtitles = []
        self.identifier = None
        self.last_activity = time.monotonic()
        self.status_message = "Ready to stream"
        self.task = None
        self.closed = False
        self.lock = asyncio.Lock()

    @property
    def namespace(self):
        """Filesystem-safe prefix for this session's files that does not reveal the token."""
        return hashlib.sha256(self.id.encode()).hexdigest()[:16]


def is_video_file(path):
    return os.path.splitext(path)[1].lower() in config.VIDEO_EXTENSIONS


def select_video(files):
    return next((f for f in files if is_video_file(f.path)), None)


class SessionStore:
    """
    Token -> Session registry. The map is guarded by one lock that is only held
    for dictionary operations, never across an await.
    """

    def __init__(self, source, registry, metadata_timeout=config.METADATA_TIMEOUT_SECONDS):
        self.source = source
        self.registry = registry
        self.metadata_timeout = metadata_timeout
        self._sessions = {}
        # Unknown token presented by a client -> token issued in its place.
        self._replacements = {}
        self._lock = threading.Lock()

    def resolve(self, token):
        """Return (session, issued); issued is True when the client must store a new token."""
        with self._lock:
            if token and (session := self._sessions.get(token)) is not None:
                session.last_activity = time.monotonic()
                return session, False
            if token and (session := self._sessions.get(self._replacements.get(token))) is not None:
                session.last_activity = time.monotonic()
                return session, True
            new_token = secrets.token_urlsafe(32)
            session = Session(new_token)
            self._sessions[new_token] = session
            if token:
                self._replacements[token] = new_token
            count = len(self._sessions)
        logging.debug(f"Created new session ({count} active)")
        return session, True

    def get(self, token):
        with self._lock:
            return self._sessions.get(token) if token else None

    def touch(self, session):
        session.last_activity = time.monotonic()

    def count(self):
        with self._lock:
            return len(self._sessions)

    def all(self):
        with self._lock:
            return list(self._sessions.values())

    def _remove(self, token):
        session = self._sessions.pop(token, None)
        if session is not None:
            self._replacements = {k: v for k, v in self._replacements.items() if v != token}
        return session

    async def reset(self, token):
        with self._lock:
            session = self._remove(token) if token else None
        if session is None:
            return False
        await self.release(session)
        return True

    def for_each_expired(self, idle_threshold, fn, now=None):
        """
        Remove sessions idle longer than idle_threshold, then call fn on each
        outside the lock. Removal comes first on purpose: a request arriving while
        fn releases a session gets a fresh session instead of the half-released one.
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            expired = [token for token, s in self._sessions.items() if now - s.last_activity > idle_threshold]
            sessions = [self._remove(token) for token in expired]
        for session in sessions:
            fn(session)
        return len(sessions)

    async def release(self, session):
        """Cancel any acquisition in flight and drop everything the session holds."""
        session.closed = True
        if session.task and not session.task.done():
            session.task.cancel()
            await asyncio.gather(session.task, return_exceptions=True)
        async with session.lock:
            await self._detach(session)
        self.registry.purge(session)

    async def _detach(self, session):
        torrent, session.content = session.content, None
        session.selected = None
        session.subtitles = []
        if torrent is not None:
            await torrent.drop()

    # --- Acquisition ---
    def start_stream(self, session, identifier):
        """Schedule acquisition of identifier for session and return without waiting for it."""
        if session.closed:
            return None
        if session.task and not session.task.done():
            session.task.cancel()
        session.task = spawn(self._acquire(session, identifier), "torrent-processing")
        return session.task

    async def _acquire(self, session, identifier):
        async with session.lock:
            await self._detach(session)
            self.registry.purge(session)
            session.identifier = identifier
            session.status_message = "Connecting to peers..."
            try:
                torrent = await self.source.add(identifier)
            except ContentSourceError as e:
                session.status_message = f"Error: {e}"
                logging.error(f"Error adding magnet: {e}")
                return None
            session.content = torrent
            session.status_message = "Fetching torrent metadata..."
            logging.info("Torrent added, waiting for info...")
            try:
                files = await asyncio.wait_for(torrent.wait_metadata(), self.metadata_timeout)
            except asyncio.TimeoutError:
                session.status_message = f"Error: timed out after {self.metadata_timeout:g}s waiting for torrent metadata"
                logging.warning("Timed out waiting for torrent metadata")
                await self._detach(session)
                return None
            except ContentSourceError as e:
                session.status_message = f"Error: {e}"
                logging.error(f"Error fetching torrent metadata: {e}")
                await self._detach(session)
                return None

            logging.info(f"Got torrent info: {torrent.name}")
            session.status_message = "Finding video file and subtitles..."
            if (video := select_video(files)) is not None:
                video.download()
                session.selected = video
                logging.info(f"Found video file: {video.path} ({video.length / 1024 / 1024:.2f} MB)")
            self.registry.discover(session, files)

            if video is None:
                session.status_message = "No video file found in torrent"
                logging.warning(f"No video file found in torrent: {torrent.name}")
            else:
                session.status_message = f"Ready to play: {torrent.name}"
                logging.info(f"Stream ready for: {torrent.name} ({len(session.subtitles)} subtitles found)")
            return torrent
