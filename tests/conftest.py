import asyncio

import pytest

from torrent_streamer.app import init_app
from torrent_streamer.content import ContentSourceError
from torrent_streamer.sessions import SessionStore
from torrent_streamer.subtitles import SubtitleRegistry

MAGNET = "magnet:?xt=urn:btih:ABC"
OTHER_MAGNET = "magnet:?xt=urn:btih:DEF"
VIDEO_BYTES = bytes(range(256)) * 4096
SRT_BYTES = (
    b"1\n00:00:01,000 --> 00:00:02,500\nHello world\n\n"
    b"2\n00:00:03,000 --> 00:00:04,000\nSecond line\n"
)


class FakeFile:
    def __init__(self, torrent, index, path, data, available=None):
        self.torrent = torrent
        self.index = index
        self.path = path
        self.data = data
        self.length = len(data)
        self.available = self.length if available is None else available
        self.download_started = False
        self.readers_open = 0
        self._changed = asyncio.Event()

    def bytes_completed(self):
        return self.available

    def download(self):
        self.download_started = True

    def deliver(self, upto=None):
        self.available = self.length if upto is None else min(upto, self.length)
        self._changed.set()

    def open_reader(self):
        if self.torrent.dropped:
            raise ContentSourceError("Torrent has been dropped")
        self.readers_open += 1
        return FakeReader(self)


class FakeReader:
    def __init__(self, file):
        self.file = file
        self.position = 0
        self.closed = False

    async def seek(self, offset):
        self.position = offset
        return offset

    async def read(self, size=-1):
        f = self.file
        while self.position >= f.available and f.available < f.length:
            f._changed.clear()
            await f._changed.wait()
        end = f.available if size < 0 else min(f.available, self.position + size)
        data = f.data[self.position:end]
        self.position += len(data)
        return data

    async def close(self):
        if not self.closed:
            self.closed = True
            self.file.readers_open -= 1


class FakeTorrent:
    def __init__(self, source, identifier, entries):
        self.source = source
        self.identifier = identifier
        self.name = entries[0][0].split('/', 1)[0] if entries else identifier
        self.files = []
        self.dropped = False
        self._entries = entries

    async def wait_metadata(self):
        if self.source.metadata_gate is not None:
            await self.source.metadata_gate.wait()
        self.files = [
            FakeFile(self, i, path, data, self.source.initial_available)
            for i, (path, data) in enumerate(self._entries)
        ]
        return self.files

    async def drop(self):
        self.dropped = True


class FakeSource:
    """In-memory Content Source; files start fully downloaded unless initial_available is set."""

    def __init__(self, catalog=None):
        self.catalog = catalog or {}
        self.torrents = []
        self.metadata_gate = None
        self.initial_available = None
        self.closed = False

    async def add(self, identifier):
        if identifier not in self.catalog:
            raise ContentSourceError("Unknown torrent")
        torrent = FakeTorrent(self, identifier, self.catalog[identifier])
        self.torrents.append(torrent)
        return torrent

    def alive(self):
        return [t for t in self.torrents if not t.dropped]

    async def close(self):
        self.closed = True


async def settle(app):
    """Wait for every session's acquisition task to finish."""
    for session in app['sessions'].all():
        if session.task is not None:
            await asyncio.gather(session.task, return_exceptions=True)


@pytest.fixture
def source():
    return FakeSource({
        MAGNET: [("Movie/Movie.mkv", VIDEO_BYTES), ("Movie/Movie.en.srt", SRT_BYTES)],
        OTHER_MAGNET: [("Other/readme.txt", b"hello"), ("Other/Other.mp4", VIDEO_BYTES[:1000]), ("Other/Other.avi", b"x" * 10)],
    })


@pytest.fixture
def subtitles_dir(tmp_path):
    path = tmp_path / "subtitles"
    path.mkdir()
    return path


@pytest.fixture
def registry(subtitles_dir):
    return SubtitleRegistry(str(subtitles_dir), max_bytes=64 * 1024)


@pytest.fixture
def store(source, registry):
    return SessionStore(source, registry, metadata_timeout=1)


@pytest.fixture
def app(source, subtitles_dir):
    return init_app(content_source=source, subtitles_dir=str(subtitles_dir), max_subtitle_bytes=64 * 1024, metadata_timeout=1)


@pytest.fixture
async def client(aiohttp_client, app):
    return await aiohttp_client(app)
