"""
Content Source backed by the torrent streaming gateway.

The gateway resolves a magnet link into its file list and serves each file as a
byte stream while the torrent is still downloading:

    GET /files?url=<magnet>               -> {"Files": [{"path": ..., "size": ...}]}
    GET /status?url=<magnet>              -> {"percentageCompleted": ..., "files": [{"path": ..., "percentageCompleted": ...}]}
    GET /stream?url=<magnet>&index=<n>    -> file bytes, honours Range

Everything above this module only relies on the duck-typed surface below
(add / wait_metadata / files / drop, bytes_completed / download / open_reader,
seek / read / close), so tests swap in an in-memory source.
"""
import asyncio
import logging
import posixpath
from urllib.parse import quote

from aiohttp import ClientError, ClientSession, ClientTimeout

from . import config

# No read timeout on streams: a read past the downloaded frontier waits for the gateway.
STREAM_TIMEOUT = ClientTimeout(total=None, sock_connect=config.GATEWAY_REQUEST_TIMEOUT_SECONDS, sock_read=None)
REQUEST_TIMEOUT = ClientTimeout(total=config.GATEWAY_REQUEST_TIMEOUT_SECONDS)
SKIP_CHUNK_SIZE = 256 * 1024


class ContentSourceError(Exception):
    pass


class GatewaySource:
    def __init__(self, base_url=config.GATEWAY_URL, http_client=None, poll_interval=config.PROGRESS_POLL_INTERVAL_SECONDS):
        self.base_url = base_url.rstrip('/')
        self.poll_interval = poll_interval
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def http_client(self):
        if self._http_client is None or self._http_client.closed:
            self._http_client = ClientSession()
            self._owns_client = True
        return self._http_client

    async def close(self):
        if self._owns_client and self._http_client is not None and not self._http_client.closed:
            await self._http_client.close()
            logging.info("Gateway HTTP client closed.")

    def url(self, endpoint, identifier, **params):
        query = ''.join(f"&{k}={quote(str(v))}" for k, v in params.items())
        return f"{self.base_url}/{endpoint}?url={quote(identifier, safe='')}{query}"

    async def add(self, identifier):
        if not identifier:
            raise ContentSourceError("Empty identifier")
        return GatewayTorrent(self, identifier)


class GatewayTorrent:
    def __init__(self, source, identifier):
        self.source = source
        self.identifier = identifier
        self.name = ''
        self.files = []
        self.dropped = False
        self._poll_task = None

    async def wait_metadata(self):
        """Block until the gateway knows the file list."""
        try:
            async with self.source.http_client.get(self.source.url('files', self.identifier), timeout=STREAM_TIMEOUT) as response:
                if response.status != 200:
                    raise ContentSourceError(f"Gateway returned HTTP {response.status} for file list")
                data = await response.json(content_type=None)
        except (ClientError, ValueError) as e:
            raise ContentSourceError(f"Failed to fetch torrent metadata: {e}") from e
        entries = (data or {}).get('Files') or []
        self.files = [GatewayFile(self, i, entry.get('path', ''), int(entry.get('size') or 0)) for i, entry in enumerate(entries)]
        self.name = (data or {}).get('Name') or self._infer_name()
        return self.files

    def _infer_name(self):
        if not self.files:
            return self.identifier[:50]
        first = self.files[0].path
        return first.split('/', 1)[0] if '/' in first else posixpath.splitext(first)[0]

    def ensure_polling(self):
        if self._poll_task is None and not self.dropped:
            self._poll_task = asyncio.create_task(self._poll_progress())

    async def _poll_progress(self):
        endpoint = self.source.url('status', self.identifier)
        while not self.dropped:
            try:
                async with self.source.http_client.get(endpoint, timeout=REQUEST_TIMEOUT) as response:
                    if response.status == 200:
                        self._apply_status(await response.json(content_type=None))
                    else:
                        logging.warning(f"Failed to fetch torrent progress: HTTP {response.status}")
                await asyncio.sleep(self.source.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logging.error(f"Error in progress polling task: {e}")
                await asyncio.sleep(self.source.poll_interval * 2)

    def _apply_status(self, data):
        by_path = {f.path: f for f in self.files}
        for entry in (data or {}).get('files') or []:
            if (f := by_path.get(entry.get('path'))) is None:
                continue
            if 'bytesCompleted' in entry:
                f.update_completed(int(entry['bytesCompleted']))
            elif 'percentageCompleted' in entry:
                f.update_completed(int(f.length * float(entry['percentageCompleted']) / 100))

    async def drop(self):
        self.dropped = True
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            await asyncio.gather(self._poll_task, return_exceptions=True)
        self._poll_task = None


class GatewayFile:
    def __init__(self, torrent, index, path, length):
        self.torrent = torrent
        self.index = index
        self.path = path
        self.length = length
        self._completed = 0

    def bytes_completed(self):
        return self._completed

    def update_completed(self, value):
        # The gateway may report a stale figure; progress never goes backwards.
        self._completed = min(max(self._completed, value), self.length)

    def download(self):
        self.torrent.ensure_polling()

    def open_reader(self):
        if self.torrent.dropped:
            raise ContentSourceError("Torrent has been dropped")
        return GatewayReader(self)


class GatewayReader:
    """Independent read cursor; each one holds its own gateway response."""

    def __init__(self, file):
        self.file = file
        self.position = 0
        self._response = None

    async def seek(self, offset):
        if offset != self.position:
            await self._release()
            self.position = offset
        return self.position

    async def _open(self):
        source = self.file.torrent.source
        url = source.url('stream', self.file.torrent.identifier, index=self.file.index)
        headers = {'Range': f"bytes={self.position}-"} if self.position else {}
        try:
            response = await source.http_client.get(url, headers=headers, timeout=STREAM_TIMEOUT)
        except ClientError as e:
            raise ContentSourceError(f"Failed to open stream: {e}") from e
        if response.status not in (200, 206):
            response.release()
            raise ContentSourceError(f"Gateway returned HTTP {response.status} for stream")
        if response.status == 200 and self.position:
            # Range ignored upstream, skip ahead on the full body.
            remaining = self.position
            while remaining > 0:
                chunk = await response.content.read(min(remaining, SKIP_CHUNK_SIZE))
                if not chunk:
                    break
                remaining -= len(chunk)
        self._response = response

    async def read(self, size=-1):
        if self.file.torrent.dropped:
            raise ContentSourceError("Torrent has been dropped")
        if self._response is None:
            await self._open()
        try:
            data = await self._response.content.read(size)
        except ClientError as e:
            raise ContentSourceError(f"Stream read failed: {e}") from e
        self.position += len(data)
        return data

    async def _release(self):
        if self._response is not None:
            self._response.release()
            self._response = None

    async def close(self):
        await self._release()
