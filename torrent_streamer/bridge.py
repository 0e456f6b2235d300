"""
Serves the selected torrent file as a seekable HTTP resource while it is still
downloading. Reads past the downloaded frontier wait inside the reader, so the
response simply stalls until the bytes arrive.
"""
import logging
import mimetypes
from datetime import datetime, timezone

from aiohttp import hdrs, web

from .content import ContentSourceError

VIDEO_PSEUDO_NAME = 'video.mp4'
VIDEO_CONTENT_TYPE = mimetypes.guess_type(VIDEO_PSEUDO_NAME)[0] or 'video/mp4'
CHUNK_SIZE = 64 * 1024

STREAM_HEADERS = {
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Pragma': 'no-cache',
    'Expires': '0',
    'Accept-Ranges': 'bytes',
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'Content-Type, Range',
    'Access-Control-Expose-Headers': 'Content-Length, Content-Range',
}


def resolve_range(request, size):
    """
    Return (status, start, count) for the request against a resource of `size`
    bytes. Follows aiohttp's FileResponse rules; If-Range never matches because
    the resource has no stable validator.
    """
    if hdrs.RANGE not in request.headers or hdrs.IF_RANGE in request.headers:
        return 200, 0, size
    try:
        rng = request.http_range
    except ValueError:
        return 416, 0, 0
    start, end = rng.start, rng.stop
    if start is None and end is None:
        return 200, 0, size
    if start < 0 and end is None:
        start = max(start + size, 0)
        count = size - start
    else:
        count = min(end if end is not None else size, size) - start
    if start >= size:
        return 416, 0, 0
    return 206, start, count


async def serve_video(request):
    session = request['session']
    item = session.selected
    if item is None:
        return web.Response(status=404, text="No active file", headers=STREAM_HEADERS)

    size = item.length
    status, start, count = resolve_range(request, size)
    if status == 416:
        return web.Response(status=416, headers={**STREAM_HEADERS, hdrs.CONTENT_RANGE: f"bytes */{size}"})

    try:
        reader = item.open_reader()
    except ContentSourceError as e:
        logging.warning(f"Video reader unavailable: {e}")
        return web.Response(status=404, text="No active file", headers=STREAM_HEADERS)

    response = web.StreamResponse(status=status, headers=STREAM_HEADERS)
    response.content_type = VIDEO_CONTENT_TYPE
    response.content_length = count
    response.last_modified = datetime.now(timezone.utc)
    if status == 206:
        response.headers[hdrs.CONTENT_RANGE] = f"bytes {start}-{start + count - 1}/{size}"
    try:
        await response.prepare(request)
        if request.method == hdrs.METH_HEAD or count == 0:
            return response

        await reader.seek(start)
        remaining = count
        while remaining > 0:
            chunk = await reader.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                logging.warning(f"Video source ended {remaining} bytes early")
                response.force_close()
                break
            await response.write(chunk[:remaining])
            remaining -= len(chunk)
        await response.write_eof()
        return response
    except ConnectionResetError:
        logging.debug("Client disconnected from video stream")
        return response
    except ContentSourceError as e:
        logging.warning(f"Video stream aborted: {e}")
        response.force_close()
        return response
    finally:
        await reader.close()
