import json
import logging
import posixpath
from http.cookies import SimpleCookie

from aiohttp import hdrs, web

from . import config, progress
from .content import ContentSourceError
from .subtitles import SubtitleError, SubtitleTooLarge
from .ui import APP_HTML

SUBTITLE_HEADERS = {
    'Content-Type': 'text/vtt; charset=utf-8',
    'Cache-Control': 'no-cache, no-store, must-revalidate',
    'Access-Control-Allow-Origin': '*',
}

# Routes that never read or create a session.
SESSIONLESS_ROUTES = {'favicon', 'health', 'stored-subtitle'}


# --- Session identity ---
@web.middleware
async def session_middleware(request, handler):
    match_info = request.match_info
    if match_info.http_exception is not None or match_info.route.name in SESSIONLESS_ROUTES:
        return await handler(request)
    token = request.cookies.get(config.COOKIE_NAME)
    session, issued = request.app['sessions'].resolve(token)
    request['session'] = session
    if issued:
        request['issued_token'] = session.id
    return await handler(request)


def session_cookie(token, max_age):
    cookie = SimpleCookie()
    cookie[config.COOKIE_NAME] = token
    morsel = cookie[config.COOKIE_NAME]
    morsel['path'] = '/'
    morsel['max-age'] = max_age
    morsel['httponly'] = True
    morsel['samesite'] = 'Lax'
    if max_age == 0:
        morsel['expires'] = 'Thu, 01 Jan 1970 00:00:00 GMT'
    return morsel.OutputString()


async def persist_session_cookie(request, response):
    # Runs after aiohttp has serialized response.cookies, so the header is written directly.
    if request.get('clear_cookie'):
        response.headers.add(hdrs.SET_COOKIE, session_cookie('', 0))
    elif token := request.get('issued_token'):
        response.headers.add(hdrs.SET_COOKIE, session_cookie(token, config.COOKIE_MAX_AGE))


def bad_request(message):
    logging.warning(f"Rejected request: {message}")
    raise web.HTTPBadRequest(text=json.dumps({'success': False, 'error': message}), content_type='application/json')


def preview(identifier, limit=50):
    return identifier if len(identifier) <= limit else identifier[:limit] + "..."


def is_valid_identifier(identifier):
    if identifier.startswith('magnet:?'):
        return 'xt=urn:' in identifier
    return identifier.startswith(('http://', 'https://')) and len(identifier) > len('https://')


async def read_identifier(request):
    if request.content_type == 'application/json':
        try:
            data = await request.json()
        except ValueError:
            bad_request("Request body is not valid JSON")
        if not isinstance(data, dict):
            bad_request("Request body must be a JSON object")
    else:
        data = await request.post()
    value = data.get('magnet') or data.get('identifier') or ''
    return value.strip() if isinstance(value, str) else ''


# --- Handlers ---
async def handle_root(request):
    return web.Response(text=APP_HTML, content_type='text/html')


async def handle_favicon(request):
    return web.Response(status=204)


async def handle_stream(request):
    identifier = await read_identifier(request)
    if not identifier:
        bad_request("Magnet link is required")
    if not is_valid_identifier(identifier):
        bad_request("Malformed magnet link")
    if request.app['sessions'].start_stream(request['session'], identifier) is None:
        logging.warning("Stream request for a session that was closed meanwhile")
        request['clear_cookie'] = True
        raise web.HTTPConflict(text=json.dumps({'success': False, 'error': "Session expired, please retry"}), content_type='application/json')
    logging.info(f"Starting stream for magnet: {preview(identifier)}")
    return web.json_response({'success': True})


async def handle_status(request):
    session = request['session']
    item = session.selected
    current = progress.compute(session)
    data = {
        'status': session.status_message,
        'magnet': session.identifier or '',
        'videoAvailable': item is not None,
        'videoUrl': '/video' if item is not None else '',
        'downloading': item is not None and current.phase == progress.DOWNLOADING,
        'progress': round(current.percent, 1),
        'phase': current.phase,
        'fileSize': item.length if item is not None else 0,
        'fileSizeHuman': progress.format_file_size(item.length) if item is not None else '',
        'fileType': (posixpath.splitext(item.path)[1][1:].lower() or 'file') if item is not None else '',
        'subtitles': [track.as_dict() for track in session.subtitles],
    }
    return web.json_response({'success': True, 'data': data})


async def handle_progress(request):
    current = progress.compute(request['session'])
    return web.json_response({'progress': round(current.percent, 1), 'phase': current.phase})


async def handle_subtitle(request):
    registry = request.app['subtitles']
    track_id = request.query.get('track')
    if track_id is None:
        bad_request("Missing track parameter")
    track = registry.lookup(request['session'], track_id)
    if track is None:
        raise web.HTTPNotFound(text="Subtitle not found")
    try:
        body = await registry.render(track)
    except SubtitleError as e:
        logging.error(f"Error converting subtitle {track.name}: {e}")
        return web.json_response({'success': False, 'error': str(e)}, status=e.status)
    except ContentSourceError as e:
        logging.error(f"Error reading subtitle {track.name}: {e}")
        return web.json_response({'success': False, 'error': 'Error reading subtitle'}, status=500)
    logging.debug(f"Served subtitle: {track.name}")
    return web.Response(body=body, headers=SUBTITLE_HEADERS)


async def handle_stored_subtitle(request):
    path = request.app['subtitles'].stored_path(request.match_info.get('name'))
    if path is None:
        return web.Response(status=404, text="Subtitle file not found.")
    return web.FileResponse(path, headers=SUBTITLE_HEADERS)


async def handle_upload_subtitle(request):
    registry = request.app['subtitles']
    if not request.content_type.startswith('multipart/'):
        bad_request("Expected a multipart upload")
    reader = await request.multipart()
    field = None
    while (part := await reader.next()) is not None:
        if part.name == 'subtitle':
            field = part
            break
    if field is None or not field.filename:
        bad_request("Error reading subtitle file")
    try:
        registry.check_upload(field.filename)
        data = bytearray()
        while chunk := await field.read_chunk():
            data.extend(chunk)
            if len(data) > registry.max_bytes:
                raise SubtitleTooLarge(f"Subtitle file too large (limit {registry.max_bytes // 1024} KB)")
        track = await registry.upload(request['session'], bytes(data), field.filename)
    except SubtitleError as e:
        bad_request(str(e))
    return web.json_response({'success': True, 'track': track.as_dict()})


async def handle_reset_session(request):
    await request.app['sessions'].reset(request['session'].id)
    request['clear_cookie'] = True
    logging.info("Session reset")
    return web.json_response({'success': True})


async def handle_health(request):
    return web.json_response({'ok': True, 'sessions': request.app['sessions'].count()})
