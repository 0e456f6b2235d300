import os

import aiohttp
from aiohttp import web

from torrent_streamer import config
from torrent_streamer.subtitles import normalize

from conftest import MAGNET, SRT_BYTES, settle


def upload_form(data, filename):
    form = aiohttp.FormData()
    form.add_field('subtitle', data, filename=filename, content_type='application/octet-stream')
    return form


async def test_index_page(client):
    resp = await client.get('/')
    assert resp.status == 200
    assert 'Torrent Streamer' in await resp.text()


async def test_first_contact_issues_cookie_once(client, app):
    resp = await client.get('/status')
    assert config.COOKIE_NAME in resp.cookies
    token = resp.cookies[config.COOKIE_NAME].value
    assert app['sessions'].get(token) is not None

    resp = await client.get('/status')
    assert config.COOKIE_NAME not in resp.cookies
    assert app['sessions'].count() == 1


async def test_progress_before_any_stream_is_idle(client):
    resp = await client.get('/progress')
    assert resp.status == 200
    assert await resp.json() == {'progress': 0, 'phase': 'idle'}


async def test_stream_scenario_reports_video_and_english_track(client, app):
    resp = await client.post('/stream', json={'magnet': MAGNET})
    assert resp.status == 200
    assert await resp.json() == {'success': True}
    await settle(app)

    body = await (await client.get('/status')).json()
    assert body['success'] is True
    data = body['data']
    assert data['videoAvailable'] is True
    assert data['videoUrl'] == '/video'
    assert data['status'] == 'Ready to play: Movie'
    assert data['magnet'] == MAGNET
    assert data['fileType'] == 'mkv'
    assert data['fileSize'] > 0
    assert data['phase'] == 'completed'
    assert len(data['subtitles']) == 1
    assert data['subtitles'][0]['lang'] == 'en'
    assert data['subtitles'][0]['origin'] == 'discovered'

    resp = await client.get(data['subtitles'][0]['path'])
    assert resp.status == 200
    assert resp.headers['Content-Type'].startswith('text/vtt')
    assert await resp.read() == normalize(SRT_BYTES, '.srt')


async def test_stream_accepts_form_field(client, app):
    resp = await client.post('/stream', data={'magnet': MAGNET})
    assert resp.status == 200
    await settle(app)
    assert (await (await client.get('/progress')).json())['phase'] == 'completed'


async def test_stream_rejects_empty_and_malformed_identifiers(client):
    resp = await client.post('/stream', json={'magnet': '   '})
    assert resp.status == 400
    assert (await resp.json())['success'] is False

    resp = await client.post('/stream', json={'magnet': 'not-a-magnet'})
    assert resp.status == 400
    assert 'Malformed' in (await resp.json())['error']

    resp = await client.post('/stream', data='{broken', headers={'Content-Type': 'application/json'})
    assert resp.status == 400


async def test_acquisition_error_is_visible_in_status(client, app):
    await client.post('/stream', json={'magnet': 'magnet:?xt=urn:btih:MISSING'})
    await settle(app)
    data = (await (await client.get('/status')).json())['data']
    assert data['status'].startswith('Error:')
    assert data['videoAvailable'] is False


async def test_reset_session_returns_fresh_idle_session(client, app, source):
    await client.post('/stream', json={'magnet': MAGNET})
    await settle(app)
    old_token = app['sessions'].all()[0].id

    resp = await client.post('/reset-session')
    assert await resp.json() == {'success': True}
    assert source.alive() == []

    data = (await (await client.get('/status')).json())['data']
    assert data['status'] == 'Ready to stream'
    assert data['videoAvailable'] is False
    assert data['subtitles'] == []
    sessions = app['sessions'].all()
    assert len(sessions) == 1
    assert sessions[0].id != old_token


async def test_upload_srt_round_trip(client, subtitles_dir):
    resp = await client.post('/upload-subtitle', data=upload_form(SRT_BYTES, 'Movie.en.srt'))
    assert resp.status == 200
    track = (await resp.json())['track']
    assert track['origin'] == 'uploaded'
    assert track['lang'] == 'en'
    assert len(os.listdir(subtitles_dir)) == 1

    data = (await (await client.get('/status')).json())['data']
    assert data['subtitles'] == [track]

    resp = await client.get(track['path'])
    assert resp.status == 200
    assert await resp.read() == normalize(SRT_BYTES, '.srt')


async def test_upload_vtt_is_served_from_sidecar(client):
    vtt = b"WEBVTT\n\n00:00:01.000 --> 00:00:02.000\nHi\n"
    track = (await (await client.post('/upload-subtitle', data=upload_form(vtt, 'clip.vtt'))).json())['track']
    assert track['path'].startswith('/subtitles/')
    resp = await client.get(track['path'])
    assert resp.status == 200
    assert await resp.read() == vtt


async def test_upload_exe_is_rejected_and_nothing_written(client, subtitles_dir):
    resp = await client.post('/upload-subtitle', data=upload_form(b"MZ\x90\x00", 'setup.exe'))
    assert resp.status == 400
    body = await resp.json()
    assert body['success'] is False
    assert 'Unsupported subtitle format' in body['error']
    assert os.listdir(subtitles_dir) == []


async def test_upload_oversize_is_rejected(client, app, subtitles_dir):
    app['subtitles'].max_bytes = 16
    resp = await client.post('/upload-subtitle', data=upload_form(SRT_BYTES, 'big.srt'))
    assert resp.status == 400
    assert 'too large' in (await resp.json())['error']
    assert os.listdir(subtitles_dir) == []


async def test_upload_requires_multipart(client):
    resp = await client.post('/upload-subtitle', json={'subtitle': 'x'})
    assert resp.status == 400


async def test_subtitle_parse_failure_is_server_error(client, app, source):
    source.catalog['magnet:?xt=urn:btih:BAD'] = [("Bad/Bad.mp4", b"v" * 100), ("Bad/Bad.srt", b"garbage without cues")]
    await client.post('/stream', json={'magnet': 'magnet:?xt=urn:btih:BAD'})
    await settle(app)
    resp = await client.get('/subtitle?track=0')
    assert resp.status == 500
    assert (await resp.json())['success'] is False


async def test_unknown_subtitle_track(client):
    assert (await client.get('/subtitle?track=3')).status == 404
    assert (await client.get('/subtitle')).status == 400
    assert (await client.get('/subtitles/nope.vtt')).status == 404


async def test_unexpected_fault_is_contained(aiohttp_client, app, caplog):
    async def explode(request):
        raise RuntimeError("boom")
    app.router.add_get('/explode', explode)
    client = await aiohttp_client(app)

    resp = await client.get('/explode')
    assert resp.status == 500
    assert await resp.json() == {'success': False, 'error': 'Internal server error'}
    assert "Unhandled exception for /explode" in caplog.text
    assert (await client.get('/progress')).status == 200


async def test_client_errors_pass_through_middleware(aiohttp_client, app):
    async def teapot(request):
        raise web.HTTPConflict(text="busy")
    app.router.add_get('/busy', teapot)
    client = await aiohttp_client(app)
    resp = await client.get('/busy')
    assert resp.status == 409
    assert await resp.text() == "busy"


async def test_health(client):
    await client.get('/status')
    assert await (await client.get('/health')).json() == {'ok': True, 'sessions': 1}


async def test_session_cookie_survives_between_requests(client, app):
    resp = await client.post('/stream', json={'magnet': MAGNET})
    set_cookie = resp.headers.getall('Set-Cookie')
    assert len(set_cookie) == 1
    assert set_cookie[0].startswith(f"{config.COOKIE_NAME}=")
    assert 'HttpOnly' in set_cookie[0]
    assert 'SameSite=Lax' in set_cookie[0]
    await settle(app)

    data = (await (await client.get('/status')).json())['data']
    assert data['videoAvailable'] is True
    assert app['sessions'].count() == 1


async def test_reset_session_expires_cookie(client):
    await client.get('/status')
    resp = await client.post('/reset-session')
    set_cookie = resp.headers.getall('Set-Cookie')
    assert len(set_cookie) == 1
    assert 'Max-Age=0' in set_cookie[0]
    assert len(client.session.cookie_jar) == 0


async def test_cookieless_health_checks_do_not_allocate_sessions(aiohttp_client, app):
    client = await aiohttp_client(app, cookie_jar=aiohttp.DummyCookieJar())
    counts = []
    for _ in range(3):
        resp = await client.get('/health')
        assert 'Set-Cookie' not in resp.headers
        counts.append((await resp.json())['sessions'])
    assert counts == [0, 0, 0]
    assert (await client.get('/favicon.ico')).status == 204
    assert (await client.get('/no-such-page')).status == 404
    assert app['sessions'].count() == 0


async def test_stream_on_closed_session_is_a_conflict(client, app, monkeypatch):
    monkeypatch.setattr(app['sessions'], 'start_stream', lambda session, identifier: None)
    resp = await client.post('/stream', json={'magnet': MAGNET})
    assert resp.status == 409
    assert (await resp.json())['success'] is False
