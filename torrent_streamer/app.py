import asyncio
import logging
import os

from aiohttp import web

from . import config
from .bridge import serve_video
from .content import GatewaySource
from .handlers import (
    handle_favicon, handle_health, handle_progress, handle_reset_session, handle_root, handle_status,
    handle_stored_subtitle, handle_stream, handle_subtitle, handle_upload_subtitle,
    persist_session_cookie, session_middleware,
)
from .reaper import reaper_task
from .sessions import SessionStore
from .subtitles import SubtitleRegistry
from .supervisor import error_middleware, health_task, run_supervised


async def start_background_tasks(app):
    store = app['sessions']
    app['reaper_task'] = asyncio.create_task(reaper_task(store, app['reaper_interval'], app['session_idle_seconds']))
    app['health_task'] = asyncio.create_task(health_task(store, app['health_interval']))


async def cleanup_on_shutdown(app):
    logging.info("Shutting down. Cancelling tasks...")
    tasks = [app[name] for name in ('reaper_task', 'health_task') if name in app]
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    logging.info("Releasing all active sessions...")
    store = app['sessions']
    for session in store.all():
        await store.reset(session.id)
    await app['content_source'].close()


def init_app(content_source=None, subtitles_dir=config.SUBTITLES_DIR, max_subtitle_bytes=config.MAX_SUBTITLE_BYTES,
             metadata_timeout=config.METADATA_TIMEOUT_SECONDS, session_idle_seconds=config.SESSION_IDLE_SECONDS,
             reaper_interval=config.REAPER_INTERVAL_SECONDS, health_interval=config.HEALTH_INTERVAL_SECONDS):
    app = web.Application(middlewares=[error_middleware, session_middleware])
    os.makedirs(subtitles_dir, exist_ok=True)
    app['content_source'] = content_source or GatewaySource()
    app['subtitles'] = SubtitleRegistry(subtitles_dir, max_subtitle_bytes)
    app['sessions'] = SessionStore(app['content_source'], app['subtitles'], metadata_timeout)
    app['session_idle_seconds'] = session_idle_seconds
    app['reaper_interval'] = reaper_interval
    app['health_interval'] = health_interval

    app.router.add_get('/', handle_root)
    app.router.add_get('/favicon.ico', handle_favicon, name='favicon')
    app.router.add_post('/stream', handle_stream)
    app.router.add_get('/status', handle_status)
    app.router.add_get('/progress', handle_progress)
    app.router.add_get('/video', serve_video)
    app.router.add_get('/subtitle', handle_subtitle)
    app.router.add_get('/subtitles/{name}', handle_stored_subtitle, name='stored-subtitle')
    app.router.add_post('/upload-subtitle', handle_upload_subtitle)
    app.router.add_post('/reset-session', handle_reset_session)
    app.router.add_get('/health', handle_health, name='health')

    app.on_response_prepare.append(persist_session_cookie)
    app.on_startup.append(start_background_tasks)
    app.on_cleanup.append(cleanup_on_shutdown)
    return app


def serve():
    """One full start of the service: fresh gateway client, routes and listening socket."""
    logging.info(f"Server starting on http://{config.HOST}:{config.PORT}")
    web.run_app(init_app(), host=config.HOST, port=config.PORT, reuse_address=True, print=None)
    logging.info("Server shut down.")


def main():
    config.configure_logging()
    logging.info("=== Torrent Streamer Starting ===")
    run_supervised(serve, config.MAX_RESTARTS, config.RESTART_BACKOFF_SECONDS)


if __name__ == '__main__':
    main()
