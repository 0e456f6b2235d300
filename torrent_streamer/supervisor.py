"""Fault containment for request handlers, background tasks and the serving routine."""
import asyncio
import logging
import time
from typing import Any, NamedTuple, Optional

from aiohttp import web

from . import config

_background_tasks = set()


class Outcome(NamedTuple):
    ok: bool
    value: Any = None
    error: Optional[BaseException] = None


@web.middleware
async def error_middleware(request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception:
        logging.error(f"Unhandled exception for {request.path}", exc_info=True)
        return web.json_response({'success': False, 'error': 'Internal server error'}, status=500)


async def contain(coro, name):
    """Await coro and report its fault as an Outcome instead of raising it."""
    try:
        return Outcome(True, await coro)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logging.warning(f"Fault contained in {name}: {e}", exc_info=True)
        return Outcome(False, error=e)


def spawn(coro, name):
    """Schedule a supervised background task; a fault in it never escapes the task."""
    task = asyncio.create_task(contain(coro, name), name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def run_supervised(run, max_restarts=config.MAX_RESTARTS, backoff=config.RESTART_BACKOFF_SECONDS, sleep=time.sleep):
    """
    Call run() until it returns normally. Each unexpected fault costs one restart
    after `backoff` seconds; once more than `max_restarts` are spent the process
    exits with status 1.
    """
    restarts = 0
    while True:
        try:
            run()
        except Exception as e:
            restarts += 1
            logging.error(f"Application error: {e}", exc_info=True)
            if restarts > max_restarts:
                logging.critical(f"Maximum restart attempts ({max_restarts}) exceeded. Application will exit.")
                raise SystemExit(1)
            logging.warning(f"Attempting restart {restarts}/{max_restarts} after {backoff}s delay")
            sleep(backoff)
            continue
        logging.warning("=== Torrent Streamer Shutting Down ===")
        return restarts


async def health_task(store, interval=config.HEALTH_INTERVAL_SECONDS):
    while True:
        try:
            await asyncio.sleep(interval)
            logging.debug(f"Health check - Active sessions: {store.count()}")
        except asyncio.CancelledError:
            logging.info("Health monitor stopping...")
            break
        except Exception:
            logging.error("Error in health monitor:", exc_info=True)
