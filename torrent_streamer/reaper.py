import asyncio
import logging

from . import config
from .supervisor import spawn


def sweep(store, idle_threshold=config.SESSION_IDLE_SECONDS, now=None):
    """Evict idle sessions; each release runs as its own task so a slow drop never holds up the sweep."""
    cleaned = store.for_each_expired(idle_threshold, lambda session: spawn(store.release(session), "session-release"), now=now)
    if cleaned > 0:
        logging.info(f"Cleaned up {cleaned} inactive sessions")
    return cleaned


async def reaper_task(store, interval=config.REAPER_INTERVAL_SECONDS, idle_threshold=config.SESSION_IDLE_SECONDS):
    logging.info("Starting session reaper task...")
    while True:
        try:
            await asyncio.sleep(interval)
            sweep(store, idle_threshold)
        except asyncio.CancelledError:
            logging.info("Reaper task is shutting down.")
            break
        except Exception:
            logging.error("Error in reaper task:", exc_info=True)
