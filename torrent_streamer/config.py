import logging
import os
from logging.handlers import RotatingFileHandler

# --- 1. Server ---
HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", 8080))

# --- 2. Content Source (torrent streaming gateway) ---
GATEWAY_URL = os.environ.get("GATEWAY_URL", "http://localhost:3000").rstrip('/')
GATEWAY_REQUEST_TIMEOUT_SECONDS = 10
PROGRESS_POLL_INTERVAL_SECONDS = 2
METADATA_TIMEOUT_SECONDS = float(os.environ.get("METADATA_TIMEOUT_SECONDS", 30))

# --- 3. Sessions ---
COOKIE_NAME = "ts_session_id"
COOKIE_MAX_AGE = 60 * 60 * 24
SESSION_IDLE_SECONDS = int(os.environ.get("SESSION_IDLE_SECONDS", 30 * 60))
REAPER_INTERVAL_SECONDS = int(os.environ.get("REAPER_INTERVAL_SECONDS", 10 * 60))
HEALTH_INTERVAL_SECONDS = 30

# --- 4. Subtitles ---
SUBTITLES_DIR = os.environ.get("SUBTITLES_DIR", os.path.join(os.getcwd(), "subtitles"))
MAX_SUBTITLE_BYTES = int(os.environ.get("MAX_SUBTITLE_BYTES", 5 * 1024 * 1024))
VIDEO_EXTENSIONS = ('.mp4', '.mkv', '.avi', '.mov', '.webm', '.flv', '.wmv')
SUBTITLE_EXTENSIONS = ('.srt', '.vtt', '.ass', '.ssa', '.sub')

# --- 5. Supervisor ---
MAX_RESTARTS = 5
RESTART_BACKOFF_SECONDS = 5

# --- 6. Logging ---
LOG_DIR = os.environ.get("LOG_DIR", os.path.join(os.getcwd(), "logs"))
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def configure_logging(log_dir=LOG_DIR, level=LOG_LEVEL):
    """Log to stdout and to a size-rotated app.log under log_dir."""
    handlers = [logging.StreamHandler()]
    try:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(RotatingFileHandler(os.path.join(log_dir, "app.log"), maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT))
    except OSError as e:
        logging.warning(f"File logging disabled, cannot use {log_dir}: {e}")
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT, handlers=handlers, force=True)
