from collections import namedtuple

IDLE = 'idle'
DOWNLOADING = 'downloading'
COMPLETED = 'completed'

Progress = namedtuple('Progress', ['percent', 'phase'])


def compute(session):
    """Download progress of the session's selected file. Pure, safe to call from anywhere."""
    item = session.selected
    if item is None:
        return Progress(0.0, IDLE)
    total = item.length
    percent = 100.0 * item.bytes_completed() / total if total > 0 else 0.0
    percent = min(max(percent, 0.0), 100.0)
    return Progress(percent, COMPLETED if percent >= 100.0 else DOWNLOADING)


def format_file_size(size):
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"
