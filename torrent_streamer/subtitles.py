"""
Subtitle tracks of a session: discovered inside the torrent or uploaded by the
user, always handed to the player as WebVTT.
"""
import asyncio
import glob
import logging
import os
import posixpath
import re
from urllib.parse import quote

import pysubs2
from charset_normalizer import from_bytes
from pysubs2.exceptions import Pysubs2Error

from . import config
from .sessions import DISCOVERED, UPLOADED, SubtitleTrack

WIRE_EXTENSION = '.vtt'
CODEC_FORMATS = {'.srt': 'srt', '.ass': 'ass', '.ssa': 'ssa', '.sub': 'microdvd', '.vtt': 'vtt'}
MICRODVD_FPS = 23.976
READ_CHUNK_SIZE = 64 * 1024

# Checked in order, first hit wins. Several patterns can match one filename, so
# the result is only a hint.
LANGUAGE_PATTERNS = {
    "english": "en", ".en.": "en", "eng.": "en", ".eng.": "en",
    "french": "fr", ".fr.": "fr", "fra.": "fr", ".fra.": "fr",
    "spanish": "es", ".es.": "es", "spa.": "es", ".spa.": "es",
    "german": "de", ".de.": "de", "ger.": "de", ".ger.": "de",
    "japanese": "ja", ".ja.": "ja", "jpn.": "ja", ".jpn.": "ja",
    "chinese": "zh", ".zh.": "zh", "chi.": "zh", ".chi.": "zh",
    "korean": "ko", ".ko.": "ko", "kor.": "ko", ".kor.": "ko",
    "russian": "ru", ".ru.": "ru", "rus.": "ru", ".rus.": "ru",
    "italian": "it", ".it.": "it", "ita.": "it", ".ita.": "it",
    "portuguese": "pt", ".pt.": "pt", "por.": "pt", ".por.": "pt",
    "dutch": "nl", ".nl.": "nl", "nld.": "nl", ".nld.": "nl",
}
UNDEFINED_LANGUAGE = "und"


class SubtitleError(Exception):
    status = 400


class UnsupportedSubtitle(SubtitleError):
    pass


class SubtitleTooLarge(SubtitleError):
    pass


class SubtitleParseError(SubtitleError):
    status = 500


def extension(name):
    return posixpath.splitext(name.replace('\\', '/'))[1].lower()


def is_subtitle_file(path):
    return extension(path) in config.SUBTITLE_EXTENSIONS


def detect_language(filename, patterns=LANGUAGE_PATTERNS):
    filename = filename.lower()
    for pattern, code in patterns.items():
        if pattern in filename:
            return code
    return UNDEFINED_LANGUAGE


def safe_filename(name):
    base = posixpath.basename(name.replace('\\', '/')).replace('..', '')
    return re.sub(r'[^A-Za-z0-9._ -]', '_', base).strip() or 'subtitle'


def decode_text(data):
    try:
        return data.decode('utf-8-sig')
    except UnicodeDecodeError:
        pass
    best = from_bytes(data).best()
    return str(best) if best is not None else data.decode('utf-8', errors='replace')


def normalize(data, ext):
    """Convert sidecar subtitle bytes in format `ext` to WebVTT bytes."""
    if (fmt := CODEC_FORMATS.get(ext)) is None:
        raise UnsupportedSubtitle(f"Unsupported subtitle format: {ext or 'none'}")
    text = decode_text(data)
    kwargs = {'fps': MICRODVD_FPS} if fmt == 'microdvd' else {}
    try:
        subs = pysubs2.SSAFile.from_string(text, format_=fmt, **kwargs)
    except (Pysubs2Error, ValueError) as e:
        raise SubtitleParseError(f"Error parsing subtitle: {e}") from e
    if not subs.events and text.strip():
        raise SubtitleParseError("Error parsing subtitle: no cues found")
    return subs.to_string('vtt').encode('utf-8')


class SubtitleRegistry:
    def __init__(self, storage_dir=config.SUBTITLES_DIR, max_bytes=config.MAX_SUBTITLE_BYTES):
        self.storage_dir = storage_dir
        self.max_bytes = max_bytes

    def discover(self, session, files):
        for f in files:
            if f is session.selected or not is_subtitle_file(f.path):
                continue
            f.download()
            session.subtitles.append(SubtitleTrack(
                name=posixpath.basename(f.path),
                path=f"/subtitle?track={len(session.subtitles)}",
                lang=detect_language(f.path),
                origin=DISCOVERED,
                source=f,
                ext=extension(f.path),
            ))
            logging.debug(f"Found subtitle: {f.path}")

    def check_upload(self, filename, size=0):
        ext = extension(filename or '')
        if ext not in config.SUBTITLE_EXTENSIONS:
            raise UnsupportedSubtitle(f"Unsupported subtitle format: {ext or 'none'}. Allowed: {', '.join(config.SUBTITLE_EXTENSIONS)}")
        if size > self.max_bytes:
            raise SubtitleTooLarge(f"Subtitle file too large (limit {self.max_bytes // 1024} KB)")
        return ext

    async def upload(self, session, data, filename):
        ext = self.check_upload(filename, len(data))
        if not data:
            raise SubtitleError("Subtitle file is empty")
        stored_name = f"{session.namespace}_{safe_filename(filename)}"
        path = os.path.join(self.storage_dir, stored_name)
        await asyncio.to_thread(self._write, path, data)
        if ext == WIRE_EXTENSION:
            access_path = f"/subtitles/{quote(stored_name)}"
        else:
            access_path = f"/subtitle?track={len(session.subtitles)}"
        track = SubtitleTrack(name=filename, path=access_path, lang=detect_language(filename), origin=UPLOADED, source=path, ext=ext)
        session.subtitles.append(track)
        logging.info(f"Subtitle uploaded successfully: {filename}")
        return track

    def _write(self, path, data):
        os.makedirs(self.storage_dir, exist_ok=True)
        with open(path, 'wb') as f:
            f.write(data)

    def lookup(self, session, track_id):
        tracks = session.subtitles
        try:
            index = int(track_id)
        except (TypeError, ValueError):
            return None
        return tracks[index] if 0 <= index < len(tracks) else None

    def stored_path(self, stored_name):
        if not stored_name or '/' in stored_name or '\\' in stored_name or '..' in stored_name:
            return None
        path = os.path.join(self.storage_dir, stored_name)
        return path if os.path.isfile(path) else None

    async def render(self, track):
        """WebVTT bytes for a track; already-WebVTT sources pass through untouched."""
        data = await self._read(track)
        if track.ext == WIRE_EXTENSION:
            return data
        return await asyncio.to_thread(normalize, data, track.ext)

    async def _read(self, track):
        if track.origin == UPLOADED:
            return await asyncio.to_thread(self._read_file, track.source)
        reader = track.source.open_reader()
        try:
            chunks = []
            while chunk := await reader.read(READ_CHUNK_SIZE):
                chunks.append(chunk)
            return b''.join(chunks)
        finally:
            await reader.close()

    @staticmethod
    def _read_file(path):
        with open(path, 'rb') as f:
            return f.read()

    def purge(self, session):
        """Delete every sidecar stored for this session."""
        removed = 0
        for path in glob.glob(os.path.join(glob.escape(self.storage_dir), f"{session.namespace}_*")):
            try:
                os.remove(path)
                removed += 1
            except FileNotFoundError:
                pass
        if removed:
            logging.info(f"Removed {removed} uploaded subtitle file(s)")
        return removed
