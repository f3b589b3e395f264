"""Uploaded video listing and storage."""

from __future__ import annotations

import logging
import os
import re
import time
import unicodedata
from urllib.parse import quote

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".mp4", ".mpeg", ".webm"}
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MB
UPLOADS_URL = "/uploads"

# Canned feed metadata, assigned round-robin by listing position.
VIDEO_METADATA = [
    {
        "channel": "What I make for breakfast",
        "description": "healthy BLT recipe! 💃 #food #organic",
        "song": "Bounce - Ruger",
        "likes": 250,
        "messages": 120,
        "shares": 40,
    },
    {
        "channel": "Nature is lit",
        "description": "#Arizona dust storm 🎵",
        "song": "Kolo sound - Nathan",
        "likes": 180,
        "messages": 95,
        "shares": 35,
    },
    {
        "channel": "What is reality",
        "description": "cloud dogs 💛🦋 #viral #dog",
        "song": "original sound - KALEI KING 🦋",
        "likes": 320,
        "messages": 150,
        "shares": 60,
    },
    {
        "channel": "Tropicana",
        "description": "spirit moving plants! #weird #plants",
        "song": "Dance Floor - DJ Cool",
        "likes": 420,
        "messages": 180,
        "shares": 75,
    },
    {
        "channel": "TikTTropicana 2r",
        "description": "When the beat drops 🎵 #dance #viral",
        "song": "Drop It - MC Fresh",
        "likes": 550,
        "messages": 230,
        "shares": 90,
    },
    {
        "channel": "DanceQueen",
        "description": "New moves unlocked! 🔓 #dance #tutorial",
        "song": "Rhythm & Flow - Beat Master",
        "likes": 380,
        "messages": 160,
        "shares": 65,
    },
    {
        "channel": "DanceKing",
        "description": "When you nail the choreography 💯 #dance #perfect",
        "song": "Move Your Body - Dance Crew",
        "likes": 480,
        "messages": 200,
        "shares": 85,
    },
    {
        "channel": "DancePro",
        "description": "Level up your dance game! 🎮 #dance #skills",
        "song": "Game On - DJ Player",
        "likes": 520,
        "messages": 220,
        "shares": 95,
    },
]

_NUMBER = re.compile(r"\d+")


class UploadRejected(ValueError):
    """Raised for uploads that fail validation."""


class UploadTooLarge(UploadRejected):
    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


def _numeric_key(filename: str) -> int:
    m = _NUMBER.search(filename)
    return int(m.group()) if m else 0


def list_recent(directory: str, limit: int = 10) -> list[dict]:
    """Return up to ``limit`` files ordered by the first number in their name."""
    try:
        names = [n for n in os.listdir(directory) if os.path.isfile(os.path.join(directory, n))]
    except OSError as e:
        logger.error("Error listing %s: %s", directory, e)
        return []
    names.sort(key=_numeric_key)
    return [{"filename": n, "url": f"{UPLOADS_URL}/{quote(n)}"} for n in names[:limit]]


def with_metadata(records: list[dict]) -> list[dict]:
    return [{**rec, **VIDEO_METADATA[i % len(VIDEO_METADATA)]} for i, rec in enumerate(records)]


def list_videos(directory: str, limit: int = 10) -> list[dict]:
    return with_metadata(list_recent(directory, limit))


def validate_extension(filename: str) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise UploadRejected("Only videos are allowed with mp4, mpeg, webm extensions")
    return ext


def normalize_filename(filename: str) -> str:
    """Strip accents, replace spaces with underscores and lower-case."""
    name = os.path.basename(filename.replace("\\", "/"))
    name = unicodedata.normalize("NFD", name)
    name = "".join(c for c in name if not unicodedata.combining(c))
    return "_".join(name.split(" ")).lower()


def store_upload(filename: str, data: bytes, directory: str, max_bytes: int = MAX_FILE_SIZE) -> str:
    """Validate and write an uploaded video, returning the stored filename."""
    validate_extension(filename)
    if len(data) > max_bytes:
        raise UploadTooLarge("File too large")
    base = normalize_filename(filename)
    os.makedirs(directory, exist_ok=True)
    stamp = _now_ms()
    while True:
        stored = f"{stamp}-{base}"
        path = os.path.join(directory, stored)
        try:
            with open(path, "xb") as f:
                f.write(data)
        except FileExistsError:
            stamp += 1
            continue
        logger.info("Video uploaded: %s", stored)
        return stored
