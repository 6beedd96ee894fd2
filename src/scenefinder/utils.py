import asyncio
import json
import logging
import re
import shutil
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar
from urllib.parse import parse_qs, urlparse

import httpx
import yt_dlp
from fastapi.concurrency import run_in_threadpool
from openai import AsyncOpenAI
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

T = TypeVar("T")

RETRYABLE_STATUSES = frozenset({401, 429})
MALFORMED_SCENE_JSON = "Language model returned malformed JSON"

# Hosts that carry the video id in the "v" query parameter
YOUTUBE_QUERY_HOSTS = {
    "youtube.com",
    "www.youtube.com",
    "m.youtube.com",
    "music.youtube.com",
    "gaming.youtube.com",
}
# Hosts that carry it in the path, e.g. /shorts/<id>
YOUTUBE_PATH_HOSTS = {"youtube.com", "www.youtube.com"}
YOUTUBE_PATH_PREFIXES = ("embed", "shorts", "live", "v")
VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
HTTP_ERROR_RE = re.compile(r"HTTP Error (\d{3})")

SCENE_PROMPT = """You are a movie analyst with expertise in identifying scenes from short video or audio clips. Given the following dialogue transcript, which may be fragmented, incomplete, or contain background noise, provide:
- The name of the movie or series (or "Unknown" if not identifiable)
- Season and episode number (if applicable, or null if not a series or unknown)
- Character names involved (or "Unknown" if not identifiable)
- Approximate timestamp of the scene (if identifiable, or "Unknown")
- A short context or summary of the scene (or a best guess based on available information)
If the transcript is unclear or lacks sufficient dialogue, make an educated guess based on context clues or indicate uncertainty. Return the response in JSON format.

Transcript:
{transcript}
"""


class Platform(str, Enum):
    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    UNSUPPORTED = "unsupported"


class LinkAnalysisError(Exception):
    """A pipeline failure with a client-facing message and HTTP status"""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def get_openai_client(api_key: Optional[str]) -> AsyncOpenAI:
    """Initialize OpenAI client with proper error handling"""
    if not api_key or api_key == "your_openai_api_key_here":
        raise ValueError("OpenAI API key not configured. Please set OPENAI_API_KEY environment variable.")
    return AsyncOpenAI(api_key=api_key)


def is_youtube_url(url: str) -> bool:
    """Check that url points at a YouTube video on one of the known hosts"""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https"):
        return False

    host = (parsed.hostname or "").lower()
    parts = [p for p in parsed.path.split("/") if p]
    video_id = ""
    if host in YOUTUBE_QUERY_HOSTS:
        video_id = parse_qs(parsed.query).get("v", [""])[0]
    if not video_id:
        if host == "youtu.be":
            video_id = parts[0] if parts else ""
        elif host in YOUTUBE_PATH_HOSTS and len(parts) >= 2 and parts[0] in YOUTUBE_PATH_PREFIXES:
            video_id = parts[1]
        else:
            return False
    return bool(VIDEO_ID_RE.match(video_id))


def classify_platform(url: str) -> Platform:
    # YouTube wins if a URL somehow matches both
    if is_youtube_url(url):
        return Platform.YOUTUBE
    if "instagram.com" in url:
        return Platform.INSTAGRAM
    return Platform.UNSUPPORTED


def error_status(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status carried by an upstream error"""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    # yt-dlp reports upstream failures as e.g. "HTTP Error 429: Too Many Requests"
    match = HTTP_ERROR_RE.search(str(exc))
    return int(match.group(1)) if match else None


def is_retryable_error(exc: BaseException) -> bool:
    return error_status(exc) in RETRYABLE_STATUSES


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception()
    logging.warning(
        f"Upstream returned {error_status(exc)} on attempt {retry_state.attempt_number}, "
        f"retrying in {retry_state.next_action.sleep:.0f}s"
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    initial_delay: float = 10.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Run operation, retrying with exponential backoff while it fails with 429 or 401.

    The delay starts at initial_delay seconds and doubles after every failed
    attempt. Any other error, or the last retryable one once max_attempts is
    reached, is re-raised unchanged.
    """
    async for attempt in AsyncRetrying(
        retry=retry_if_exception(is_retryable_error),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=initial_delay, exp_base=2),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    ):
        with attempt:
            return await operation()


def new_temp_path(upload_dir: Path) -> Path:
    return Path(upload_dir) / f"temp-{uuid.uuid4().hex}.mp3"


def check_disk_space(directory: Path, min_free_mb: int = 50) -> None:
    """Fail fast when the upload filesystem is nearly full. An unavailable check is only logged."""
    try:
        usage = shutil.disk_usage(directory)
    except OSError as e:
        logging.warning(f"Could not check free disk space for {directory}: {e}")
        return

    free_mb = usage.free / (1024 * 1024)
    if free_mb < min_free_mb:
        logging.error(f"Only {free_mb:.1f} MB free in {directory}, need {min_free_mb} MB")
        raise LinkAnalysisError("Insufficient disk space", status_code=500)


def download_youtube_audio(url: str, dest: Path) -> None:
    """Download the best audio-only stream of a YouTube video into dest"""
    ydl_opts = {
        'format': 'bestaudio/best',
        'outtmpl': str(dest),
        'noplaylist': True,
        'overwrites': True,
        'nopart': True,
        'quiet': True,
        'no_warnings': True,
        'noprogress': True,
    }
    with yt_dlp.YoutubeDL(ydl_opts) as ydl:
        ydl.download([url])


def resolve_instagram_media(url: str) -> List[str]:
    """Resolve an Instagram post or reel to its direct media URLs"""
    ydl_opts = {
        'format': 'best',
        'skip_download': True,
        'quiet': True,
        'no_warnings': True,
    }
    with yt_dlp.YoutubeDL(ydl_opts) as ydl:
        info = ydl.extract_info(url, download=False)

    if not info:
        return []

    media_urls = []
    # Carousels come back as a playlist of entries
    for entry in info.get('entries') or [info]:
        if not entry:
            continue
        media_url = entry.get('url')
        if not media_url:
            requested = entry.get('requested_formats') or []
            media_url = next((f.get('url') for f in requested if f.get('url')), None)
        if media_url:
            media_urls.append(media_url)
    return media_urls


async def fetch_media(url: str, dest: Path, timeout: float = 30.0) -> None:
    """Stream url into dest"""
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        async with client.stream("GET", url) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                async for chunk in response.aiter_bytes():
                    await run_in_threadpool(f.write, chunk)


def build_scene_prompt(transcript: str) -> str:
    return SCENE_PROMPT.format(transcript=transcript)


def parse_scene_details(content: Optional[str]) -> Dict[str, Any]:
    """Parse the model's reply into a JSON object"""
    try:
        details = json.loads(content or "")
    except json.JSONDecodeError as e:
        logging.error(f"Model reply is not valid JSON: {e}")
        raise LinkAnalysisError(MALFORMED_SCENE_JSON, status_code=500) from e

    if not isinstance(details, dict):
        logging.error(f"Model reply is JSON but not an object: {type(details).__name__}")
        raise LinkAnalysisError(MALFORMED_SCENE_JSON, status_code=500)
    return details
