import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List

from fastapi.concurrency import run_in_threadpool

from .config import Settings
from .utils import (
    LinkAnalysisError,
    Platform,
    build_scene_prompt,
    check_disk_space,
    classify_platform,
    download_youtube_audio,
    error_status,
    fetch_media,
    get_openai_client,
    new_temp_path,
    parse_scene_details,
    resolve_instagram_media,
    with_retry,
)

YOUTUBE_RATE_LIMITED = "YouTube rate limit exceeded. Try again later."
YOUTUBE_FAILED = "Failed to process YouTube URL. Ensure it is a valid, public video."
INSTAGRAM_FAILED = "Failed to process Instagram URL. Ensure it is a public video or reel."
UNSUPPORTED_URL = "Unsupported URL. Only YouTube and Instagram links are supported."
INVALID_URL = "Invalid or missing URL"
EMPTY_AUDIO = "Failed to generate audio file"


class LinkAnalyzer:
    """
    Runs the link analysis pipeline for a single URL.

    Stages run strictly in order: classify, disk-space guard, download (with
    retry), transcribe, identify the scene. The temporary audio file is removed
    on every exit path. Collaborators default to yt-dlp, httpx and the OpenAI
    client and can be swapped out for testing.
    """

    def __init__(
        self,
        settings: Settings,
        openai_client=None,
        youtube_downloader: Callable[[str, Path], None] = download_youtube_audio,
        instagram_resolver: Callable[[str], List[str]] = resolve_instagram_media,
        media_fetcher: Callable[[str, Path, float], Awaitable[None]] = fetch_media,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self._openai_client = openai_client
        self.youtube_downloader = youtube_downloader
        self.instagram_resolver = instagram_resolver
        self.media_fetcher = media_fetcher
        self.sleep = sleep

    @property
    def openai_client(self):
        if self._openai_client is None:
            self._openai_client = get_openai_client(self.settings.openai_api_key)
        return self._openai_client

    async def analyze(self, url: Any) -> Dict[str, Any]:
        if not url or not isinstance(url, str) or not url.strip():
            raise LinkAnalysisError(INVALID_URL)
        url = url.strip()

        platform = classify_platform(url)
        if platform is Platform.UNSUPPORTED:
            logging.warning(f"Unsupported URL: {url}")
            raise LinkAnalysisError(UNSUPPORTED_URL)

        check_disk_space(self.settings.upload_dir, self.settings.min_free_disk_mb)

        audio_path = new_temp_path(self.settings.upload_dir)
        try:
            if platform is Platform.YOUTUBE:
                await self._download_youtube(url, audio_path)
            else:
                await self._download_instagram(url, audio_path)

            if not audio_path.exists() or audio_path.stat().st_size == 0:
                logging.error(f"Download produced no audio at {audio_path}")
                raise LinkAnalysisError(EMPTY_AUDIO, status_code=500)

            transcript = await self.transcribe(audio_path)
            return await self.identify_scene(transcript)
        finally:
            self._cleanup(audio_path)

    async def _retry(self, operation):
        return await with_retry(
            operation,
            max_attempts=self.settings.retry_max_attempts,
            initial_delay=self.settings.retry_initial_delay,
            sleep=self.sleep,
        )

    async def _download_youtube(self, url: str, dest: Path) -> None:
        logging.info(f"Processing YouTube URL: {url}")
        try:
            await self._retry(lambda: run_in_threadpool(self.youtube_downloader, url, dest))
        except Exception as e:
            logging.error(f"YouTube processing failed: {e}")
            if error_status(e) == 429:
                raise LinkAnalysisError(YOUTUBE_RATE_LIMITED, status_code=429) from e
            raise LinkAnalysisError(YOUTUBE_FAILED) from e

    async def _download_instagram(self, url: str, dest: Path) -> None:
        logging.info(f"Processing Instagram URL: {url}")

        async def resolve_and_fetch():
            media_urls = await run_in_threadpool(self.instagram_resolver, url)
            if not media_urls or not media_urls[0]:
                raise ValueError("Invalid or inaccessible Instagram video URL")
            logging.info(f"Instagram media URL: {media_urls[0]}")
            await self.media_fetcher(media_urls[0], dest, self.settings.instagram_fetch_timeout)

        try:
            await self._retry(resolve_and_fetch)
        except Exception as e:
            logging.error(f"Instagram URL processing failed: {e}")
            raise LinkAnalysisError(INSTAGRAM_FAILED) from e

    async def transcribe(self, audio_path: Path) -> str:
        logging.info(f"Transcribing audio from: {audio_path}")
        with open(audio_path, "rb") as audio:
            transcription = await self.openai_client.audio.transcriptions.create(
                file=audio,
                model=self.settings.transcription_model,
            )
        logging.info(f"Transcript ready ({len(transcription.text)} characters)")
        return transcription.text

    async def identify_scene(self, transcript: str) -> Dict[str, Any]:
        response = await self.openai_client.chat.completions.create(
            model=self.settings.completion_model,
            messages=[{"role": "user", "content": build_scene_prompt(transcript)}],
            response_format={"type": "json_object"},
        )
        return parse_scene_details(response.choices[0].message.content)

    @staticmethod
    def _cleanup(audio_path: Path) -> None:
        try:
            audio_path.unlink(missing_ok=True)
        except OSError as e:
            logging.error(f"Failed to delete temporary file {audio_path}: {e}")
