import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    openai_api_key: str | None = None
    host: str = "0.0.0.0"
    port: int = 3000
    upload_dir: Path = Path("uploads")
    transcription_model: str = "whisper-1"
    completion_model: str = "gpt-4o"
    retry_max_attempts: int = 5
    retry_initial_delay: float = 10.0
    instagram_fetch_timeout: float = 30.0
    min_free_disk_mb: int = 50

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (and a .env file, if present)"""
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            host=os.getenv("HOST", cls.host),
            port=int(os.getenv("PORT", cls.port)),
            upload_dir=Path(os.getenv("UPLOAD_DIR", str(cls.upload_dir))),
            transcription_model=os.getenv("TRANSCRIPTION_MODEL", cls.transcription_model),
            completion_model=os.getenv("COMPLETION_MODEL", cls.completion_model),
            retry_max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", cls.retry_max_attempts)),
            retry_initial_delay=float(os.getenv("RETRY_INITIAL_DELAY", cls.retry_initial_delay)),
            instagram_fetch_timeout=float(os.getenv("INSTAGRAM_FETCH_TIMEOUT", cls.instagram_fetch_timeout)),
            min_free_disk_mb=int(os.getenv("MIN_FREE_DISK_MB", cls.min_free_disk_mb)),
        )
