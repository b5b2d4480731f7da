import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

try:
    from dotenv import load_dotenv

    # Always load .env from the repo root (stable, regardless of CWD)
    BASE_DIR = Path(__file__).resolve().parents[2]
    load_dotenv(dotenv_path=BASE_DIR / ".env", override=False)
except ImportError:
    # dotenv is optional; if not installed, env vars still work
    pass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw and raw.strip() else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw and raw.strip() else default


def _env_cmd(name: str, default: str) -> tuple[str, ...]:
    # e.g. YTC_YTDLP_CMD="python -m yt_dlp"
    return tuple(shlex.split(os.getenv(name) or default))


@dataclass(frozen=True)
class Settings:
    env: str = os.getenv("ENV", "local")

    # Where artifacts are written. Emptied on startup/shutdown when clear_work_dir is set.
    work_dir: Path = Path(os.getenv("YTC_WORK_DIR", "temp")).resolve()
    clear_work_dir: bool = os.getenv("YTC_CLEAR_WORK_DIR", "1") == "1"

    ytdlp_cmd: tuple[str, ...] = field(default_factory=lambda: _env_cmd("YTC_YTDLP_CMD", "yt-dlp"))

    # Timeouts (seconds)
    metadata_timeout_sec: float = _env_float("YTC_METADATA_TIMEOUT_SEC", 30)
    conversion_timeout_sec: float = _env_float("YTC_CONVERSION_TIMEOUT_SEC", 600)

    # Retention
    download_grace_sec: float = _env_float("YTC_DOWNLOAD_GRACE_SEC", 5)
    max_job_age_sec: int = _env_int("YTC_MAX_JOB_AGE_SEC", 3600)
    sweep_interval_sec: int = _env_int("YTC_SWEEP_INTERVAL_SEC", 900)  # 0 disables

    # Conversion knobs
    audio_format: str = os.getenv("YTC_AUDIO_FORMAT", "mp3")
    audio_quality: str = os.getenv("YTC_AUDIO_QUALITY", "192K")
    default_quality: str = os.getenv("YTC_DEFAULT_QUALITY", "720p")

    # Optional: path to cookies.txt (Netscape format). Helps bypass anon blocks.
    cookies_file: str | None = os.getenv("YOUTUBE_COOKIES_FILE")
    # Optional: proxy URL, e.g. http://127.0.0.1:7890
    proxy_url: str | None = os.getenv("YOUTUBE_PROXY_URL")

    log_level: str = os.getenv("YTC_LOG_LEVEL", "INFO")


settings = Settings()
