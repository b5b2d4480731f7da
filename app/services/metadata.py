from __future__ import annotations

import json
import logging
import subprocess
from typing import Any

from app.core.config import Settings, settings as default_settings
from app.core.errors import MetadataFetchError
from app.models.job import VideoMetadata

logger = logging.getLogger(__name__)


def build_probe_command(source_url: str, *, cfg: Settings) -> list[str]:
    cmd = [
        *cfg.ytdlp_cmd,
        "--dump-single-json",
        "--no-download",
        "--no-playlist",
        "--no-warnings",
    ]
    if cfg.cookies_file:
        cmd.extend(["--cookies", cfg.cookies_file])
    if cfg.proxy_url:
        cmd.extend(["--proxy", cfg.proxy_url])
    cmd.append(source_url)
    return cmd


def _first_thumbnail(data: dict[str, Any]) -> str | None:
    if data.get("thumbnail"):
        return data["thumbnail"]
    thumbs = data.get("thumbnails") or []
    if thumbs and isinstance(thumbs[0], dict):
        return thumbs[0].get("url") or None
    return None


def _text(value: Any, placeholder: str) -> str:
    if value is None:
        return placeholder
    return str(value).strip() or placeholder


def _seconds(value: Any) -> int | float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value) if float(value).is_integer() else float(value)


def normalize_metadata(data: dict[str, Any]) -> VideoMetadata:
    """
    Map a yt-dlp info dict to VideoMetadata.
    Missing fields get placeholders: title/uploader strings, None for the rest.
    """
    duration = data.get("duration")
    view_count = data.get("view_count")
    return VideoMetadata(
        title=_text(data.get("title"), "Unknown Title"),
        thumbnail=_first_thumbnail(data),
        duration=_seconds(duration),
        uploader=_text(data.get("uploader"), "Unknown"),
        view_count=int(view_count) if isinstance(view_count, (int, float)) else None,
    )


def fetch_metadata(source_url: str, *, cfg: Settings | None = None) -> VideoMetadata:
    """
    Probe ``source_url`` with yt-dlp and return its metadata.

    Blocks up to ``cfg.metadata_timeout_sec``; subprocess.run kills the probe on timeout.
    No retries: any failure raises MetadataFetchError straight away.
    """
    cfg = cfg or default_settings
    cmd = build_probe_command(source_url, cfg=cfg)

    try:
        p = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=cfg.metadata_timeout_sec,
        )
    except FileNotFoundError:
        raise MetadataFetchError(
            "yt-dlp not found. Install it (pipx/brew/pip) and ensure it is on PATH.",
            reason="not_found",
        )
    except subprocess.TimeoutExpired:
        logger.warning("metadata probe timed out after %ss: %s", cfg.metadata_timeout_sec, source_url)
        raise MetadataFetchError("Metadata fetch timeout", reason="timeout")
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or "").strip()
        logger.warning("metadata probe failed (exit %s): %s", e.returncode, stderr)
        raise MetadataFetchError(f"Failed to fetch metadata: {stderr or 'unknown error'}", reason="exit_status")

    raw = (p.stdout or "").strip()
    try:
        data = json.loads(raw)
    except ValueError:
        raise MetadataFetchError("Failed to parse video metadata", reason="parse")
    if not isinstance(data, dict):
        raise MetadataFetchError("Failed to parse video metadata", reason="parse")

    return normalize_metadata(data)
