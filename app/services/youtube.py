import re
from urllib.parse import parse_qs, urlparse

_YT_ID_RE = re.compile(r"^[a-zA-Z0-9_-]{11}$")


def extract_youtube_video_id(url: str) -> str | None:
    """
    Supports:
    - https://www.youtube.com/watch?v=VIDEOID
    - https://youtu.be/VIDEOID
    - https://www.youtube.com/shorts/VIDEOID
    - https://www.youtube.com/embed/VIDEOID, /v/VIDEOID
    """
    try:
        u = urlparse((url or "").strip())
    except ValueError:
        return None

    if u.scheme not in ("http", "https"):
        return None

    host = (u.netloc or "").lower()
    path = (u.path or "").strip("/")

    # youtu.be/VIDEOID
    if host in ("youtu.be", "www.youtu.be"):
        vid = path.split("/")[0] if path else ""
        return vid if _YT_ID_RE.match(vid) else None

    if host in ("youtube.com", "www.youtube.com", "m.youtube.com"):
        # youtube.com/watch?v=VIDEOID
        if path == "watch":
            q = parse_qs(u.query or "")
            vid = (q.get("v", [""])[0]).strip()
            return vid if _YT_ID_RE.match(vid) else None

        # youtube.com/{shorts,embed,v}/VIDEOID
        parts = path.split("/")
        if len(parts) >= 2 and parts[0] in ("shorts", "embed", "v"):
            vid = parts[1]
            return vid if _YT_ID_RE.match(vid) else None

    return None


def is_valid_youtube_url(url: str) -> bool:
    return extract_youtube_video_id(url) is not None


def sanitize_filename(name: str, max_len: int = 100) -> str:
    s = re.sub(r"[^\w\s-]", "", name or "")  # drop special chars
    s = re.sub(r"\s+", "_", s)
    s = re.sub(r"-+", "-", s)
    return s.strip()[:max_len]
