import dataclasses
import subprocess

import pytest

from app.core.errors import MetadataFetchError
from app.services import metadata as metadata_mod
from app.services.metadata import build_probe_command, fetch_metadata, normalize_metadata

URL = "https://www.youtube.com/watch?v=aqz-KE-bpKQ"


def test_fetch_metadata_from_probe(cfg, fake_mode):
    meta = fetch_metadata(URL, cfg=cfg)
    assert meta.title == "Big Buck Bunny"
    assert meta.uploader == "Blender Foundation"
    assert meta.duration == 596
    assert meta.view_count == 12345
    assert meta.thumbnail.endswith("maxresdefault.jpg")


def test_probe_non_zero_exit(cfg, fake_mode):
    fake_mode("fail")
    with pytest.raises(MetadataFetchError) as ei:
        fetch_metadata(URL, cfg=cfg)
    assert ei.value.reason == "exit_status"
    assert "Video unavailable" in ei.value.message


def test_probe_unparseable_output(cfg, fake_mode):
    fake_mode("bad-json")
    with pytest.raises(MetadataFetchError) as ei:
        fetch_metadata(URL, cfg=cfg)
    assert ei.value.reason == "parse"


def test_probe_timeout_kills_process(cfg, fake_mode):
    fake_mode("hang")
    quick = dataclasses.replace(cfg, metadata_timeout_sec=0.5)
    with pytest.raises(MetadataFetchError) as ei:
        fetch_metadata(URL, cfg=quick)
    assert ei.value.reason == "timeout"


def test_probe_binary_missing(cfg):
    missing = dataclasses.replace(cfg, ytdlp_cmd=("definitely-not-yt-dlp-xyz",))
    with pytest.raises(MetadataFetchError) as ei:
        fetch_metadata(URL, cfg=missing)
    assert ei.value.reason == "not_found"


def test_json_array_is_a_parse_error(cfg, monkeypatch):
    def fake_run(cmd, **kwargs):
        return subprocess.CompletedProcess(cmd, 0, stdout="[1, 2]", stderr="")

    monkeypatch.setattr(metadata_mod.subprocess, "run", fake_run)
    with pytest.raises(MetadataFetchError) as ei:
        fetch_metadata(URL, cfg=cfg)
    assert ei.value.reason == "parse"


def test_missing_fields_get_placeholders():
    meta = normalize_metadata({})
    assert meta.title == "Unknown Title"
    assert meta.uploader == "Unknown"
    assert meta.thumbnail is None
    assert meta.duration is None
    assert meta.view_count is None


def test_thumbnail_falls_back_to_thumbnails_list():
    meta = normalize_metadata({"thumbnails": [{"url": "https://img/0.jpg"}, {"url": "https://img/1.jpg"}]})
    assert meta.thumbnail == "https://img/0.jpg"


def test_probe_command_includes_cookies_and_proxy(cfg):
    with_opts = dataclasses.replace(cfg, cookies_file="/tmp/cookies.txt", proxy_url="http://127.0.0.1:7890")
    cmd = build_probe_command(URL, cfg=with_opts)
    assert cmd[-1] == URL
    assert "--dump-single-json" in cmd and "--no-download" in cmd
    assert cmd[cmd.index("--cookies") + 1] == "/tmp/cookies.txt"
    assert cmd[cmd.index("--proxy") + 1] == "http://127.0.0.1:7890"


def test_non_string_text_fields_are_coerced():
    meta = normalize_metadata({"title": 1234, "uploader": "  ", "duration": 596.0})
    assert meta.title == "1234"
    assert meta.uploader == "Unknown"
    assert meta.duration == 596 and isinstance(meta.duration, int)


def test_fractional_duration_is_kept():
    assert normalize_metadata({"duration": 12.5}).duration == 12.5
    assert normalize_metadata({"duration": True}).duration is None
