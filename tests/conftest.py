import dataclasses
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app

FAKE_YTDLP = Path(__file__).resolve().parent / "fake_ytdlp.py"


@pytest.fixture
def cfg(tmp_path: Path) -> Settings:
    return dataclasses.replace(
        Settings(),
        env="test",
        work_dir=tmp_path / "work",
        ytdlp_cmd=(sys.executable, str(FAKE_YTDLP)),
        metadata_timeout_sec=10,
        conversion_timeout_sec=20,
        download_grace_sec=0.05,
        sweep_interval_sec=0,
        clear_work_dir=True,
        cookies_file=None,
        proxy_url=None,
    )


@pytest.fixture
def fake_mode(monkeypatch):
    def _set(mode: str, ext: str | None = None) -> None:
        monkeypatch.setenv("FAKE_YTDLP_MODE", mode)
        if ext:
            monkeypatch.setenv("FAKE_YTDLP_EXT", ext)
        else:
            monkeypatch.delenv("FAKE_YTDLP_EXT", raising=False)

    _set("ok")
    return _set


@pytest.fixture
def client(cfg, fake_mode):
    # context manager keeps the app's event loop (and its background tasks) alive
    with TestClient(create_app(cfg)) as c:
        yield c
