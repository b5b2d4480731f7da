import time

URL = "https://www.youtube.com/watch?v=aqz-KE-bpKQ"


def _poll_until(client, job_id, done, timeout=15.0):
    seen = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        r = client.get(f"/api/status/{job_id}")
        if r.status_code != 200:
            return seen, r
        body = r.json()
        seen.append((body["status"], body["progress"]))
        if done(body):
            return seen, r
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish; last seen {seen[-1:]}")


def _prepare(client):
    r = client.post("/api/prepare", json={"url": URL})
    assert r.status_code == 200, r.text
    return r.json()


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["jobs"] == 0
    assert body["active_jobs"] == 0
    assert body["uptime"] >= 0


def test_prepare_returns_metadata(client):
    body = _prepare(client)
    assert body["ok"] is True
    assert body["job_id"]
    meta = body["metadata"]
    assert meta["title"] == "Big Buck Bunny"
    assert meta["uploader"] == "Blender Foundation"
    assert meta["duration"] == 596
    assert isinstance(meta["duration"], int)

    s = client.get(f"/api/status/{body['job_id']}").json()
    assert s["status"] == "queued"
    assert s["progress"] == 0
    assert s["message"] == "Preparing conversion..."


def test_prepare_rejects_non_youtube_url(client):
    r = client.post("/api/prepare", json={"url": "https://example.com/video.mp4"})
    assert r.status_code == 400


def test_prepare_surfaces_probe_failure(client, fake_mode):
    fake_mode("fail")
    r = client.post("/api/prepare", json={"url": URL})
    assert r.status_code == 502
    assert "Video unavailable" in r.json()["detail"]


def test_convert_unknown_job(client):
    r = client.post("/api/convert", json={"job_id": "missing", "format": "audio"})
    assert r.status_code == 404


def test_convert_unsupported_format(client):
    job_id = _prepare(client)["job_id"]
    r = client.post("/api/convert", json={"job_id": job_id, "format": "flac"})
    assert r.status_code == 400


def test_status_unknown_job(client):
    assert client.get("/api/status/missing").status_code == 404


def test_download_before_ready(client):
    job_id = _prepare(client)["job_id"]
    r = client.get(f"/api/download/{job_id}")
    assert r.status_code == 404
    assert client.get("/api/download/missing").status_code == 404


def test_end_to_end_audio(client):
    job_id = _prepare(client)["job_id"]

    r = client.post("/api/convert", json={"job_id": job_id, "format": "audio"})
    assert r.status_code == 200
    assert r.json()["status"] == "downloading"
    assert r.json()["message"] == "Conversion started"

    seen, r = _poll_until(client, job_id, lambda b: b["status"] in ("ready", "error"))
    final = r.json()
    assert final["status"] == "ready", final
    assert final["progress"] == 100
    assert final["message"] == "Conversion complete!"
    assert final["error"] is None

    progresses = [p for _, p in seen]
    assert progresses == sorted(progresses)
    assert all(10 <= p <= 80 for s, p in seen if s in ("downloading", "converting"))

    d = client.get(f"/api/download/{job_id}")
    assert d.status_code == 200
    assert d.headers["content-type"] == "application/octet-stream"
    assert "attachment" in d.headers["content-disposition"]
    assert ".mp3" in d.headers["content-disposition"]
    assert d.content.startswith(b"\x00fake media")

    # deferred deletion after the grace period
    gone = None
    deadline = time.monotonic() + 5.0
    while time.monotonic() < deadline:
        gone = client.get(f"/api/status/{job_id}")
        if gone.status_code == 404:
            break
        time.sleep(0.02)
    assert gone.status_code == 404


def test_failed_conversion_reports_error(client, fake_mode):
    job_id = _prepare(client)["job_id"]
    fake_mode("fail")

    client.post("/api/convert", json={"job_id": job_id, "format": "video", "quality": "1080p"})
    _, r = _poll_until(client, job_id, lambda b: b["status"] in ("ready", "error"))
    body = r.json()
    assert body["status"] == "error"
    assert body["error_code"] == "conversion_error"
    assert "403" in body["error"]
    assert body["message"] == "Conversion failed"

    again = client.post("/api/convert", json={"job_id": job_id, "format": "audio"})
    assert again.status_code == 200
    assert again.json()["status"] == "error"
    assert again.json()["message"] == "Conversion failed"

    assert client.get(f"/api/download/{job_id}").status_code == 404


def test_cleanup_endpoint(client):
    job_id = _prepare(client)["job_id"]

    r = client.post("/api/cleanup", json={})
    assert r.status_code == 200
    assert r.json()["removed"] == 0

    r = client.post("/api/cleanup", json={"max_age_sec": 0})
    assert r.status_code == 200
    assert r.json()["removed"] == 1
    assert client.get(f"/api/status/{job_id}").status_code == 404
