import pytest

from app.models.job import JobStatus
from app.services.progress import ProgressUpdate, interpret_line, parse_percentage


@pytest.mark.parametrize(
    "line, expected",
    [
        ("[download] 45.2%", 45.2),
        ("[download]  12.5% of 10.00MiB at 1.00MiB/s ETA 00:08", 12.5),
        ("[download] 100% of 10.00MiB in 00:00:10", 100.0),
        ("[download] 100.0% of 10.00MiB", 100.0),
        ("[download]   0.0% of ~5.00MiB", 0.0),
        ("progress 250%", 100.0),
        ("7 %", 7.0),
        ("random log line", None),
        ("", None),
        ("[download] Destination: clip.webm", None),
        ("%%%", None),
        ("ETA 00:05", None),
    ],
)
def test_parse_percentage(line, expected):
    assert parse_percentage(line) == expected


def test_parse_percentage_never_raises_on_garbage():
    assert parse_percentage(None) is None  # type: ignore[arg-type]
    assert parse_percentage("\x00\xff%") is None


@pytest.mark.parametrize(
    "line, expected",
    [
        ("[download] 45.2%", ProgressUpdate(JobStatus.DOWNLOADING, 31)),
        ("[download]  12.5% of 10.00MiB", ProgressUpdate(JobStatus.DOWNLOADING, 8)),
        ("[download]  99.9% of 10.00MiB", ProgressUpdate(JobStatus.DOWNLOADING, 69)),
        ("[download] 100% of 10.00MiB in 00:00:10", ProgressUpdate(JobStatus.CONVERTING, 80)),
        ("[ExtractAudio] Destination: clip.mp3", ProgressUpdate(JobStatus.CONVERTING, 80)),
        ('[Merger] Merging formats into "clip.mp4"', ProgressUpdate(JobStatus.CONVERTING, 80)),
        ("[download] Destination: clip.webm", None),
        ("[youtube] abc: Downloading webpage", None),
        ("random log line", None),
        ("50% done, but not a download line", None),
    ],
)
def test_interpret_line(line, expected):
    assert interpret_line(line) == expected
