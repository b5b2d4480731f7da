"""
app/tools/cleanup.py

Removes stale files from the converter's work directory, independent of the running
service (e.g. from cron, or after a crash left artifacts behind).

Modes:
  - Age-based:   python -m app.tools.cleanup --age 1
  - Dry-run:     python -m app.tools.cleanup --dry-run
  - Everything:  python -m app.tools.cleanup --force
  - By pattern:  python -m app.tools.cleanup --pattern '\\.mp3$'
  - Emergency:   python -m app.tools.cleanup --emergency --force   (empties the directory)
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import re
import sys
import time
from pathlib import Path
from typing import List, Optional

from app.core.config import settings
from app.core.logging_config import setup_logging
from app.services.jobs import clear_directory

logger = logging.getLogger("app.tools.cleanup")

DEFAULT_MAX_AGE_HOURS = 1.0
SECONDS_PER_HOUR = 60 * 60


@dataclasses.dataclass
class FileInfo:
    path: Path
    size: int
    mtime: float

    @property
    def age_hours(self) -> float:
        return (time.time() - self.mtime) / SECONDS_PER_HOUR


@dataclasses.dataclass
class CleanupReport:
    scanned: int = 0
    candidates: int = 0
    removed: int = 0
    failed: int = 0
    freed_bytes: int = 0


def human(nbytes: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    s = float(nbytes)
    for u in units:
        if s < 1024.0:
            return f"{s:.2f} {u}"
        s /= 1024.0
    return f"{s:.2f} PB"


def human_age(hours: float) -> str:
    if hours < 1:
        return f"{int(hours * 60)} minutes"
    return f"{hours:.1f} hours"


def scan_work_dir(work_dir: Path) -> List[FileInfo]:
    if not work_dir.exists():
        logger.info("Work directory does not exist, creating it: %s", work_dir)
        work_dir.mkdir(parents=True, exist_ok=True)
        return []

    files: List[FileInfo] = []
    for p in sorted(work_dir.iterdir()):
        if not p.is_file():
            continue
        try:
            st = p.stat()
        except FileNotFoundError:
            continue
        files.append(FileInfo(path=p, size=st.st_size, mtime=st.st_mtime))
    return files


def select_candidates(
    files: List[FileInfo],
    max_age_hours: float,
    force: bool = False,
    pattern: Optional[str] = None,
) -> List[FileInfo]:
    regex = re.compile(pattern) if pattern else None
    out = []
    for f in files:
        if regex is not None and not regex.search(f.path.name):
            continue
        if force or f.age_hours > max_age_hours:
            out.append(f)
    return out


def run_cleanup(
    work_dir: Path,
    max_age_hours: float = DEFAULT_MAX_AGE_HOURS,
    force: bool = False,
    dry_run: bool = False,
    pattern: Optional[str] = None,
) -> CleanupReport:
    files = scan_work_dir(work_dir)
    report = CleanupReport(scanned=len(files))
    total = sum(f.size for f in files)
    logger.info("Found %d files in %s (%s)", len(files), work_dir, human(total))

    candidates = select_candidates(files, max_age_hours, force=force, pattern=pattern)
    report.candidates = len(candidates)
    if not candidates:
        logger.info("No files to clean up")
        return report

    for f in candidates:
        desc = f"{f.path.name} ({human(f.size)}, {human_age(f.age_hours)} old)"
        if dry_run:
            logger.info("[DRY RUN] Would delete: %s", desc)
            continue
        try:
            f.path.unlink()
        except FileNotFoundError:
            continue
        except OSError as e:
            report.failed += 1
            logger.error("Failed to delete %s: %s", f.path.name, e)
            continue
        report.removed += 1
        report.freed_bytes += f.size
        logger.info("Deleted: %s", desc)

    logger.info("Cleanup completed: %d files removed, %d failed", report.removed, report.failed)
    if report.removed:
        logger.info("Freed up %s of disk space", human(report.freed_bytes))
    return report


def emergency_cleanup(work_dir: Path, force: bool) -> bool:
    if not force:
        logger.error("Emergency cleanup requires --force")
        return False
    logger.warning("Starting emergency cleanup - removing ALL files in %s", work_dir)
    n = clear_directory(work_dir)
    logger.info("Emergency cleanup completed - %d entries removed", n)
    return True


def _non_negative_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError:
        raise argparse.ArgumentTypeError("must be a number")
    if value < 0:
        raise argparse.ArgumentTypeError("must be a positive number")
    return value


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="YouTube converter work-directory cleanup")
    ap.add_argument("--work-dir", type=Path, default=settings.work_dir)
    ap.add_argument(
        "--age",
        type=_non_negative_float,
        default=DEFAULT_MAX_AGE_HOURS,
        help=f"Maximum age of files to keep, in hours (default: {DEFAULT_MAX_AGE_HOURS:g})",
    )
    ap.add_argument("--force", action="store_true", help="Remove all files regardless of age")
    ap.add_argument("--dry-run", action="store_true", help="Only report what would be deleted")
    ap.add_argument("--emergency", action="store_true", help="Remove ALL files (requires --force)")
    ap.add_argument("--pattern", default=None, help="Only clean files whose name matches this regex")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(settings.log_level)

    try:
        if args.emergency:
            return 0 if emergency_cleanup(args.work_dir, args.force) else 1
        run_cleanup(
            args.work_dir,
            max_age_hours=args.age,
            force=args.force,
            dry_run=args.dry_run,
            pattern=args.pattern,
        )
    except (OSError, re.error) as e:
        logger.error("Cleanup failed: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
