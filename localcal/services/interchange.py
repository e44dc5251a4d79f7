"""Import and export of whole calendars as ``.ics`` files."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from localcal.config import settings
from localcal.domain.errors import CalendarIOError
from localcal.domain.models import ExportResult, ImportResult
from localcal.repos.memory import EventRepository
from localcal.services.ics import decode, encode

logger = logging.getLogger(__name__)


def default_export_path(now: datetime | None = None) -> Path:
    now = now or datetime.now(timezone.utc)
    return settings.export_dir / f"localcal-export-{now.strftime('%Y-%m-%d')}.ics"


def export_calendar(
    repo: EventRepository,
    path: Path | None = None,
    now: datetime | None = None,
) -> ExportResult:
    """Write every stored event to *path* and return where it went.

    The file is written to a temporary sibling first and then moved into
    place, so a failed export never leaves a truncated calendar behind.
    """
    path = Path(path) if path is not None else default_export_path(now)
    events = repo.list()
    content = encode(events, now=now)

    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            newline="",
            dir=path.parent,
            prefix=f".{path.name}.",
            delete=False,
        ) as tmp:
            tmp_name = tmp.name
            tmp.write(content)
        os.replace(tmp_name, path)
    except OSError as exc:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise CalendarIOError(f"Failed to write ICS export to {path}: {exc}") from exc

    logger.info("Exported %d events to %s", len(events), path)
    return ExportResult(path=path, exported=len(events))


def import_calendar(repo: EventRepository, path: Path) -> ImportResult:
    """Parse the ``.ics`` file at *path* and add its events to *repo*.

    Malformed VEVENT blocks are skipped and counted; the rest are inserted.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        raise CalendarIOError(f"Failed to read ICS file {path}: {exc}") from exc

    result = decode(text)
    for event in result.events:
        repo.insert(event)

    logger.info(
        "Imported %d events from %s (%d skipped, %d degraded)",
        len(result.events),
        path,
        result.skipped,
        result.degraded,
    )
    return ImportResult(
        path=path,
        imported=len(result.events),
        skipped=result.skipped,
        degraded=result.degraded,
        event_ids=[event.id for event in result.events],
    )
