"""
Authoritative job import helpers.

The external spreadsheet delivers "jobs in progress" rows on its own schedule,
one row at a time and at least once. Each row arrives as a list of cells plus
the sheet's column map (field name -> column index); ``jobs_from_sheet_rows``
turns them into payloads for ``crewperf.reconcile.import_jobs``.
"""
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from crewperf.config import settings
from crewperf.errors import ImportTimeoutError
from crewperf.ingest.extract import cell_text, parse_date
from crewperf.logging import logger
from crewperf.models.reconciliation import AuthoritativeJob, AuthoritativeJobIn

JOB_ID_FIELD = "Job ID"
JOB_NAME_FIELD = "Job Name"
CREW_LEAD_FIELD = "Crew Lead"
ESTIMATOR_FIELD = "Estimator"
AT_HOURS_FIELD = "AT Estimated Hours"
CL_HOURS_FIELD = "CL Estimated Plan Hours"
START_DATE_FIELD = "Start Date"
FINISH_DATE_FIELD = "Finish Date"

MAX_BACKOFF_FACTOR = 8


def _parse_float(value: Any) -> Optional[float]:
    text = cell_text(value).replace(",", "")
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def jobs_from_sheet_rows(
    rows: Iterable[Tuple[int, Sequence[Any]]],
    column_map: Dict[str, int],
    branch: Optional[str] = None,
) -> List[AuthoritativeJobIn]:
    """
    Map delivered (row_number, cells) pairs to job payloads.

    Field names in ``column_map`` are matched case-insensitively. Without a
    "Job ID" column the sheet row number is the external id, since that is
    what stays stable across re-deliveries. Rows without a job name are skipped.
    """
    by_field = {name.strip().lower(): idx for name, idx in column_map.items()}

    def value(cells: Sequence[Any], field_name: str) -> Any:
        idx = by_field.get(field_name.lower())
        if idx is None or idx >= len(cells):
            return None
        return cells[idx]

    jobs = []
    for row_number, cells in rows:
        name = cell_text(value(cells, JOB_NAME_FIELD))
        if not name:
            logger.warning(f"Skipping sheet row {row_number}: no job name")
            continue

        external_id = cell_text(value(cells, JOB_ID_FIELD)) or f"row-{row_number}"
        raw = {field_name: cell_text(value(cells, field_name)) for field_name in column_map}
        jobs.append(AuthoritativeJobIn(
            external_id=external_id,
            name=name,
            branch=branch,
            crew_leader_name=cell_text(value(cells, CREW_LEAD_FIELD)) or None,
            estimator_name=cell_text(value(cells, ESTIMATOR_FIELD)) or None,
            estimated_hours=_parse_float(value(cells, AT_HOURS_FIELD)),
            crew_leader_planned_hours=_parse_float(value(cells, CL_HOURS_FIELD)),
            start_date=parse_date(value(cells, START_DATE_FIELD)),
            finish_date=parse_date(value(cells, FINISH_DATE_FIELD)),
            row_number=row_number,
            raw=raw,
        ))
    return jobs


def count_imported_jobs(db: Session, session_id: str) -> int:
    return db.exec(
        select(func.count()).select_from(AuthoritativeJob).where(AuthoritativeJob.session_id == session_id)
    ).one()


def wait_for_import(
    db: Session,
    session_id: str,
    timeout: Optional[float] = None,
    interval: Optional[float] = None,
    min_jobs: int = 1,
) -> int:
    """
    Block until at least ``min_jobs`` jobs have been delivered for the session.

    Polls with exponential backoff (interval doubling, capped at 8x). Each poll
    runs in a fresh Session so rows committed by the delivering side are seen.
    Returns the job count; raises ImportTimeoutError when ``timeout`` elapses.
    """
    timeout = settings.IMPORT_POLL_TIMEOUT_SECONDS if timeout is None else timeout
    interval = settings.IMPORT_POLL_INTERVAL_SECONDS if interval is None else interval

    deadline = time.monotonic() + timeout
    delay = interval
    attempts = 0
    while True:
        attempts += 1
        with Session(db.get_bind()) as poll:
            count = count_imported_jobs(poll, session_id)
        if count >= min_jobs:
            logger.info(f"Import for session {session_id} ready: {count} jobs after {attempts} polls")
            return count

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise ImportTimeoutError(
                f"Session {session_id}: {count} of {min_jobs} expected jobs delivered "
                f"after {timeout:.1f}s ({attempts} polls)"
            )
        time.sleep(min(delay, remaining))
        delay = min(delay * 2, interval * MAX_BACKOFF_FACTOR)
