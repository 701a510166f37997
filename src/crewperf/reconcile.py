"""
Reconciliation session: one import-to-commit cycle, addressed by session id.

    collecting --extract_shifts--> ready_for_review --commit--> committed
         \______________________________\________abandon______> abandoned

Every mutation checks the caller's ``expected_version`` (when given) and bumps
the version with a conditional UPDATE, so two reviewers editing the same
session cannot silently overwrite each other: the loser gets StaleStateError.
A failing operation rolls back and leaves the session as it was.
"""
import json
import math
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import delete, update
from sqlmodel import Session, select

from crewperf.aggregate import aggregate_shifts
from crewperf.directory import find_or_create_crew_member, upsert_canonical_job
from crewperf.errors import ConsistencyError, ReconciliationError, StaleStateError, ValidationError
from crewperf.ingest.extract import extract_shifts as run_extractor
from crewperf.logging import bind_session_id, logger, reset_session_id
from crewperf.matching.matcher import MatchBook, match_status, propose_matches
from crewperf.matching.similarity import score as similarity_score
from crewperf.config import settings
from crewperf.models.reconciliation import (
    AggregatedShift,
    AuthoritativeJob,
    AuthoritativeJobIn,
    JobNameMatch,
    RawShiftRow,
    ReconciliationSession,
    RowOrigin,
    SessionStatus,
)
from crewperf.models.jobs import JobApprovalStatus
from crewperf.models.shifts import CanonicalShiftRecord, ShiftCategory, ShiftStatus


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------
class MatchDecision(BaseModel):
    """Reviewer override: job -> sheet job name, or None for 'no match'."""
    job_id: int
    sheet_job_name: Optional[str] = None


class AddRowEdit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: int
    crew_member_name: str = Field(min_length=1)
    regular_hours: float = Field(default=0.0, ge=0)
    ot_hours: float = Field(default=0.0, ge=0)
    ot2_hours: float = Field(default=0.0, ge=0)
    shift_count: int = Field(default=0, ge=0)
    has_qc: bool = False
    has_delivery_drop: bool = False
    tags: str = ""


class UpdateRowEdit(BaseModel):
    """Only the given fields change; total_hours is not accepted, it is derived."""
    model_config = ConfigDict(extra="forbid")

    row_id: int
    crew_member_name: Optional[str] = Field(default=None, min_length=1)
    regular_hours: Optional[float] = Field(default=None, ge=0)
    ot_hours: Optional[float] = Field(default=None, ge=0)
    ot2_hours: Optional[float] = Field(default=None, ge=0)
    shift_count: Optional[int] = Field(default=None, ge=0)
    has_qc: Optional[bool] = None
    has_delivery_drop: Optional[bool] = None
    tags: Optional[str] = None


class DeleteRowEdit(BaseModel):
    model_config = ConfigDict(extra="forbid")

    row_id: int


EDIT_OPS = {
    "add": AddRowEdit,
    "update": UpdateRowEdit,
    "delete": DeleteRowEdit,
}

Edit = Union[AddRowEdit, UpdateRowEdit, DeleteRowEdit]


def _problems(e: pydantic.ValidationError) -> str:
    return "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())


def parse_decision(payload: Union[MatchDecision, Dict[str, Any]], index: int = 0) -> MatchDecision:
    if isinstance(payload, MatchDecision):
        return payload
    try:
        return MatchDecision.model_validate(payload)
    except pydantic.ValidationError as e:
        job_id = payload.get("job_id") if isinstance(payload, dict) else None
        raise ValidationError(f"Match decision #{index} (job {job_id!r}): {_problems(e)}") from e


def parse_edit(payload: Union[Edit, Dict[str, Any]], index: int = 0) -> Edit:
    """Validate one edit given as a model or as {"op": "add"|"update"|"delete", ...}."""
    if isinstance(payload, (AddRowEdit, UpdateRowEdit, DeleteRowEdit)):
        return payload
    data = dict(payload)
    op = data.pop("op", None)
    model = EDIT_OPS.get(op)
    if model is None:
        raise ValidationError(f"Edit #{index}: unknown op {op!r} (expected add, update or delete)")
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(f"Edit #{index} ({op}): {_problems(e)}") from e


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------
@dataclass
class SessionSnapshot:
    session_id: str
    branch: str
    status: SessionStatus
    version: int
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    jobs: List[Dict[str, Any]] = field(default_factory=list)
    matches: List[Dict[str, Any]] = field(default_factory=list)
    working_set: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    raw_row_count: int = 0
    # Filled by commit only: jobs whose savepoint rolled back, with the reason
    failed_jobs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def sheet_job_names(self) -> List[str]:
        return sorted({m["sheet_job_name"] for m in self.matches if m["sheet_job_name"]})


def _snapshot(db: Session, rs: ReconciliationSession) -> SessionSnapshot:
    jobs = db.exec(
        select(AuthoritativeJob).where(AuthoritativeJob.session_id == rs.id).order_by(AuthoritativeJob.id)
    ).all()
    matches = db.exec(
        select(JobNameMatch).where(JobNameMatch.session_id == rs.id).order_by(JobNameMatch.job_id)
    ).all()
    rows = db.exec(
        select(AggregatedShift).where(AggregatedShift.session_id == rs.id).order_by(AggregatedShift.job_id, AggregatedShift.id)
    ).all()
    raw_count = len(db.exec(select(RawShiftRow.id).where(RawShiftRow.session_id == rs.id)).all())

    job_names = {j.id: j.name for j in jobs}
    return SessionSnapshot(
        session_id=rs.id,
        branch=rs.branch,
        status=rs.status,
        version=rs.version,
        date_from=rs.date_from,
        date_to=rs.date_to,
        jobs=[j.model_dump(exclude={"created_at", "updated_at", "raw_json"}) for j in jobs],
        matches=[
            {**m.model_dump(exclude={"created_at", "updated_at"}), "job_name": job_names.get(m.job_id)}
            for m in matches
        ],
        working_set=[
            {**r.model_dump(exclude={"created_at", "updated_at"}), "job_name": job_names.get(r.job_id)}
            for r in rows
        ],
        warnings=rs.warnings,
        raw_row_count=raw_count,
    )


# ---------------------------------------------------------------------------
# Session plumbing
# ---------------------------------------------------------------------------
def _load(db: Session, session_id: str) -> ReconciliationSession:
    rs = db.get(ReconciliationSession, session_id)
    if not rs:
        raise ValidationError(f"Reconciliation session {session_id} not found")
    return rs


def _require_status(rs: ReconciliationSession, operation: str, *allowed: SessionStatus):
    if rs.status not in allowed:
        expected = " or ".join(s.value for s in allowed)
        raise ValidationError(
            f"Cannot {operation} session {rs.id}: status is {rs.status.value}, expected {expected}"
        )


def _bump_version(db: Session, session_id: str, seen: int):
    """Conditional version bump; losing the race raises StaleStateError."""
    result = db.exec(
        update(ReconciliationSession)
        .where(ReconciliationSession.id == session_id, ReconciliationSession.version == seen)
        .values(version=seen + 1)
    )
    if result.rowcount != 1:
        db.rollback()
        current = _load(db, session_id)
        raise StaleStateError(session_id, seen, current.version)


class _Mutation:
    def __init__(self, rs: ReconciliationSession):
        self.rs = rs
        self.changed = True


@contextmanager
def _mutation(db: Session, session_id: str, expected_version: Optional[int]) -> Iterator[_Mutation]:
    token = bind_session_id(session_id)
    try:
        rs = _load(db, session_id)
        seen = rs.version
        if expected_version is not None and expected_version != seen:
            raise StaleStateError(session_id, expected_version, seen)

        m = _Mutation(rs)
        yield m

        if m.changed:
            db.add(rs)
            db.flush()
            _bump_version(db, session_id, seen)
        db.commit()
        db.refresh(rs)
    except Exception:
        db.rollback()
        raise
    finally:
        reset_session_id(token)


def _jobs(db: Session, session_id: str) -> List[AuthoritativeJob]:
    return list(db.exec(
        select(AuthoritativeJob).where(AuthoritativeJob.session_id == session_id).order_by(AuthoritativeJob.id)
    ).all())


def _clear(db: Session, model, session_id: str):
    db.exec(delete(model).where(model.session_id == session_id))


# ---------------------------------------------------------------------------
# Lifecycle operations
# ---------------------------------------------------------------------------
def begin(db: Session, branch: str, date_from: Optional[date] = None, date_to: Optional[date] = None) -> SessionSnapshot:
    if not branch or not branch.strip():
        raise ValidationError("A reconciliation session needs a branch")
    if date_from and date_to and date_from > date_to:
        raise ValidationError(f"Date range is reversed: {date_from} > {date_to}")

    rs = ReconciliationSession(id=str(uuid.uuid4()), branch=branch.strip(), date_from=date_from, date_to=date_to)
    db.add(rs)
    db.commit()
    db.refresh(rs)
    token = bind_session_id(rs.id)
    logger.info(f"Began reconciliation for branch {rs.branch} ({date_from or '-'} .. {date_to or '-'})")
    reset_session_id(token)
    return _snapshot(db, rs)


def get_snapshot(db: Session, session_id: str) -> SessionSnapshot:
    return _snapshot(db, _load(db, session_id))


_JOB_FIELDS = (
    "name", "branch", "crew_leader_name", "estimator_name", "estimated_hours",
    "crew_leader_planned_hours", "start_date", "finish_date", "row_number",
)


def import_jobs(
    db: Session,
    session_id: str,
    jobs: Iterable[Union[AuthoritativeJobIn, Dict[str, Any]]],
    expected_version: Optional[int] = None,
) -> SessionSnapshot:
    """
    Upsert delivered jobs keyed by external id.

    Safe to call again with the same payloads: identical re-deliveries change
    nothing, not even the version. Once the session has left 'collecting' its
    jobs are frozen and any new or changed job is refused.
    """
    payloads: Dict[str, AuthoritativeJobIn] = {}
    for i, job in enumerate(jobs):
        try:
            parsed = job if isinstance(job, AuthoritativeJobIn) else AuthoritativeJobIn.model_validate(job)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Job #{i} of the delivery is invalid: {e.errors()[0]['msg']}") from e
        # Last delivery of an external id within one batch wins
        payloads[parsed.external_id] = parsed

    with _mutation(db, session_id, expected_version) as m:
        rs = m.rs
        _require_status(
            rs, "import jobs into",
            SessionStatus.COLLECTING, SessionStatus.READY_FOR_REVIEW, SessionStatus.COMMITTED,
        )
        existing = {j.external_id: j for j in _jobs(db, session_id)}

        created = updated = 0
        for external_id, payload in payloads.items():
            values = payload.model_dump(include=set(_JOB_FIELDS))
            values["branch"] = values["branch"] or rs.branch
            raw_json = json.dumps(payload.raw, default=str, sort_keys=True)

            job = existing.get(external_id)
            if job is not None:
                same = all(getattr(job, k) == v for k, v in values.items()) and job.raw_json == raw_json
                if same:
                    continue
            if rs.status != SessionStatus.COLLECTING:
                what = "changed" if job is not None else "new"
                raise ValidationError(
                    f"Session {session_id} is {rs.status.value}; {what} job '{payload.name}' "
                    f"(external id {external_id}) cannot be imported"
                )

            if job is None:
                job = AuthoritativeJob(session_id=session_id, external_id=external_id, raw_json=raw_json, **values)
                created += 1
            else:
                for k, v in values.items():
                    setattr(job, k, v)
                job.raw_json = raw_json
                updated += 1
            db.add(job)

        m.changed = bool(created or updated)
        logger.info(
            f"Imported jobs: {created} new, {updated} updated, "
            f"{len(payloads) - created - updated} unchanged re-deliveries"
        )
    return _snapshot(db, rs)


def extract_shifts(
    db: Session,
    session_id: str,
    rows: List[List[Any]],
    expected_version: Optional[int] = None,
) -> SessionSnapshot:
    """
    Parse the uploaded worksheet and propose job matches.

    Re-uploading during review replaces the raw rows, the proposals and the
    working set.
    """
    with _mutation(db, session_id, expected_version) as m:
        rs = m.rs
        _require_status(rs, "extract shifts for", SessionStatus.COLLECTING, SessionStatus.READY_FOR_REVIEW)
        jobs = _jobs(db, session_id)
        if not jobs:
            raise ValidationError(
                f"Session {session_id} has no imported jobs yet; import jobs before extracting shifts"
            )

        result = run_extractor(rows)

        _clear(db, AggregatedShift, session_id)
        _clear(db, JobNameMatch, session_id)
        _clear(db, RawShiftRow, session_id)

        for line in result.rows:
            db.add(RawShiftRow(
                session_id=session_id,
                job_name=line.job_name,
                crew_member_name=line.crew_member_name,
                worked_date=line.worked_date,
                hours=line.hours,
                category=line.category,
                tags=line.tags,
                source_row=line.source_row,
            ))

        proposals = propose_matches([(j.id, j.name) for j in jobs], result.job_names)
        for p in proposals:
            db.add(JobNameMatch(
                session_id=session_id,
                job_id=p.job_id,
                sheet_job_name=p.sheet_job_name,
                score=p.score,
                status=p.status,
                confirmed=False,
            ))

        rs.warnings = [w.as_dict() for w in result.warnings]
        rs.status = SessionStatus.READY_FOR_REVIEW
        if result.warnings:
            logger.warning(f"{len(result.warnings)} worksheet rows dropped during extraction")
    return _snapshot(db, rs)


def _rebuild_working_set(db: Session, session_id: str, confirmed: Dict[str, int], job_ids: List[int]):
    _clear(db, AggregatedShift, session_id)
    raw_rows = db.exec(select(RawShiftRow).where(RawShiftRow.session_id == session_id)).all()
    for row in aggregate_shifts(raw_rows, confirmed, job_ids):
        db.add(AggregatedShift.build(
            session_id=session_id,
            job_id=row.job_id,
            crew_member_name=row.crew_member_name,
            regular_hours=row.regular_hours,
            ot_hours=row.ot_hours,
            ot2_hours=row.ot2_hours,
            shift_count=row.shift_count,
            has_qc=row.has_qc,
            has_delivery_drop=row.has_delivery_drop,
            tags=row.tags,
            is_placeholder=row.is_placeholder,
        ))


def confirm_matches(
    db: Session,
    session_id: str,
    decisions: Optional[Iterable[Union[MatchDecision, Dict[str, Any]]]] = None,
    expected_version: Optional[int] = None,
) -> SessionSnapshot:
    """
    Confirm the proposals, applying reviewer overrides first, and rebuild the
    working set from the confirmed mapping. Manual working-set edits made
    before a re-confirmation are discarded.
    """
    decisions = [parse_decision(d, i) for i, d in enumerate(decisions or [])]

    with _mutation(db, session_id, expected_version) as m:
        rs = m.rs
        _require_status(rs, "confirm matches for", SessionStatus.READY_FOR_REVIEW)

        jobs = {j.id: j for j in _jobs(db, session_id)}
        matches = {
            mt.job_id: mt
            for mt in db.exec(select(JobNameMatch).where(JobNameMatch.session_id == session_id)).all()
        }
        sheet_names = set(db.exec(
            select(RawShiftRow.job_name).where(RawShiftRow.session_id == session_id).distinct()
        ).all())

        overrides: Dict[int, Optional[str]] = {}
        for d in decisions:
            if d.job_id not in jobs:
                raise ValidationError(f"Job {d.job_id} does not belong to session {session_id}")
            if d.sheet_job_name is not None and d.sheet_job_name not in sheet_names:
                raise ValidationError(
                    f"Sheet job '{d.sheet_job_name}' (for job {d.job_id} '{jobs[d.job_id].name}') "
                    f"does not appear in the uploaded worksheet"
                )
            overrides[d.job_id] = d.sheet_job_name

        book = MatchBook({job_id: j.name for job_id, j in jobs.items()})
        for job_id in jobs:
            match = matches.get(job_id)
            if job_id in overrides:
                name = overrides[job_id]
            else:
                name = match.sheet_job_name if match else None
            book.assign(job_id, name)

            if match is None:
                match = JobNameMatch(session_id=session_id, job_id=job_id)
            if match.sheet_job_name != name:
                match.sheet_job_name = name
                match.score = similarity_score(jobs[job_id].name, name) if name else 0.0
                match.status = match_status(
                    match.score, settings.MATCH_CONFIDENCE_THRESHOLD, settings.MATCH_REVIEW_THRESHOLD
                )
            match.confirmed = True
            db.add(match)

        _rebuild_working_set(db, session_id, book.as_dict(), list(jobs))
        logger.info(f"Confirmed {len(book.as_dict())}/{len(jobs)} job matches ({len(overrides)} overrides)")
    return _snapshot(db, rs)


def _working_row(db: Session, session_id: str, row_id: int) -> AggregatedShift:
    row = db.get(AggregatedShift, row_id)
    if not row or row.session_id != session_id:
        raise ValidationError(f"Working row {row_id} does not belong to session {session_id}")
    return row


def _ensure_placeholder(db: Session, session_id: str, job_id: int):
    remaining = db.exec(
        select(AggregatedShift).where(AggregatedShift.session_id == session_id, AggregatedShift.job_id == job_id)
    ).first()
    if remaining is None:
        db.add(AggregatedShift.build(session_id=session_id, job_id=job_id, crew_member_name="", is_placeholder=True))


def _drop_placeholders(db: Session, session_id: str, job_id: int):
    db.exec(delete(AggregatedShift).where(
        AggregatedShift.session_id == session_id,
        AggregatedShift.job_id == job_id,
        AggregatedShift.is_placeholder == True,  # noqa: E712
    ))


def edit_working_set(
    db: Session,
    session_id: str,
    edits: Iterable[Union[Edit, Dict[str, Any]]],
    expected_version: Optional[int] = None,
) -> SessionSnapshot:
    """Apply add/update/delete edits to the working set; all of them or none."""
    parsed = [parse_edit(e, i) for i, e in enumerate(edits)]

    with _mutation(db, session_id, expected_version) as m:
        rs = m.rs
        _require_status(rs, "edit the working set of", SessionStatus.READY_FOR_REVIEW)
        job_ids = {j.id for j in _jobs(db, session_id)}

        for i, edit in enumerate(parsed):
            if isinstance(edit, AddRowEdit):
                if edit.job_id not in job_ids:
                    raise ValidationError(f"Edit #{i}: job {edit.job_id} does not belong to session {session_id}")
                if edit.has_qc and edit.has_delivery_drop:
                    raise ValidationError(f"Edit #{i}: a row is either QC or delivery drop, not both")
                _drop_placeholders(db, session_id, edit.job_id)
                db.add(AggregatedShift.build(
                    session_id=session_id,
                    job_id=edit.job_id,
                    crew_member_name=edit.crew_member_name.strip(),
                    regular_hours=edit.regular_hours,
                    ot_hours=edit.ot_hours,
                    ot2_hours=edit.ot2_hours,
                    shift_count=edit.shift_count,
                    has_qc=edit.has_qc,
                    has_delivery_drop=edit.has_delivery_drop,
                    tags=edit.tags,
                    origin=RowOrigin.MANUAL,
                ))

            elif isinstance(edit, UpdateRowEdit):
                row = _working_row(db, session_id, edit.row_id)
                changes = edit.model_dump(exclude_unset=True, exclude={"row_id"})
                if "crew_member_name" in changes:
                    row.crew_member_name = changes["crew_member_name"].strip()
                for key in ("shift_count", "has_qc", "has_delivery_drop", "tags"):
                    if changes.get(key) is not None:
                        setattr(row, key, changes[key])
                hours = {
                    key: changes[key] if changes.get(key) is not None else getattr(row, key)
                    for key in ("regular_hours", "ot_hours", "ot2_hours")
                }
                row.set_hours(hours["regular_hours"], hours["ot_hours"], hours["ot2_hours"])
                if row.has_qc and row.has_delivery_drop:
                    raise ValidationError(f"Edit #{i}: working row {row.id} is either QC or delivery drop, not both")
                if row.is_placeholder:
                    if not row.crew_member_name:
                        raise ValidationError(f"Edit #{i}: working row {row.id} needs a crew member name")
                    row.is_placeholder = False
                    row.origin = RowOrigin.MANUAL
                db.add(row)

            else:
                row = _working_row(db, session_id, edit.row_id)
                job_id = row.job_id
                db.delete(row)
                db.flush()
                _ensure_placeholder(db, session_id, job_id)

        db.flush()
        logger.info(f"Applied {len(parsed)} working-set edits")
    return _snapshot(db, rs)


# ---------------------------------------------------------------------------
# Commit
# ---------------------------------------------------------------------------
def _row_category(row: AggregatedShift) -> ShiftCategory:
    if row.has_qc:
        return ShiftCategory.QC
    if row.has_delivery_drop:
        return ShiftCategory.DELIVERY_DROP
    return ShiftCategory.REGULAR


def _merge_rows(rows: List[AggregatedShift]) -> Dict[tuple, Dict[str, Any]]:
    """Working rows of one job keyed by (normalized crew name, category)."""
    merged: Dict[tuple, Dict[str, Any]] = {}
    for row in rows:
        category = _row_category(row)
        key = (" ".join(row.crew_member_name.split()).casefold(), category)
        entry = merged.setdefault(key, {
            "name": row.crew_member_name, "category": category,
            "regular": [], "ot": [], "ot2": [], "shift_count": 0, "tags": set(),
        })
        entry["regular"].append(row.regular_hours)
        entry["ot"].append(row.ot_hours)
        entry["ot2"].append(row.ot2_hours)
        entry["shift_count"] += row.shift_count
        entry["tags"].update(t.strip() for t in row.tags.split(",") if t.strip())
    return merged


def _commit_job(
    db: Session,
    rs: ReconciliationSession,
    auth_job: AuthoritativeJob,
    rows: List[AggregatedShift],
    auto_approve: bool,
) -> int:
    job = upsert_canonical_job(db, auth_job, auto_approve=auto_approve)
    status = ShiftStatus.APPROVED if auto_approve else ShiftStatus.PENDING_APPROVAL

    written = 0
    for entry in _merge_rows(rows).values():
        member = find_or_create_crew_member(db, entry["name"], rs.branch)
        existing = db.exec(
            select(CanonicalShiftRecord).where(
                CanonicalShiftRecord.job_id == job.id,
                CanonicalShiftRecord.crew_member_id == member.id,
                CanonicalShiftRecord.category == entry["category"],
                CanonicalShiftRecord.status != ShiftStatus.REJECTED,
            ).order_by(CanonicalShiftRecord.id)
        ).first()

        if existing is not None and existing.status in (ShiftStatus.APPROVED, ShiftStatus.SYNCED):
            logger.info(
                f"Skipping {member.full_name} on job {job.id}: already {existing.status.value} "
                f"({entry['category'].value})"
            )
            continue

        record = existing or CanonicalShiftRecord(
            job_id=job.id, crew_member_id=member.id, category=entry["category"],
        )
        record.set_hours(
            math.fsum(entry["regular"]), math.fsum(entry["ot"]), math.fsum(entry["ot2"]),
        )
        record.shift_count = entry["shift_count"]
        record.tags = ", ".join(sorted(entry["tags"]))
        record.status = status
        record.session_id = rs.id
        db.add(record)
        written += 1

    if not written and job.approval_status == JobApprovalStatus.PENDING_APPROVAL:
        db.flush()
        pending = db.exec(
            select(CanonicalShiftRecord.id).where(
                CanonicalShiftRecord.job_id == job.id,
                CanonicalShiftRecord.status == ShiftStatus.PENDING_APPROVAL,
            )
        ).first()
        if pending is None:
            # Every row was already approved; nothing new to review
            job.approval_status = JobApprovalStatus.APPROVED
            job.in_payload = True
            db.add(job)

    auth_job.committed_job_id = job.id
    db.add(auth_job)
    for row in rows:
        db.delete(row)
    db.flush()
    return written


def commit(
    db: Session,
    session_id: str,
    selected_job_names: Optional[Iterable[str]] = None,
    auto_approve: bool = False,
    expected_version: Optional[int] = None,
) -> SessionSnapshot:
    """
    Promote the working rows of the selected jobs (all jobs with rows when
    None) into canonical jobs and shift records.

    Each job commits in its own savepoint: a job whose rows cannot be promoted
    keeps them in the working set and is reported in ``failed_jobs``. The
    session becomes 'committed' once no working rows are left.
    """
    failed: List[Dict[str, Any]] = []

    with _mutation(db, session_id, expected_version) as m:
        rs = m.rs
        _require_status(rs, "commit", SessionStatus.READY_FOR_REVIEW)

        jobs = _jobs(db, session_id)
        rows = db.exec(
            select(AggregatedShift).where(
                AggregatedShift.session_id == session_id,
                AggregatedShift.is_placeholder == False,  # noqa: E712
            ).order_by(AggregatedShift.id)
        ).all()
        if not rows:
            raise ConsistencyError(f"Session {session_id} has an empty working set; nothing to commit")

        rows_by_job: Dict[int, List[AggregatedShift]] = {}
        for row in rows:
            rows_by_job.setdefault(row.job_id, []).append(row)

        if selected_job_names is None:
            selected = [j for j in jobs if j.id in rows_by_job]
        else:
            names = list(selected_job_names)
            by_name = {j.name: j for j in jobs}
            unknown = [n for n in names if n not in by_name]
            if unknown:
                raise ValidationError(f"Jobs not in session {session_id}: {', '.join(unknown)}")
            selected = [by_name[n] for n in dict.fromkeys(names)]
            empty = [j.name for j in selected if j.id not in rows_by_job]
            if len(empty) == len(selected):
                raise ConsistencyError(f"Selected jobs have no working rows to commit: {', '.join(empty)}")
            if empty:
                logger.info(f"Selected jobs without working rows skipped: {', '.join(empty)}")
            selected = [j for j in selected if j.id in rows_by_job]

        committed = 0
        for auth_job in selected:
            try:
                with db.begin_nested():
                    written = _commit_job(db, rs, auth_job, rows_by_job[auth_job.id], auto_approve)
                committed += 1
                logger.info(f"Committed job '{auth_job.name}': {written} shift records")
            except ReconciliationError as e:
                logger.error(f"Commit of job '{auth_job.name}' rolled back: {e}")
                failed.append({"job_id": auth_job.id, "job_name": auth_job.name, "reason": str(e)})

        left = db.exec(
            select(AggregatedShift.id).where(
                AggregatedShift.session_id == session_id,
                AggregatedShift.is_placeholder == False,  # noqa: E712
            )
        ).first()
        if left is None:
            rs.status = SessionStatus.COMMITTED
        logger.info(f"Commit finished: {committed} jobs committed, {len(failed)} failed")

    snapshot = _snapshot(db, rs)
    snapshot.failed_jobs = failed
    return snapshot


def abandon(db: Session, session_id: str, expected_version: Optional[int] = None) -> SessionSnapshot:
    with _mutation(db, session_id, expected_version) as m:
        rs = m.rs
        _require_status(rs, "abandon", SessionStatus.COLLECTING, SessionStatus.READY_FOR_REVIEW)
        rs.status = SessionStatus.ABANDONED
        logger.info("Session abandoned")
    return _snapshot(db, rs)
