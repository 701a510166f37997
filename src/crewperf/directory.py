"""
Identity resolution against the canonical tables.

- Crew members: worksheet names are cleaned ("Juan (JJ) Perez" -> "Juan Perez")
  and looked up case-insensitively; unknown names become PENDING directory
  entries for an admin to confirm.
- Jobs: an authoritative job lands on an existing canonical Job when the names
  agree exactly, after suffix normalization, or by fuzzy score within the
  branch; otherwise a new Job is created.
"""
import re
from typing import Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from crewperf.config import settings
from crewperf.errors import ValidationError
from crewperf.logging import logger
from crewperf.matching.similarity import normalize_job_name, score
from crewperf.models.jobs import CrewMember, CrewMemberStatus, Estimate, Job, JobApprovalStatus
from crewperf.models.reconciliation import AuthoritativeJob

_PARENS_RE = re.compile(r"\s*\([^)]*\)")
_QUOTED_RE = re.compile(r"\s*\"[^\"]*\"\s*")
_NUMBER_RE = re.compile(r"^\d+[,.]?\d*$")


# ---------------------------------------------------------------------------
# Crew members
# ---------------------------------------------------------------------------
def clean_crew_name(name: str) -> str:
    """Drop parenthesised and quoted nicknames and '#', collapse whitespace."""
    cleaned = _PARENS_RE.sub("", name or "").strip()
    cleaned = _QUOTED_RE.sub(" ", cleaned).strip()
    cleaned = cleaned.replace("#", "").strip()
    return re.sub(r"\s+", " ", cleaned)


def split_name(name: str) -> Tuple[str, str]:
    parts = name.split(" ")
    return parts[0], " ".join(parts[1:])


def is_valid_crew_name(name: str) -> bool:
    """Prices and bare numbers leak into the name column of some exports."""
    cleaned = clean_crew_name(name)
    if not cleaned or "$" in cleaned:
        return False
    return not _NUMBER_RE.match(cleaned.replace(" ", ""))


def find_crew_member(db: Session, name: str) -> Optional[CrewMember]:
    cleaned = clean_crew_name(name)
    if not cleaned:
        return None
    first, last = split_name(cleaned)
    query = select(CrewMember).where(func.lower(CrewMember.first_name) == first.lower())
    if last:
        query = query.where(func.lower(CrewMember.last_name) == last.lower())
    return db.exec(query.order_by(CrewMember.id)).first()


def find_or_create_crew_member(db: Session, name: str, branch: Optional[str] = None) -> CrewMember:
    if not is_valid_crew_name(name):
        raise ValidationError(f"'{name}' is not a valid crew member name")

    member = find_crew_member(db, name)
    if member:
        return member

    first, last = split_name(clean_crew_name(name))
    member = CrewMember(first_name=first, last_name=last, branch=branch, status=CrewMemberStatus.PENDING)
    db.add(member)
    db.flush()
    logger.info(f"Created pending crew member {member.id} '{member.full_name}' (from '{name}')")
    return member


# ---------------------------------------------------------------------------
# Canonical jobs
# ---------------------------------------------------------------------------
def find_canonical_job(db: Session, name: str, branch: str) -> Optional[Job]:
    candidates = db.exec(select(Job).where(Job.branch == branch).order_by(Job.id)).all()

    lowered = name.strip().lower()
    for job in candidates:
        if job.name.strip().lower() == lowered:
            return job

    normalized = normalize_job_name(name)
    for job in candidates:
        if normalize_job_name(job.name) == normalized:
            return job

    best, best_score = None, 0.0
    for job in candidates:
        s = score(name, job.name)
        if s > best_score:
            best, best_score = job, s
    if best is not None and best_score >= settings.CANONICAL_JOB_MATCH_THRESHOLD:
        logger.info(f"Job '{name}' resolved to existing job {best.id} '{best.name}' (score {best_score:.2f})")
        return best
    return None


def find_estimate(db: Session, name: str, branch: str) -> Optional[Estimate]:
    normalized = normalize_job_name(name)
    for estimate in db.exec(select(Estimate).where(Estimate.branch == branch).order_by(Estimate.id)).all():
        if normalize_job_name(estimate.name) == normalized:
            return estimate
    return None


def upsert_canonical_job(db: Session, auth_job: AuthoritativeJob, auto_approve: bool = False) -> Job:
    """
    Create or refresh the canonical Job for an authoritative job.

    Sheet figures (estimated and planned hours, crew leader, estimator) overwrite
    the stored ones when present. A synced job stays synced; otherwise the job
    goes back to pending approval because new rows are arriving, or straight to
    approved when the commit auto-approves.
    """
    job = find_canonical_job(db, auth_job.name, auth_job.branch)
    created = job is None
    if created:
        job = Job(name=auth_job.name, branch=auth_job.branch)

    if auth_job.estimated_hours is not None:
        job.estimated_hours = auth_job.estimated_hours
    if auth_job.crew_leader_planned_hours is not None:
        job.crew_leader_planned_hours = auth_job.crew_leader_planned_hours
    if auth_job.estimator_name:
        job.estimator_name = auth_job.estimator_name
    if auth_job.crew_leader_name:
        leader = find_crew_member(db, auth_job.crew_leader_name)
        if leader:
            job.crew_leader_id = leader.id
    if auth_job.finish_date:
        job.closing_date = auth_job.finish_date
    if job.estimate_id is None:
        estimate = find_estimate(db, auth_job.name, auth_job.branch)
        if estimate:
            job.estimate_id = estimate.id

    if job.approval_status != JobApprovalStatus.SYNCED:
        job.approval_status = JobApprovalStatus.APPROVED if auto_approve else JobApprovalStatus.PENDING_APPROVAL
        job.in_payload = auto_approve

    db.add(job)
    db.flush()
    logger.info(f"{'Created' if created else 'Updated'} job {job.id} '{job.name}' ({job.approval_status.value})")
    return job
