"""
Approval gate between committed reconciliation rows and payroll-relevant data.

Row states: pending_approval -> approved -> synced, with rejected reachable
from pending and approved. Rejection is per row (one crew member's hours on
one job), never per job. Only approved and synced rows are payable.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session, select

from crewperf.errors import ValidationError
from crewperf.logging import logger
from crewperf.models.jobs import CrewMember, Job, JobApprovalStatus
from crewperf.models.shifts import PAYABLE_STATUSES, CanonicalShiftRecord, ShiftCategory, ShiftStatus


@dataclass(frozen=True)
class ShiftRef:
    """One crew member's hours on one job; category None means all categories."""
    job_id: int
    crew_member_id: int
    category: Optional[ShiftCategory] = None


def get_records(session: Session, job_id: int, *statuses: ShiftStatus) -> list[CanonicalShiftRecord]:
    query = select(CanonicalShiftRecord).where(CanonicalShiftRecord.job_id == job_id)
    if statuses:
        query = query.where(CanonicalShiftRecord.status.in_(statuses))
    return list(session.exec(query.order_by(CanonicalShiftRecord.id)).all())


def payable_records(session: Session, job_id: int) -> list[CanonicalShiftRecord]:
    """Return the approved and synced rows of a job; the only rows bonus math may read."""
    return get_records(session, job_id, *PAYABLE_STATUSES)


def _get_job(session: Session, job_id: int) -> Job:
    job = session.get(Job, job_id)
    if not job:
        raise ValidationError(f"Job {job_id} not found")
    return job


def _describe(session: Session, record: CanonicalShiftRecord) -> str:
    member = session.get(CrewMember, record.crew_member_id)
    who = member.full_name if member else f"crew member {record.crew_member_id}"
    return f"shift {record.id} ({who}, {record.category.value}) on job {record.job_id}"


def approve(session: Session, job_ids: Iterable[int]) -> Dict[str, int]:
    """
    Approve every pending row of the given jobs.

    Already-approved rows are left alone and rejected rows stay rejected. A job
    with no pending rows left moves to approved and into the payroll payload.
    """
    jobs = [_get_job(session, job_id) for job_id in dict.fromkeys(job_ids)]

    approved = 0
    try:
        for job in jobs:
            for record in get_records(session, job.id, ShiftStatus.PENDING_APPROVAL):
                record.status = ShiftStatus.APPROVED
                session.add(record)
                approved += 1
            session.flush()

            if job.approval_status != JobApprovalStatus.SYNCED:
                job.approval_status = JobApprovalStatus.APPROVED
                job.in_payload = True
                session.add(job)
            logger.info(f"Job {job.id} '{job.name}' approved")
        session.commit()
    except Exception:
        session.rollback()
        raise

    return {"jobs": len(jobs), "approved": approved}


def reject(session: Session, shift_refs: Iterable[ShiftRef]) -> Dict[str, int]:
    """
    Reject individual rows. All refs are checked before anything changes:
    an unknown ref or a synced row fails the whole call.
    """
    to_reject: List[CanonicalShiftRecord] = []
    for ref in shift_refs:
        query = select(CanonicalShiftRecord).where(
            CanonicalShiftRecord.job_id == ref.job_id,
            CanonicalShiftRecord.crew_member_id == ref.crew_member_id,
        )
        if ref.category is not None:
            query = query.where(CanonicalShiftRecord.category == ref.category)
        records = list(session.exec(query).all())
        if not records:
            raise ValidationError(
                f"No shift for crew member {ref.crew_member_id} on job {ref.job_id}"
                + (f" ({ref.category.value})" if ref.category else "")
            )

        for record in records:
            if record.status == ShiftStatus.SYNCED:
                raise ValidationError(f"Cannot reject {_describe(session, record)}: already synced to payroll")
            if record.status != ShiftStatus.REJECTED:
                to_reject.append(record)

    try:
        for record in to_reject:
            record.status = ShiftStatus.REJECTED
            session.add(record)
            logger.info(f"Rejected {_describe(session, record)}")
        session.commit()
    except Exception:
        session.rollback()
        raise

    return {"rejected": len(to_reject)}


def mark_synced(session: Session, job_ids: Iterable[int]) -> Dict[str, int]:
    """Downstream consumer acknowledgement: approved rows become synced."""
    jobs = [_get_job(session, job_id) for job_id in dict.fromkeys(job_ids)]

    synced = 0
    try:
        for job in jobs:
            for record in get_records(session, job.id, ShiftStatus.APPROVED):
                record.status = ShiftStatus.SYNCED
                session.add(record)
                synced += 1
            session.flush()

            if not get_records(session, job.id, ShiftStatus.PENDING_APPROVAL):
                job.approval_status = JobApprovalStatus.SYNCED
                session.add(job)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(f"Marked {synced} rows synced across {len(jobs)} jobs")
    return {"jobs": len(jobs), "synced": synced}


def list_pending(session: Session, branch: Optional[str] = None) -> List[Dict[str, Any]]:
    """Jobs holding pending rows, each with those rows."""
    query = (
        select(CanonicalShiftRecord, Job, CrewMember)
        .join(Job, CanonicalShiftRecord.job_id == Job.id)
        .join(CrewMember, CanonicalShiftRecord.crew_member_id == CrewMember.id)
        .where(CanonicalShiftRecord.status == ShiftStatus.PENDING_APPROVAL)
    )
    if branch:
        query = query.where(Job.branch == branch)

    pending: Dict[int, Dict[str, Any]] = {}
    for record, job, member in session.exec(query.order_by(Job.id, CanonicalShiftRecord.id)).all():
        entry = pending.setdefault(job.id, {
            "job_id": job.id,
            "job_name": job.name,
            "branch": job.branch,
            "shifts": [],
        })
        entry["shifts"].append({
            "id": record.id,
            "crew_member_id": member.id,
            "crew_member_name": member.full_name,
            "category": record.category.value,
            "regular_hours": record.regular_hours,
            "ot_hours": record.ot_hours,
            "ot2_hours": record.ot2_hours,
            "total_hours": record.total_hours,
        })
    return list(pending.values())
