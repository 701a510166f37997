"""
Job performance and bonus figures from approved hours.

    total_worked         = regular + special (QC, delivery drop) hours of payable rows
    total_saved          = at_hours - total_worked
    job_bonus_pool       = total_saved * 31 * 0.25
    potential_bonus_pool = (at_hours - cl_plan_hours) * 31 * 0.30
    planned_to_save_pct  = (at_hours - cl_plan_hours) / at_hours   (0 when at_hours is 0)
    actual_saved_pct     = total_saved / at_hours                  (0 when at_hours is 0)
"""
import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session, select

from crewperf.approval import payable_records
from crewperf.config import settings
from crewperf.errors import ValidationError
from crewperf.logging import logger
from crewperf.models.jobs import Job
from crewperf.models.shifts import PAYABLE_STATUSES, CanonicalShiftRecord

HOURLY_RATE = 31
JOB_BONUS_SHARE = 0.25
POTENTIAL_BONUS_SHARE = 0.30


@dataclass
class PerformanceResult:
    at_hours: float
    cl_plan_hours: float
    regular_hours: float
    special_hours: float
    total_worked: float
    total_saved: float
    job_bonus_pool: float
    potential_bonus_pool: float
    planned_to_save_pct: float
    actual_saved_pct: float

    @property
    def is_overrun(self) -> bool:
        return self.actual_saved_pct < 0

    @property
    def is_bonus_eligible(self) -> bool:
        return self.actual_saved_pct >= settings.BONUS_ELIGIBLE_THRESHOLD

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["is_overrun"] = self.is_overrun
        data["is_bonus_eligible"] = self.is_bonus_eligible
        return data


def compute_performance(
    records: Iterable[CanonicalShiftRecord],
    at_hours: Optional[float],
    cl_plan_hours: Optional[float] = None,
) -> PerformanceResult:
    """Pure calculation. Rows that are not approved or synced are ignored."""
    payable = [r for r in records if r.status in PAYABLE_STATUSES]
    regular = math.fsum(r.total_hours for r in payable if not r.is_special)
    special = math.fsum(r.total_hours for r in payable if r.is_special)

    at = float(at_hours or 0.0)
    cl = float(cl_plan_hours or 0.0)
    total_worked = regular + special
    total_saved = at - total_worked
    planned_saving = at - cl

    return PerformanceResult(
        at_hours=round(at, 2),
        cl_plan_hours=round(cl, 2),
        regular_hours=round(regular, 2),
        special_hours=round(special, 2),
        total_worked=round(total_worked, 2),
        total_saved=round(total_saved, 2),
        job_bonus_pool=round(total_saved * HOURLY_RATE * JOB_BONUS_SHARE, 2),
        potential_bonus_pool=round(planned_saving * HOURLY_RATE * POTENTIAL_BONUS_SHARE, 2),
        planned_to_save_pct=round(planned_saving / at, 4) if at > 0 else 0.0,
        actual_saved_pct=round(total_saved / at, 4) if at > 0 else 0.0,
    )


def estimated_hours_for(job: Job) -> float:
    """Job-level AT hours, falling back to the linked estimate."""
    if job.estimated_hours is not None:
        return job.estimated_hours
    if job.estimate is not None and job.estimate.estimated_hours is not None:
        return job.estimate.estimated_hours
    return 0.0


def get_performance(session: Session, job_id: int) -> PerformanceResult:
    """Always computed from the current payable rows; nothing is cached."""
    job = session.get(Job, job_id)
    if not job:
        raise ValidationError(f"Job {job_id} not found")
    return compute_performance(
        payable_records(session, job_id),
        estimated_hours_for(job),
        job.crew_leader_planned_hours,
    )


def list_overrun_jobs(session: Session, branch: Optional[str] = None) -> List[Dict[str, Any]]:
    """Jobs with payable hours whose actual saving is negative, worst first."""
    query = (
        select(Job)
        .where(Job.id.in_(
            select(CanonicalShiftRecord.job_id).where(CanonicalShiftRecord.status.in_(PAYABLE_STATUSES))
        ))
        .order_by(Job.id)
    )
    if branch:
        query = query.where(Job.branch == branch)

    overruns = []
    for job in session.exec(query).all():
        result = get_performance(session, job.id)
        if result.is_overrun:
            overruns.append({"job_id": job.id, "job_name": job.name, "branch": job.branch, **result.as_dict()})

    overruns.sort(key=lambda o: o["actual_saved_pct"])
    logger.info(f"{len(overruns)} overrun jobs" + (f" in {branch}" if branch else ""))
    return overruns
