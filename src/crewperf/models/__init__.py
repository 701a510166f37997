from crewperf.models.jobs import Estimate, CrewMember, Job
from crewperf.models.shifts import CanonicalShiftRecord
from crewperf.models.reconciliation import (
    ReconciliationSession,
    AuthoritativeJob,
    RawShiftRow,
    JobNameMatch,
    AggregatedShift,
)

__all__ = [
    "Estimate", "CrewMember", "Job",
    "CanonicalShiftRecord",
    "ReconciliationSession", "AuthoritativeJob", "RawShiftRow",
    "JobNameMatch", "AggregatedShift",
]
