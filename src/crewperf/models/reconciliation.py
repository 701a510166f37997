"""
Working state of one import-to-commit cycle:
- ReconciliationSession (status machine + optimistic version)
- AuthoritativeJob      (jobs delivered by the external spreadsheet import)
- RawShiftRow           (lines extracted from the uploaded worksheet)
- JobNameMatch          (proposed / confirmed job <-> sheet name link)
- AggregatedShift       (reviewer-editable working set, one row per job and crew member)
"""
import json
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional
from sqlmodel import Field, UniqueConstraint
from sqlmodel import SQLModel
from crewperf.models.base import (
    TimestampMixin,
    SessionScopedMixin,
    HoursSplitMixin,
    SourceRowMixin,
)
from crewperf.models.shifts import ShiftCategory


# ---------------------------------------------------------------------------
# ReconciliationSession
# ---------------------------------------------------------------------------
class SessionStatus(str, Enum):
    COLLECTING = "collecting"
    READY_FOR_REVIEW = "ready_for_review"
    COMMITTED = "committed"
    ABANDONED = "abandoned"


class ReconciliationSession(TimestampMixin, table=True):
    id: str = Field(primary_key=True, description="UUID correlation key")
    branch: str = Field(index=True)
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    status: SessionStatus = Field(default=SessionStatus.COLLECTING)
    version: int = Field(default=0, description="Bumped on every mutation")

    warnings_json: str = Field(default="[]", description="Rows dropped by the last extraction")

    @property
    def warnings(self) -> List[Dict[str, Any]]:
        return json.loads(self.warnings_json)

    @warnings.setter
    def warnings(self, value: List[Dict[str, Any]]):
        self.warnings_json = json.dumps(value)


# ---------------------------------------------------------------------------
# AuthoritativeJob
# ---------------------------------------------------------------------------
class AuthoritativeJob(TimestampMixin, SessionScopedMixin, table=True):
    """Unique constraint on (session_id, external_id) makes re-delivery an upsert."""
    __table_args__ = (
        UniqueConstraint("session_id", "external_id", name="uq_authoritative_job_external"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    external_id: str
    name: str
    branch: str
    crew_leader_name: Optional[str] = None
    estimator_name: Optional[str] = None
    estimated_hours: Optional[float] = None
    crew_leader_planned_hours: Optional[float] = None
    start_date: Optional[date] = None
    finish_date: Optional[date] = None
    row_number: Optional[int] = None
    raw_json: str = Field(default="{}", description="Sheet row as delivered, for audit")

    committed_job_id: Optional[int] = Field(default=None, foreign_key="job.id")


class AuthoritativeJobIn(SQLModel):
    """Payload of one delivered job."""
    external_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    branch: Optional[str] = None
    crew_leader_name: Optional[str] = None
    estimator_name: Optional[str] = None
    estimated_hours: Optional[float] = Field(default=None, ge=0)
    crew_leader_planned_hours: Optional[float] = Field(default=None, ge=0)
    start_date: Optional[date] = None
    finish_date: Optional[date] = None
    row_number: Optional[int] = None
    raw: Dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# RawShiftRow
# ---------------------------------------------------------------------------
class RawShiftRow(TimestampMixin, SessionScopedMixin, SourceRowMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    job_name: str = Field(index=True, description="Job name as written in the sheet")
    crew_member_name: str
    worked_date: Optional[date] = None
    hours: float
    category: ShiftCategory = Field(default=ShiftCategory.REGULAR)
    tags: str = Field(default="")


# ---------------------------------------------------------------------------
# JobNameMatch
# ---------------------------------------------------------------------------
class MatchStatus(str, Enum):
    MATCHED = "matched"
    NEEDS_REVIEW = "needs_review"
    NO_MATCH = "no_match"


class JobNameMatch(TimestampMixin, SessionScopedMixin, table=True):
    __table_args__ = (
        UniqueConstraint("session_id", "job_id", name="uq_job_name_match_job"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(foreign_key="authoritativejob.id")
    sheet_job_name: Optional[str] = Field(default=None, description="None = no match")
    score: float = Field(default=0.0)
    status: MatchStatus = Field(default=MatchStatus.NO_MATCH)
    confirmed: bool = Field(default=False)


# ---------------------------------------------------------------------------
# AggregatedShift
# ---------------------------------------------------------------------------
class RowOrigin(str, Enum):
    AGGREGATED = "aggregated"
    MANUAL = "manual"


class AggregatedShift(TimestampMixin, SessionScopedMixin, HoursSplitMixin, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(foreign_key="authoritativejob.id", index=True)
    crew_member_name: str = Field(default="")
    shift_count: int = Field(default=0)
    has_qc: bool = Field(default=False)
    has_delivery_drop: bool = Field(default=False)
    tags: str = Field(default="")

    is_placeholder: bool = Field(default=False, description="Empty row so a reviewer can add shifts")
    origin: RowOrigin = Field(default=RowOrigin.AGGREGATED)

    @classmethod
    def build(
        cls,
        *,
        session_id: str,
        job_id: int,
        crew_member_name: str,
        regular_hours: float = 0.0,
        ot_hours: float = 0.0,
        ot2_hours: float = 0.0,
        shift_count: int = 0,
        has_qc: bool = False,
        has_delivery_drop: bool = False,
        tags: str = "",
        is_placeholder: bool = False,
        origin: RowOrigin = RowOrigin.AGGREGATED,
    ) -> "AggregatedShift":
        row = cls(
            session_id=session_id,
            job_id=job_id,
            crew_member_name=crew_member_name,
            shift_count=shift_count,
            has_qc=has_qc,
            has_delivery_drop=has_delivery_drop,
            tags=tags,
            is_placeholder=is_placeholder,
            origin=origin,
        )
        row.set_hours(regular_hours, ot_hours, ot2_hours)
        return row
