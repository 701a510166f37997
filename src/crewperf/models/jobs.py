from datetime import date
from enum import Enum
from typing import Optional
from sqlmodel import Field, Relationship
from crewperf.models.base import TimestampMixin


class Estimate(TimestampMixin, table=True):
    """Sold estimate as synced by the estimates collaborator; read-only here."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    branch: str = Field(index=True)
    estimated_hours: Optional[float] = None


class CrewMemberStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"


class CrewMember(TimestampMixin, table=True):
    """Employee directory entry. Names first seen in a worksheet are created PENDING."""
    id: Optional[int] = Field(default=None, primary_key=True)
    first_name: str = Field(index=True)
    last_name: str = Field(default="", index=True)
    branch: Optional[str] = None
    status: CrewMemberStatus = Field(default=CrewMemberStatus.ACTIVE)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class JobApprovalStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SYNCED = "synced"


class Job(TimestampMixin, table=True):
    """Canonical job: what payroll and bonus logic read."""
    id: Optional[int] = Field(default=None, primary_key=True)
    branch: str = Field(index=True)
    name: str = Field(index=True)

    estimate_id: Optional[int] = Field(default=None, foreign_key="estimate.id")
    estimated_hours: Optional[float] = Field(default=None, description="AT estimated hours")
    crew_leader_planned_hours: Optional[float] = Field(default=None)
    crew_leader_id: Optional[int] = Field(default=None, foreign_key="crewmember.id")
    estimator_name: Optional[str] = None
    closing_date: Optional[date] = None

    approval_status: JobApprovalStatus = Field(default=JobApprovalStatus.PENDING_APPROVAL)
    in_payload: bool = Field(default=False)

    estimate: Optional[Estimate] = Relationship()
