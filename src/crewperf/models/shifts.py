from enum import Enum
from typing import Optional
from sqlmodel import Field
from crewperf.models.base import TimestampMixin, HoursSplitMixin


class ShiftCategory(str, Enum):
    REGULAR = "REGULAR"
    OT = "OT"
    OT2 = "OT2"
    QC = "QC"
    DELIVERY_DROP = "DELIVERY_DROP"


class ShiftStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    SYNCED = "synced"


# Only these may feed bonus or payroll figures
PAYABLE_STATUSES = (ShiftStatus.APPROVED, ShiftStatus.SYNCED)

# Credited at fixed hours per shift and reported as special hours
SPECIAL_CATEGORIES = (ShiftCategory.QC, ShiftCategory.DELIVERY_DROP)


class CanonicalShiftRecord(TimestampMixin, HoursSplitMixin, table=True):
    """Hours of one crew member on one canonical job, promoted from an AggregatedShift.

    category is REGULAR, QC or DELIVERY_DROP; the last two count as special hours.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    job_id: int = Field(foreign_key="job.id", index=True)
    crew_member_id: int = Field(foreign_key="crewmember.id", index=True)

    category: ShiftCategory = Field(default=ShiftCategory.REGULAR)
    status: ShiftStatus = Field(default=ShiftStatus.PENDING_APPROVAL, index=True)
    shift_count: int = Field(default=0)
    tags: str = Field(default="")

    # Provenance: the reconciliation session that committed it
    session_id: Optional[str] = Field(default=None, foreign_key="reconciliationsession.id")

    @property
    def is_special(self) -> bool:
        return self.category in SPECIAL_CATEGORIES
