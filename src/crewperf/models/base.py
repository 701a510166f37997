import math
from datetime import datetime, timezone
from typing import Optional
from sqlmodel import Field, SQLModel


class TimestampMixin(SQLModel):
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        sa_column_kwargs={"onupdate": lambda: datetime.now(timezone.utc)},
        nullable=False,
    )


class SessionScopedMixin(SQLModel):
    """Rows owned by a single reconciliation session."""
    session_id: str = Field(foreign_key="reconciliationsession.id", index=True)


def derive_total(regular: float, ot: float, ot2: float) -> float:
    """total_hours is never stored independently of its parts."""
    return round(math.fsum((regular, ot, ot2)), 2)


class HoursSplitMixin(SQLModel):
    regular_hours: float = Field(default=0.0)
    ot_hours: float = Field(default=0.0)
    ot2_hours: float = Field(default=0.0)
    total_hours: float = Field(default=0.0, description="Always regular + ot + ot2; see set_hours")

    def set_hours(self, regular: float, ot: float = 0.0, ot2: float = 0.0):
        """The only way hours change: the three buckets are stored and the total derived."""
        self.regular_hours = round(float(regular), 2)
        self.ot_hours = round(float(ot), 2)
        self.ot2_hours = round(float(ot2), 2)
        self.total_hours = derive_total(self.regular_hours, self.ot_hours, self.ot2_hours)


class SourceRowMixin(SQLModel):
    source_row: Optional[int] = Field(default=None, description="1-based row in the uploaded worksheet")
