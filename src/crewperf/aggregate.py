"""
Shift aggregation: raw shift lines -> one row per (job, crew member).

QC and delivery drop work form their own rows (has_qc, has_delivery_drop) so
they can be committed as special hours.
Sums use math.fsum and are rounded to 2 decimals, which makes the result
independent of the order the lines arrive in.
"""
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Union

from crewperf.config import settings
from crewperf.logging import logger
from crewperf.models.base import derive_total
from crewperf.models.shifts import SPECIAL_CATEGORIES, ShiftCategory

__all__ = ["AggregateRow", "aggregate_shifts", "derive_total"]

_FROM_SETTINGS = object()


@dataclass
class AggregateRow:
    job_id: int
    crew_member_name: str
    regular_hours: float = 0.0
    ot_hours: float = 0.0
    ot2_hours: float = 0.0
    total_hours: float = 0.0
    shift_count: int = 0
    has_qc: bool = False
    has_delivery_drop: bool = False
    tags: str = ""
    is_placeholder: bool = False


class _Bucket:
    def __init__(self):
        self.names = set()
        self.hours = defaultdict(list)
        self.source_rows = set()
        self.unnumbered = 0
        self.tags = set()


def _split_tags(tags: str) -> List[str]:
    return [t.strip() for t in (tags or "").split(",") if t.strip()]


def aggregate_shifts(
    raw_rows: Iterable,
    confirmed: Dict[str, int],
    job_ids: Sequence[int],
    qc_fixed_hours: Union[float, None, object] = _FROM_SETTINGS,
    delivery_drop_fixed_hours: Union[float, None, object] = _FROM_SETTINGS,
) -> List[AggregateRow]:
    """
    Aggregate raw shift lines for the confirmed matches.

    raw_rows:  objects with job_name, crew_member_name, hours, category, tags, source_row
    confirmed: sheet job name -> authoritative job id (confirmed matches only)
    job_ids:   every authoritative job of the session; those left without rows
               get one empty placeholder row
    qc_fixed_hours: hours credited per QC line; defaults to settings.QC_FIXED_HOURS,
               and None means QC lines count their actual hours
    delivery_drop_fixed_hours: the same for delivery drop lines
    """
    if qc_fixed_hours is _FROM_SETTINGS:
        qc_fixed_hours = settings.QC_FIXED_HOURS
    if delivery_drop_fixed_hours is _FROM_SETTINGS:
        delivery_drop_fixed_hours = settings.DELIVERY_DROP_FIXED_HOURS
    fixed_hours = {
        ShiftCategory.QC: qc_fixed_hours,
        ShiftCategory.DELIVERY_DROP: delivery_drop_fixed_hours,
    }

    buckets: Dict[tuple, _Bucket] = defaultdict(_Bucket)
    skipped = 0
    for row in raw_rows:
        job_id = confirmed.get(row.job_name)
        if job_id is None:
            skipped += 1
            continue
        name = " ".join(row.crew_member_name.split())
        special = row.category if row.category in SPECIAL_CATEGORIES else None
        bucket = buckets[(job_id, name.casefold(), special)]
        bucket.names.add(name)
        bucket.hours[row.category].append(row.hours)
        if row.source_row is None:
            bucket.unnumbered += 1
        else:
            bucket.source_rows.add(row.source_row)
        bucket.tags.update(_split_tags(row.tags))

    order = {job_id: i for i, job_id in enumerate(job_ids)}
    result = []
    for (job_id, _, special), bucket in buckets.items():
        shift_count = len(bucket.source_rows) + bucket.unnumbered
        if special is not None:
            per_shift = fixed_hours[special]
            if per_shift is not None:
                regular = round(per_shift * shift_count, 2)
            else:
                regular = round(math.fsum(bucket.hours[special]), 2)
            ot = ot2 = 0.0
        else:
            regular = round(math.fsum(bucket.hours[ShiftCategory.REGULAR]), 2)
            ot = round(math.fsum(bucket.hours[ShiftCategory.OT]), 2)
            ot2 = round(math.fsum(bucket.hours[ShiftCategory.OT2]), 2)
        result.append(AggregateRow(
            job_id=job_id,
            # Spelling variants of one name collapse to a stable display form
            crew_member_name=min(bucket.names),
            regular_hours=regular,
            ot_hours=ot,
            ot2_hours=ot2,
            total_hours=derive_total(regular, ot, ot2),
            shift_count=shift_count,
            has_qc=special == ShiftCategory.QC,
            has_delivery_drop=special == ShiftCategory.DELIVERY_DROP,
            tags=", ".join(sorted(bucket.tags)),
        ))

    covered = {r.job_id for r in result}
    for job_id in job_ids:
        if job_id not in covered:
            result.append(AggregateRow(job_id=job_id, crew_member_name="", is_placeholder=True))

    result.sort(key=lambda r: (order.get(r.job_id, len(order)), r.is_placeholder, r.crew_member_name.casefold(), r.has_qc, r.has_delivery_drop))
    logger.info(
        f"Aggregated {len(result)} rows for {len(job_ids)} jobs "
        f"({skipped} lines without a confirmed match left out)"
    )
    return result
