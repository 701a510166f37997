"""
Shift extraction from a time-clock worksheet.

Input is the grid of cells (list of rows) of the first sheet; output is one
shift line per worked bucket. Time-clock exports put a title above the header
and totals below the data, and time cells come as "8:30", 8.5 or a time
value, so parsing is tolerant. A line that cannot be used is dropped and
reported as an ExtractionWarning; it never aborts the rest of the file.
"""
import math
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from crewperf.config import Settings, settings
from crewperf.errors import ValidationError
from crewperf.logging import logger
from crewperf.models.shifts import ShiftCategory

HEADER_SCAN_ROWS = 10

HEADER_ALIASES: Dict[str, tuple] = {
    "date": ("date", "day", "work date", "shift date"),
    "job": ("job", "job name", "jobsite", "project"),
    "name": ("name", "employee", "crew member", "employee name", "user"),
    "tags": ("tags", "tag", "category", "shift type", "type"),
    "regular": ("regular time", "regular", "regular hours", "hours", "reg"),
    "ot": ("ot", "overtime", "ot hours"),
    "ot2": ("2ot", "dot", "double ot", "double overtime", "2ot hours"),
    "pto": ("pto", "pto hours", "paid time off"),
}

HOURS_COLUMNS = ("regular", "ot", "ot2", "pto")

TIME_HHMM_RE = re.compile(r"^(\d{1,3}):(\d{2})(?::(\d{2}))?$")
QC_RE = re.compile(r"\bQC\b", re.IGNORECASE)
DELIVERY_DROP_RE = re.compile(r"\bdelivery[\s_-]*drop\b", re.IGNORECASE)
FOOTER_RE = re.compile(r"^(grand\s+)?totals?\b|^generated\b|^printed\b|^page\s+\d+|^report\b", re.IGNORECASE)

CATEGORY_TAGS = {
    "regular": ShiftCategory.REGULAR,
    "reg": ShiftCategory.REGULAR,
    "ot": ShiftCategory.OT,
    "overtime": ShiftCategory.OT,
    "2ot": ShiftCategory.OT2,
    "dot": ShiftCategory.OT2,
    "double ot": ShiftCategory.OT2,
    "double overtime": ShiftCategory.OT2,
    "qc": ShiftCategory.QC,
}

EXCEL_EPOCH = date(1899, 12, 30)


@dataclass
class ExtractionWarning:
    row_number: int
    reason: str

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ExtractedShift:
    source_row: int
    job_name: str
    crew_member_name: str
    worked_date: Optional[date]
    hours: float
    category: ShiftCategory
    tags: str = ""


@dataclass
class ExtractionResult:
    rows: List[ExtractedShift] = field(default_factory=list)
    warnings: List[ExtractionWarning] = field(default_factory=list)
    header_row: int = 0
    column_map: Dict[str, int] = field(default_factory=dict)
    skipped_rows: int = 0

    @property
    def job_names(self) -> List[str]:
        """Distinct sheet job names in first-seen order."""
        return list(dict.fromkeys(r.job_name for r in self.rows))


# ---------------------------------------------------------------------------
# Cell helpers
# ---------------------------------------------------------------------------
def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def cell_text(value: Any) -> str:
    if _is_blank(value):
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()


def _header_key(value: Any) -> str:
    return re.sub(r"[^a-z0-9 ]", "", cell_text(value).lower()).strip()


def parse_hours(value: Any) -> Optional[float]:
    """Hours cell -> decimal hours. Blank is 0.0; None means unparsable."""
    if _is_blank(value):
        return 0.0
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return round(float(value), 2) if value >= 0 else None
    if isinstance(value, timedelta):
        return round(value.total_seconds() / 3600, 2)
    if isinstance(value, time):
        return round(value.hour + value.minute / 60 + value.second / 3600, 2)

    s = str(value).strip()
    m = TIME_HHMM_RE.match(s)
    if m:
        hours = int(m.group(1)) + int(m.group(2)) / 60 + int(m.group(3) or 0) / 3600
        return round(hours, 2)
    try:
        hours = float(s)
    except ValueError:
        return None
    if math.isnan(hours) or hours < 0:
        return None
    return round(hours, 2)


def parse_date(value: Any) -> Optional[date]:
    if _is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Excel serial day number
        if 20000 <= value <= 80000:
            return EXCEL_EPOCH + timedelta(days=int(value))
        return None
    parsed = pd.to_datetime(str(value).strip(), errors="coerce")
    if pd.isna(parsed):
        return None
    return parsed.date()


# ---------------------------------------------------------------------------
# Header detection
# ---------------------------------------------------------------------------
def map_columns(header: Sequence[Any]) -> Dict[str, int]:
    """Map logical column -> index using the first alias match per column."""
    column_map: Dict[str, int] = {}
    keys = [_header_key(h) for h in header]
    for logical, aliases in HEADER_ALIASES.items():
        for alias in aliases:
            if alias in keys:
                idx = keys.index(alias)
                if idx not in column_map.values():
                    column_map[logical] = idx
                    break
    return column_map


def find_header_row(rows: Sequence[Sequence[Any]]) -> int:
    for i, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        cols = map_columns(row)
        if "job" in cols and "name" in cols and any(c in cols for c in HOURS_COLUMNS):
            return i
    raise ValidationError(
        f"No header row with Job, Name and hours columns in the first {HEADER_SCAN_ROWS} rows"
    )


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------
def _cell(row: Sequence[Any], column_map: Dict[str, int], key: str) -> Any:
    idx = column_map.get(key)
    if idx is None or idx >= len(row):
        return None
    return row[idx]


def extract_shifts(rows: Sequence[Sequence[Any]], config: Optional[Settings] = None) -> ExtractionResult:
    """Parse worksheet rows into shift lines plus warnings for every dropped row."""
    config = config or settings
    header_idx = find_header_row(rows)
    column_map = map_columns(rows[header_idx])
    result = ExtractionResult(header_row=header_idx + 1, column_map=column_map)

    multipliers = {
        ShiftCategory.REGULAR: 1.0,
        ShiftCategory.OT: config.OT_MULTIPLIER,
        ShiftCategory.OT2: config.OT2_MULTIPLIER,
    }
    bucket_category = {
        "regular": ShiftCategory.REGULAR,
        "ot": ShiftCategory.OT,
        "ot2": ShiftCategory.OT2,
        # PTO is paid at the plain rate
        "pto": ShiftCategory.REGULAR,
    }

    for offset, row in enumerate(rows[header_idx + 1:]):
        row_number = header_idx + offset + 2  # 1-based sheet row

        if all(_is_blank(v) for v in row):
            result.skipped_rows += 1
            continue

        first_text = next((cell_text(v) for v in row if not _is_blank(v)), "")
        if FOOTER_RE.match(first_text):
            result.skipped_rows += 1
            continue

        job_name = cell_text(_cell(row, column_map, "job"))
        if job_name.lower() == "job":
            # Header repeated on a new page
            result.skipped_rows += 1
            continue
        if not job_name:
            result.warnings.append(ExtractionWarning(row_number, "missing job name"))
            continue

        crew_member_name = cell_text(_cell(row, column_map, "name"))
        if not crew_member_name:
            result.warnings.append(ExtractionWarning(row_number, f"missing crew member name for job '{job_name}'"))
            continue

        tags = cell_text(_cell(row, column_map, "tags"))
        tagged_category = CATEGORY_TAGS.get(tags.lower())
        if QC_RE.search(tags):
            special = ShiftCategory.QC
        elif DELIVERY_DROP_RE.search(tags):
            special = ShiftCategory.DELIVERY_DROP
        else:
            special = None

        buckets: Dict[ShiftCategory, float] = {}
        unparsable = None
        all_blank = True
        for key in HOURS_COLUMNS:
            if key not in column_map:
                continue
            raw = _cell(row, column_map, key)
            all_blank = all_blank and _is_blank(raw)
            hours = parse_hours(raw)
            if hours is None:
                unparsable = f"unparsable hours '{cell_text(raw)}' in column '{cell_text(rows[header_idx][column_map[key]])}'"
                break
            category = bucket_category[key]
            if key == "regular" and tagged_category in (ShiftCategory.OT, ShiftCategory.OT2):
                # Single hours column with the category given as a tag
                category = tagged_category
            buckets[category] = buckets.get(category, 0.0) + hours
        if unparsable:
            result.warnings.append(ExtractionWarning(row_number, unparsable))
            continue
        if all_blank and special is None:
            # Special shifts are credited fixed hours, so they may come without any
            result.warnings.append(
                ExtractionWarning(row_number, f"missing hours for {crew_member_name} on job '{job_name}'")
            )
            continue

        worked_date = parse_date(_cell(row, column_map, "date"))
        weighted = {cat: round(h * multipliers[cat], 2) for cat, h in buckets.items()}

        if special is not None:
            result.rows.append(ExtractedShift(
                source_row=row_number,
                job_name=job_name,
                crew_member_name=crew_member_name,
                worked_date=worked_date,
                hours=round(math.fsum(weighted.values()), 2),
                category=special,
                tags=tags,
            ))
            continue

        emitted = False
        for category in (ShiftCategory.REGULAR, ShiftCategory.OT, ShiftCategory.OT2):
            hours = weighted.get(category, 0.0)
            if hours > 0:
                result.rows.append(ExtractedShift(
                    source_row=row_number,
                    job_name=job_name,
                    crew_member_name=crew_member_name,
                    worked_date=worked_date,
                    hours=hours,
                    category=category,
                    tags=tags,
                ))
                emitted = True
        if not emitted:
            result.rows.append(ExtractedShift(
                source_row=row_number,
                job_name=job_name,
                crew_member_name=crew_member_name,
                worked_date=worked_date,
                hours=0.0,
                category=ShiftCategory.REGULAR,
                tags=tags,
            ))

    logger.info(
        f"Extracted {len(result.rows)} shift lines for {len(result.job_names)} jobs "
        f"({len(result.warnings)} rows dropped, {result.skipped_rows} skipped)"
    )
    return result
