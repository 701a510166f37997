import itertools
import pytest
from crewperf.aggregate import aggregate_shifts, derive_total
from crewperf.ingest.extract import ExtractedShift
from crewperf.models.shifts import ShiftCategory


def line(row, job, name, hours, category=ShiftCategory.REGULAR, tags=""):
    return ExtractedShift(
        source_row=row, job_name=job, crew_member_name=name, worked_date=None,
        hours=hours, category=category, tags=tags,
    )


LINES = [
    line(4, "Smith Residence - WA", "Juan Perez", 8.5),
    line(5, "Smith Residence - WA", "Ana Lopez", 8.0),
    line(5, "Smith Residence - WA", "Ana Lopez", 3.0, ShiftCategory.OT),
    line(5, "Smith Residence - WA", "Ana Lopez", 2.0, ShiftCategory.OT2),
    line(6, "Smith Residence - WA", "Ana Lopez", 2.0, ShiftCategory.QC, tags="QC"),
    line(7, "Johnson Warehouse", "Ana Lopez", 6.0),
]
CONFIRMED = {"Smith Residence - WA": 1}


def test_one_row_per_job_crew_member_and_qc_flag():
    rows = aggregate_shifts(LINES, CONFIRMED, [1, 2])
    summary = [(r.job_id, r.crew_member_name, r.has_qc, r.is_placeholder) for r in rows]
    assert summary == [
        (1, "Ana Lopez", False, False),
        (1, "Ana Lopez", True, False),
        (1, "Juan Perez", False, False),
        (2, "", False, True),
    ]

    ana = rows[0]
    assert (ana.regular_hours, ana.ot_hours, ana.ot2_hours, ana.total_hours) == (8.0, 3.0, 2.0, 13.0)
    # Three bucket lines from one sheet row are one shift
    assert ana.shift_count == 1


def test_qc_rows_use_fixed_hours():
    rows = aggregate_shifts(LINES, CONFIRMED, [1])
    qc = next(r for r in rows if r.has_qc)
    assert qc.regular_hours == 3.0
    assert qc.total_hours == 3.0
    assert qc.tags == "QC"

    rows = aggregate_shifts(LINES, CONFIRMED, [1], qc_fixed_hours=None)
    qc = next(r for r in rows if r.has_qc)
    assert qc.total_hours == 2.0



def test_delivery_drop_rows_use_fixed_hours():
    lines = [
        line(1, "Oak St", "Ana Lopez", 6.0),
        line(2, "Oak St", "Ana Lopez", 1.0, ShiftCategory.DELIVERY_DROP, tags="Delivery Drop"),
        line(3, "Oak St", "Ana Lopez", 0.5, ShiftCategory.DELIVERY_DROP, tags="Delivery Drop"),
        line(3, "Oak St", "Ana Lopez", 2.0, ShiftCategory.QC, tags="QC"),
    ]
    rows = aggregate_shifts(lines, {"Oak St": 1}, [1])
    summary = [(r.has_qc, r.has_delivery_drop, r.shift_count, r.total_hours) for r in rows]
    assert summary == [
        (False, False, 1, 6.0),
        (False, True, 2, 6.0),
        (True, False, 1, 3.0),
    ]

    rows = aggregate_shifts(lines, {"Oak St": 1}, [1], delivery_drop_fixed_hours=None)
    drop = next(r for r in rows if r.has_delivery_drop)
    assert drop.total_hours == 1.5

def test_unconfirmed_sheet_names_are_excluded():
    rows = aggregate_shifts(LINES, CONFIRMED, [1])
    assert all(r.job_id == 1 for r in rows)
    assert sum(r.total_hours for r in rows) == pytest.approx(8.5 + 13.0 + 3.0)


def test_placeholder_per_job_without_rows():
    rows = aggregate_shifts([], {}, [1, 2, 3])
    assert [(r.job_id, r.is_placeholder, r.total_hours) for r in rows] == [
        (1, True, 0.0), (2, True, 0.0), (3, True, 0.0),
    ]


def test_order_independent():
    lines = [
        line(1, "Oak St", "Juan Perez", 0.1),
        line(2, "Oak St", "Juan Perez", 0.2),
        line(3, "Oak St", "juan  perez", 0.3),
        line(4, "Oak St", "Juan Perez", 1.15, ShiftCategory.OT),
    ]
    expected = aggregate_shifts(lines, {"Oak St": 1}, [1])
    assert expected[0].regular_hours == 0.6
    assert expected[0].shift_count == 4

    for perm in itertools.permutations(lines):
        assert aggregate_shifts(list(perm), {"Oak St": 1}, [1]) == expected


def test_tags_deduplicated_and_sorted():
    lines = [
        line(1, "Oak St", "Ana Lopez", 1, tags="roof, attic"),
        line(2, "Oak St", "Ana Lopez", 1, tags="attic"),
    ]
    rows = aggregate_shifts(lines, {"Oak St": 1}, [1])
    assert rows[0].tags == "attic, roof"


def test_derive_total():
    assert derive_total(0.1, 0.2, 0.3) == 0.6
    assert derive_total(8, 3, 2) == 13.0
