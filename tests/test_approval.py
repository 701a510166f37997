import pytest
from sqlmodel import Session, SQLModel, create_engine, select
from sqlalchemy.pool import StaticPool
import crewperf.models  # noqa: F401
from crewperf.approval import ShiftRef, approve, list_pending, mark_synced, payable_records, reject
from crewperf.db import enable_sqlite_savepoints
from crewperf.errors import ValidationError
from crewperf.models.jobs import CrewMember, Job, JobApprovalStatus
from crewperf.models.shifts import CanonicalShiftRecord, ShiftCategory, ShiftStatus
from crewperf.performance import get_performance

# Use in-memory DB for testing
@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    enable_sqlite_savepoints(engine)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session

@pytest.fixture(name="smith")
def smith_fixture(session: Session):
    """Smith Residence: 40 AT hours, 30 planned, four pending rows totalling 33 hours."""
    job = Job(name="Smith Residence", branch="WA", estimated_hours=40, crew_leader_planned_hours=30)
    juan = CrewMember(first_name="Juan", last_name="Perez")
    ana = CrewMember(first_name="Ana", last_name="Lopez")
    leo = CrewMember(first_name="Leo", last_name="Park")
    session.add_all([job, juan, ana, leo])
    session.commit()

    def record(member, hours, category=ShiftCategory.REGULAR):
        r = CanonicalShiftRecord(job_id=job.id, crew_member_id=member.id, category=category)
        r.set_hours(hours)
        return r

    session.add_all([
        record(juan, 15),
        record(ana, 10),
        record(ana, 3, ShiftCategory.QC),
        record(leo, 5),
    ])
    session.commit()
    return {"job": job, "juan": juan, "ana": ana, "leo": leo}


def test_pending_rows_are_invisible(session: Session, smith):
    job = smith["job"]
    assert payable_records(session, job.id) == []
    assert get_performance(session, job.id).total_worked == 0

def test_approve_job(session: Session, smith):
    job = smith["job"]
    result = approve(session, [job.id])
    assert result == {"jobs": 1, "approved": 4}

    session.refresh(job)
    assert job.approval_status == JobApprovalStatus.APPROVED
    assert job.in_payload
    assert get_performance(session, job.id).total_worked == 33.0

def test_row_level_rejection(session: Session, smith):
    job, leo = smith["job"], smith["leo"]
    approve(session, [job.id])

    assert reject(session, [ShiftRef(job.id, leo.id)]) == {"rejected": 1}

    statuses = {r.crew_member_id: r.status for r in session.exec(select(CanonicalShiftRecord)).all()}
    assert statuses[leo.id] == ShiftStatus.REJECTED
    assert statuses[smith["juan"].id] == ShiftStatus.APPROVED

    result = get_performance(session, job.id)
    assert result.regular_hours == 25.0
    assert result.special_hours == 3.0
    assert result.total_worked == 28.0
    assert result.job_bonus_pool == pytest.approx(93.0)
    assert result.potential_bonus_pool == pytest.approx(93.0)
    assert result.actual_saved_pct == pytest.approx(0.30)
    assert result.planned_to_save_pct == pytest.approx(0.25)

def test_reapprove_is_noop_and_keeps_rejections(session: Session, smith):
    job, leo = smith["job"], smith["leo"]
    approve(session, [job.id])
    reject(session, [ShiftRef(job.id, leo.id)])

    assert approve(session, [job.id]) == {"jobs": 1, "approved": 0}
    leo_row = session.exec(
        select(CanonicalShiftRecord).where(CanonicalShiftRecord.crew_member_id == leo.id)
    ).one()
    assert leo_row.status == ShiftStatus.REJECTED

def test_reject_by_category(session: Session, smith):
    job, ana = smith["job"], smith["ana"]
    reject(session, [ShiftRef(job.id, ana.id, ShiftCategory.QC)])
    approve(session, [job.id])

    result = get_performance(session, job.id)
    assert result.special_hours == 0.0
    assert result.regular_hours == 30.0

def test_reject_unknown_ref(session: Session, smith):
    with pytest.raises(ValidationError):
        reject(session, [ShiftRef(smith["job"].id, 9999)])

def test_reject_is_all_or_nothing(session: Session, smith):
    job = smith["job"]
    with pytest.raises(ValidationError):
        reject(session, [ShiftRef(job.id, smith["leo"].id), ShiftRef(job.id, 9999)])
    leo_row = session.exec(
        select(CanonicalShiftRecord).where(CanonicalShiftRecord.crew_member_id == smith["leo"].id)
    ).one()
    assert leo_row.status == ShiftStatus.PENDING_APPROVAL

def test_synced_rows_cannot_be_rejected(session: Session, smith):
    job, juan = smith["job"], smith["juan"]
    approve(session, [job.id])
    assert mark_synced(session, [job.id]) == {"jobs": 1, "synced": 4}

    session.refresh(job)
    assert job.approval_status == JobApprovalStatus.SYNCED
    # Synced rows stay payable
    assert get_performance(session, job.id).total_worked == 33.0

    with pytest.raises(ValidationError) as exc:
        reject(session, [ShiftRef(job.id, juan.id)])
    assert "Juan Perez" in str(exc.value)

def test_unknown_job(session: Session):
    with pytest.raises(ValidationError):
        approve(session, [42])
    with pytest.raises(ValidationError):
        mark_synced(session, [42])

def test_list_pending(session: Session, smith):
    pending = list_pending(session)
    assert len(pending) == 1
    assert pending[0]["job_name"] == "Smith Residence"
    assert len(pending[0]["shifts"]) == 4
    assert {s["crew_member_name"] for s in pending[0]["shifts"]} == {"Juan Perez", "Ana Lopez", "Leo Park"}

    assert list_pending(session, branch="CA") == []

    approve(session, [smith["job"].id])
    assert list_pending(session) == []
