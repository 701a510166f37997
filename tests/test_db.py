import pytest
from datetime import date
from unittest.mock import patch
from sqlmodel import Session, SQLModel, create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
import crewperf.models  # noqa: F401
from crewperf.db import database_dir, enable_sqlite_savepoints, init_db
from crewperf.directory import (
    clean_crew_name,
    find_or_create_crew_member,
    is_valid_crew_name,
    upsert_canonical_job,
)
from crewperf.errors import ValidationError
from crewperf.models.jobs import CrewMember, CrewMemberStatus, Estimate, Job, JobApprovalStatus
from crewperf.models.reconciliation import AggregatedShift, AuthoritativeJob, ReconciliationSession
from crewperf.models.shifts import CanonicalShiftRecord, ShiftCategory

# Use in-memory DB for testing
@pytest.fixture(name="session")
def session_fixture():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    enable_sqlite_savepoints(engine)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session

def _session_row(session: Session, branch="WA") -> ReconciliationSession:
    rs = ReconciliationSession(id="s-1", branch=branch)
    session.add(rs)
    session.commit()
    return rs

def test_reconciliation_models(session: Session):
    rs = _session_row(session)
    rs.warnings = [{"row_number": 7, "reason": "missing job name"}]
    session.add(rs)

    job = AuthoritativeJob(session_id=rs.id, external_id="J1", name="Smith Residence", branch="WA")
    session.add(job)
    session.commit()
    session.refresh(rs)

    assert rs.warnings[0]["row_number"] == 7
    assert rs.version == 0

    row = AggregatedShift.build(
        session_id=rs.id, job_id=job.id, crew_member_name="Ana Lopez",
        regular_hours=8, ot_hours=1.5, ot2_hours=0.25,
    )
    session.add(row)
    session.commit()
    assert row.total_hours == 9.75

def test_external_id_unique_per_session(session: Session):
    rs = _session_row(session)
    session.add(AuthoritativeJob(session_id=rs.id, external_id="J1", name="A", branch="WA"))
    session.commit()
    session.add(AuthoritativeJob(session_id=rs.id, external_id="J1", name="B", branch="WA"))
    with pytest.raises(IntegrityError):
        session.commit()

def test_canonical_record_hours(session: Session):
    job = Job(name="Smith Residence", branch="WA")
    member = CrewMember(first_name="Ana", last_name="Lopez")
    session.add(job)
    session.add(member)
    session.commit()

    record = CanonicalShiftRecord(job_id=job.id, crew_member_id=member.id, category=ShiftCategory.QC)
    record.set_hours(3)
    session.add(record)
    session.commit()

    stored = session.exec(select(CanonicalShiftRecord)).one()
    assert stored.total_hours == 3.0
    assert stored.is_special

def test_clean_crew_name():
    assert clean_crew_name('Juan (JJ) Perez') == "Juan Perez"
    assert clean_crew_name('Juan "Johnny"  Perez') == "Juan Perez"
    assert clean_crew_name("#Ana   Lopez ") == "Ana Lopez"

def test_price_like_names_refused(session: Session):
    assert not is_valid_crew_name("$1,200.00")
    assert not is_valid_crew_name("1200")
    assert not is_valid_crew_name("12.5")
    assert is_valid_crew_name("Ana Lopez")
    with pytest.raises(ValidationError):
        find_or_create_crew_member(session, "$450")

def test_find_or_create_crew_member(session: Session):
    existing = CrewMember(first_name="Ana", last_name="Lopez", branch="WA")
    session.add(existing)
    session.commit()

    assert find_or_create_crew_member(session, "ana LOPEZ").id == existing.id
    assert find_or_create_crew_member(session, "Ana (Annie) Lopez").id == existing.id

    created = find_or_create_crew_member(session, "Leo Park", "WA")
    assert created.id != existing.id
    assert created.status == CrewMemberStatus.PENDING
    assert (created.first_name, created.last_name) == ("Leo", "Park")

def test_upsert_canonical_job(session: Session):
    rs = _session_row(session)
    estimate = Estimate(name="Smith Residence", branch="WA", estimated_hours=42)
    prior = Job(name="123 Oak Street Reroof", branch="WA", approval_status=JobApprovalStatus.SYNCED)
    session.add(estimate)
    session.add(prior)
    session.commit()

    new = AuthoritativeJob(
        session_id=rs.id, external_id="J1", name="Smith Residence - WA", branch="WA",
        crew_leader_planned_hours=30, finish_date=date(2024, 3, 8),
    )
    oak = AuthoritativeJob(session_id=rs.id, external_id="J2", name="123 Oak St Reroof", branch="WA", estimated_hours=20)
    other_branch = AuthoritativeJob(session_id=rs.id, external_id="J3", name="123 Oak Street Reroof", branch="CA")
    session.add_all([new, oak, other_branch])
    session.commit()

    job = upsert_canonical_job(session, new)
    assert job.id != prior.id
    assert job.estimate_id == estimate.id
    assert job.estimated_hours is None
    assert job.closing_date == date(2024, 3, 8)
    assert job.approval_status == JobApprovalStatus.PENDING_APPROVAL

    # Fuzzy hit within the branch; a synced job keeps its status
    same = upsert_canonical_job(session, oak)
    assert same.id == prior.id
    assert same.estimated_hours == 20
    assert same.approval_status == JobApprovalStatus.SYNCED

    elsewhere = upsert_canonical_job(session, other_branch, auto_approve=True)
    assert elsewhere.id not in (prior.id, job.id)
    assert elsewhere.approval_status == JobApprovalStatus.APPROVED
    assert elsewhere.in_payload

def test_database_dir_follows_url(tmp_path):
    url = f"sqlite:///{tmp_path / 'nested' / 'db' / 'crewperf.db'}"
    assert database_dir(url) == tmp_path / "nested" / "db"
    assert database_dir("sqlite://") is None
    assert database_dir("sqlite:///:memory:") is None
    assert database_dir("postgresql://crew@localhost/crewperf") is None

def test_init_db_creates_database_directory(tmp_path):
    url = f"sqlite:///{tmp_path / 'nested' / 'db' / 'crewperf.db'}"
    engine = create_engine(url)
    with patch("crewperf.db.DB_URL", url), patch("crewperf.db.engine", engine):
        init_db()
    assert (tmp_path / "nested" / "db").is_dir()
    assert (tmp_path / "nested" / "db" / "crewperf.db").exists()
    engine.dispose()
