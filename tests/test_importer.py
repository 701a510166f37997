import itertools
import pytest
from datetime import date
from unittest.mock import patch
from sqlmodel import Session, SQLModel, create_engine
import crewperf.models  # noqa: F401
from crewperf import reconcile
from crewperf.db import enable_sqlite_savepoints
from crewperf.errors import ImportTimeoutError
from crewperf.ingest.importer import jobs_from_sheet_rows, wait_for_import

COLUMN_MAP = {
    "Job Name": 0,
    "Crew Lead": 1,
    "Estimator": 2,
    "AT Estimated Hours": 3,
    "CL Estimated Plan Hours": 4,
    "Start Date": 5,
    "Finish Date": 6,
}

# Polling opens its own sessions, so these tests need a file-backed database
@pytest.fixture(name="session")
def session_fixture(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'crewperf.db'}")
    enable_sqlite_savepoints(engine)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session


def test_jobs_from_sheet_rows():
    rows = [
        (2, ["Smith Residence", "Juan Perez", "Kim Lee", "40", "30", "2024-03-01", "2024-03-08"]),
        (3, ["", "Juan Perez", None, "10", None, None, None]),
        (4, ["123 Oak Street Reroof", None, None, "1,250.5", "n/a", None, None]),
    ]
    jobs = jobs_from_sheet_rows(rows, COLUMN_MAP, branch="WA")

    assert [j.name for j in jobs] == ["Smith Residence", "123 Oak Street Reroof"]
    smith, oak = jobs
    assert smith.external_id == "row-2"
    assert smith.crew_leader_name == "Juan Perez"
    assert smith.estimator_name == "Kim Lee"
    assert (smith.estimated_hours, smith.crew_leader_planned_hours) == (40.0, 30.0)
    assert (smith.start_date, smith.finish_date) == (date(2024, 3, 1), date(2024, 3, 8))
    assert smith.branch == "WA"
    assert smith.raw["Job Name"] == "Smith Residence"

    assert oak.estimated_hours == 1250.5
    assert oak.crew_leader_planned_hours is None
    assert oak.crew_leader_name is None

def test_job_id_column_is_preferred():
    column_map = {"job id": 0, "job name": 1}
    jobs = jobs_from_sheet_rows([(7, ["AT-991", "Maple Ave Attic"])], column_map)
    assert jobs[0].external_id == "AT-991"
    assert jobs[0].row_number == 7

def test_sheet_rows_feed_import(session: Session):
    snap = reconcile.begin(session, "WA")
    rows = [(2, ["Smith Residence", None, None, "40", "30", None, None])]
    snap = reconcile.import_jobs(session, snap.session_id, jobs_from_sheet_rows(rows, COLUMN_MAP))
    assert snap.jobs[0]["estimated_hours"] == 40.0
    assert snap.jobs[0]["branch"] == "WA"

def test_wait_for_import_returns_when_jobs_arrive(session: Session):
    snap = reconcile.begin(session, "WA")
    session.commit()

    def deliver(_delay):
        reconcile.import_jobs(session, snap.session_id, [{"external_id": "J1", "name": "Smith Residence"}])
        session.commit()

    with patch("crewperf.ingest.importer.time.sleep", side_effect=deliver) as mock_sleep:
        count = wait_for_import(session, snap.session_id, timeout=30, interval=0.5)

    assert count == 1
    assert mock_sleep.call_count == 1
    assert mock_sleep.call_args[0][0] == 0.5

def test_wait_for_import_times_out(session: Session):
    snap = reconcile.begin(session, "WA")
    session.commit()

    with pytest.raises(ImportTimeoutError) as exc:
        wait_for_import(session, snap.session_id, timeout=0, interval=0.1)
    assert snap.session_id in str(exc.value)

def test_wait_for_import_backs_off(session: Session):
    snap = reconcile.begin(session, "WA")
    session.commit()

    delays = []
    with patch("crewperf.ingest.importer.time") as mock_time:
        # Each clock read advances one second
        mock_time.monotonic.side_effect = itertools.count()
        mock_time.sleep.side_effect = delays.append
        with pytest.raises(ImportTimeoutError):
            wait_for_import(session, snap.session_id, timeout=100, interval=1)

    assert delays[:5] == [1, 2, 4, 8, 8]
