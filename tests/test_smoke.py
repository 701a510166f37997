import json
import os
import pytest
from unittest.mock import patch
from sqlmodel import SQLModel, create_engine
from sqlalchemy.pool import StaticPool
from typer.testing import CliRunner
import crewperf.models  # noqa: F401
from crewperf.config import Settings
from crewperf.cli import app
from crewperf.db import enable_sqlite_savepoints

runner = CliRunner()

def test_settings_load():
    """Verify settings defaults and environment overrides."""
    os.environ["MATCH_CONFIDENCE_THRESHOLD"] = "0.9"
    try:
        settings = Settings()
        assert settings.MATCH_CONFIDENCE_THRESHOLD == 0.9
        assert settings.MATCH_REVIEW_THRESHOLD == 0.95
        assert settings.OT_MULTIPLIER == 1.5
        assert settings.QC_FIXED_HOURS == 3.0
        assert settings.DELIVERY_DROP_FIXED_HOURS == 3.0
        assert "WA" in settings.JOB_NAME_SUFFIXES
    finally:
        del os.environ["MATCH_CONFIDENCE_THRESHOLD"]

def test_cli_doctor():
    """Verify the doctor command runs without error."""
    with patch("crewperf.cli.settings") as mock_settings:
        mock_settings.DATABASE_URL = "sqlite://"
        mock_settings.MATCH_CONFIDENCE_THRESHOLD = 0.8

        result = runner.invoke(app, ["doctor"])
        assert result.exit_code == 0
        assert "Crew Performance Doctor" in result.stdout
        assert "MATCH_CONFIDENCE_THRESHOLD: 0.8" in result.stdout

@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    enable_sqlite_savepoints(engine)
    SQLModel.metadata.create_all(engine)
    with patch("crewperf.db.engine", engine):
        yield engine

def _session_id(output: str) -> str:
    return output.split("Session ")[1].split()[0]

def test_cli_reconciliation_flow(engine, tmp_path):
    jobs = tmp_path / "jobs.json"
    jobs.write_text(json.dumps([
        {"external_id": "J1", "name": "Smith Residence", "estimated_hours": 40, "crew_leader_planned_hours": 30},
    ]))
    sheet = tmp_path / "shifts.csv"
    sheet.write_text(
        "Job,Name,Tags,Regular Time\n"
        "Smith Residence - WA,Juan Perez,,20:00\n"
        "Smith Residence - WA,Ana Lopez,,5:00\n"
        "Smith Residence - WA,Ana Lopez,QC,1:00\n"
    )

    result = runner.invoke(app, ["session", "begin", "WA", "--from", "2024-03-01"])
    assert result.exit_code == 0, result.stdout
    session_id = _session_id(result.stdout)

    assert runner.invoke(app, ["session", "import", session_id, str(jobs)]).exit_code == 0
    assert runner.invoke(app, ["session", "extract", session_id, str(sheet)]).exit_code == 0

    result = runner.invoke(app, ["session", "matches", session_id])
    assert "Smith Residence  ->  Smith Residence - WA" in result.stdout

    assert runner.invoke(app, ["session", "confirm", session_id]).exit_code == 0
    result = runner.invoke(app, ["session", "show", session_id])
    assert "Juan Perez" in result.stdout

    result = runner.invoke(app, ["session", "commit", session_id])
    assert result.exit_code == 0
    assert "[committed]" in result.stdout

    result = runner.invoke(app, ["approval", "pending"])
    assert "Smith Residence" in result.stdout

    assert runner.invoke(app, ["approval", "approve", "1"]).exit_code == 0
    result = runner.invoke(app, ["performance", "show", "1"])
    assert result.exit_code == 0
    figures = dict(line.split(None, 1) for line in result.stdout.splitlines() if line.strip())
    assert figures["total_worked"] == "28.0"
    assert figures["job_bonus_pool"] == "93.0"

def test_cli_reports_errors(engine):
    result = runner.invoke(app, ["session", "show", "missing"])
    assert result.exit_code == 1
    assert "not found" in result.stdout

    result = runner.invoke(app, ["performance", "show", "404"])
    assert result.exit_code == 1

    result = runner.invoke(app, ["approval", "pending"])
    assert "No pending shifts." in result.stdout
