import json
import sys
import typer
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from sqlmodel import Session
from crewperf.config import settings
from crewperf.errors import ReconciliationError
from crewperf.logging import logger, get_session_id

app = typer.Typer(no_args_is_help=True)

@app.callback()
def main():
    """
    Crew performance reconciliation CLI.
    """
    pass

@app.command(name="doctor")
def doctor():
    """
    Check system configuration and environment health.
    """
    logger.info("Running doctor check...")

    print("\n🩺 Crew Performance Doctor\n")

    # Check 1: Environment / Interpreter
    print(f"Python: {sys.version.split()[0]}")
    print(f"Prefix: {sys.prefix}")
    print(f"Session ID: {get_session_id()}")

    # Check 2: Configuration
    print("\n[Configuration]")
    print(f"DATABASE_URL:               {settings.DATABASE_URL}")
    print(f"MATCH_CONFIDENCE_THRESHOLD: {settings.MATCH_CONFIDENCE_THRESHOLD}")
    print(f"MATCH_REVIEW_THRESHOLD:     {settings.MATCH_REVIEW_THRESHOLD}")
    print(f"OT / 2OT MULTIPLIERS:       {settings.OT_MULTIPLIER} / {settings.OT2_MULTIPLIER}")
    print(f"QC_FIXED_HOURS:             {settings.QC_FIXED_HOURS}")
    print(f"BONUS_ELIGIBLE_THRESHOLD:   {settings.BONUS_ELIGIBLE_THRESHOLD}")

    # Check 3: Data Directory
    from crewperf.db import database_dir
    data_dir = database_dir(settings.DATABASE_URL)
    if data_dir is None:
        print("\n[Data Directory]            -  not a SQLite file database")
    elif data_dir.exists() and data_dir.is_dir():
        print(f"\n[Data Directory]            ✅ Found: {data_dir.absolute()}")
    else:
        print(f"\n[Data Directory]            ❌ Missing: {data_dir.absolute()} (run `crewperf db init`)")

    print("\nDoctor check complete.")


def _open_session() -> Session:
    from crewperf.db import engine
    return Session(engine)

def _fail(e: Exception):
    logger.error(str(e))
    print(f"❌ {e}")
    raise typer.Exit(code=1)

def _print_snapshot(snap):
    print(f"Session {snap.session_id}  [{snap.status.value}]  v{snap.version}  branch={snap.branch}")
    print(f"  jobs: {len(snap.jobs)}   raw shift lines: {snap.raw_row_count}   working rows: {len(snap.working_set)}")
    for w in snap.warnings:
        print(f"  ⚠️  row {w['row_number']}: {w['reason']}")
    for f in snap.failed_jobs:
        print(f"  ❌ {f['job_name']}: {f['reason']}")


db_app = typer.Typer(help="Database management commands.")
app.add_typer(db_app, name="db")

@db_app.command("init")
def init():
    """Initialize the database tables."""
    from crewperf.db import init_db
    try:
        init_db()
        logger.info("Database initialized successfully.")
        print("✅ Database initialized.")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        print(f"❌ Failed: {e}")
        raise typer.Exit(code=1)


session_app = typer.Typer(help="Reconciliation session commands.")
app.add_typer(session_app, name="session")

@session_app.command("begin")
def session_begin(
    branch: str,
    date_from: Optional[datetime] = typer.Option(None, "--from", formats=["%Y-%m-%d"]),
    date_to: Optional[datetime] = typer.Option(None, "--to", formats=["%Y-%m-%d"]),
):
    """Open a new reconciliation session for a branch."""
    from crewperf import reconcile
    with _open_session() as db:
        try:
            snap = reconcile.begin(
                db, branch,
                date_from.date() if date_from else None,
                date_to.date() if date_to else None,
            )
        except ReconciliationError as e:
            _fail(e)
    print(f"✅ Session {snap.session_id} opened for {snap.branch}")

@session_app.command("import")
def session_import(session_id: str, path: Path):
    """
    Import authoritative jobs: a JSON list of job payloads, or a jobs sheet
    (.xlsx/.csv) whose first row holds the field names.
    """
    from crewperf import reconcile
    from crewperf.ingest.importer import jobs_from_sheet_rows
    from crewperf.ingest.worksheet import read_worksheet
    with _open_session() as db:
        try:
            if path.suffix.lower() == ".json":
                jobs = json.loads(path.read_text())
            else:
                rows = read_worksheet(path)
                column_map = {str(name).strip(): i for i, name in enumerate(rows[0]) if name is not None}
                snap = reconcile.get_snapshot(db, session_id)
                jobs = jobs_from_sheet_rows(
                    [(i + 2, row) for i, row in enumerate(rows[1:])], column_map, snap.branch,
                )
            snap = reconcile.import_jobs(db, session_id, jobs)
        except ReconciliationError as e:
            _fail(e)
    _print_snapshot(snap)

@session_app.command("extract")
def session_extract(session_id: str, worksheet: Path):
    """Extract shifts from an uploaded time-clock worksheet and propose matches."""
    from crewperf import reconcile
    from crewperf.ingest.worksheet import read_worksheet
    with _open_session() as db:
        try:
            snap = reconcile.extract_shifts(db, session_id, read_worksheet(worksheet))
        except ReconciliationError as e:
            _fail(e)
    _print_snapshot(snap)

@session_app.command("matches")
def session_matches(session_id: str):
    """List proposed / confirmed job matches."""
    from crewperf import reconcile
    with _open_session() as db:
        try:
            snap = reconcile.get_snapshot(db, session_id)
        except ReconciliationError as e:
            _fail(e)
    for m in snap.matches:
        mark = "✅" if m["confirmed"] else "  "
        sheet = m["sheet_job_name"] or "-"
        print(f"{mark} [{m['job_id']}] {m['job_name']}  ->  {sheet}  ({m['score']:.2f}, {m['status'].value})")

@session_app.command("confirm")
def session_confirm(
    session_id: str,
    map_: Optional[List[str]] = typer.Option(None, "--map", help="JOB_ID=Sheet job name"),
    unmatch: Optional[List[int]] = typer.Option(None, "--unmatch", help="JOB_ID to leave unmatched"),
):
    """Confirm matches (with overrides) and build the working set."""
    from crewperf import reconcile
    decisions = []
    for item in map_ or []:
        job_id, _, name = item.partition("=")
        if not job_id.strip().isdigit() or not name.strip():
            print(f"❌ Bad --map value '{item}' (expected JOB_ID=Sheet job name)")
            raise typer.Exit(code=1)
        decisions.append(reconcile.MatchDecision(job_id=int(job_id), sheet_job_name=name.strip()))
    decisions.extend(reconcile.MatchDecision(job_id=j, sheet_job_name=None) for j in unmatch or [])

    with _open_session() as db:
        try:
            snap = reconcile.confirm_matches(db, session_id, decisions)
        except ReconciliationError as e:
            _fail(e)
    _print_snapshot(snap)

@session_app.command("commit")
def session_commit(
    session_id: str,
    job: Optional[List[str]] = typer.Option(None, "--job", help="Job name to commit (default: all)"),
    auto_approve: bool = typer.Option(False, "--auto-approve"),
):
    """Promote working rows into pending (or approved) canonical shifts."""
    from crewperf import reconcile
    with _open_session() as db:
        try:
            snap = reconcile.commit(db, session_id, job or None, auto_approve=auto_approve)
        except ReconciliationError as e:
            _fail(e)
    _print_snapshot(snap)

@session_app.command("show")
def session_show(session_id: str):
    """Show the session and its working set."""
    from crewperf import reconcile
    with _open_session() as db:
        try:
            snap = reconcile.get_snapshot(db, session_id)
        except ReconciliationError as e:
            _fail(e)
    _print_snapshot(snap)
    for r in snap.working_set:
        if r["is_placeholder"]:
            print(f"  [{r['id']}] {r['job_name']}: (no shifts)")
            continue
        qc = " QC" if r["has_qc"] else " DELIVERY DROP" if r["has_delivery_drop"] else ""
        print(
            f"  [{r['id']}] {r['job_name']}: {r['crew_member_name']}{qc}  "
            f"reg {r['regular_hours']}  ot {r['ot_hours']}  2ot {r['ot2_hours']}  = {r['total_hours']}"
        )

@session_app.command("abandon")
def session_abandon(session_id: str):
    """Abandon a session without committing."""
    from crewperf import reconcile
    with _open_session() as db:
        try:
            reconcile.abandon(db, session_id)
        except ReconciliationError as e:
            _fail(e)
    print(f"✅ Session {session_id} abandoned")


approval_app = typer.Typer(help="Approval workflow commands.")
app.add_typer(approval_app, name="approval")

@approval_app.command("pending")
def approval_pending(branch: Optional[str] = typer.Option(None, "--branch")):
    """List jobs with shifts awaiting approval."""
    from crewperf.approval import list_pending
    with _open_session() as db:
        pending = list_pending(db, branch)
    if not pending:
        print("No pending shifts.")
        return
    for job in pending:
        print(f"[{job['job_id']}] {job['job_name']} ({job['branch']})")
        for s in job["shifts"]:
            print(f"    crew {s['crew_member_id']} {s['crew_member_name']} {s['category']}: {s['total_hours']}h")

@approval_app.command("approve")
def approval_approve(job_ids: List[int]):
    """Approve all pending shifts of the given jobs."""
    from crewperf.approval import approve
    with _open_session() as db:
        try:
            result = approve(db, job_ids)
        except ReconciliationError as e:
            _fail(e)
    print(f"✅ Approved {result['approved']} shifts on {result['jobs']} jobs")

@approval_app.command("reject")
def approval_reject(
    job_id: int,
    crew_member_id: int,
    category: Optional[str] = typer.Option(None, "--category", help="REGULAR, QC or DELIVERY_DROP"),
):
    """Reject one crew member's shifts on a job."""
    from crewperf.approval import ShiftRef, reject
    from crewperf.models.shifts import ShiftCategory
    with _open_session() as db:
        try:
            ref = ShiftRef(job_id, crew_member_id, ShiftCategory(category.upper()) if category else None)
            result = reject(db, [ref])
        except (ReconciliationError, ValueError) as e:
            _fail(e)
    print(f"✅ Rejected {result['rejected']} shifts")

@approval_app.command("sync")
def approval_sync(job_ids: List[int]):
    """Mark approved shifts of the given jobs as synced to payroll."""
    from crewperf.approval import mark_synced
    with _open_session() as db:
        try:
            result = mark_synced(db, job_ids)
        except ReconciliationError as e:
            _fail(e)
    print(f"✅ Synced {result['synced']} shifts on {result['jobs']} jobs")


performance_app = typer.Typer(help="Job performance commands.")
app.add_typer(performance_app, name="performance")

@performance_app.command("show")
def performance_show(job_id: int):
    """Show the performance and bonus figures of a job."""
    from crewperf.performance import get_performance
    with _open_session() as db:
        try:
            result = get_performance(db, job_id)
        except ReconciliationError as e:
            _fail(e)
    for key, value in result.as_dict().items():
        print(f"{key:22} {value}")

@performance_app.command("overruns")
def performance_overruns(branch: Optional[str] = typer.Option(None, "--branch")):
    """List jobs whose approved hours exceed the estimate."""
    from crewperf.performance import list_overrun_jobs
    with _open_session() as db:
        overruns = list_overrun_jobs(db, branch)
    if not overruns:
        print("No overrun jobs.")
        return
    for o in overruns:
        print(f"[{o['job_id']}] {o['job_name']}: worked {o['total_worked']} / AT {o['at_hours']} ({o['actual_saved_pct']:.0%})")

if __name__ == "__main__":
    app()
