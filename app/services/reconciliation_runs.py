"""
ReconciliationRun lifecycle and email reporting for the catalog routines.

Every mutating routine (live or dry run) is wrapped by ``record_run``: a
``running`` row is committed up front, then marked ``completed`` with the
routine's stats or ``failed`` with the traceback. Live runs that complete send
a plain-text summary email.
"""
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.reconciliation_run import ReconciliationRun
from app.services.email import send_email

logger = logging.getLogger(__name__)

_tz = ZoneInfo(settings.TIMEZONE)

REPORT_LIST_LIMIT = 25


# ── Time helpers ──────────────────────────────────────────────────────────────

def to_local(dt: datetime) -> datetime:
    """Convert a datetime to the configured local timezone (naive values are UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(_tz)


def fmt(dt: datetime) -> str:
    """Format as 'Monday, Feb 24 at 4:00 AM CST' in local time."""
    local = to_local(dt)
    return local.strftime("%A, %b %-d at %-I:%M %p %Z")


# ── Run lifecycle ─────────────────────────────────────────────────────────────

def start_run(
    db: AsyncSession,
    routine: str,
    triggered_by: str,
    dry_run: bool,
    plant_type_id: Optional[str] = None,
) -> ReconciliationRun:
    """Create a ReconciliationRun with status='running'. Caller must commit."""
    run = ReconciliationRun(
        routine=routine,
        status="running",
        dry_run=dry_run,
        plant_type_id=plant_type_id,
        triggered_by=triggered_by,
        started_at=datetime.now(timezone.utc),
    )
    db.add(run)
    return run


def complete_run(run: ReconciliationRun, stats: dict[str, Any]) -> None:
    """Set status='completed', finished_at=now(), stats. Caller must commit."""
    run.status = "completed"
    run.finished_at = datetime.now(timezone.utc)
    run.stats = stats


def fail_run(run: ReconciliationRun, error: str) -> None:
    """Set status='failed', finished_at=now(), error_detail. Caller must commit."""
    run.status = "failed"
    run.finished_at = datetime.now(timezone.utc)
    run.error_detail = error[:4000] if error else None


async def record_run(
    db: AsyncSession,
    routine: str,
    triggered_by: str,
    dry_run: bool,
    body: Callable[[], Awaitable[dict[str, Any]]],
    plant_type_id: Optional[str] = None,
) -> tuple[ReconciliationRun, dict[str, Any]]:
    """Run ``body`` inside a ReconciliationRun row; re-raises whatever ``body`` raises."""
    run = start_run(db, routine, triggered_by, dry_run, plant_type_id)
    await db.commit()
    await db.refresh(run)
    run_id = run.id
    logger.info("%s: starting (run_id=%d, dry_run=%s, triggered_by=%s)", routine, run_id, dry_run, triggered_by)

    try:
        stats = await body()
    except Exception:
        fail_run(run, traceback.format_exc())
        await db.commit()
        logger.exception("%s: failed (run_id=%d)", routine, run_id)
        raise

    complete_run(run, stats)
    await db.commit()
    await db.refresh(run)
    logger.info("%s: completed (run_id=%d)", routine, run_id)

    if not dry_run:
        await send_run_report(run)
    return run, stats


# ── Email reporting ───────────────────────────────────────────────────────────

def _format_value(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, list):
        return f"{len(value):,}"
    if isinstance(value, str):
        return value
    return None


def build_run_report(run: ReconciliationRun) -> tuple[str, str]:
    """Subject and plain-text body for a finished run."""
    title = run.routine.replace("_", " ").title()
    started = fmt(run.started_at) if run.started_at else "N/A"
    finished = fmt(run.finished_at) if run.finished_at else "N/A"

    elapsed = "N/A"
    if run.started_at and run.finished_at:
        delta = to_local(run.finished_at) - to_local(run.started_at)
        minutes = int(delta.total_seconds() // 60)
        seconds = int(delta.total_seconds() % 60)
        elapsed = f"{minutes}m {seconds}s"

    stats = run.stats or {}
    flat: dict[str, Any] = {}
    for key, value in stats.items():
        if isinstance(value, dict):
            flat.update(value)
        else:
            flat[key] = value

    results_lines = [
        (f"{key.replace('_', ' ')}:", formatted)
        for key, value in flat.items()
        if (formatted := _format_value(value)) is not None
    ]
    results_section = ""
    if results_lines:
        max_label = max(len(label) for label, _ in results_lines)
        max_val = max(len(val) for _, val in results_lines)
        results_section = "\n".join(f"{label:<{max_label}} {val:>{max_val}}" for label, val in results_lines)

    body = (
        f"TilthBase {title} Report\n\n"
        f"Started:  {started}\n"
        f"Finished: {finished}\n"
        f"Duration: {elapsed}\n"
        f"Triggered by: {run.triggered_by or 'N/A'}\n"
    )
    if run.plant_type_id:
        body += f"Plant type: {run.plant_type_id}\n"
    if results_section:
        body += (
            f"\n── Results ──────────────────────────────\n"
            f"{results_section}\n"
        )

    errors = stats.get("errors") or []
    if errors:
        shown = errors[:REPORT_LIST_LIMIT]
        body += "\n── Errors ───────────────────────────────\n" + "\n".join(str(e) for e in shown) + "\n"
        if len(errors) > REPORT_LIST_LIMIT:
            body += f"...and {len(errors) - REPORT_LIST_LIMIT} more\n"

    status_word = "Complete" if run.status == "completed" else "Report"
    subject = f"TilthBase {title}: {status_word}"
    return subject, body


async def send_run_report(run: ReconciliationRun) -> None:
    subject, body = build_run_report(run)
    try:
        await send_email(subject, body)
    except Exception:
        logger.exception("send_run_report: failed to send report for run %d", run.id)
