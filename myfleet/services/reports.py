"""
Weekly earnings and reporting.

Per-driver weekly statistics, the CSV export and the data behind the PDF
invoice. Earnings are the sum of price over COMPLETED tasks scheduled
inside the window; deductions are listed on invoices but never netted into
earnings.
"""
import csv
import io
import uuid
from collections import defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy.orm import Session

from ..config import settings
from ..models.enums import DayType, TaskStatus
from ..models.models import Company, Task, User
from ..documents.invoice_pdf import build_invoice_pdf
from .activity import build_activity_matrix, driver_digest, load_drivers, load_tasks, load_time_off, money
from .deductions import deductions_for_week
from .errors import NotFound
from .time_rules import Clock, WeekStart, date_range, month_bounds, week_bounds


logger = structlog.get_logger(__name__)

CSV_COLUMNS = [
    "Date",
    "Day",
    "Time",
    "Driver Name",
    "Personal ID",
    "Route/Task",
    "Description",
    "Location",
    "Price",
    "Status",
]

# Payment terms printed on invoices
PAYMENT_TERMS_DAYS = 7


def average_per_day(earnings: Decimal, days_worked: int) -> Decimal:
    if not days_worked:
        return Decimal("0")
    return Decimal(earnings) / days_worked


def weekly_stats(tasks: Iterable) -> Dict[str, Any]:
    """Counts and earnings for one driver's tasks inside a window."""
    completed = accepted = pending = rejected = cancelled = 0
    earnings = Decimal("0")
    worked_dates = set()
    for task in tasks:
        if task.status == TaskStatus.completed.value:
            completed += 1
            earnings += Decimal(task.price or 0)
            worked_dates.add(task.scheduled_date)
        elif task.status == TaskStatus.accepted.value:
            accepted += 1
        elif task.status == TaskStatus.pending.value:
            pending += 1
        elif task.status == TaskStatus.rejected.value:
            rejected += 1
        elif task.status == TaskStatus.cancelled.value:
            cancelled += 1
    return {
        "completed": completed,
        "accepted": accepted,
        "pending": pending,
        "rejected": rejected,
        "cancelled": cancelled,
        "earnings": earnings,
        "days_worked": len(worked_dates),
    }


def _present(stats: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(stats)
    out["average_per_day"] = money(average_per_day(stats["earnings"], stats["days_worked"]))
    out["earnings"] = money(stats["earnings"])
    return out


def build_weekly_report(drivers: Iterable, tasks: Iterable, start_date: date, end_date: date) -> Dict[str, Any]:
    """
    Pure weekly report over loaded rows.

    Returns:
        {"period": {...}, "drivers": [{...driver, weekly_stats}], "totals": {...}}
    """
    by_driver: Dict[Any, List] = defaultdict(list)
    for task in tasks:
        if task.assigned_to_id is not None and start_date <= task.scheduled_date <= end_date:
            by_driver[task.assigned_to_id].append(task)

    totals = {
        "completed": 0, "accepted": 0, "pending": 0, "rejected": 0, "cancelled": 0,
        "earnings": Decimal("0"), "days_worked": 0,
    }
    rows = []
    for driver in sorted(drivers, key=lambda d: ((d.name or "").lower(), str(d.id))):
        stats = weekly_stats(by_driver.get(driver.id, []))
        for key in totals:
            totals[key] += stats[key]
        rows.append({**driver_digest(driver), "weekly_stats": _present(stats)})

    return {
        "period": {
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "days": (end_date - start_date).days + 1,
        },
        "drivers": rows,
        "totals": {**_present(totals), "drivers": len(rows)},
    }


def weekly_report(db: Session, company_id: uuid.UUID, start_date: date, end_date: date) -> Dict[str, Any]:
    drivers = load_drivers(db, company_id)
    tasks = load_tasks(db, company_id, start_date, end_date, [d.id for d in drivers])
    return build_weekly_report(drivers, tasks, start_date, end_date)


def render_tasks_csv(tasks: Iterable, drivers: Dict[Any, Any]) -> str:
    """
    CSV text for tasks, every field quoted. A TOTAL row closes the file with
    the sum of COMPLETED prices.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\r\n")
    writer.writerow(CSV_COLUMNS)

    total = Decimal("0")
    count = 0
    for task in tasks:
        driver = drivers.get(task.assigned_to_id)
        price = Decimal(task.price or 0)
        if task.status == TaskStatus.completed.value:
            total += price
        count += 1
        writer.writerow([
            task.scheduled_date.strftime("%d/%m/%Y"),
            task.scheduled_date.strftime("%A"),
            task.scheduled_time or "-",
            driver.name if driver else "Unassigned",
            driver.personal_id if driver else "-",
            task.title or "",
            task.description or "",
            task.location or "-",
            f"{price.quantize(Decimal('0.01'))}",
            task.status,
        ])
    writer.writerow(["", "", "", "TOTAL", "", "", "", "", f"{total.quantize(Decimal('0.01'))}", f"{count} tasks"])
    return buffer.getvalue()


def export_weekly_csv(
    db: Session,
    company_id: uuid.UUID,
    start_date: date,
    end_date: date,
    status: Optional[TaskStatus] = None,
) -> Tuple[str, str]:
    query = db.query(Task).filter(
        Task.company_id == company_id,
        Task.scheduled_date >= start_date,
        Task.scheduled_date <= end_date,
    )
    if status:
        query = query.filter(Task.status == TaskStatus(status).value)
    tasks = query.all()
    driver_ids = {t.assigned_to_id for t in tasks if t.assigned_to_id}
    drivers = {u.id: u for u in db.query(User).filter(User.id.in_(driver_ids)).all()} if driver_ids else {}

    def sort_key(t: Task):
        driver = drivers.get(t.assigned_to_id)
        return (t.scheduled_date, t.scheduled_time or "", (driver.name if driver else "").lower(), t.title or "")

    content = render_tasks_csv(sorted(tasks, key=sort_key), drivers)
    filename = f"weekly-report-{start_date.isoformat()}.csv"
    logger.info("weekly_csv_exported", company_id=str(company_id), rows=len(tasks), filename=filename)
    return filename, content


def invoice_number(driver: User, start_date: date) -> str:
    return f"INV-{driver.personal_id}-{start_date.strftime('%Y%m%d')}"


def _day_status(cell: Dict[str, Any]) -> str:
    if cell["type"] == DayType.off.value:
        return "OFF"
    if cell["type"] == DayType.idle.value:
        return "NO TASKS"
    if cell["completed_count"] == cell["task_count"]:
        return "COMPLETED"
    if cell["completed_count"]:
        return f"{cell['completed_count']}/{cell['task_count']}"
    return "PENDING"


def build_invoice_data(
    company: Optional[Company],
    driver: User,
    matrix: Dict[str, Any],
    deductions: Iterable,
    start_date: date,
    end_date: date,
    issued_on: date,
) -> Dict[str, Any]:
    """
    Invoice content from the activity matrix of a single driver, so the
    invoice and the activity grid classify every day the same way.
    """
    row = matrix["drivers"][0] if matrix["drivers"] else {"daily_activity": {}, "summary": {}}
    lines = []
    for day in date_range(start_date, end_date):
        cell = row["daily_activity"].get(day.isoformat()) or {
            "type": DayType.idle.value, "task_count": 0, "completed_count": 0, "earnings": 0.0, "tasks": [],
        }
        titles = ", ".join(t["title"] for t in cell["tasks"])
        if cell["type"] == DayType.off.value:
            titles = "TIME OFF"
        lines.append({
            "day": day.strftime("%A"),
            "date": day.strftime("%d/%m/%Y"),
            "type": cell["type"],
            "description": titles or "-",
            "status": _day_status(cell),
            "amount": cell["earnings"],
        })

    gross = Decimal(str(row["summary"].get("total_earnings", 0)))
    deduction_lines = [
        {"description": d.description or d.type, "type": d.type, "frequency": d.frequency, "amount": money(d.amount)}
        for d in deductions
    ]
    total_deductions = sum((Decimal(str(d["amount"])) for d in deduction_lines), Decimal("0"))
    summary = row["summary"]
    return {
        "brand": settings.invoice_brand,
        "currency": settings.currency_symbol,
        "invoice_number": invoice_number(driver, start_date),
        "issued_on": issued_on.strftime("%d %B %Y"),
        "due_date": (end_date + timedelta(days=PAYMENT_TERMS_DAYS)).strftime("%d %B %Y"),
        "payment_terms_days": PAYMENT_TERMS_DAYS,
        "period": f"{start_date.strftime('%d/%m/%Y')} - {end_date.strftime('%d/%m/%Y')}",
        "company": {
            "name": company.name if company else settings.invoice_brand,
            "address": company.address if company else None,
        },
        "driver": {
            "name": driver.name,
            "personal_id": driver.personal_id,
            "email": driver.email,
            "phone": driver.phone,
        },
        "lines": lines,
        "gross": money(gross),
        "deductions": deduction_lines,
        "total_deductions": money(total_deductions),
        "net": money(gross - total_deductions),
        "days_worked": summary.get("days_worked", 0),
        "days_off": summary.get("days_off", 0),
        "days_idle": summary.get("days_idle", 0),
    }


def export_invoice_pdf(
    db: Session,
    company_id: uuid.UUID,
    driver_id: uuid.UUID,
    start_date: date,
    end_date: date,
    clock: Clock,
    include_pending_time_off: bool = False,
) -> Tuple[str, bytes]:
    driver = db.query(User).filter(User.id == driver_id, User.company_id == company_id).first()
    if not driver:
        raise NotFound("Driver not found")
    company = db.get(Company, company_id)
    tasks = load_tasks(db, company_id, start_date, end_date, [driver.id])
    time_offs = load_time_off(db, company_id, start_date, end_date, include_pending_time_off, [driver.id])
    matrix = build_activity_matrix([driver], tasks, time_offs, start_date, end_date)
    deductions = deductions_for_week(db, company_id, driver.id, start_date, end_date)

    data = build_invoice_data(company, driver, matrix, deductions, start_date, end_date, clock.today())
    pdf_bytes = build_invoice_pdf(data)
    filename = f"invoice-{driver.personal_id}-{start_date.isoformat()}.pdf"
    logger.info("invoice_pdf_exported", driver_id=str(driver.id), filename=filename, gross=data["gross"], net=data["net"])
    return filename, pdf_bytes


def driver_summary(db: Session, driver: User, clock: Clock) -> Dict[str, Any]:
    """This week's (driver week start) and this month's completed work."""
    today = clock.today()
    week_start, week_end = week_bounds(today, WeekStart(settings.driver_week_start))
    month_start, month_end = month_bounds(today)
    lo, hi = min(week_start, month_start), max(week_end, month_end)
    tasks = db.query(Task).filter(
        Task.assigned_to_id == driver.id,
        Task.scheduled_date >= lo,
        Task.scheduled_date <= hi,
    ).all()

    week = weekly_stats(t for t in tasks if week_start <= t.scheduled_date <= week_end)
    month = weekly_stats(t for t in tasks if month_start <= t.scheduled_date <= month_end)
    return {
        "driver": driver_digest(driver),
        "week": {"start_date": week_start.isoformat(), "end_date": week_end.isoformat(), **_present(week)},
        "month": {"start_date": month_start.isoformat(), "end_date": month_end.isoformat(), **_present(month)},
    }
