import csv
import io
import uuid
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from myfleet.models.enums import TaskStatus
from myfleet.models.models import Deduction
from myfleet.services.reports import average_per_day, render_tasks_csv, weekly_stats

from .conftest import auth


def _task(day, status, price="10.00", **extra):
    values = dict(
        assigned_to_id=None, scheduled_date=day, scheduled_time=None, title="Route",
        description=None, location=None, status=status, price=Decimal(price),
    )
    values.update(extra)
    return SimpleNamespace(**values)


def test_weekly_stats_counts_each_status():
    tasks = [
        _task(date(2025, 1, 6), "COMPLETED", "40.00"),
        _task(date(2025, 1, 6), "COMPLETED", "10.00"),
        _task(date(2025, 1, 7), "COMPLETED", "25.00"),
        _task(date(2025, 1, 8), "ACCEPTED"),
        _task(date(2025, 1, 8), "PENDING"),
        _task(date(2025, 1, 9), "REJECTED"),
        _task(date(2025, 1, 9), "CANCELLED", "99.00"),
    ]
    stats = weekly_stats(tasks)
    assert stats["completed"] == 3
    assert stats["accepted"] == stats["pending"] == stats["rejected"] == stats["cancelled"] == 1
    assert stats["earnings"] == Decimal("75.00")
    assert stats["days_worked"] == 2


def test_average_per_day_without_work_is_zero():
    assert average_per_day(Decimal("0"), 0) == 0
    assert average_per_day(Decimal("90"), 3) == Decimal("30")


def test_csv_quotes_every_field_and_totals_completed():
    driver = SimpleNamespace(name="Dan Driver", personal_id="DRV1")
    driver_id = uuid.uuid4()
    tasks = [
        _task(date(2025, 1, 6), "COMPLETED", "12.50", assigned_to_id=driver_id, description='He said "go"'),
        _task(date(2025, 1, 7), "PENDING", "30.00", location="Dock, Gate 2"),
    ]
    content = render_tasks_csv(tasks, {driver_id: driver})

    lines = content.split("\r\n")
    assert lines[0].startswith('"Date","Day","Time"')
    assert '"He said ""go"""' in lines[1]

    rows = list(csv.reader(io.StringIO(content)))
    assert rows[1][0] == "06/01/2025"
    assert rows[1][1] == "Monday"
    assert rows[1][3] == "Dan Driver"
    assert rows[2][3] == "Unassigned"
    assert rows[2][7] == "Dock, Gate 2"
    assert rows[-1][3] == "TOTAL"
    assert rows[-1][8] == "12.50"
    assert rows[-1][9] == "2 tasks"


def test_weekly_report_endpoint(client, admin, driver, driver2, make_task):
    make_task(scheduled_date=date(2025, 1, 6), status=TaskStatus.completed, assigned_to=driver, price="60.00")
    make_task(scheduled_date=date(2025, 1, 7), status=TaskStatus.completed, assigned_to=driver, price="40.00")
    make_task(scheduled_date=date(2025, 1, 8), status=TaskStatus.accepted, assigned_to=driver2)
    make_task(scheduled_date=date(2025, 1, 20), status=TaskStatus.completed, assigned_to=driver2)

    resp = client.get(
        "/reports/weekly", params={"start_date": "2025-01-06", "end_date": "2025-01-12"}, headers=auth(admin)
    )
    assert resp.status_code == 200
    body = resp.json()
    rows = {r["name"]: r["weekly_stats"] for r in body["drivers"]}
    assert rows["Dan Driver"]["earnings"] == 100.0
    assert rows["Dan Driver"]["days_worked"] == 2
    assert rows["Dan Driver"]["average_per_day"] == 50.0
    assert rows["Eve Driver"]["earnings"] == 0.0
    assert rows["Eve Driver"]["average_per_day"] == 0.0
    assert body["totals"]["earnings"] == 100.0
    assert body["totals"]["accepted"] == 1


def test_csv_export_endpoint(client, admin, driver, make_task):
    make_task(scheduled_date=date(2025, 1, 6), status=TaskStatus.completed, assigned_to=driver, price="60.00")
    make_task(scheduled_date=date(2025, 1, 7), status=TaskStatus.pending)

    resp = client.get("/reports/export/csv", params={"start_date": "2025-01-06"}, headers=auth(admin))
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert 'filename="weekly-report-2025-01-06.csv"' in resp.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(resp.text)))
    assert len(rows) == 4

    resp = client.get(
        "/reports/export/csv", params={"start_date": "2025-01-06", "status": "COMPLETED"}, headers=auth(admin)
    )
    rows = list(csv.reader(io.StringIO(resp.text)))
    assert len(rows) == 3
    assert rows[-1][8] == "60.00"


def test_pdf_invoice_for_admin_needs_driver(client, admin):
    resp = client.get("/reports/export/pdf", headers=auth(admin))
    assert resp.status_code == 400


def test_pdf_invoice(client, admin, driver, make_task, db):
    make_task(scheduled_date=date(2025, 1, 6), status=TaskStatus.completed, assigned_to=driver, price="120.00",
              title="Airport <transfer> & back")
    db.add(Deduction(
        company_id=driver.company_id, user_id=driver.id, type="VAN_RENTAL", amount=Decimal("45.00"),
        frequency="WEEKLY", status="ACTIVE", start_date=date(2025, 1, 1),
    ))
    db.commit()

    resp = client.get(
        "/reports/export/pdf", params={"driver_id": str(driver.id), "start_date": "2025-01-06"}, headers=auth(admin)
    )
    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert 'filename="invoice-DRV1-2025-01-06.pdf"' in resp.headers["content-disposition"]
    assert resp.content.startswith(b"%PDF")


def test_driver_gets_own_invoice_and_summary(client, driver, make_task):
    make_task(scheduled_date=date(2025, 1, 6), status=TaskStatus.completed, assigned_to=driver, price="80.00")
    make_task(scheduled_date=date(2025, 1, 2), status=TaskStatus.completed, assigned_to=driver, price="20.00")

    resp = client.get("/reports/export/pdf", headers=auth(driver))
    assert resp.status_code == 200
    # drivers default to Monday weeks
    assert "invoice-DRV1-2025-01-06.pdf" in resp.headers["content-disposition"]

    summary = client.get("/reports/driver-summary", headers=auth(driver)).json()
    assert summary["week"]["start_date"] == "2025-01-06"
    assert summary["week"]["earnings"] == 80.0
    assert summary["month"]["earnings"] == 100.0
    assert summary["month"]["days_worked"] == 2


def test_reports_are_scoped_to_company(client, outsider, driver, make_task):
    make_task(scheduled_date=date(2025, 1, 6), status=TaskStatus.completed, assigned_to=driver)
    resp = client.get(
        "/reports/export/pdf", params={"driver_id": str(driver.id)}, headers=auth(outsider)
    )
    assert resp.status_code == 404


def test_report_window_is_bounded(client, admin, driver):
    params = {"start_date": "1900-01-01", "end_date": "2099-12-31"}
    for path in ("/reports/driver-activity", "/reports/weekly", "/reports/export/csv"):
        resp = client.get(path, params=params, headers=auth(admin))
        assert resp.status_code == 400
        assert resp.json()["error"] == "validation_error"
    resp = client.get("/reports/export/pdf", params={**params, "driver_id": str(driver.id)}, headers=auth(admin))
    assert resp.status_code == 400
