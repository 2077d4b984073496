from datetime import date

import pytest

from myfleet.models.models import Task
from myfleet.services.errors import ValidationError
from myfleet.services.recurrence import expand_recurrence, normalize_weekdays

from .conftest import auth


def test_expand_monday_wednesday_friday():
    dates = expand_recurrence(date(2025, 1, 6), date(2025, 1, 12), ["monday", "wednesday", "friday"])
    assert dates == [date(2025, 1, 6), date(2025, 1, 8), date(2025, 1, 10)]


def test_weekday_map_form_is_accepted():
    selected = {"monday": False, "tuesday": True, "saturday": True}
    assert normalize_weekdays(selected) == ["tuesday", "saturday"]


def test_weekday_names_are_case_insensitive_and_ordered():
    assert normalize_weekdays(["Sunday", "MONDAY", "monday"]) == ["monday", "sunday"]


@pytest.mark.parametrize("weekdays", [[], {"monday": False}, ["funday"], None])
def test_invalid_weekday_selection(weekdays):
    with pytest.raises(ValidationError):
        normalize_weekdays(weekdays)


def test_inverted_or_oversized_range():
    with pytest.raises(ValidationError):
        expand_recurrence(date(2025, 1, 12), date(2025, 1, 6), ["monday"])
    with pytest.raises(ValidationError):
        expand_recurrence(date(2025, 1, 1), date(2027, 6, 1), ["monday"])


def test_create_recurring_tasks_endpoint(client, admin, driver, db):
    resp = client.post(
        "/tasks/recurring",
        json={
            "title": "School run",
            "price": "30.00",
            "assigned_to_id": str(driver.id),
            "start_date": "2025-01-06",
            "end_date": "2025-01-19",
            "selected_days": {"monday": True, "thursday": True},
        },
        headers=auth(admin),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["created"] == 4
    assert body["failed"] == 0
    assert [t["scheduled_date"] for t in body["tasks"]] == ["2025-01-06", "2025-01-09", "2025-01-13", "2025-01-16"]
    assert db.query(Task).count() == 4


def test_recurring_needs_days(client, admin):
    resp = client.post(
        "/tasks/recurring",
        json={"title": "x", "price": 1, "start_date": "2025-01-06", "end_date": "2025-01-07"},
        headers=auth(admin),
    )
    assert resp.status_code == 422


def test_recurring_with_no_matching_dates(client, admin):
    resp = client.post(
        "/tasks/recurring",
        json={"title": "x", "price": 1, "start_date": "2025-01-06", "end_date": "2025-01-07", "days": ["sunday"]},
        headers=auth(admin),
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "validation_error"
