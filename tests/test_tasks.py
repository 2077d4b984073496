from datetime import date

import pytest
from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from myfleet.models.enums import TaskStatus
from myfleet.models.models import AuditLog, Notification, Task, User
from myfleet.services import task_lifecycle
from myfleet.services.errors import InvalidTransition, ValidationError
from myfleet.services.task_lifecycle import apply_rating_change, completion_rating_delta, plan_transition

from .conftest import TODAY, auth


@pytest.mark.parametrize(
    "current,action,target",
    [
        ("PENDING", "accept", TaskStatus.accepted),
        ("PENDING", "reject", TaskStatus.rejected),
        ("ACCEPTED", "reject", TaskStatus.rejected),
        ("ACCEPTED", "complete", TaskStatus.completed),
        ("ACCEPTED", "cancel", TaskStatus.cancelled),
    ],
)
def test_plan_transition_allowed(current, action, target):
    assert plan_transition(current, action) == target


@pytest.mark.parametrize(
    "current,action",
    [
        ("PENDING", "complete"),
        ("PENDING", "cancel"),
        ("ACCEPTED", "accept"),
        ("COMPLETED", "cancel"),
        ("CANCELLED", "accept"),
        ("REJECTED", "reject"),
    ],
)
def test_plan_transition_refused(current, action):
    with pytest.raises(InvalidTransition):
        plan_transition(current, action)


def test_plan_transition_unknown_action():
    with pytest.raises(ValidationError):
        plan_transition("PENDING", "archive")


def test_rating_change_is_clamped():
    assert apply_rating_change(3.0, -0.1) == 2.9
    assert apply_rating_change(1.05, -0.1) == 1.0
    assert apply_rating_change(4.95, 0.2) == 5.0


def test_admin_creates_task(client, admin, driver, db):
    resp = client.post(
        "/tasks",
        json={
            "title": "Depot run",
            "scheduled_date": "2025-01-09",
            "scheduled_time": "08:30",
            "price": "85.50",
            "assigned_to_id": str(driver.id),
        },
        headers=auth(admin),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "PENDING"
    assert body["price"] == 85.5
    assert body["assigned_to"]["name"] == "Dan Driver"

    notes = db.query(Notification).filter(Notification.user_id == driver.id).all()
    assert [n.title for n in notes] == ["New task assigned"]
    audit = db.query(AuditLog).filter(AuditLog.entity_type == "task").one()
    assert audit.action == "CREATE"
    assert audit.integrity_hash


def test_create_task_validates_input(client, admin):
    resp = client.post(
        "/tasks",
        json={"title": "Bad time", "scheduled_date": "2025-01-09", "scheduled_time": "25:00", "price": 10},
        headers=auth(admin),
    )
    assert resp.status_code == 422
    resp = client.post(
        "/tasks", json={"title": "Negative", "scheduled_date": "2025-01-09", "price": -1}, headers=auth(admin)
    )
    assert resp.status_code == 422


def test_driver_cannot_create_task(client, driver):
    resp = client.post(
        "/tasks", json={"title": "Mine", "scheduled_date": "2025-01-09", "price": 10}, headers=auth(driver)
    )
    assert resp.status_code == 403


def test_accept_then_cancel_applies_penalty(client, driver, make_task, db):
    task = make_task()
    resp = client.post(f"/tasks/{task.id}/accept", headers=auth(driver))
    assert resp.status_code == 200
    assert resp.json()["status"] == "ACCEPTED"
    assert resp.json()["assigned_to_id"] == str(driver.id)

    resp = client.post(f"/tasks/{task.id}/cancel", headers=auth(driver))
    assert resp.status_code == 200
    assert resp.json()["status"] == "CANCELLED"
    db.refresh(driver)
    assert driver.rating == 2.9

    audit = db.query(AuditLog).filter(AuditLog.entity_id == task.id, AuditLog.action == "CANCEL").one()
    assert audit.context["penalty"] == 0.1


def test_cancel_pending_task_is_refused_without_penalty(client, driver, make_task, db):
    task = make_task(assigned_to=driver)
    resp = client.post(f"/tasks/{task.id}/cancel", headers=auth(driver))
    assert resp.status_code == 409
    assert resp.json()["error"] == "invalid_transition"
    db.refresh(driver)
    assert driver.rating == 3.0


def test_accept_task_assigned_to_someone_else(client, driver, driver2, make_task):
    task = make_task(assigned_to=driver2)
    resp = client.post(f"/tasks/{task.id}/accept", headers=auth(driver))
    assert resp.status_code == 403


def test_accept_completed_task_conflicts(client, driver, make_task):
    task = make_task(status=TaskStatus.completed, assigned_to=driver)
    resp = client.post(f"/tasks/{task.id}/accept", headers=auth(driver))
    assert resp.status_code == 409


def test_admin_cannot_accept(client, admin, make_task):
    task = make_task()
    resp = client.post(f"/tasks/{task.id}/accept", headers=auth(admin))
    assert resp.status_code == 403


def test_complete_sets_completed_at(client, driver, make_task, db):
    task = make_task(status=TaskStatus.accepted, assigned_to=driver)
    resp = client.post(f"/tasks/{task.id}/complete", headers=auth(driver))
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "COMPLETED"
    assert body["completed_at"] is not None
    # on the scheduled day
    db.refresh(driver)
    assert driver.rating == 3.1
    audit = db.query(AuditLog).filter(AuditLog.entity_id == task.id, AuditLog.action == "COMPLETE").one()
    assert audit.context["rating_delta"] == 0.1


def test_driver_cannot_complete_on_another_day(client, driver, make_task):
    task = make_task(scheduled_date=date(2025, 1, 9), status=TaskStatus.accepted, assigned_to=driver)
    resp = client.post(f"/tasks/{task.id}/complete", headers=auth(driver))
    assert resp.status_code == 409


def test_admin_can_complete_past_task(client, admin, driver, make_task, db):
    task = make_task(scheduled_date=date(2025, 1, 6), status=TaskStatus.accepted, assigned_to=driver)
    resp = client.post(f"/tasks/{task.id}/complete", headers=auth(admin))
    assert resp.status_code == 200
    assert resp.json()["status"] == "COMPLETED"
    # late completion costs the driver
    db.refresh(driver)
    assert driver.rating == 2.8


def test_early_completion_earns_bonus(client, admin, driver2, make_task, db):
    task = make_task(scheduled_date=date(2025, 1, 10), status=TaskStatus.accepted, assigned_to=driver2)
    resp = client.post(f"/tasks/{task.id}/complete", headers=auth(admin))
    assert resp.status_code == 200
    db.refresh(driver2)
    assert driver2.rating == 4.65


def test_completion_rating_delta():
    scheduled = date(2025, 1, 8)
    assert completion_rating_delta(scheduled, date(2025, 1, 7)) == 0.15
    assert completion_rating_delta(scheduled, scheduled) == 0.1
    assert completion_rating_delta(scheduled, date(2025, 1, 9)) == -0.2


def test_driver_rejects_own_pending_task_without_penalty(client, driver, make_task, db):
    task = make_task(assigned_to=driver)
    resp = client.post(f"/tasks/{task.id}/reject", headers=auth(driver))
    assert resp.status_code == 200
    assert resp.json()["status"] == "REJECTED"
    db.refresh(driver)
    assert driver.rating == 3.0


def test_driver_cannot_reject_open_task(client, driver, make_task):
    task = make_task()
    resp = client.post(f"/tasks/{task.id}/reject", headers=auth(driver))
    assert resp.status_code == 403


def test_lost_race_is_reported_as_conflict(db, driver, driver2, make_task, clock):
    task = make_task()
    stale = task_lifecycle.load_task(db, task.id, driver)
    # another driver wins between read and write
    db.execute(
        update(Task)
        .where(Task.id == task.id)
        .values(status=TaskStatus.accepted.value, assigned_to_id=driver2.id)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    stale.status = TaskStatus.pending.value
    stale.assigned_to_id = None

    with pytest.raises(InvalidTransition):
        task_lifecycle.accept_task(db, stale, driver, clock)
    fresh = task_lifecycle.load_task(db, task.id, driver2)
    assert fresh.assigned_to_id == driver2.id


def test_cancel_penalty_uses_current_rating(db, engine, driver, make_task, clock):
    task = make_task(status=TaskStatus.accepted, assigned_to=driver)
    stale = task_lifecycle.load_task(db, task.id, driver)
    assert driver.rating == 3.0

    # another request lowers the rating after this session read it
    other = sessionmaker(bind=engine, autoflush=False, future=True)()
    try:
        other.execute(update(User).where(User.id == driver.id).values(rating=2.5))
        other.commit()
    finally:
        other.close()

    task_lifecycle.cancel_task(db, stale, driver, clock)
    db.refresh(driver)
    assert driver.rating == 2.4


def test_driver_sees_own_and_open_tasks(client, driver, driver2, make_task):
    mine = make_task(title="Mine", assigned_to=driver)
    open_task = make_task(title="Open")
    make_task(title="Theirs", assigned_to=driver2)
    make_task(title="Open but rejected", status=TaskStatus.rejected)

    resp = client.get("/tasks", headers=auth(driver))
    assert resp.status_code == 200
    ids = {t["id"] for t in resp.json()}
    assert ids == {str(mine.id), str(open_task.id)}


def test_other_company_task_is_not_found(client, outsider, make_task):
    task = make_task()
    assert client.get(f"/tasks/{task.id}", headers=auth(outsider)).status_code == 404


def test_update_terminal_task_refused(client, admin, driver, make_task):
    task = make_task(status=TaskStatus.completed, assigned_to=driver)
    resp = client.put(f"/tasks/{task.id}", json={"title": "Renamed"}, headers=auth(admin))
    assert resp.status_code == 409


def test_reassign_only_while_pending(client, admin, driver, driver2, make_task, db):
    pending = make_task(assigned_to=driver)
    resp = client.put(f"/tasks/{pending.id}", json={"assigned_to_id": str(driver2.id)}, headers=auth(admin))
    assert resp.status_code == 200
    assert resp.json()["assigned_to_id"] == str(driver2.id)
    assert db.query(Notification).filter(Notification.user_id == driver2.id).count() == 1

    accepted = make_task(status=TaskStatus.accepted, assigned_to=driver)
    resp = client.put(f"/tasks/{accepted.id}", json={"assigned_to_id": str(driver2.id)}, headers=auth(admin))
    assert resp.status_code == 409


def test_update_price_writes_audit_diff(client, admin, make_task, db):
    task = make_task(price="40.00")
    resp = client.put(f"/tasks/{task.id}", json={"price": "45.00"}, headers=auth(admin))
    assert resp.status_code == 200
    assert resp.json()["price"] == 45.0
    audit = db.query(AuditLog).filter(AuditLog.entity_id == task.id, AuditLog.action == "UPDATE").one()
    assert audit.changes_json == {"price": {"before": "40.00", "after": "45.00"}}


def test_delete_task(client, admin, make_task, db):
    task = make_task()
    task_id = task.id
    resp = client.delete(f"/tasks/{task_id}", headers=auth(admin))
    assert resp.status_code == 200
    assert resp.json() == {"message": "Task deleted successfully"}
    assert db.get(Task, task_id) is None
    assert db.query(AuditLog).filter(AuditLog.entity_id == task_id, AuditLog.action == "DELETE").count() == 1


def test_scheduled_date_filters(client, admin, make_task):
    make_task(scheduled_date=TODAY)
    make_task(scheduled_date=date(2025, 1, 20))
    resp = client.get("/tasks", params={"start_date": "2025-01-06", "end_date": "2025-01-12"}, headers=auth(admin))
    assert [t["scheduled_date"] for t in resp.json()] == ["2025-01-08"]


def test_unauthenticated_request_is_rejected(client):
    assert client.get("/tasks").status_code == 401
