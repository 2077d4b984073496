import uuid

from myfleet.models.models import AuditLog
from myfleet.services.audit import compute_diff, create_audit_log, record_event
from myfleet.services.events import DomainEvent, EventBus, TaskCancelled

from .conftest import auth


def test_compute_diff_reports_only_changes():
    before = {"title": "A", "price": "10.00", "notes": None}
    after = {"title": "A", "price": "12.00", "location": "Depot"}
    assert compute_diff(before, after) == {
        "price": {"before": "10.00", "after": "12.00"},
        "location": {"before": None, "after": "Depot"},
    }


def test_audit_entries_carry_integrity_hash(db, company):
    entity_id = uuid.uuid4()
    first = create_audit_log(db, "task", entity_id, "CREATE", company_id=company.id, integrity_secret="s1")
    second = create_audit_log(db, "task", entity_id, "CREATE", company_id=company.id, integrity_secret="s2")
    assert len(first.integrity_hash) == 64
    assert first.integrity_hash != second.integrity_hash


def test_record_event_flattens_event_fields(db, company, driver):
    event = TaskCancelled(
        entity_id=uuid.uuid4(),
        company_id=company.id,
        actor_id=driver.id,
        actor_role=driver.role,
        driver_id=driver.id,
        penalty=0.1,
        changes={"status": {"before": "ACCEPTED", "after": "CANCELLED"}},
        context={"title": "Route A"},
    )
    record_event(db, event)
    entry = db.query(AuditLog).one()
    assert entry.entity_type == "task"
    assert entry.action == "CANCEL"
    assert entry.source == "api"
    assert entry.context == {"driver_id": str(driver.id), "penalty": 0.1, "title": "Route A"}


def test_failing_subscriber_does_not_break_publish(db, company):
    bus = EventBus()
    seen = []

    def broken(session, event):
        raise RuntimeError("boom")

    bus.subscribe(DomainEvent, broken)
    bus.subscribe(DomainEvent, lambda session, event: seen.append(event.name))
    bus.subscribe(DomainEvent, broken)

    bus.publish(db, DomainEvent(entity_id=uuid.uuid4(), company_id=company.id))
    assert seen == ["DomainEvent"]


def test_notifications_list_and_mark_read(client, admin, driver):
    resp = client.post(
        "/tasks",
        json={"title": "Depot run", "scheduled_date": "2025-01-09", "price": "20", "assigned_to_id": str(driver.id)},
        headers=auth(admin),
    )
    assert resp.status_code == 201

    notes = client.get("/notifications", headers=auth(driver)).json()
    assert len(notes) == 1
    assert notes[0]["template_key"] == "TaskCreated"
    assert notes[0]["is_read"] is False

    resp = client.post(f"/notifications/{notes[0]['id']}/read", headers=auth(driver))
    assert resp.json()["is_read"] is True
    assert client.get("/notifications", params={"unread_only": "true"}, headers=auth(driver)).json() == []

    # someone else's notification looks missing
    assert client.post(f"/notifications/{notes[0]['id']}/read", headers=auth(admin)).status_code == 404


def test_audit_is_admin_only_and_company_scoped(client, admin, driver, outsider):
    client.post(
        "/tasks", json={"title": "Depot run", "scheduled_date": "2025-01-09", "price": "20"}, headers=auth(admin)
    )
    assert client.get("/audit", headers=auth(driver)).status_code == 403
    assert len(client.get("/audit", headers=auth(admin)).json()) == 1
    assert client.get("/audit", headers=auth(outsider)).json() == []


def test_health_and_request_id(client):
    resp = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert resp.json() == {"status": "ok"}
    assert resp.headers["X-Request-ID"] == "abc-123"
