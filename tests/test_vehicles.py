import uuid

import pytest
from sqlalchemy.orm import sessionmaker

from myfleet.models.models import AuditLog, Notification, User, Vehicle
from myfleet.services import vehicles
from myfleet.services.errors import InvalidMileage

from .conftest import auth


def _create(client, admin, **extra):
    payload = {"plate": " ab12 cde ", "make": "Ford", "model": "Transit", "current_mileage": 12000}
    payload.update(extra)
    resp = client.post("/vehicles", json=payload, headers=auth(admin))
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_vehicle_sets_service_cycle(client, admin):
    body = _create(client, admin)
    assert body["plate"] == "AB12 CDE"
    assert body["status"] == "ACTIVE"
    assert body["service_interval_miles"] == 5000
    assert body["last_service_mileage"] == 12000
    assert body["next_service_mileage"] == 17000
    assert body["miles_until_service"] == 5000
    assert body["needs_service"] is False


def test_plate_is_unique_per_company(client, admin):
    _create(client, admin)
    resp = client.post("/vehicles", json={"plate": "AB12 CDE"}, headers=auth(admin))
    assert resp.status_code == 400


def test_mileage_only_moves_forward(client, admin, db):
    vehicle = _create(client, admin)
    resp = client.put(f"/vehicles/{vehicle['id']}/mileage", json={"mileage": 11999}, headers=auth(admin))
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_mileage"
    assert db.get(Vehicle, uuid.UUID(vehicle["id"])).current_mileage == 12000

    resp = client.put(f"/vehicles/{vehicle['id']}/mileage", json={"mileage": 12000}, headers=auth(admin))
    assert resp.status_code == 200


def test_stale_mileage_reading_does_not_roll_back(db, engine, admin, clock):
    vehicle = vehicles.create_vehicle(db, admin, admin.company_id, {"plate": "AB12 CDE", "current_mileage": 100}, clock)
    assert vehicle.current_mileage == 100

    other = sessionmaker(bind=engine, autoflush=False, future=True)()
    try:
        vehicles.update_mileage(other, other.get(Vehicle, vehicle.id), other.get(User, admin.id), 500, clock)
    finally:
        other.close()

    # this session still holds the 100 reading
    with pytest.raises(InvalidMileage):
        vehicles.update_mileage(db, vehicle, admin, 300, clock)
    db.refresh(vehicle)
    assert vehicle.current_mileage == 500


def test_service_due_soon_notifies_admins(client, admin, db):
    vehicle = _create(client, admin)
    resp = client.put(f"/vehicles/{vehicle['id']}/mileage", json={"mileage": 16800}, headers=auth(admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["miles_until_service"] == 200
    assert body["service_due_soon"] is True
    assert body["needs_service"] is False
    titles = [n.title for n in db.query(Notification).filter(Notification.user_id == admin.id)]
    assert "Service due soon" in titles

    resp = client.put(f"/vehicles/{vehicle['id']}/mileage", json={"mileage": 17500}, headers=auth(admin))
    assert resp.json()["needs_service"] is True
    assert resp.json()["miles_until_service"] == -500


def test_returning_from_service_rearms_cycle(client, admin, driver):
    vehicle = _create(client, admin, assigned_to_id=str(driver.id))
    client.put(f"/vehicles/{vehicle['id']}/mileage", json={"mileage": 17500}, headers=auth(admin))

    resp = client.put(
        f"/vehicles/{vehicle['id']}/status",
        json={"status": "IN_SERVICE", "service_notes": "Brakes", "unassign_driver": True},
        headers=auth(admin),
    )
    body = resp.json()
    assert body["status"] == "IN_SERVICE"
    assert body["service_notes"] == "Brakes"
    assert body["assigned_to_id"] is None

    resp = client.put(f"/vehicles/{vehicle['id']}/status", json={"status": "ACTIVE"}, headers=auth(admin))
    body = resp.json()
    assert body["status"] == "ACTIVE"
    assert body["last_service_mileage"] == 17500
    assert body["next_service_mileage"] == 22500
    assert body["last_service_date"] == "2025-01-08"
    assert body["needs_service"] is False


def test_assigned_driver_updates_mileage_and_sees_vehicle(client, admin, driver, driver2, db):
    vehicle = _create(client, admin)
    resp = client.put(f"/vehicles/{vehicle['id']}/assign", json={"driver_id": str(driver.id)}, headers=auth(admin))
    assert resp.status_code == 200
    assert db.query(Notification).filter(Notification.user_id == driver.id).count() == 1

    assert client.get("/vehicles/my", headers=auth(driver)).json()["plate"] == "AB12 CDE"
    assert client.get("/vehicles/my", headers=auth(driver2)).json() is None

    resp = client.put(f"/vehicles/{vehicle['id']}/mileage", json={"mileage": 12100}, headers=auth(driver))
    assert resp.status_code == 200
    resp = client.put(f"/vehicles/{vehicle['id']}/mileage", json={"mileage": 12200}, headers=auth(driver2))
    assert resp.status_code == 403

    available = client.get("/vehicles/drivers/available", headers=auth(admin)).json()
    assert [d["name"] for d in available] == ["Eve Driver"]

    resp = client.put(f"/vehicles/{vehicle['id']}/unassign", headers=auth(admin))
    assert resp.json()["assigned_to_id"] is None


def test_vehicle_changes_are_audited(client, admin):
    vehicle = _create(client, admin)
    client.put(f"/vehicles/{vehicle['id']}", json={"color": "White"}, headers=auth(admin))

    resp = client.get("/audit", params={"entity_type": "vehicle"}, headers=auth(admin))
    assert resp.status_code == 200
    actions = sorted(entry["action"] for entry in resp.json())
    assert actions == ["CREATE", "UPDATE"]
    update = next(e for e in resp.json() if e["action"] == "UPDATE")
    assert update["changes_json"] == {"color": {"before": None, "after": "White"}}


def test_delete_vehicle(client, admin, db):
    vehicle = _create(client, admin)
    resp = client.delete(f"/vehicles/{vehicle['id']}", headers=auth(admin))
    assert resp.status_code == 200
    assert db.query(Vehicle).count() == 0
    assert db.query(AuditLog).filter(AuditLog.action == "DELETE").count() == 1


def test_other_company_cannot_see_vehicle(client, admin, outsider):
    vehicle = _create(client, admin)
    assert client.get(f"/vehicles/{vehicle['id']}", headers=auth(outsider)).status_code == 404
