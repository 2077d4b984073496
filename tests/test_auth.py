from myfleet.auth.security import create_access_token
from myfleet.models.enums import UserRole

from .conftest import auth


def test_expired_token_is_rejected(client, admin):
    token = create_access_token(admin.id, admin.role, ttl_seconds=-10)
    resp = client.get("/tasks", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


def test_garbage_token_is_rejected(client):
    resp = client.get("/tasks", headers={"Authorization": "Bearer not-a-token"})
    assert resp.status_code == 401


def test_role_change_makes_token_stale(client, driver, db):
    headers = auth(driver)
    driver.role = UserRole.company_admin.value
    db.commit()
    assert client.get("/tasks", headers=headers).status_code == 401


def test_inactive_user_is_rejected(client, driver, db):
    driver.is_active = False
    db.commit()
    assert client.get("/tasks", headers=auth(driver)).status_code == 401


def test_role_dependencies(client, admin, driver):
    assert client.get("/reports/driver-summary", headers=auth(admin)).status_code == 403
    assert client.get("/vehicles", headers=auth(driver)).status_code == 403
