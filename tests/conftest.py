import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("TZ_DEFAULT", "Europe/London")
os.environ.setdefault("RATE_LIMIT", "10000/minute")

from datetime import datetime, date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from myfleet.auth.security import create_access_token
from myfleet.db import Base, get_db
from myfleet.main import app
from myfleet.models.enums import TaskStatus, UserRole
from myfleet.models.models import Company, Task, User
from myfleet.services.time_rules import FixedClock, get_clock


# Wednesday
TODAY = date(2025, 1, 8)


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db(engine):
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)()
    yield session
    session.close()


@pytest.fixture()
def clock():
    return FixedClock(datetime(2025, 1, 8, 10, 0))


@pytest.fixture()
def client(db, clock):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def company(db):
    company = Company(name="Acme Logistics", address="1 High Street\nLondon")
    db.add(company)
    db.commit()
    return company


@pytest.fixture()
def other_company(db):
    company = Company(name="Rival Couriers")
    db.add(company)
    db.commit()
    return company


def _user(db, company, personal_id, name, role, rating=3.0):
    user = User(
        company_id=company.id if company else None,
        personal_id=personal_id,
        name=name,
        email=f"{personal_id.lower()}@example.com",
        role=role.value,
        rating=rating,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def admin(db, company):
    return _user(db, company, "ADM1", "Alice Admin", UserRole.company_admin)


@pytest.fixture()
def driver(db, company):
    return _user(db, company, "DRV1", "Dan Driver", UserRole.driver)


@pytest.fixture()
def driver2(db, company):
    return _user(db, company, "DRV2", "Eve Driver", UserRole.driver, rating=4.5)


@pytest.fixture()
def outsider(db, other_company):
    return _user(db, other_company, "OUT1", "Oscar Outsider", UserRole.company_admin)


def auth(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role)}"}


@pytest.fixture()
def make_task(db, company, admin):
    def _make(scheduled_date=TODAY, price="50.00", status=TaskStatus.pending, assigned_to=None, title="Route A", **extra):
        task = Task(
            company_id=company.id,
            title=title,
            scheduled_date=scheduled_date,
            price=Decimal(price),
            status=status.value,
            assigned_to_id=assigned_to.id if assigned_to else None,
            created_by_id=admin.id,
            **extra,
        )
        if status == TaskStatus.completed:
            task.completed_at = datetime(2025, 1, 8, 12, 0)
        db.add(task)
        db.commit()
        return task

    return _make
