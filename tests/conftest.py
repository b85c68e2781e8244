"""Shared fixtures: in-memory SQLite per test, seeded tenant data, API client"""

import datetime as dt
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DB_LOG_SLOW_QUERIES", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from shiftops.database import Base, get_db, install_sqlite_pragmas, transaction  # noqa: E402
from shiftops.domain.scheduling.repository import ShiftRepository  # noqa: E402
from shiftops.models import Client, Site, Tenant, User  # noqa: E402
from shiftops.security_utils import create_jwt_token  # noqa: E402


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    install_sqlite_pragmas(engine)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def tenant(db):
    tenant = Tenant(name="Acme Cleaning")
    db.add(tenant)
    db.commit()
    return tenant


@pytest.fixture
def other_tenant(db):
    tenant = Tenant(name="Other Co")
    db.add(tenant)
    db.commit()
    return tenant


def _add_user(db, tenant, first_name, last_name, role="OPERATOR", is_manager=False):
    user = User(
        tenant_id=tenant.id,
        email=f"{first_name.lower()}@example.com",
        first_name=first_name,
        last_name=last_name,
        role=role,
        is_manager=is_manager,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def manager(db, tenant):
    return _add_user(db, tenant, "Maria", "Rossi", role="MANAGER")


@pytest.fixture
def alice(db, tenant):
    return _add_user(db, tenant, "Alice", "Martin")


@pytest.fixture
def bob(db, tenant):
    return _add_user(db, tenant, "Bob", "Durand")


@pytest.fixture
def site(db, tenant):
    client = Client(tenant_id=tenant.id, name="City Hall")
    db.add(client)
    db.flush()
    site = Site(tenant_id=tenant.id, client_id=client.id, name="Main building", address="1 Main St")
    db.add(site)
    db.commit()
    return site


@pytest.fixture
def make_shift(db, tenant):
    """Factory inserting a master shift (optionally recurring) and returning its id"""

    def _make(
        title="Morning cleaning",
        date=dt.date(2024, 1, 1),
        recurrence=None,
        operator_ids=(),
        site_ids=(),
        exceptions=(),
        tenant_id=None,
    ):
        with transaction(db):
            shift = ShiftRepository.create_shift(db, tenant_id or tenant.id, title, date)
            if recurrence:
                rule = {"interval": 1, "start_date": date, **recurrence}
                ShiftRepository.create_recurrence(
                    db,
                    shift.id,
                    rule["frequency"],
                    rule["interval"],
                    rule["start_date"],
                    end_date=rule.get("end_date"),
                    count=rule.get("count"),
                )
            ShiftRepository.replace_operators(db, shift.id, operator_ids)
            ShiftRepository.replace_sites(db, shift.id, site_ids)
            for exception in exceptions:
                ShiftRepository.upsert_exception(db, shift.id, **exception)
            shift_id = shift.id
        return shift_id

    return _make


def token_for(user, role=None):
    return create_jwt_token({"sub": user.id, "tenantId": user.tenant_id, "role": role or user.role.lower()})


@pytest.fixture
def api(db):
    from shiftops.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def manager_headers(manager):
    return {"Authorization": f"Bearer {token_for(manager)}"}


@pytest.fixture
def operator_headers(alice):
    return {"Authorization": f"Bearer {token_for(alice)}"}


@pytest.fixture
def headers_for():
    def _headers(user):
        return {"Authorization": f"Bearer {token_for(user)}"}

    return _headers
