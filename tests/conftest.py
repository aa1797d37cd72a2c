import pytest
from fastapi.testclient import TestClient

from factories import CLIENT_ID, OTHER_CLIENT_ID, PARTNER_ID, SPECIALIST_ID, fixed_clock
from main import app, get_clock, get_store
from models import Actor, Profile, Role
from store import InMemoryRecordStore


@pytest.fixture
def store():
    store = InMemoryRecordStore()
    store.add_profile(Profile(id=CLIENT_ID, full_name="Ana Client"))
    store.add_profile(Profile(id=OTHER_CLIENT_ID, full_name="Bruno Client"))
    store.add_profile(Profile(id=PARTNER_ID, full_name="Oficina Central"))
    store.add_profile(Profile(id=SPECIALIST_ID, full_name="Carla Specialist"))
    store.assign_specialist(SPECIALIST_ID, CLIENT_ID)
    return store


@pytest.fixture
def partner():
    return Actor(user_id=PARTNER_ID, role=Role.PARTNER)


@pytest.fixture
def specialist():
    return Actor(user_id=SPECIALIST_ID, role=Role.SPECIALIST)


@pytest.fixture
def admin():
    return Actor(user_id="admin-1", role=Role.ADMIN)


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_clock] = lambda: fixed_clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
