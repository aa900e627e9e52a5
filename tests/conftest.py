import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app
from models import Budget, Transaction
from repositories import Repositories
from storage import FileStore


def make_txn(id, amount, type="expense", category="food", date="2024-01-05", user_id=None,
             description="Test entry"):
    return Transaction(
        id=id,
        user_id=user_id,
        description=description,
        amount=amount,
        category=category,
        type=type,
        date=date,
        created_at="2024-01-01T00:00:00Z",
    )


def make_budget(id, category, limit, user_id=None):
    return Budget(id=id, user_id=user_id, category=category, limit=limit,
                  created_at="2024-01-01T00:00:00Z")


@pytest.fixture
def store(tmp_path):
    s = FileStore(tmp_path / "data", lock_timeout=10.0)
    s.initialize()
    return s


@pytest.fixture
def repos(store):
    return Repositories(store)


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=str(tmp_path / "api-data"), secret_key="test-secret")


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    resp = client.post("/auth/signup", json={
        "name": "Test User",
        "email": "tester@finance-app.io",
        "password": "secret123",
    })
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
