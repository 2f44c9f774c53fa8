"""
Fixtures das rotas HTTP.
"""
import pytest
from fastapi.testclient import TestClient

ADMIN = {"X-Actor-Id": "admin-1", "X-Actor-Role": "ADMIN"}
STAFF = {"X-Actor-Id": "staff-1", "X-Actor-Role": "STAFF"}


@pytest.fixture
def app():
    from app.main import app

    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return dict(ADMIN)


@pytest.fixture
def staff_headers():
    return dict(STAFF)


@pytest.fixture(autouse=True)
def segredos_desligados(monkeypatch):
    """Jobs e callbacks abertos, salvo quando o teste liga o segredo."""
    from app.core.config import settings

    monkeypatch.setattr(settings, "CRON_SECRET", "")
    monkeypatch.setattr(settings, "TRANSPORT_WEBHOOK_SECRET", "")
