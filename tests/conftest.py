import pytest
from fastapi.testclient import TestClient

from fintrack.config import Settings
from fintrack.main import create_app


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=str(tmp_path / "data"),
        jwt_secret="test-access-secret",
        jwt_refresh_secret="test-refresh-secret",
        bcrypt_rounds=10,
        static_dir=str(tmp_path / "no-static"),
    )


@pytest.fixture
def app(settings):
    return create_app(settings, start_scheduler=False)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def db(app):
    session = app.state.session_factory()
    yield session
    session.close()


@pytest.fixture
def register(client):
    def _register(username="ana", email=None, password="secret1", **extra):
        body = {"username": username, "email": email or f"{username}@x.com", "password": password}
        body.update(extra)
        resp = client.post("/api/register", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _register


@pytest.fixture
def bearer():
    def _bearer(session):
        return {"Authorization": f"Bearer {session['token']}"}
    return _bearer
