from codebridge.core.config import settings
from codebridge.core.database import get_db
from codebridge.main import app


class PingableDB:
    def __init__(self, error=None):
        self.error = error

    async def command(self, name):
        if self.error:
            raise self.error
        return {"ok": 1}


def test_liveness(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == settings.VERSION


def test_readiness_when_database_answers(client):
    app.dependency_overrides[get_db] = lambda: PingableDB()
    response = client.get("/health/ready")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ready"
    assert body["database"] == "UP"
    assert set(body["integrations"]) == {"zoom", "ai", "payments"}


def test_readiness_when_database_down(client):
    app.dependency_overrides[get_db] = lambda: PingableDB(ConnectionError("connection refused"))
    response = client.get("/health/ready")
    assert response.status_code == 503
    assert response.json() == {"status": "unavailable", "database": "DOWN", "message": "Database unreachable"}


def test_root_and_version(client):
    assert client.get("/").status_code == 200
    assert client.get("/version").json()["version"] == settings.VERSION
