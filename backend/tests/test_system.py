"""
Health endpoint tests.
"""

from sqlalchemy.exc import OperationalError

from invoicedesk.routes import system


def test_health_ok(client, db_session):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json["status"] == "healthy"
    assert resp.json["checks"]["database"]["status"] == "healthy"


def test_health_database_down(client, db_session, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("unable to open database file"))

    monkeypatch.setattr(system, "text", broken)

    resp = client.get("/health")

    assert resp.status_code == 503
    assert resp.json["status"] == "unhealthy"
    assert resp.json["checks"]["database"]["error"] == "Database error"
