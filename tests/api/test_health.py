"""
Tests for the health check endpoint.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from audit_trail.main import app
from audit_trail.models.base import get_db


def test_health_check_reports_healthy(client):
    """
    A reachable database gives an overall "healthy" status.

    Monitoring systems parse these fields, so the service name
    and shape are checked too.
    """
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "service": "audit-trail-service",
        "database": "healthy",
    }


def test_health_check_reports_degraded_database(client):
    """
    An unreachable database is reported, not raised.

    The load balancer still gets a 200 with "degraded" so it can
    decide what to do instead of seeing a server error.
    """
    engine = create_engine("sqlite:////nonexistent-dir/audit/broken.db")
    broken = sessionmaker(bind=engine)()
    app.dependency_overrides[get_db] = lambda: broken

    response = client.get("/health")

    broken.close()
    engine.dispose()
    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["database"] == "unhealthy"
