from .conftest import client
from app.main import app
from app.auth import get_current_user

PUBLIC_PATHS = {
    "/api/auth/login",
    "/api/auth/register",
    "/api/auth/request-password-reset",
    "/api/auth/reset-password",
    "/metrics",
}


def test_all_routes_protected():
    for route in app.routes:
        path = getattr(route, 'path', '')
        if not path.startswith('/api'):
            continue
        if path in PUBLIC_PATHS:
            continue
        if not hasattr(route, 'dependant'):
            continue
        deps = [d.call for d in route.dependant.dependencies]
        assert get_current_user in deps, f"{path} missing authentication"


def test_api_routes_registered():
    paths = app.openapi()["paths"]
    for path in (
        "/api/checkouts",
        "/api/checkouts/stats",
        "/api/checkouts/statuses",
        "/api/checkouts/update-overdue",
        "/api/checkouts/{checkout_id}",
        "/api/issues",
        "/api/issues/stats",
        "/api/issues/statuses",
        "/api/issues/priorities",
        "/api/issues/{issue_id}",
        "/api/issues/{issue_id}/take-charge",
        "/api/issues/{issue_id}/mark-as-resolved",
    ):
        assert path in paths
    assert "delete" in paths["/api/equipment/{equipment_id}"]
    assert "delete" in paths["/api/issues/{issue_id}"]


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert b"request_count" in resp.content
