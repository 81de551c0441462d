from fastapi import Request
from fastapi.responses import PlainTextResponse
from fastapi.testclient import TestClient

from disaster_sync.server.main import create_app
from disaster_sync.server.middleware import RateLimitMiddleware

CITIZEN = {"x-user-id": "citizen1"}


def test_health_endpoint(client):
    """Ensure the health check returns the expected response."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Process-Time-Ms" in response.headers


def test_create_extracts_location_from_description(client):
    resp = client.post("/disasters", json={
        "title": "NYC Flood",
        "description": "Heavy flooding in Lower Manhattan after the storm",
        "tags": ["flood"],
    })
    assert resp.status_code == 201
    body = resp.json()
    assert body["location_name"] == "Lower Manhattan"
    assert body["owner_id"] == "netrunnerX"
    assert body["audit_trail"][0]["action"] == "create"


def test_list_filters_and_orders_newest_first(client, make_disaster):
    make_disaster("Quake", tags=["earthquake"], disaster_type="earthquake")
    make_disaster("Flood", tags=["flood"], disaster_type="flood")
    make_disaster("Fire", tags=["fire"])

    titles = [d["title"] for d in client.get("/disasters").json()]
    assert titles == ["Fire", "Flood", "Quake"]
    assert [d["title"] for d in client.get("/disasters", params={"tag": "flood"}).json()] == ["Flood"]
    assert [d["title"] for d in client.get("/disasters", params={"disaster_type": "earthquake"}).json()] == ["Quake"]
    assert len(client.get("/disasters", params={"limit": 2}).json()) == 2


def test_unknown_disaster_is_404(client):
    resp = client.get("/disasters/nope")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"
    assert client.post("/reports", json={"disaster_id": "nope", "content": "help"}).status_code == 404


def test_only_owner_or_admin_may_modify(client, make_disaster):
    mine = make_disaster("Citizen flood", user="citizen1")
    admins = make_disaster("Admin flood")

    resp = client.put(f"/disasters/{admins['id']}", json={"status": "resolved"}, headers=CITIZEN)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"
    assert client.delete(f"/disasters/{admins['id']}", headers=CITIZEN).status_code == 403

    resp = client.put(f"/disasters/{mine['id']}", json={"status": "monitoring"}, headers=CITIZEN)
    assert resp.status_code == 200
    assert resp.json()["status"] == "monitoring"
    assert resp.json()["audit_trail"][-1]["changes"] == ["status"]

    # Admins may touch anything
    assert client.put(f"/disasters/{mine['id']}", json={"title": "Renamed"}).status_code == 200


def test_delete_then_404(client, make_disaster):
    d = make_disaster()
    assert client.delete(f"/disasters/{d['id']}").status_code == 204
    assert client.get(f"/disasters/{d['id']}").status_code == 404


def test_bulk_update(client, make_disaster):
    a, b = make_disaster("A"), make_disaster("B")

    resp = client.post("/disasters/bulk-update", json={
        "disaster_ids": [a["id"], b["id"], "missing"],
        "updates": {"status": "resolved"},
    })
    assert resp.status_code == 200
    assert resp.json()["updated_count"] == 2
    assert client.get(f"/disasters/{a['id']}").json()["status"] == "resolved"

    empty = client.post("/disasters/bulk-update", json={"disaster_ids": [], "updates": {}})
    assert empty.status_code == 400

    denied = client.post(
        "/disasters/bulk-update",
        json={"disaster_ids": [a["id"]], "updates": {"status": "active"}},
        headers=CITIZEN,
    )
    assert denied.status_code == 403


def test_reports_resources_and_analytics(client, make_disaster):
    d = make_disaster()
    urgent = client.post("/reports", json={"disaster_id": d["id"], "content": "People trapped on roof"}, headers=CITIZEN)
    assert urgent.status_code == 201
    assert urgent.json()["severity"] == "critical"
    client.post("/reports", json={"disaster_id": d["id"], "content": "Minor flooding", "severity": "low"})

    reports = client.get(f"/disasters/{d['id']}/reports").json()
    assert [r["severity"] for r in reports] == ["low", "critical"]

    resp = client.post(f"/disasters/{d['id']}/resources", json={"name": "Red Cross Shelter", "type": "shelter"})
    assert resp.status_code == 201
    assert resp.json()["resource_type"] == "shelter"
    assert len(client.get(f"/disasters/{d['id']}/resources").json()) == 1

    stats = client.get(f"/disasters/{d['id']}/analytics").json()
    assert stats["total_reports"] == 2
    assert stats["severity_distribution"]["critical"] == 1
    assert stats["available_resources"] == 1


def test_feeds_are_stable_per_disaster(client, make_disaster):
    d = make_disaster(tags=["flood", "nyc"])
    first = client.get(f"/disasters/{d['id']}/social-media").json()
    assert len(first) == 5
    assert first == client.get(f"/disasters/{d['id']}/social-media").json()

    official = client.get(f"/disasters/{d['id']}/official-updates").json()
    assert {u["source"] for u in official} == {"FEMA", "Red Cross", "National Weather Service"}


def test_analyze(client):
    resp = client.post("/analyze", json={"text": "Urgent: evacuation near Brooklyn Bridge, flood rising"})
    assert resp.json() == {
        "location_name": "Brooklyn Bridge",
        "severity": "high",
        "keywords": ["flood", "evacuation"],
    }


def test_invalid_body_is_422(client):
    assert client.post("/disasters", json={"title": ""}).status_code == 422


def test_rate_limit():
    app = create_app(rate_limit_window_s=60, rate_limit_max_requests=2)
    with TestClient(app) as client:
        assert client.get("/disasters").status_code == 200
        assert client.get("/disasters").status_code == 200
        resp = client.get("/disasters")
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "RATE_LIMITED"


def test_stats_endpoint(client):
    body = client.get("/stats").json()
    assert body["active_connections"] == 0
    assert body["frames_dropped"] == 0


def _request(ip):
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/disasters",
        "headers": [],
        "query_string": b"",
        "client": (ip, 50000),
    })


async def test_rate_limit_is_tracked_per_client_ip():
    limiter = RateLimitMiddleware(app=None, window_s=60, max_requests=1)

    async def ok(request):
        return PlainTextResponse("ok")

    assert (await limiter.dispatch(_request("10.0.0.1"), ok)).status_code == 200
    assert (await limiter.dispatch(_request("10.0.0.1"), ok)).status_code == 429
    assert (await limiter.dispatch(_request("10.0.0.2"), ok)).status_code == 200


def test_report_image_is_verified_on_create(client, make_disaster):
    d = make_disaster()
    resp = client.post("/reports", json={
        "disaster_id": d["id"],
        "content": "Street under water",
        "image_url": "https://i.imgur.com/flooded-street.jpg",
    }, headers=CITIZEN)
    body = resp.json()
    assert body["verification_status"] == "authentic"
    assert body["verification_details"]["confidence"] == 75
    assert body["verified_by"] == "system"

    plain = client.post("/reports", json={"disaster_id": d["id"], "content": "No photo"}).json()
    assert plain["verification_status"] == "pending"
    assert plain["verification_details"] is None

    stats = client.get(f"/disasters/{d['id']}/analytics").json()
    assert stats["verification_status"]["verified"] == 1
    assert stats["verification_status"]["pending"] == 1


def test_verify_image_updates_matching_reports(client, make_disaster):
    d = make_disaster()
    url = "https://cdn.example.org/fake-flood.png"
    client.post("/reports", json={"disaster_id": d["id"], "content": "Photo of flood", "image_url": url})

    resp = client.post(f"/disasters/{d['id']}/verify-image", json={"image_url": url, "disaster_type": "flood"})
    assert resp.status_code == 200
    verification = resp.json()["verification"]
    assert verification["analysis"] == "suspicious"
    assert verification["image_url"] == url

    report = client.get(f"/disasters/{d['id']}/reports").json()[0]
    assert report["verification_status"] == "suspicious"
    assert report["verified_by"] == "netrunnerX"
    assert client.get(f"/disasters/{d['id']}/analytics").json()["verification_status"]["suspicious"] == 1


def test_verify_image_requires_url(client, make_disaster):
    d = make_disaster()
    resp = client.post(f"/disasters/{d['id']}/verify-image", json={})
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "Image URL is required"
    assert client.post("/disasters/nope/verify-image", json={"image_url": "https://i.imgur.com/x.jpg"}).status_code == 404
