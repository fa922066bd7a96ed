from .conftest import CHROME_MAC, FIREFOX


def visit(client, ip, project="blog", ua=FIREFOX):
    return client.post(
        "/api/visit",
        json={"projectName": project},
        headers={"User-Agent": ua},
        environ_base={"REMOTE_ADDR": ip},
    )


def test_visit_scenario(client, clock):
    resp = visit(client, "1.2.3.4")
    assert resp.status_code == 200
    assert resp.get_json()["uniqueVisitors"] == 1
    assert resp.get_json()["created"] is True

    first_seen = client.get("/api/visit-ip/1.2.3.4").get_json()[0]["lastVisit"]
    clock.advance(minutes=10)
    resp = visit(client, "1.2.3.4")
    assert resp.get_json()["uniqueVisitors"] == 1
    assert client.get("/api/visit-ip/1.2.3.4").get_json()[0]["lastVisit"] > first_seen

    assert visit(client, "5.6.7.8").get_json()["uniqueVisitors"] == 2
    assert client.get("/api/visit/blog").get_json() == {"projectName": "blog", "uniqueVisitors": 2}


def test_visit_uses_forwarded_for(client):
    client.post(
        "/api/visit",
        json={"projectName": "blog"},
        headers={"X-Forwarded-For": "9.9.9.9, 10.0.0.1"},
    )
    assert client.get("/api/visit-ip/9.9.9.9").status_code == 200


def test_visit_without_project_is_bad_request(client):
    resp = client.post("/api/visit", json={"projectName": ""})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Project Name is required"

    assert client.post("/api/visit", data="not json").status_code == 400


def test_pixel(client):
    resp = client.get("/api/pixel.gif?project=blog", environ_base={"REMOTE_ADDR": "1.2.3.4"})
    assert resp.status_code == 200
    assert resp.mimetype == "image/gif"
    assert resp.data.startswith(b"GIF89a")
    assert resp.headers["Cache-Control"].startswith("no-store")
    assert client.get("/api/visit/blog").get_json()["uniqueVisitors"] == 1


def test_batch(client):
    resp = client.post("/api/visits/batch", json={"visits": [
        {"ipAddress": "1.1.1.1", "projectName": "blog"},
        {"ipAddress": "2.2.2.2"},
    ]})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["succeeded"] == 1
    assert body["failed"] == 1

    assert client.post("/api/visits/batch", json={"visits": "nope"}).status_code == 400


def test_all_sentinel_and_totals(client):
    visit(client, "1.1.1.1", "blog")
    visit(client, "2.2.2.2", "shop")
    visit(client, "3.3.3.3", "shop")

    assert client.get("/api/visit/All").get_json()["uniqueVisitors"] == 3
    assert client.get("/api/total-visits").get_json() == [
        {"projectName": "blog", "uniqueVisitors": 1},
        {"projectName": "shop", "uniqueVisitors": 2},
    ]
    assert client.get("/api/visit-growth").get_json() == [{"period": "2024-03", "count": 3}]


def test_trend_routes(client):
    visit(client, "1.1.1.1")
    body = client.get("/api/visit-trend/blog?period=daily").get_json()
    assert body["trend"] == [{"bucket": "2024-03-15", "count": 1}]

    resp = client.get("/api/visit-trend/blog?period=yearly")
    assert resp.status_code == 400
    assert resp.get_json()["details"] == {"period": "yearly"}


def test_unique_visitors_daily(client):
    visit(client, "1.1.1.1")
    body = client.get("/api/unique-visitors-daily/blog?startDate=2024-03-01&endDate=2024-03-31").get_json()
    assert body["dailyActiveUsers"] == [{"date": "2024-03-15", "uniqueVisitors": 1}]
    assert client.get("/api/unique-visitors-daily/blog?startDate=2024-02-30").status_code == 400


def test_visits_by_date(client):
    visit(client, "1.1.1.1")
    body = client.get("/api/visits-by-date?startDate=2024-03-15&endDate=2024-03-15").get_json()
    assert body["visitorCount"] == 1
    assert body["visitors"][0]["ipAddress"] == "1.1.1.1"

    resp = client.get("/api/visits-by-date?startDate=2024-13-01&endDate=2024-01-05")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Invalid date format. Use YYYY-MM-DD"


def test_filter_visit(client):
    visit(client, "1.1.1.1", ua=FIREFOX)
    visit(client, "2.2.2.2", ua=CHROME_MAC)
    visit(client, "3.3.3.3", ua=CHROME_MAC)

    body = client.get("/api/filter-visit?browser=Chrome&projectName=All&limit=1&page=2").get_json()
    assert body["totalCount"] == 2
    assert body["totalPages"] == 2
    assert body["currentPage"] == 2
    assert len(body["visitors"]) == 1


def test_breakdowns_and_active(client):
    visit(client, "1.1.1.1", ua=FIREFOX)
    visit(client, "2.2.2.2", ua=CHROME_MAC)
    visit(client, "3.3.3.3", ua=CHROME_MAC)

    assert client.get("/api/browsers?limit=1").get_json() == [{"browser": "Chrome", "visitorCount": 2}]
    assert client.get("/api/devices").get_json() == [{"device": "Desktop", "visitorCount": 3}]
    assert client.get("/api/locations").get_json() == [{"location": "Unknown", "visitorCount": 3}]
    assert "browserStats" in client.get("/api/browser-os-stats").get_json()

    body = client.get("/api/active-visitors").get_json()
    assert body["activeVisitors"] == 3
    assert body["minutes"] == 5


def test_statistics_route(client):
    assert client.get("/api/visit-statistics/blog").get_json() is None
    visit(client, "1.1.1.1", ua=FIREFOX)
    assert client.get("/api/visit-statistics/blog").get_json()["mostUsedBrowser"] == "Firefox"


def test_visitor_crud(client):
    visit(client, "1.1.1.1")
    visitor = client.get("/api/visits").get_json()[0]

    assert client.get(f"/api/visitor/{visitor['id']}").get_json()["ipAddress"] == "1.1.1.1"

    resp = client.put(f"/api/visit/{visitor['id']}", json={"device": "Tablet"})
    assert resp.status_code == 200
    assert resp.get_json()["device"] == "Tablet"

    assert client.put(f"/api/visit/{visitor['id']}", json={"projectName": "shop"}).status_code == 400

    assert client.delete(f"/api/visit/{visitor['id']}").status_code == 200
    assert client.delete(f"/api/visit/{visitor['id']}").status_code == 404
    assert client.get(f"/api/visitor/{visitor['id']}").status_code == 404
    assert client.get("/api/visit-ip/1.1.1.1").status_code == 404


def test_export(client):
    visit(client, "1.1.1.1")

    assert client.get("/api/export").get_json()[0]["ipAddress"] == "1.1.1.1"

    resp = client.get("/api/export?format=csv")
    assert resp.mimetype == "text/csv"
    lines = resp.get_data(as_text=True).splitlines()
    assert lines[0] == "ipAddress,projectName,browser,device,location,lastVisit"
    assert lines[1].startswith("1.1.1.1,blog,Firefox,Desktop,Unknown,2024-03-15T12:00:00")

    assert client.get("/api/export?format=xml").status_code == 400


def test_store_unavailable_hides_details(app, client, tmp_path):
    app.extensions["visitrack"].store.db_path = str(tmp_path / "gone" / "db.sqlite3")
    resp = visit(client, "1.1.1.1")
    assert resp.status_code == 503
    assert resp.get_json() == {"error": "Visitor store unavailable", "details": None}


def test_unexpected_error_is_opaque(app, client, monkeypatch):
    def boom():
        raise RuntimeError("secret internals")

    monkeypatch.setattr(app.extensions["visitrack"].engine, "growth", boom)
    resp = client.get("/api/visit-growth")
    assert resp.status_code == 500
    assert "secret" not in resp.get_data(as_text=True)


def test_unknown_route_is_404(client):
    assert client.get("/api/nothing-here").status_code == 404


def test_cors_allowlist(client):
    resp = visit(client, "1.1.1.1")
    assert "Access-Control-Allow-Origin" not in resp.headers

    resp = client.options("/api/visit", headers={"Origin": "https://blog.example"})
    assert resp.headers["Access-Control-Allow-Origin"] == "https://blog.example"

    resp = client.options("/api/visit", headers={"Origin": "https://evil.example"})
    assert "Access-Control-Allow-Origin" not in resp.headers


def test_dashboard_and_health(client):
    visit(client, "1.1.1.1")
    resp = client.get("/stats")
    assert resp.status_code == 200
    assert b"<svg" in resp.data
    assert b"Firefox" in resp.data

    assert client.get("/healthz").data == b"ok"
