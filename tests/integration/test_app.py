"""
Integration tests for the HTTP surface.

Covers:
    - POST /slink create-or-fetch, alias handling and error mapping
    - GET /slink/{token} hybrid redirect (302 for browsers, JSON for API clients)
    - GET /slink/{token}/stats and stats.csv exports
    - Backend outages mapped to 503
"""

import csv
import io

from fastapi.testclient import TestClient

from main import create_app
from linkindex.errors import BackendUnavailable
from linkindex.storage.storage import Storage

URL = "https://example.com/"


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_link(client):
    response = client.post("/slink", json={"url": URL})
    data = response.json()

    assert response.status_code == 200
    assert data["original_url"] == URL
    assert data["visit_count"] == 0
    assert data["alias"] is None
    assert len(data["suffix"]) == 11
    assert data["short_url"].endswith(f"/slink/{data['suffix']}")


def test_create_is_idempotent(client):
    first = client.post("/slink", json={"url": URL}).json()
    second = client.post("/slink", json={"url": URL}).json()
    assert first["suffix"] == second["suffix"]


def test_create_invalid_url(client):
    response = client.post("/slink", json={"url": "invalid_url"})
    assert response.status_code == 400
    assert "Invalid URL format" in response.json()["detail"]


def test_create_empty_url(client):
    response = client.post("/slink", json={"url": ""})
    assert response.status_code == 400
    assert "URL is required" in response.json()["detail"]


def test_create_missing_url_is_unprocessable(client):
    assert client.post("/slink", json={"alias": "x"}).status_code == 422


def test_alias_in_use(client):
    assert client.post("/slink", json={"url": URL, "alias": "ex"}).status_code == 200
    response = client.post("/slink", json={"url": "https://other.com/", "alias": "ex"})
    assert response.status_code == 400
    assert "Alias already in use" in response.json()["detail"]


def test_redirect_browser_gets_302(client):
    suffix = client.post("/slink", json={"url": URL}).json()["suffix"]
    response = client.get(f"/slink/{suffix}", headers={"Accept": "text/html"}, follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == URL


def test_redirect_api_client_gets_json(client):
    suffix = client.post("/slink", json={"url": URL}).json()["suffix"]
    response = client.get(f"/slink/{suffix}", headers={"Accept": "application/json"})
    assert response.status_code == 200
    assert response.json() == {"original_url": URL, "visits": 1}


def test_redirect_by_alias(client):
    client.post("/slink", json={"url": URL, "alias": "ex"})
    response = client.get("/slink/ex", headers={"Accept": "application/json"})
    assert response.json()["original_url"] == URL


def test_redirect_unknown(client):
    response = client.get("/slink/no-such-token")
    assert response.status_code == 404
    assert response.json()["detail"] == "Link not found"


def test_stats(client):
    suffix = client.post("/slink", json={"url": URL, "alias": "ex"}).json()["suffix"]
    client.get(f"/slink/{suffix}", headers={"Accept": "application/json"})
    client.get("/slink/ex", headers={"Accept": "application/json"})

    data = client.get(f"/slink/{suffix}/stats").json()
    assert data["suffix"] == suffix
    assert data["alias"] == "ex"
    assert data["visit_count"] == 2
    assert sum(b["count"] for b in data["distribution"]) == 2
    assert set(data["distribution"][0]) == {"from", "to", "count"}


def test_stats_unknown(client):
    assert client.get("/slink/no-such-token/stats").status_code == 404


def test_stats_csv(client):
    suffix = client.post("/slink", json={"url": URL}).json()["suffix"]
    client.get(f"/slink/{suffix}", headers={"Accept": "application/json"})

    response = client.get(f"/slink/{suffix}/stats.csv")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0] == ["from", "to", "count"]
    assert len(rows) == 2
    assert rows[1][2] == "1"


def test_out_of_window_visit_still_redirects(client, clock):
    suffix = client.post("/slink", json={"url": URL}).json()["suffix"]
    clock.advance(days=45)
    response = client.get(f"/slink/{suffix}", headers={"Accept": "application/json"})
    assert response.status_code == 200
    assert response.json() == {"original_url": URL, "visits": 0}
    assert client.get("/analytics/summary").json() == {suffix: {"out_of_range": 1}}


class DownStorage(Storage):
    def get(self, key):
        raise BackendUnavailable("connection refused")


def test_backend_outage_is_503():
    client = TestClient(create_app(storage=DownStorage()))
    assert client.post("/slink", json={"url": URL}).status_code == 503
    assert client.get("/slink/abc").status_code == 503
    assert client.get("/slink/abc/stats").status_code == 503


def test_corrupt_record_is_500(client, store):
    suffix = client.post("/slink", json={"url": URL}).json()["suffix"]
    record = store.get_by_suffix(suffix)
    record.histogram = b"corrupt"
    store.persist(record)
    assert client.get(f"/slink/{suffix}/stats").status_code == 500
