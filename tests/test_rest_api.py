"""
Tests for the REST API router.

Storage is swapped for an in-memory SQLite backend through FastAPI's
dependency overrides, so no database server is needed.

Run with: pytest tests/test_rest_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from pub_registry.query.server import app
from pub_registry.query.storage_factory import get_storage
from pub_registry.storage.backends.sqlite import SQLiteRegistryStorage

PROF = {"X-Actor-Id": "7", "X-Actor-Role": "professor"}
OTHER = {"X-Actor-Id": "8", "X-Actor-Role": "PROFESSOR"}
STAFF = {"X-Actor-Id": "1", "X-Actor-Role": "STAFF"}


@pytest.fixture
def client():
    storage = SQLiteRegistryStorage(":memory:")

    def override_storage():
        yield storage

    app.dependency_overrides[get_storage] = override_storage
    yield TestClient(app)
    app.dependency_overrides.clear()
    storage.close()


def create(client, title="On Graphs", year=2021, headers=PROF, **extra):
    body = {"title": title, "year": year, "authors": [{"full_name": "Ana Smith", "role": "LEAD", "user_id": 7}], **extra}
    response = client.post("/api/v1/publications", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["pub_id"]


class TestBasics:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_identity_headers_are_required(self, client):
        assert client.get("/api/v1/publications/search").status_code == 401
        assert client.get("/api/v1/publications/search", headers={"X-Actor-Id": "7", "X-Actor-Role": "dean"}).status_code == 401


class TestPublications:
    def test_submit_and_get(self, client):
        pub_id = create(client, categories=["Graphs"])

        response = client.get(f"/api/v1/publications/{pub_id}", headers=PROF)

        assert response.status_code == 200
        data = response.json()
        assert data["title"] == "On Graphs"
        assert data["status"] == "draft"
        assert data["authors"][0]["full_name"] == "Ana Smith"
        assert data["categories"] == ["Graphs"]

    def test_duplicate_returns_existing_id(self, client):
        pub_id = create(client)

        response = client.post("/api/v1/publications", json={"title": "ON GRAPHS", "year": 2021}, headers=PROF)

        assert response.status_code == 409
        assert response.json()["detail"]["existing_id"] == pub_id

    def test_not_found(self, client):
        assert client.get("/api/v1/publications/999", headers=PROF).status_code == 404

    def test_patch_and_history(self, client):
        pub_id = create(client)

        response = client.patch(f"/api/v1/publications/{pub_id}", json={"year": 2022, "abstract_edit": {"append": "Text."}}, headers=PROF)

        assert response.status_code == 200
        assert sorted(response.json()["changed_fields"]) == ["abstract", "year"]
        history = client.get(f"/api/v1/publications/{pub_id}/history", headers=PROF).json()
        assert {entry["field_name"] for entry in history} == {"abstract", "year"}

    def test_patch_leaves_omitted_fields(self, client):
        pub_id = create(client, abstract="Kept.")

        client.patch(f"/api/v1/publications/{pub_id}", json={"title": "Renamed"}, headers=PROF)

        data = client.get(f"/api/v1/publications/{pub_id}", headers=PROF).json()
        assert (data["title"], data["abstract"], data["year"]) == ("Renamed", "Kept.", 2021)

    def test_other_professor_cannot_patch(self, client):
        pub_id = create(client)

        response = client.patch(f"/api/v1/publications/{pub_id}", json={"title": "Mine now"}, headers=OTHER)

        assert response.status_code == 403

    def test_delete(self, client):
        pub_id = create(client)

        assert client.delete(f"/api/v1/publications/{pub_id}", headers=PROF).status_code == 204
        assert client.get(f"/api/v1/publications/{pub_id}", headers=PROF).status_code == 404


class TestWorkflow:
    def test_status_and_review(self, client):
        pub_id = create(client)

        response = client.post(f"/api/v1/publications/{pub_id}/status", json={"status": "under_review"}, headers=PROF)
        assert response.status_code == 200
        assert response.json()["current"] == "under_review"

        assert client.post(f"/api/v1/publications/{pub_id}/review", json={"action": "approve"}, headers=PROF).status_code == 403

        response = client.post(f"/api/v1/publications/{pub_id}/review", json={"action": "request", "note": "More data"}, headers=STAFF)
        assert response.json()["current"] == "needs_revision"

        history = client.get(f"/api/v1/publications/{pub_id}/status-history", headers=PROF).json()
        assert [h["status"] for h in history] == ["under_review", "needs_revision"]

        notices = client.get("/api/v1/notifications", headers=PROF).json()
        assert [(n["pub_id"], n["latest_note"]) for n in notices] == [(pub_id, "More data")]

    def test_professor_cannot_publish(self, client):
        pub_id = create(client)
        client.post(f"/api/v1/publications/{pub_id}/status", json={"status": "under_review"}, headers=PROF)

        response = client.post(f"/api/v1/publications/{pub_id}/status", json={"status": "published"}, headers=PROF)

        assert response.status_code == 403

    def test_unknown_status(self, client):
        pub_id = create(client)

        response = client.post(f"/api/v1/publications/{pub_id}/status", json={"status": "accepted"}, headers=PROF)

        assert response.status_code == 422

    def test_published_cannot_be_deleted(self, client):
        pub_id = create(client)
        client.post(f"/api/v1/publications/{pub_id}/status", json={"status": "published"}, headers=STAFF)

        assert client.delete(f"/api/v1/publications/{pub_id}", headers=STAFF).status_code == 403

    def test_diff_is_staff_only(self, client):
        pub_id = create(client)
        client.patch(f"/api/v1/publications/{pub_id}", json={"title": "Second"}, headers=PROF)

        assert client.get(f"/api/v1/publications/{pub_id}/diff?from=0&to=1", headers=PROF).status_code == 403
        rows = client.get(f"/api/v1/publications/{pub_id}/diff?from=0&to=1", headers=STAFF).json()
        assert rows == [{"field": "title", "old": "On Graphs", "next": "Second", "changed": True}]

    def test_edit_activity(self, client):
        pub_id = create(client)
        client.patch(f"/api/v1/publications/{pub_id}", json={"title": "Second"}, headers=PROF)

        assert client.get("/api/v1/edits", headers=PROF).status_code == 403
        activity = client.get("/api/v1/edits", params={"q": "second"}, headers=STAFF).json()
        assert [(a["pub_id"], a["pub_title"]) for a in activity] == [(pub_id, "Second")]


class TestSearch:
    @pytest.fixture
    def seeded(self, client):
        p1 = create(client, "Graph Indexing", 2021, categories=["Databases"])
        p2 = create(client, "Random Walks", 2020, headers=OTHER)
        client.post(f"/api/v1/publications/{p1}/status", json={"status": "published"}, headers=STAFF)
        return p1, p2

    def test_search_with_repeated_and_comma_params(self, client, seeded):
        p1, p2 = seeded

        response = client.get("/api/v1/publications/search", params=[("status", "draft,published"), ("authors", "smith")], headers=STAFF)

        data = response.json()
        assert data["total"] == 2
        assert [row["pub_id"] for row in data["rows"]] == [p1, p2]

    def test_malformed_params_are_ignored(self, client, seeded):
        response = client.get(
            "/api/v1/publications/search",
            params={"year_from": "abc", "page": "-3", "page_size": "1000", "has_attachment": "perhaps"},
            headers=STAFF,
        )

        assert response.status_code == 200
        data = response.json()
        assert (data["total"], data["page"], data["page_size"]) == (2, 1, 50)

    def test_mine(self, client, seeded):
        p1, p2 = seeded

        data = client.get("/api/v1/publications/search", params={"mine": "true"}, headers=OTHER).json()

        assert [row["pub_id"] for row in data["rows"]] == [p2]

    def test_public_search_needs_no_identity(self, client, seeded):
        p1, _ = seeded

        data = client.get("/api/v1/public/publications/search").json()

        assert [row["pub_id"] for row in data["rows"]] == [p1]

    def test_report_and_facets(self, client, seeded):
        staff_report = client.get("/api/v1/publications/report", headers=STAFF).json()
        assert staff_report["totals"]["all"] == 2
        assert staff_report["totals"]["published"] == 1

        own_report = client.get("/api/v1/publications/report", headers=OTHER).json()
        assert own_report["totals"]["all"] == 1

        facets = client.get("/api/v1/publications/facets", headers=STAFF).json()
        assert facets == [{"name": "Databases", "count": 1}]


class TestPeople:
    def test_lookup(self, client):
        create(client, "A", authors=[{"full_name": "Ana Smith", "email": "ana@x.org"}, {"full_name": "Cy Smithers"}])

        assert client.get("/api/v1/people", params={"q": "smith"}).status_code == 401
        data = client.get("/api/v1/people", params={"q": "SMITH"}, headers=PROF).json()

        assert [(p["full_name"], p["email"]) for p in data] == [("Ana Smith", "ana@x.org"), ("Cy Smithers", None)]
        assert set(data[0]) == {"person_id", "full_name", "email"}

    def test_blank_query_and_bad_limit(self, client):
        create(client)

        assert client.get("/api/v1/people", headers=PROF).json() == []
        assert client.get("/api/v1/people", params={"q": "a", "limit": 0}, headers=PROF).status_code == 422


class TestCatalogues:
    def test_categories(self, client):
        assert client.post("/api/v1/categories", json={"category_name": "Graphs"}, headers=PROF).status_code == 403

        created = client.post("/api/v1/categories", json={"category_name": "Graphs"}, headers=STAFF)
        assert created.status_code == 201
        category_id = created.json()["category_id"]

        response = client.patch(f"/api/v1/categories/{category_id}", json={"status": "INACTIVE"}, headers=STAFF)
        assert response.json()["status"] == "INACTIVE"
        assert [c["category_name"] for c in client.get("/api/v1/categories").json()] == ["Graphs"]

    def test_venues(self, client):
        created = client.post("/api/v1/venues", json={"type": "JOURNAL", "name": "J. Data"}, headers=STAFF)
        assert created.status_code == 201

        assert client.get("/api/v1/venues", params={"q": "data"}).json() == [created.json()]
