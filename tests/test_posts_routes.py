"""Route tests for the greeting, health and post endpoints."""

import pytest
from fastapi.testclient import TestClient


def test_root_returns_greeting(client: TestClient) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert response.text == "Hello, World!"
    assert response.headers["content-type"].startswith("text/plain")


def test_health_returns_healthy(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.text == "Healthy"


class TestListPosts:
    """GET /tasks/"""

    @pytest.mark.parametrize(
        "query",
        ["", "?title=a", "?content=b", "?title=a&content=b", "?unknown=1"],
    )
    def test_filters_do_not_change_result(self, client: TestClient, query: str) -> None:
        response = client.get(f"/tasks/{query}")

        assert response.status_code == 200
        assert response.json() == {"id": 1}

    def test_anonymous_access_allowed(self, client: TestClient) -> None:
        assert client.get("/tasks/").status_code == 200


class TestCreatePost:
    """POST /tasks/"""

    def test_creates_with_title_only(self, client: TestClient) -> None:
        response = client.post("/tasks/", json={"title": "A", "content": None})

        assert response.status_code == 200
        assert response.json() == {"id": 2}

    def test_creates_with_title_and_content(self, client: TestClient) -> None:
        response = client.post("/tasks/", json={"title": "A", "content": "body"})

        assert response.status_code == 200
        assert response.json() == {"id": 2}

    def test_property_names_are_case_insensitive(self, client: TestClient) -> None:
        response = client.post("/tasks/", json={"Title": "A", "CONTENT": "body"})

        assert response.status_code == 200
        assert response.json() == {"id": 2}

    @pytest.mark.parametrize(
        "body",
        [{"title": ""}, {"content": "no title"}, {"title": None}],
    )
    def test_invalid_body_is_rejected(self, client: TestClient, body: dict) -> None:
        response = client.post("/tasks/", json=body)

        assert response.status_code == 422

    def test_malformed_json_is_rejected(self, client: TestClient) -> None:
        response = client.post(
            "/tasks/",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 422

    def test_authenticated_caller_is_accepted(self, client: TestClient, make_token) -> None:
        response = client.post(
            "/tasks/",
            json={"title": "A"},
            headers={"Authorization": f"Bearer {make_token()}"},
        )

        assert response.status_code == 200
        assert response.json() == {"id": 2}
