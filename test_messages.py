"""
Tests for the /api/messages endpoints.

Tests cover:
- POST /api/messages: creation, trimming, validation (400)
- GET /api/messages: empty list, ordering, count
- GET /api/messages/{id}: found, not found (404), bad id (400)
- DELETE /api/messages/{id}: deleted, already absent (404)
- End-to-end guestbook scenario
"""

from datetime import datetime

import pytest


def post_message(client, name="Ada", email="ada@example.com", message="hello"):
    """Helper to create a message via the API and return its data."""
    response = client.post(
        "/api/messages",
        json={"name": name, "email": email, "message": message},
    )
    assert response.status_code == 201
    return response.json()["data"]


def parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class TestCreateMessage:
    """Test POST /api/messages."""

    def test_create_message_success(self, client):
        response = client.post(
            "/api/messages",
            json={"name": "Ada", "email": "ada@example.com", "message": "hello"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Message created successfully"
        data = body["data"]
        assert isinstance(data["id"], int) and data["id"] > 0
        assert data["name"] == "Ada"
        assert data["email"] == "ada@example.com"
        assert data["message"] == "hello"

    def test_message_shape_and_timestamps(self, client):
        data = post_message(client)

        assert set(data) == {"id", "name", "email", "message", "created_at", "updated_at"}
        created_at = parse_timestamp(data["created_at"])
        assert created_at.tzinfo is not None
        assert data["created_at"] == data["updated_at"]

    def test_fields_are_trimmed(self, client):
        data = post_message(client, name="  Ada  ", email=" ada@example.com ", message="\n hello \t")

        assert data["name"] == "Ada"
        assert data["email"] == "ada@example.com"
        assert data["message"] == "hello"

    def test_email_format_not_validated(self, client):
        data = post_message(client, email="not-an-email")
        assert data["email"] == "not-an-email"

    def test_ids_increase(self, client):
        first = post_message(client)["id"]
        second = post_message(client)["id"]
        assert second > first

    @pytest.mark.parametrize(
        "payload",
        [
            {"name": "", "email": "a@b.com", "message": "hi"},
            {"name": "Ada", "email": "   ", "message": "hi"},
            {"name": "Ada", "email": "a@b.com", "message": ""},
            {"email": "a@b.com", "message": "hi"},
            {"name": "Ada", "message": "hi"},
            {"name": "Ada", "email": "a@b.com"},
            {},
        ],
    )
    def test_missing_fields_rejected(self, client, payload):
        response = client.post("/api/messages", json=payload)

        assert response.status_code == 400
        assert response.json() == {
            "success": False,
            "error": "Validation failed",
            "message": "All fields (name, email, message) are required",
        }
        assert client.get("/api/messages").json()["count"] == 0

    def test_name_too_long(self, client):
        response = client.post(
            "/api/messages",
            json={"name": "n" * 256, "email": "a@b.com", "message": "hi"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Name must be less than 255 characters"

    def test_email_too_long(self, client):
        response = client.post(
            "/api/messages",
            json={"name": "Ada", "email": "e" * 256, "message": "hi"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Email must be less than 255 characters"

    def test_max_length_accepted(self, client):
        data = post_message(client, name="n" * 255, email="e" * 255)
        assert len(data["name"]) == 255

    def test_wrong_field_type_rejected(self, client):
        response = client.post(
            "/api/messages",
            json={"name": 123, "email": "a@b.com", "message": "hi"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Validation failed"
        assert "name" in body["message"]
        assert client.get("/api/messages").json()["count"] == 0

    def test_invalid_json_rejected(self, client):
        response = client.post(
            "/api/messages",
            content="{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"


class TestListMessages:
    """Test GET /api/messages."""

    def test_empty_database(self, client):
        response = client.get("/api/messages")

        assert response.status_code == 200
        assert response.json() == {"success": True, "count": 0, "data": []}

    def test_newest_first(self, client):
        for name in ["first", "second", "third"]:
            post_message(client, name=name)

        body = client.get("/api/messages").json()

        assert body["count"] == 3
        assert [m["name"] for m in body["data"]] == ["third", "second", "first"]
        timestamps = [parse_timestamp(m["created_at"]) for m in body["data"]]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_response_includes_request_id_header(self, client):
        response = client.get("/api/messages")

        assert response.status_code == 200
        assert "x-request-id" in response.headers


class TestGetMessage:
    """Test GET /api/messages/{id}."""

    def test_get_existing(self, client):
        created = post_message(client)

        response = client.get(f"/api/messages/{created['id']}")

        assert response.status_code == 200
        assert response.json() == {"success": True, "data": created}

    def test_get_never_existed(self, client):
        response = client.get("/api/messages/999999")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "Not found",
            "message": "Message not found",
        }

    def test_id_beyond_integer_range(self, client):
        response = client.get("/api/messages/99999999999999999999")

        assert response.status_code == 404
        assert response.json()["message"] == "Message not found"

    def test_non_integer_id(self, client):
        response = client.get("/api/messages/abc")

        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"


class TestDeleteMessage:
    """Test DELETE /api/messages/{id}."""

    def test_delete_existing(self, client):
        created = post_message(client)

        response = client.delete(f"/api/messages/{created['id']}")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Message deleted successfully"}
        assert client.get(f"/api/messages/{created['id']}").status_code == 404

    def test_delete_twice(self, client):
        created = post_message(client)
        client.delete(f"/api/messages/{created['id']}")

        response = client.delete(f"/api/messages/{created['id']}")

        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "Not found",
            "message": "Message not found",
        }


    def test_delete_id_beyond_integer_range(self, client):
        post_message(client)

        response = client.delete("/api/messages/99999999999999999999")

        assert response.status_code == 404
        assert response.json()["message"] == "Message not found"
        assert client.get("/api/messages").json()["count"] == 1


class TestGuestbookScenario:
    """Submit, list, delete, list again."""

    def test_full_lifecycle(self, client):
        response = client.post(
            "/api/messages",
            json={"name": "Ada", "email": "ada@example.com", "message": "hello"},
        )
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["id"] > 0
        assert data["name"] == "Ada"

        assert client.get("/api/messages").json()["count"] == 1

        assert client.delete(f"/api/messages/{data['id']}").status_code == 200

        assert client.get("/api/messages").json()["count"] == 0
