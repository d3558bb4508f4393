"""End-to-end tests for the user management routes."""

from __future__ import annotations

import json
import re

from fastapi.testclient import TestClient

from useradmin.database import Database
from useradmin.models import Role

JSON = {"accept": "application/json"}


def _page_from_html(text: str) -> dict:
    match = re.search(
        r"<script id=\"page-data\" type=\"application/json\">(.*?)</script>",
        text,
        re.DOTALL,
    )
    assert match is not None
    return json.loads(match.group(1))


def test_anonymous_requests_are_redirected_to_login(app) -> None:
    with TestClient(app) as client:
        response = client.get("/users", follow_redirects=False)
        assert response.status_code == 303
        assert response.headers["location"].endswith("/login")

        api = client.get("/users", headers=JSON)
        assert api.status_code == 401


def test_non_admin_users_are_forbidden(app, database: Database) -> None:
    database.create_user("Plain User", "plain@example.com", Role.USER, password="plain-user-password")

    with TestClient(app) as client:
        client.post(
            "/login",
            data={"email": "plain@example.com", "password": "plain-user-password"},
            follow_redirects=False,
        )
        response = client.get("/users")
        assert response.status_code == 403
        assert "You do not have permission to manage users." in response.text


def test_index_embeds_page_payload(client: TestClient, database: Database) -> None:
    database.create_user("Grace Hopper", "grace@example.com")

    client.cookies.set("appearance", "dark")
    response = client.get("/users?search=grace")

    assert response.status_code == 200
    assert '<html lang="en" class="dark"' in response.text
    assert "<title>Users - User Admin</title>" in response.text
    page = _page_from_html(response.text)
    assert page["component"] == "Users/UserIndexServerSide"
    props = page["props"]
    assert props["totalRecords"] == 1
    assert props["perPage"] == 10
    assert props["users"]["data"][0]["email"] == "grace@example.com"
    assert "password_hash" not in props["users"]["data"][0]


def test_index_json_applies_filters_sort_and_pagination(client: TestClient, database: Database) -> None:
    for n in range(23):
        database.create_user(f"Member {n:02d}", f"member{n:02d}@example.com")

    response = client.get(
        "/users",
        params={"search": "member", "sortField": "name", "sortOrder": "-1", "perPage": "20", "page": "2"},
        headers=JSON,
    )

    assert response.status_code == 200
    props = response.json()["props"]
    assert props["totalRecords"] == 23
    assert props["perPage"] == 20
    users = props["users"]
    assert users["current_page"] == 2
    assert users["last_page"] == 2
    assert [row["name"] for row in users["data"]] == ["Member 02", "Member 01", "Member 00"]
    assert users["next_page_url"] is None
    assert "page=1" in users["prev_page_url"]


def test_invalid_per_page_and_sort_field_degrade_gracefully(client: TestClient, database: Database) -> None:
    for n in range(12):
        database.create_user(f"Member {n:02d}", f"member{n:02d}@example.com")

    response = client.get(
        "/users",
        params={"perPage": "1000", "sortField": "password_hash", "sortOrder": "1"},
        headers=JSON,
    )

    assert response.status_code == 200
    props = response.json()["props"]
    assert props["perPage"] == 10
    assert len(props["users"]["data"]) == 10
    assert props["filters"]["sortField"] is None


def test_create_redirects_back_with_flash(
    client: TestClient,
    database: Database,
    setup_links,
) -> None:
    response = client.post(
        "/users",
        data={"name": "Ada Lovelace", "email": "ada@example.com", "role": "user"},
        headers={"referer": "http://testserver/users?page=1"},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"] == "http://testserver/users?page=1"
    assert database.get_user_by_email("ada@example.com") is not None

    assert len(setup_links) == 1
    user, url = setup_links[0]
    assert user.email == "ada@example.com"
    assert url.startswith("http://testserver/password/setup/")

    props = client.get("/users", headers=JSON).json()["props"]
    assert props["flash"] == [{"message": "User created successfully.", "category": "success"}]

    again = client.get("/users", headers=JSON).json()["props"]
    assert again["flash"] == []


def test_create_validation_errors_keep_old_input(client: TestClient, database: Database) -> None:
    response = client.post(
        "/users",
        data={"name": "A", "email": "not-an-email", "role": "owner"},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert response.headers["location"].endswith("/users")
    assert database.count_users() == 1

    props = client.get("/users", headers=JSON).json()["props"]
    assert set(props["errors"]) == {"name", "email", "role"}
    assert props["old"] == {"name": "A", "email": "not-an-email", "role": "owner"}


def test_json_clients_receive_unprocessable_entity(client: TestClient) -> None:
    response = client.post(
        "/users",
        json={"name": "Ada", "email": "admin@example.com", "role": "user"},
        headers=JSON,
        follow_redirects=False,
    )

    assert response.status_code == 422
    body = response.json()
    assert body["message"] == "The given data was invalid."
    assert body["errors"] == {"email": ["The email has already been taken."]}


def test_update_user(client: TestClient, database: Database) -> None:
    user = database.create_user("Ada", "ada@example.com")

    response = client.put(
        f"/users/{user.id}",
        json={"name": "Ada King", "email": "ada@example.com", "role": "admin"},
        follow_redirects=False,
    )

    assert response.status_code == 303
    refreshed = database.get_user(user.id)
    assert refreshed is not None
    assert refreshed.name == "Ada King"
    assert refreshed.role is Role.ADMIN

    props = client.get("/users", headers=JSON).json()["props"]
    assert props["flash"][0]["message"] == "User updated successfully."


def test_update_to_taken_email_fails(client: TestClient, database: Database) -> None:
    first = database.create_user("First", "a@x.com")
    database.create_user("Second", "b@x.com")

    response = client.patch(
        f"/users/{first.id}",
        json={"name": "First", "email": "b@x.com", "role": "user"},
        headers=JSON,
    )

    assert response.status_code == 422
    assert "email" in response.json()["errors"]
    assert database.get_user(first.id).email == "a@x.com"


def test_update_and_delete_missing_user_return_404(client: TestClient, database: Database) -> None:
    before = database.count_users()

    update = client.put("/users/9999", json={"name": "Ghost", "email": "g@example.com", "role": "user"})
    delete = client.delete("/users/9999")

    assert update.status_code == 404
    assert delete.status_code == 404
    assert database.count_users() == before


def test_delete_user(client: TestClient, database: Database) -> None:
    user = database.create_user("Ada", "ada@example.com")

    response = client.delete(f"/users/{user.id}", follow_redirects=False)

    assert response.status_code == 303
    assert database.get_user(user.id) is None
    props = client.get("/users", headers=JSON).json()["props"]
    assert props["flash"][0]["message"] == "User deleted successfully."


def test_bulk_delete_is_all_or_nothing(client: TestClient, database: Database) -> None:
    users = [database.create_user(f"User {n}", f"user{n}@example.com") for n in range(5)]
    ids = [user.id for user in users]
    before = database.count_users()

    rejected = client.post(
        "/users/bulk-delete",
        json={"ids": ids + [777777]},
        headers=JSON,
    )
    assert rejected.status_code == 422
    assert rejected.json()["errors"] == {"ids.5": ["The selected ids.5 is invalid."]}
    assert database.count_users() == before

    accepted = client.request(
        "DELETE",
        "/users/bulk-delete",
        json={"ids": ids},
        follow_redirects=False,
    )
    assert accepted.status_code == 303
    assert database.count_users() == before - 5

    props = client.get("/users", headers=JSON).json()["props"]
    assert props["flash"][0]["message"] == "Users deleted successfully."


def test_bulk_delete_accepts_form_arrays(client: TestClient, database: Database) -> None:
    first = database.create_user("One", "one@example.com")
    second = database.create_user("Two", "two@example.com")

    response = client.post(
        "/users/bulk-delete",
        data={"ids[]": [str(first.id), str(second.id)]},
        follow_redirects=False,
    )

    assert response.status_code == 303
    assert database.get_user(first.id) is None
    assert database.get_user(second.id) is None


def test_bulk_delete_requires_ids(client: TestClient) -> None:
    response = client.post("/users/bulk-delete", json={}, headers=JSON)

    assert response.status_code == 422
    assert response.json()["errors"] == {"ids": ["The ids field is required."]}


def test_reissue_setup_link(client: TestClient, database: Database, setup_links) -> None:
    user = database.create_user("Ada", "ada@example.com")

    response = client.post(f"/users/{user.id}/setup-link", follow_redirects=False)

    assert response.status_code == 303
    assert setup_links[-1][0].id == user.id
    missing = client.post("/users/424242/setup-link", follow_redirects=False)
    assert missing.status_code == 404


def test_bulk_delete_rejects_scalar_ids(client: TestClient, database: Database) -> None:
    user = database.create_user("One", "one@example.com")

    api = client.post("/users/bulk-delete", json={"ids": user.id}, headers=JSON)
    assert api.status_code == 422
    assert api.json()["errors"] == {"ids": ["The ids field must be an array."]}

    form = client.post("/users/bulk-delete", data={"ids": str(user.id)}, follow_redirects=False)
    assert form.status_code == 303
    assert database.get_user(user.id) is not None

    props = client.get("/users", headers=JSON).json()["props"]
    assert props["errors"] == {"ids": ["The ids field must be an array."]}
