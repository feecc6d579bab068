from datetime import timedelta

from app.date_utils import utc_now


def future(days: int = 3) -> str:
    return (utc_now() + timedelta(days=days)).isoformat() + "Z"


def create_task(client, headers, **overrides):
    body = {
        "title": "Evening walk",
        "description": "Around the lake",
        "category": "nature",
        "dueDate": future(),
    }
    body.update(overrides)
    response = client.post("/api/tasks", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestHealth:
    def test_root(self, client):
        assert client.get("/").status_code == 200

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["success"] is True
        assert body["services"]["database"] is True


class TestAuthFlow:
    def test_register_and_login(self, client):
        response = client.post("/api/users/register", json={
            "name": "Henry",
            "email": "Henry@Example.com",
            "password": "secret123",
            "confirmPassword": "secret123",
        })
        assert response.status_code == 201
        data = response.json()["data"]
        assert data["email"] == "henry@example.com"
        assert data["role"] == "user"
        assert "password" not in data

        login = client.post("/api/auth/login", json={"email": "henry@example.com", "password": "secret123"})
        assert login.status_code == 200
        assert login.json()["data"]["accessToken"]
        assert "refreshToken" in login.cookies

    def test_validation_errors_use_error_envelope(self, client):
        response = client.post("/api/users/register", json={"name": "Ivy", "email": "not-an-email", "password": "123"})
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        paths = {source["path"] for source in body["errorSources"]}
        assert {"email", "password"} <= paths

    def test_duplicate_registration(self, client, user):
        response = client.post("/api/users/register", json={
            "name": "Alice",
            "email": "alice@example.com",
            "password": "secret123",
        })
        assert response.status_code == 409
        assert response.json()["success"] is False

    def test_refresh_from_cookie(self, client, user, login):
        login(user.email, "secret123")
        response = client.post("/api/auth/refresh-token")
        assert response.status_code == 200
        assert response.json()["data"]["accessToken"]

    def test_refresh_without_token(self, client):
        response = client.post("/api/auth/refresh-token")
        assert response.status_code == 401

    def test_swagger_token_form(self, client, user):
        response = client.post("/api/auth/token", data={"username": user.email, "password": "secret123"})
        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["name"] == "alice"

    def test_missing_and_invalid_tokens(self, client):
        assert client.get("/api/users/profile").status_code == 401
        response = client.get("/api/users/profile", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["message"] == "Invalid or expired token"

    def test_deactivated_user_is_forbidden(self, client, user, auth_headers, admin_headers):
        response = client.patch(f"/api/users/{user.id}/status", json={"isActive": False}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["isActive"] is False

        assert client.get("/api/users/profile", headers=auth_headers).status_code == 403

    def test_change_password(self, client, user, auth_headers):
        response = client.patch("/api/users/change-password", json={
            "oldPassword": "secret123",
            "newPassword": "newsecret1",
            "confirmPassword": "newsecret1",
        }, headers=auth_headers)
        assert response.status_code == 200

        old = client.post("/api/auth/login", json={"email": user.email, "password": "secret123"})
        assert old.status_code == 401


class TestUsers:
    def test_profile_roundtrip(self, client, auth_headers):
        response = client.patch(
            "/api/users/profile",
            json={"name": "Alice Cooper", "profileImage": "https://img.example.com/a.png"},
            headers=auth_headers,
        )
        assert response.status_code == 200

        profile = client.get("/api/users/profile", headers=auth_headers).json()["data"]
        assert profile["name"] == "Alice Cooper"
        assert profile["profileImage"] == "https://img.example.com/a.png"

    def test_admin_routes_require_admin(self, client, auth_headers):
        assert client.get("/api/users", headers=auth_headers).status_code == 403

    def test_admin_lists_and_rewards(self, client, user, admin_headers, auth_headers):
        listing = client.get("/api/users", params={"role": "user"}, headers=admin_headers).json()
        assert [row["email"] for row in listing["data"]] == [user.email]
        assert listing["meta"]["total"] == 1

        response = client.patch(f"/api/users/{user.id}/points", json={"points": 50}, headers=admin_headers)
        assert response.json()["data"]["points"] == 50

        stats = client.get("/api/users/stats", headers=auth_headers).json()["data"]
        assert stats["totalPoints"] == 50

    def test_admin_rejects_non_positive_points(self, client, user, admin_headers):
        response = client.patch(f"/api/users/{user.id}/points", json={"points": 0}, headers=admin_headers)
        assert response.status_code == 400

    def test_admin_deletes_user(self, client, user, admin_headers):
        assert client.delete(f"/api/users/{user.id}", headers=admin_headers).status_code == 200
        assert client.delete(f"/api/users/{user.id}", headers=admin_headers).status_code == 404


class TestTasks:
    def test_create_defaults(self, client, auth_headers):
        task = create_task(client, auth_headers)
        assert task["points"] == 10
        assert task["status"] == "pending"
        assert task["completedAt"] is None

    def test_due_date_must_be_in_future(self, client, auth_headers):
        response = client.post("/api/tasks", json={
            "title": "Late",
            "description": "Already overdue",
            "category": "nature",
            "dueDate": (utc_now() - timedelta(days=1)).isoformat(),
        }, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["errorSources"][0]["path"] == "dueDate"

    def test_unknown_category_is_rejected(self, client, auth_headers):
        response = client.post("/api/tasks", json={
            "title": "Glue",
            "description": "Paper crafts",
            "category": "arts-crafts",
        }, headers=auth_headers)
        assert response.status_code == 400

    def test_list_with_query_params(self, client, auth_headers):
        create_task(client, auth_headers, title="Swim laps", category="sport", points=30)
        create_task(client, auth_headers, title="Forest walk", category="nature", points=5)
        create_task(client, auth_headers, title="Call dad", category="family", points=15)

        response = client.get(
            "/api/tasks",
            params={"category": "sport,family", "sort": "-points", "fields": "title,points", "limit": "1"},
            headers=auth_headers,
        )
        body = response.json()
        assert body["meta"] == {"page": 1, "limit": 1, "total": 2, "totalPages": 2}
        assert body["data"][0]["title"] == "Swim laps"
        assert set(body["data"][0]) == {"id", "title", "points"}

    def test_invalid_filter_value(self, client, auth_headers):
        response = client.get("/api/tasks", params={"status": "finished"}, headers=auth_headers)
        assert response.status_code == 400
        assert "finished" in response.json()["message"]

    def test_status_changes_move_points(self, client, auth_headers):
        task = create_task(client, auth_headers, points=40)

        done = client.patch(f"/api/tasks/{task['id']}/status", json={"status": "done"}, headers=auth_headers)
        assert done.json()["data"]["completedAt"] is not None
        assert client.get("/api/users/profile", headers=auth_headers).json()["data"]["points"] == 40

        client.patch(f"/api/tasks/{task['id']}/status", json={"status": "pending"}, headers=auth_headers)
        assert client.get("/api/users/profile", headers=auth_headers).json()["data"]["points"] == 0

        stats = client.get("/api/tasks/stats", headers=auth_headers).json()["data"]
        assert stats["pending"] == 1
        assert stats["totalPoints"] == 0

    def test_crud_and_ownership(self, client, auth_headers, make_user, login):
        task = create_task(client, auth_headers)

        updated = client.put(f"/api/tasks/{task['id']}", json={"title": "Lake walk"}, headers=auth_headers)
        assert updated.json()["data"]["title"] == "Lake walk"

        make_user("mallory")
        other_headers = login("mallory@example.com", "secret123")
        assert client.get(f"/api/tasks/{task['id']}", headers=other_headers).status_code == 404

        assert client.delete(f"/api/tasks/{task['id']}", headers=auth_headers).status_code == 200
        assert client.get(f"/api/tasks/{task['id']}", headers=auth_headers).status_code == 404

    def test_category_routes(self, client, auth_headers):
        create_task(client, auth_headers, category="meditation")
        create_task(client, auth_headers, category="nature")

        by_category = client.get("/api/tasks/category/meditation", headers=auth_headers).json()["data"]
        assert [task["category"] for task in by_category] == ["meditation"]

        breakdown = client.get("/api/tasks/stats/categories", headers=auth_headers).json()["data"]
        assert {row["category"] for row in breakdown} == {"meditation", "nature"}

    def test_bad_task_id(self, client, auth_headers):
        assert client.get("/api/tasks/abc", headers=auth_headers).status_code == 400


class TestSpin:
    def test_spin_and_complete(self, client, auth_headers):
        task = create_task(client, auth_headers, category="friends", points=25)

        spun = client.post("/api/spin", json={"categories": ["friends"]}, headers=auth_headers)
        assert spun.status_code == 200
        data = spun.json()["data"]
        assert data["task"]["id"] == task["id"]
        assert data["isNew"] is True

        again = client.post("/api/spin", json={"categories": ["friends"]}, headers=auth_headers).json()["data"]
        assert again["spinResult"]["id"] == data["spinResult"]["id"]

        completed = client.post(
            "/api/spin/complete",
            json={"spinResultId": data["spinResult"]["id"]},
            headers=auth_headers,
        )
        assert completed.status_code == 200
        assert completed.json()["data"]["pointsEarned"] == 25
        assert completed.json()["data"]["task"]["id"] == task["id"]

        repeat = client.post(
            "/api/spin/complete",
            json={"spinResultId": data["spinResult"]["id"]},
            headers=auth_headers,
        )
        assert repeat.status_code == 404

        profile = client.get("/api/users/profile", headers=auth_headers).json()["data"]
        assert profile["points"] == 25

    def test_empty_selection(self, client, auth_headers):
        response = client.post("/api/spin", json={"categories": []}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Please select at least one category to spin the wheel."

    def test_history_pending_and_delete(self, client, auth_headers):
        create_task(client, auth_headers, category="sport")
        spin_id = client.post("/api/spin", json={"categories": ["sport"]}, headers=auth_headers).json()["data"]["spinResult"]["id"]

        pending = client.get("/api/spin/pending", headers=auth_headers).json()["data"]
        assert [spin["id"] for spin in pending] == [spin_id]

        history = client.get("/api/spin/history", params={"completed": "false"}, headers=auth_headers).json()
        assert history["meta"]["total"] == 1
        assert history["data"]["stats"]["totalSpins"] == 1

        by_category = client.get("/api/spin/stats/categories", headers=auth_headers).json()["data"]
        assert by_category[0]["category"] == "sport"

        assert client.delete(f"/api/spin/{spin_id}", headers=auth_headers).status_code == 200
        assert client.delete(f"/api/spin/{spin_id}", headers=auth_headers).status_code == 404

    def test_responses_hide_row_version(self, client, auth_headers):
        task = create_task(client, auth_headers, category="family")
        assert "version" not in task

        fetched = client.get(f"/api/tasks/{task['id']}", headers=auth_headers).json()["data"]
        assert "version" not in fetched

        listed = client.get("/api/tasks", params={"fields": "version"}, headers=auth_headers).json()["data"]
        assert listed == [{"id": task["id"]}]

        spun = client.post("/api/spin", json={"categories": ["family"]}, headers=auth_headers).json()["data"]
        assert "version" not in spun["spinResult"]

        completed = client.post(
            "/api/spin/complete",
            json={"spinResultId": spun["spinResult"]["id"]},
            headers=auth_headers,
        ).json()["data"]
        assert "version" not in completed

    def test_invalid_spin_result_id(self, client, auth_headers):
        response = client.post("/api/spin/complete", json={"spinResultId": 0}, headers=auth_headers)
        assert response.status_code == 400
