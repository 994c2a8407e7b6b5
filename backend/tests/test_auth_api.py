from examguard.models import UserRole

from conftest import auth_headers, make_user


def register(client, email="new.student@example.com", **extra):
    body = {"full_name": "New Student", "email": email, "password": "longenough"}
    body.update(extra)
    return client.post("/api/v1/auth/register", json=body)


def login(client, email, password="longenough"):
    return client.post("/api/v1/auth/token", data={"username": email, "password": password})


def test_register_defaults_to_student(client):
    response = register(client)
    assert response.status_code == 201
    data = response.json()
    assert data["role"] == "STUDENT"
    assert data["is_superuser"] is False
    assert "hashed_password" not in data


def test_register_teacher(client):
    response = register(client, email="prof@example.com", role="TEACHER")
    assert response.status_code == 201
    assert response.json()["role"] == "TEACHER"


def test_register_duplicate_email(client):
    register(client)
    response = register(client)
    assert response.status_code == 400
    assert response.json()["detail"] == "Email already registered"


def test_duplicate_registration_keeps_first_account(client):
    register(client, role="TEACHER")
    assert register(client, password="another-password").status_code == 400

    assert login(client, "new.student@example.com", password="another-password").status_code == 401
    response = login(client, "new.student@example.com")
    assert response.status_code == 200
    me = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {response.json()['access_token']}"})
    assert me.json()["role"] == "TEACHER"


def test_register_short_password(client):
    assert register(client, password="short").status_code == 422


def test_login_and_me(client):
    register(client)
    response = login(client, "new.student@example.com")
    assert response.status_code == 200
    token = response.json()
    assert token["token_type"] == "bearer"
    assert token["refresh_token"]

    me = client.get("/api/v1/users/me", headers={"Authorization": f"Bearer {token['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "new.student@example.com"


def test_login_wrong_password(client):
    register(client)
    assert login(client, "new.student@example.com", "wrong-password").status_code == 401


def test_refresh_token(client):
    register(client)
    token = login(client, "new.student@example.com").json()

    refreshed = client.post(
        "/api/v1/auth/refresh-token", headers={"Authorization": f"Bearer {token['refresh_token']}"}
    )
    assert refreshed.status_code == 200
    assert refreshed.json()["access_token"]

    # access tokens are not accepted as refresh tokens
    rejected = client.post(
        "/api/v1/auth/refresh-token", headers={"Authorization": f"Bearer {token['access_token']}"}
    )
    assert rejected.status_code == 401


def test_update_me(client, db):
    user = make_user(db, "rename@example.com", UserRole.STUDENT)
    response = client.patch(
        "/api/v1/users/me", json={"full_name": "Renamed Person"}, headers=auth_headers(user)
    )
    assert response.status_code == 200
    assert response.json()["full_name"] == "Renamed Person"


def test_me_requires_token(client):
    assert client.get("/api/v1/users/me").status_code == 401


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["services"]["database"] == "healthy"
    assert data["services"]["cache"] == "disabled"
    assert "X-Process-Time" in response.headers
    assert response.headers["X-Timezone"] == "UTC"
