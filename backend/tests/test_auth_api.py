import pytest
from fastapi.testclient import TestClient

from gearmarket.api.deps import get_auth_service
from gearmarket.core.database import get_db
from gearmarket.main import app
from gearmarket.services.auth_service import RESET_EMAIL_SENT_MESSAGE


@pytest.fixture
def client(session_factory, auth):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_auth_service] = lambda: auth.service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _register(client, email="a@x.com", nickname="alice"):
    return client.post(
        "/api/v1/auth/register",
        json={
            "email": email,
            "password": "Secret1!",
            "nickname": nickname,
            "agree_terms": True,
            "agree_privacy": True,
        },
    )


def test_register_verify_and_me(client):
    response = _register(client)
    assert response.status_code == 201
    token = response.json()["verification_token"]

    verified = client.get(f"/api/v1/auth/verify-email/{token}")
    assert verified.status_code == 200
    body = verified.json()
    assert body["verified"] is True

    me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {body['access_token']}"})
    assert me.status_code == 200
    assert me.json()["email"] == "a@x.com"

    again = client.get(f"/api/v1/auth/verify-email/{token}")
    assert again.status_code == 400
    assert again.json()["success"] is False
    assert again.json()["error"] == "Invalid or expired verification link"


def test_duplicate_registration_conflicts(client):
    _register(client)
    response = _register(client, nickname="bob")
    assert response.status_code == 409
    assert response.json()["error"] == "Email already exists"


def test_invalid_payload_uses_error_envelope(client):
    response = client.post("/api/v1/auth/register", json={"email": "not-an-email", "password": "x"})
    assert response.status_code == 422
    body = response.json()
    assert body["success"] is False
    fields = {error["field"] for error in body["details"]["errors"]}
    assert "body.email" in fields
    assert "body.nickname" in fields


def test_unverified_login_is_forbidden_with_token_details(client):
    token = _register(client).json()["verification_token"]

    response = client.post("/api/v1/auth/login", json={"email": "a@x.com", "password": "Secret1!"})

    assert response.status_code == 403
    assert response.json()["details"]["verification_token"] == token
    assert response.json()["details"]["remaining_cooldown"] == 60


def test_forgot_password_escalation_over_http(client):
    url = "/api/v1/auth/forgot-password"
    payload = {"email": "ghost@x.com"}

    for _ in range(2):
        response = client.post(url, json=payload)
        assert response.status_code == 200
        assert response.json() == {"message": RESET_EMAIL_SENT_MESSAGE}

    challenged = client.post(url, json=payload)
    assert challenged.status_code == 400
    assert challenged.json()["details"]["challenge_required"] is True

    limited = client.post(url, json=payload)
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == "3600"
    assert limited.json()["details"]["retry_after"] == 3600


def test_refresh_and_logout_over_http(client):
    token = _register(client).json()["verification_token"]
    pair = client.get(f"/api/v1/auth/verify-email/{token}").json()

    rotated = client.post("/api/v1/auth/refresh", json={"refresh_token": pair["refresh_token"]})
    assert rotated.status_code == 200
    new_refresh = rotated.json()["refresh_token"]

    logout = client.post("/api/v1/auth/logout", json={"refresh_token": new_refresh})
    assert logout.json() == {"message": "Logout successful"}

    reused = client.post("/api/v1/auth/refresh", json={"refresh_token": new_refresh})
    assert reused.status_code == 400


def test_availability_endpoints(client):
    _register(client)
    taken = client.post("/api/v1/auth/check-email", json={"email": "A@x.com"})
    free = client.post("/api/v1/auth/check-nickname", json={"nickname": "bob"})
    assert taken.json() == {"available": False}
    assert free.json() == {"available": True}


def test_me_requires_bearer_token(client):
    response = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401


def test_metrics_count_rejections(client):
    client.post("/api/v1/auth/login", json={"email": "nobody@x.com", "password": "nope"})

    body = client.get("/metrics").text
    assert "gearmarket_http_requests_total" in body
    assert 'gearmarket_auth_failures_total{error="InvalidCredentialsError"}' in body


def test_responses_carry_security_headers(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.headers["Cache-Control"] == "no-store"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Request-ID"]
