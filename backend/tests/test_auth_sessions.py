from datetime import datetime, timedelta, timezone

from conftest import STRONG_PASSWORD, FakeClock, build_test_client, make_settings
from app.models.user import User
from app.services.tokens import ACCESS_TOKEN, REFRESH_TOKEN, TokenCodec


def _register(client, email="alice@example.com", password=STRONG_PASSWORD, **extra):
    return client.post("/api/auth/register", json={"email": email, "password": password, **extra})


def _login(client, email="alice@example.com", password=STRONG_PASSWORD):
    return client.post("/api/auth/login", json={"email": email, "password": password})


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def test_register_then_me_returns_profile():
    client, _ = build_test_client()

    register_response = _register(client, name="Alice")
    assert register_response.status_code == 201
    data = register_response.json()
    assert data["accessToken"]
    assert data["refreshToken"]
    assert data["expiresIn"] == 15 * 60
    assert data["user"]["email"] == "alice@example.com"
    assert data["user"]["name"] == "Alice"
    assert "passwordHash" not in data["user"]
    assert "password_hash" not in data["user"]

    me_response = client.get("/api/auth/me", headers=_bearer(data["accessToken"]))
    assert me_response.status_code == 200
    assert me_response.json()["user"]["email"] == "alice@example.com"


def test_register_normalizes_email_and_rejects_duplicates_case_insensitively():
    client, testing_session_local = build_test_client()

    assert _register(client, email="Bob@Example.COM").status_code == 201
    duplicate = _register(client, email="bob@example.com")

    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "AlreadyExists"
    db = testing_session_local()
    try:
        assert db.query(User).filter(User.email == "bob@example.com").count() == 1
    finally:
        db.close()


def test_register_weak_password_lists_violated_rules():
    client, _ = build_test_client()

    response = _register(client, password="short")

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "PolicyViolation"
    assert body["details"][0].startswith("Password must be at least 8")
    assert len(body["details"]) == 4


def test_register_invalid_shape_is_a_validation_failure():
    client, _ = build_test_client()

    missing_password = client.post("/api/auth/register", json={"email": "carol@example.com"})
    bad_email = _register(client, email="not-an-email")

    assert missing_password.status_code == 400
    assert missing_password.json()["error"] == "ValidationFailed"
    assert bad_email.status_code == 400
    assert bad_email.json()["error"] == "ValidationFailed"


def test_registration_is_limited_per_address():
    client, _ = build_test_client()

    for index in range(3):
        assert _register(client, email=f"user{index}@example.com").status_code == 201

    blocked = _register(client, email="user9@example.com")
    assert blocked.status_code == 429
    assert blocked.json()["error"] == "RateLimited"
    assert int(blocked.headers["retry-after"]) > 0


def test_login_success_returns_fresh_pair():
    client, _ = build_test_client()
    registered = _register(client).json()

    response = _login(client, email="ALICE@example.com")

    assert response.status_code == 200
    data = response.json()
    assert data["user"]["id"] == registered["user"]["id"]
    assert data["accessToken"] != registered["accessToken"]


def test_login_unknown_email_and_wrong_password_are_indistinguishable():
    client, _ = build_test_client()
    _register(client)

    unknown = _login(client, email="nobody@example.com")
    wrong = _login(client, password="Wr0ng!Pass")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()
    assert wrong.json()["error"] == "InvalidCredentials"


def test_login_locks_out_after_five_failures_until_window_elapses():
    clock = FakeClock()
    client, _ = build_test_client(clock=clock)
    _register(client)

    for _ in range(5):
        response = _login(client, password="Wr0ng!Pass")
        assert response.status_code == 401
        assert response.json()["error"] == "InvalidCredentials"

    blocked = _login(client, password="Wr0ng!Pass")
    assert blocked.status_code == 429
    assert blocked.json()["error"] == "RateLimited"

    # Correct credentials do not bypass the block.
    assert _login(client).status_code == 429

    clock.advance(15 * 60 + 1)
    assert _login(client).status_code == 200


def test_refresh_issues_new_pair():
    client, _ = build_test_client()
    registered = _register(client).json()

    response = client.post("/api/auth/refresh", json={"refreshToken": registered["refreshToken"]})

    assert response.status_code == 200
    data = response.json()
    assert data["refreshToken"] != registered["refreshToken"]
    assert data["accessToken"] != registered["accessToken"]
    assert data["user"]["email"] == "alice@example.com"
    assert client.get("/api/auth/me", headers=_bearer(data["accessToken"])).status_code == 200


def test_refresh_rejects_access_token():
    client, _ = build_test_client()
    registered = _register(client).json()

    response = client.post("/api/auth/refresh", json={"refreshToken": registered["accessToken"]})

    assert response.status_code == 401
    assert response.json()["error"] == "InvalidToken"


def test_refresh_with_expired_token_reports_session_expired():
    settings = make_settings()
    client, _ = build_test_client(settings=settings)
    user_id = _register(client).json()["user"]["id"]
    codec = TokenCodec.from_settings(settings)
    long_ago = datetime.now(timezone.utc) - timedelta(days=30)
    expired = codec.issue(user_id, REFRESH_TOKEN, settings.refresh_token_ttl_seconds, now=long_ago)

    response = client.post("/api/auth/refresh", json={"refreshToken": expired})

    assert response.status_code == 401
    assert response.json()["error"] == "SessionExpired"


def test_refresh_for_deleted_user_is_invalid():
    client, testing_session_local = build_test_client()
    registered = _register(client).json()
    db = testing_session_local()
    try:
        db.query(User).delete()
        db.commit()
    finally:
        db.close()

    response = client.post("/api/auth/refresh", json={"refreshToken": registered["refreshToken"]})

    assert response.status_code == 401
    assert response.json()["error"] == "InvalidToken"


def test_me_rejects_missing_garbage_and_expired_tokens():
    settings = make_settings()
    client, _ = build_test_client(settings=settings)
    user_id = _register(client).json()["user"]["id"]
    codec = TokenCodec.from_settings(settings)
    expired = codec.issue(user_id, ACCESS_TOKEN, 60, now=datetime.now(timezone.utc) - timedelta(hours=1))

    assert client.get("/api/auth/me").status_code == 401
    garbage = client.get("/api/auth/me", headers=_bearer("not.a.token"))
    assert garbage.status_code == 401
    assert garbage.json()["error"] == "InvalidToken"
    expired_response = client.get("/api/auth/me", headers=_bearer(expired))
    assert expired_response.status_code == 401
    assert expired_response.json()["error"] == "SessionExpired"


def test_change_password_then_login_with_new_password():
    client, _ = build_test_client()
    access_token = _register(client).json()["accessToken"]

    response = client.put(
        "/api/auth/change-password",
        headers=_bearer(access_token),
        json={"currentPassword": STRONG_PASSWORD, "newPassword": "N3w!Secret"},
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Password changed successfully"}
    assert _login(client).status_code == 401
    assert _login(client, password="N3w!Secret").status_code == 200
    # Existing tokens remain valid until they expire.
    assert client.get("/api/auth/me", headers=_bearer(access_token)).status_code == 200


def test_change_password_to_common_password_is_policy_violation():
    client, _ = build_test_client()
    access_token = _register(client).json()["accessToken"]

    response = client.put(
        "/api/auth/change-password",
        headers=_bearer(access_token),
        json={"currentPassword": STRONG_PASSWORD, "newPassword": "password123"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "PolicyViolation"
    assert "Password is too common, please choose a stronger one" in body["details"]


def test_change_password_with_wrong_current_password():
    client, _ = build_test_client()
    access_token = _register(client).json()["accessToken"]

    response = client.put(
        "/api/auth/change-password",
        headers=_bearer(access_token),
        json={"currentPassword": "Wr0ng!Pass", "newPassword": "N3w!Secret"},
    )

    assert response.status_code == 401
    assert response.json()["error"] == "InvalidPassword"


def test_change_password_rejects_unchanged_password():
    client, _ = build_test_client()
    access_token = _register(client).json()["accessToken"]

    response = client.put(
        "/api/auth/change-password",
        headers=_bearer(access_token),
        json={"currentPassword": STRONG_PASSWORD, "newPassword": STRONG_PASSWORD},
    )

    assert response.status_code == 400
    assert response.json()["details"] == ["New password must be different from the current password"]


def test_change_password_requires_authentication():
    client, _ = build_test_client()

    response = client.put(
        "/api/auth/change-password",
        json={"currentPassword": STRONG_PASSWORD, "newPassword": "N3w!Secret"},
    )

    assert response.status_code == 401


def test_logout_is_idempotent_and_does_not_touch_other_sessions():
    client, _ = build_test_client()
    first = _register(client).json()
    second = _login(client).json()

    for _ in range(3):
        response = client.post("/api/auth/logout", headers=_bearer(first["accessToken"]))
        assert response.status_code == 200
        assert response.json()["message"] == "Logout successful"

    assert client.get("/api/auth/me", headers=_bearer(second["accessToken"])).status_code == 200
    refreshed = client.post("/api/auth/refresh", json={"refreshToken": second["refreshToken"]})
    assert refreshed.status_code == 200


def test_one_address_is_throttled_across_many_accounts():
    client, _ = build_test_client()

    statuses = [
        _login(client, email=f"victim{index}@example.com", password="Wr0ng!Pass").status_code
        for index in range(8)
    ]

    assert statuses[:5] == [401] * 5
    assert statuses[5:] == [429] * 3


def test_successful_logins_do_not_use_up_the_address_allowance():
    client, _ = build_test_client()
    _register(client)

    statuses = [_login(client).status_code for _ in range(8)]

    assert statuses == [200] * 8


def test_forwarded_header_from_untrusted_peer_is_ignored():
    client, _ = build_test_client()

    statuses = [
        client.post(
            "/api/auth/register",
            json={"email": f"user{index}@example.com", "password": STRONG_PASSWORD},
            headers={"X-Forwarded-For": f"203.0.113.{index}"},
        ).status_code
        for index in range(5)
    ]

    assert statuses == [201, 201, 201, 429, 429]


def test_forwarded_header_from_trusted_proxy_identifies_client():
    client, _ = build_test_client(make_settings(trusted_proxies=["testclient"]))

    statuses = [
        client.post(
            "/api/auth/register",
            json={"email": f"user{index}@example.com", "password": STRONG_PASSWORD},
            headers={"X-Forwarded-For": f"203.0.113.{index}"},
        ).status_code
        for index in range(5)
    ]

    assert statuses == [201] * 5


def test_malformed_registrations_count_toward_the_limit():
    client, _ = build_test_client()

    for email in ["not-an-email", "", "still@bad"]:
        response = _register(client, email=email)
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationFailed"

    blocked = _register(client, email="carol@example.com")
    assert blocked.status_code == 429
