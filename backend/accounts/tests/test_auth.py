import pytest
from django.contrib.auth import get_user_model

User = get_user_model()


def _register(api_client, **overrides):
    payload = {
        "email": "New@Example.com",
        "password": "password123",
        "first_name": "New",
        "last_name": "Parent",
    }
    payload.update(overrides)
    return api_client.post("/api/auth/register/", payload, format="json")


def _login(api_client, email, password="password123"):
    return api_client.post("/api/auth/login/", {"email": email, "password": password}, format="json")


@pytest.mark.django_db
def test_register_parent_returns_tokens(api_client):
    response = _register(api_client)

    assert response.status_code == 201
    body = response.json()
    assert body["user"]["email"] == "new@example.com"
    assert body["user"]["user_type"] == User.PARENT
    assert body["user"]["display_name"] == "New Parent"
    assert body["user"]["has_payout_account"] is False
    assert "access" in body and "refresh" in body


@pytest.mark.django_db
def test_register_provider_uses_business_name(api_client):
    response = _register(
        api_client,
        email="studio@example.com",
        user_type=User.PROVIDER,
        business_name="Little Art Studio",
    )

    assert response.status_code == 201
    assert response.json()["user"]["public_name"] == "Little Art Studio"
    assert User.objects.get(email="studio@example.com").is_provider


@pytest.mark.django_db
def test_provider_needs_business_name(api_client):
    response = _register(api_client, email="studio@example.com", user_type=User.PROVIDER)

    assert response.status_code == 400
    assert "business_name" in response.json()


@pytest.mark.django_db
def test_parent_cannot_claim_business_name(api_client):
    response = _register(api_client, business_name="Not A Business")

    assert response.status_code == 400
    assert "business_name" in response.json()


@pytest.mark.django_db
def test_register_rejects_unknown_user_type(api_client):
    response = _register(api_client, user_type="ADMIN")

    assert response.status_code == 400
    assert "user_type" in response.json()


@pytest.mark.django_db
def test_register_with_existing_email_is_rejected(api_client, parent):
    response = _register(api_client, email="PARENT@example.com")

    assert response.status_code == 400
    assert "email" in response.json()


@pytest.mark.django_db
def test_login_is_case_insensitive_on_email(api_client, parent):
    response = _login(api_client, "Parent@Example.com")

    assert response.status_code == 200
    data = response.json()
    assert set(data.keys()) == {"access", "refresh", "user"}
    assert data["user"]["public_name"] == "Priya Parent"


@pytest.mark.django_db
def test_login_with_wrong_password_fails(api_client, parent):
    assert _login(api_client, parent.email, "wrongpass").status_code == 401


@pytest.mark.django_db
def test_refresh_issues_new_access_token(api_client, parent):
    refresh = _login(api_client, parent.email).json()["refresh"]

    response = api_client.post("/api/auth/refresh/", {"refresh": refresh}, format="json")

    assert response.status_code == 200
    assert "access" in response.json()


@pytest.mark.django_db
def test_me_requires_authentication(api_client):
    assert api_client.get("/api/auth/me/").status_code == 401


@pytest.mark.django_db
def test_provider_connects_payout_account(api_client, provider):
    provider.stripe_account_id = ""
    provider.save(update_fields=["stripe_account_id"])
    api_client.force_authenticate(provider)

    response = api_client.patch("/api/auth/me/", {"stripe_account_id": "acct_1Splash"}, format="json")

    assert response.status_code == 200
    assert response.json()["has_payout_account"] is True
    assert "stripe_account_id" not in response.json()
    provider.refresh_from_db()
    assert provider.stripe_account_id == "acct_1Splash"


@pytest.mark.django_db
def test_payout_account_must_look_like_connected_account(api_client, provider):
    api_client.force_authenticate(provider)

    response = api_client.patch("/api/auth/me/", {"stripe_account_id": "sk_live_oops"}, format="json")

    assert response.status_code == 400
    assert "stripe_account_id" in response.json()


@pytest.mark.django_db
def test_parent_cannot_set_payout_account(api_client, parent):
    api_client.force_authenticate(parent)

    response = api_client.patch("/api/auth/me/", {"stripe_account_id": "acct_123"}, format="json")

    assert response.status_code == 400


@pytest.mark.django_db
def test_parent_updates_display_name(api_client, parent):
    api_client.force_authenticate(parent)

    response = api_client.patch("/api/auth/me/", {"display_name": "Priya P."}, format="json")

    assert response.status_code == 200
    assert response.json()["display_name"] == "Priya P."
