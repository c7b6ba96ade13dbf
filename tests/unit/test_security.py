from unittest.mock import MagicMock

import jwt
import pytest
from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.testclient import TestClient

from delivery_workflow import config
from delivery_workflow.core import security
from delivery_workflow.core.security import AuthenticatedUser, get_current_active_user, require_roles
from delivery_workflow.db_models.enums import Role

SECRET = "unit-test-secret-with-enough-entropy-0123"


@pytest.fixture(autouse=True)
def hs256_settings(monkeypatch):
    monkeypatch.setattr(config, "JWT_SECRET", SECRET)
    monkeypatch.setattr(config, "JWT_ALGORITHM", "HS256")
    monkeypatch.setattr(config, "JWT_AUDIENCE", None)
    monkeypatch.setattr(config, "JWT_ISSUER", None)
    monkeypatch.setattr(config, "JWT_JWKS_URL", None)


@pytest.fixture
def secured_app():
    app = FastAPI()

    @app.get("/me")
    async def me(user: AuthenticatedUser = Depends(get_current_active_user)):
        return {"user_id": user.user_id, "role": user.role, "company_id": user.company_id}

    @app.get("/admin")
    async def admin(user: AuthenticatedUser = Depends(require_roles(Role.SUPER_ADMIN))):
        return {"user_id": user.user_id}

    return TestClient(app)


def token_for(**claims):
    return jwt.encode(claims, SECRET, algorithm="HS256")


def test_bearer_token_resolves_user(secured_app):
    token = token_for(sub="pm-1", preferred_username="pm.one", role="pm", company_id="acme")

    response = secured_app.get("/me", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 200
    assert response.json() == {"user_id": "pm-1", "role": "PM", "company_id": "acme"}


def test_cookie_token_is_accepted(secured_app):
    token = token_for(sub="eng-1", realm_access={"roles": ["offline", "engineer"]})

    response = secured_app.get("/me", headers={"Cookie": f"access_token={token}"})

    assert response.status_code == 200
    assert response.json()["role"] == "ENGINEER"


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "Bearer not-a-jwt"},
    {"Authorization": "Bearer " + jwt.encode({"sub": "pm-1"}, "another-secret-with-enough-entropy-4567", algorithm="HS256")},
    {"Authorization": "Bearer " + jwt.encode({"preferred_username": "nobody"}, SECRET, algorithm="HS256")},
])
def test_invalid_credentials_are_unauthorized(secured_app, headers):
    response = secured_app.get("/me", headers=headers)

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.headers["www-authenticate"] == "Bearer"


def test_require_roles_rejects_other_roles(secured_app):
    pm_token = token_for(sub="pm-1", role="PM")
    admin_token = token_for(sub="admin-1", role="SUPER_ADMIN")

    assert secured_app.get("/admin", headers={"Authorization": f"Bearer {pm_token}"}).status_code == 403
    assert secured_app.get("/admin", headers={"Authorization": f"Bearer {admin_token}"}).status_code == 200


def test_unknown_role_claim_leaves_role_empty():
    assert security._role_from_claims({"role": "auditor", "realm_access": {"roles": ["uma_authorization"]}}) is None


def test_jwks_keys_are_tried_in_turn(monkeypatch):
    from cryptography.hazmat.primitives.asymmetric import rsa
    from jwt.algorithms import RSAAlgorithm

    signing_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwks = {"keys": [
        {**RSAAlgorithm.to_jwk(other_key.public_key(), as_dict=True), "kid": "old"},
        {**RSAAlgorithm.to_jwk(signing_key.public_key(), as_dict=True), "kid": "current"},
    ]}
    monkeypatch.setattr(config, "JWT_JWKS_URL", "https://idp.example.com/certs")
    mock_get = MagicMock()
    mock_get.return_value.json.return_value = jwks
    monkeypatch.setattr(security.requests, "get", mock_get)

    token = jwt.encode({"sub": "pjm-1", "role": "PROJECT_MANAGER"}, signing_key, algorithm="RS256")
    claims = security.decode_token(token)

    assert claims["sub"] == "pjm-1"
    mock_get.assert_called_once_with("https://idp.example.com/certs", timeout=10)


def test_jwks_rejects_foreign_signature(monkeypatch):
    from cryptography.hazmat.primitives.asymmetric import rsa
    from jwt.algorithms import RSAAlgorithm

    published = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    attacker = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    monkeypatch.setattr(config, "JWT_JWKS_URL", "https://idp.example.com/certs")
    monkeypatch.setattr(security, "get_signing_keys",
                        lambda: {"keys": [RSAAlgorithm.to_jwk(published.public_key(), as_dict=True)]})

    with pytest.raises(jwt.InvalidTokenError):
        security.decode_token(jwt.encode({"sub": "x"}, attacker, algorithm="RS256"))


@pytest.mark.asyncio
async def test_disabled_user_is_rejected():
    user = AuthenticatedUser(user_id="u1", username="u1", disabled=True)

    with pytest.raises(HTTPException) as exc_info:
        await get_current_active_user(user)

    assert exc_info.value.status_code == 400
