"""Unit and route tests for bearer token authentication."""

import time

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from app.core.app_factory import create_app
from app.core.auth import (
    JwksSigningKeyResolver,
    Principal,
    TokenValidator,
    collect_roles,
    extract_bearer_token,
)
from app.core.config import AuthSettings
from app.core.errors import AuthenticationAppError, ConfigurationAppError


class TestExtractBearerToken:
    """Test Authorization header parsing."""

    def test_extracts_token(self) -> None:
        assert extract_bearer_token("Bearer abc.def.ghi") == "abc.def.ghi"

    def test_scheme_is_case_insensitive(self) -> None:
        assert extract_bearer_token("bearer abc") == "abc"

    def test_other_schemes_are_ignored(self) -> None:
        assert extract_bearer_token("Basic dXNlcjpwYXNz") is None

    def test_missing_or_empty_token(self) -> None:
        assert extract_bearer_token(None) is None
        assert extract_bearer_token("") is None
        assert extract_bearer_token("Bearer   ") is None


class TestCollectRoles:
    """Test role extraction from claims."""

    def test_collects_from_all_locations(self) -> None:
        claims = {
            "roles": ["reader"],
            "role": "writer",
            "realm_access": {"roles": ["admin"]},
            "resource_access": {
                "my-dotnet-api": {"roles": ["api-user"]},
                "other-client": {"roles": ["ignored"]},
            },
        }

        roles = collect_roles(claims, ["my-dotnet-api"])

        assert roles == {"reader", "writer", "admin", "api-user"}

    def test_no_roles(self) -> None:
        assert collect_roles({"sub": "x"}) == frozenset()


class TestTokenValidator:
    """Test signature, issuer, audience and lifetime checks."""

    @pytest.mark.asyncio
    async def test_valid_token_returns_principal(self, token_validator, make_token) -> None:
        token = make_token(realm_access={"roles": ["admin"]})

        principal = await token_validator.validate(token)

        assert isinstance(principal, Principal)
        assert principal.subject == "user-123"
        assert principal.has_role("admin")
        assert principal.claims["iss"] == "https://issuer.test/realms/master"

    @pytest.mark.asyncio
    async def test_accepts_any_configured_audience(self, token_validator, make_token) -> None:
        principal = await token_validator.validate(make_token(aud="account"))
        assert principal.subject == "user-123"

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, token_validator, make_token) -> None:
        past = int(time.time()) - 3600
        token = make_token(iat=past - 60, exp=past)

        with pytest.raises(AuthenticationAppError) as exc_info:
            await token_validator.validate(token)

        assert exc_info.value.code == "token_expired"

    @pytest.mark.asyncio
    async def test_wrong_audience_rejected(self, token_validator, make_token) -> None:
        with pytest.raises(AuthenticationAppError) as exc_info:
            await token_validator.validate(make_token(aud="someone-else"))

        assert exc_info.value.code == "invalid_audience"

    @pytest.mark.asyncio
    async def test_wrong_issuer_rejected(self, token_validator, make_token) -> None:
        with pytest.raises(AuthenticationAppError) as exc_info:
            await token_validator.validate(make_token(iss="https://evil.test"))

        assert exc_info.value.code == "invalid_issuer"

    @pytest.mark.asyncio
    async def test_foreign_signature_rejected(self, token_validator, make_token) -> None:
        other_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

        with pytest.raises(AuthenticationAppError) as exc_info:
            await token_validator.validate(make_token(key=other_key))

        assert exc_info.value.code == "invalid_token"

    @pytest.mark.asyncio
    async def test_missing_subject_rejected(self, token_validator, make_token) -> None:
        with pytest.raises(AuthenticationAppError):
            await token_validator.validate(make_token(sub=None))

    @pytest.mark.asyncio
    async def test_lifetime_check_can_be_disabled(self, key_resolver, make_token) -> None:
        settings = AuthSettings(
            authority="https://issuer.test/realms/master",
            validate_lifetime=False,
        )
        validator = TokenValidator(settings, key_resolver=key_resolver)
        past = int(time.time()) - 3600

        principal = await validator.validate(make_token(exp=past))

        assert principal.subject == "user-123"


class TestJwksSigningKeyResolver:
    """Test issuer metadata handling."""

    def test_https_required_for_authority(self) -> None:
        settings = AuthSettings(
            authority="http://localhost:8080/realms/master",
            require_https_metadata=True,
        )

        with pytest.raises(ConfigurationAppError) as exc_info:
            JwksSigningKeyResolver(settings)

        assert exc_info.value.code == "https_metadata_required"

    @pytest.mark.asyncio
    async def test_discovery_failure_is_an_authentication_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/realms/master/.well-known/openid-configuration"
            return httpx.Response(503)

        resolver = JwksSigningKeyResolver(
            AuthSettings(authority="https://issuer.test/realms/master"),
            transport=httpx.MockTransport(handler),
        )

        with pytest.raises(AuthenticationAppError) as exc_info:
            await resolver("a.b.c")

        assert exc_info.value.code == "issuer_metadata_unavailable"


class TestAuthorizationRoutes:
    """Test route-level requirements through the full pipeline."""

    def test_secure_requires_token(self, client: TestClient) -> None:
        response = client.get("/secure")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"]["code"] == "not_authenticated"

    def test_secure_rejects_invalid_token(self, client: TestClient) -> None:
        response = client.get("/secure", headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401

    def test_secure_accepts_valid_token(self, client: TestClient, make_token) -> None:
        response = client.get("/secure", headers={"Authorization": f"Bearer {make_token()}"})

        assert response.status_code == 200
        assert response.text == "You are authenticated!"

    def test_admin_requires_role(self, client: TestClient, make_token) -> None:
        response = client.get("/admin", headers={"Authorization": f"Bearer {make_token()}"})

        assert response.status_code == 403
        assert response.json()["error"]["details"]["required_role"] == "admin"

    def test_admin_with_role(self, client: TestClient, make_token) -> None:
        token = make_token(realm_access={"roles": ["admin"]})

        response = client.get("/admin", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.text == "Welcome Admin!"

    def test_admin_anonymous_is_401(self, client: TestClient) -> None:
        assert client.get("/admin").status_code == 401

    @pytest.mark.parametrize("path", ["/", "/health", "/tasks/"])
    def test_public_routes_ignore_bad_tokens(self, client: TestClient, path: str) -> None:
        response = client.get(path, headers={"Authorization": "Bearer garbage"})

        assert response.status_code == 200


class TestIssuerMisconfiguration:
    """Issuer configuration errors only leave the request anonymous."""

    @staticmethod
    async def _misconfigured_resolver(token: str):
        raise ConfigurationAppError(
            code="https_metadata_required",
            message="The JWKS URL must use HTTPS",
        )

    def test_public_route_still_served(self, make_settings) -> None:
        validator = TokenValidator(
            AuthSettings(authority="https://issuer.test/realms/master"),
            key_resolver=self._misconfigured_resolver,
        )
        client = TestClient(create_app(make_settings(), token_validator=validator))

        response = client.get("/health", headers={"Authorization": "Bearer a.b.c"})

        assert response.status_code == 200
        assert response.text == "Healthy"

    def test_protected_route_answers_401(self, make_settings) -> None:
        validator = TokenValidator(
            AuthSettings(authority="https://issuer.test/realms/master"),
            key_resolver=self._misconfigured_resolver,
        )
        client = TestClient(create_app(make_settings(), token_validator=validator))

        response = client.get("/secure", headers={"Authorization": "Bearer a.b.c"})

        assert response.status_code == 401
