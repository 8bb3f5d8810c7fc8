"""JWT bearer authentication and route-level authorization.

The authentication stage reads the ``Authorization: Bearer <token>`` header,
validates the token against the issuer's signing keys and stores the
resulting principal on ``request.state.principal``. A missing or invalid
token never fails the request by itself: the request simply continues
anonymously and routes that declare a requirement reject it later.

Design principles:
- Single Responsibility: validation (TokenValidator) is separate from the
  HTTP stage and from the route dependencies
- Dependency Injection: the signing key resolver is injectable, so tests
  can sign tokens with a local key pair
- Configuration-driven: issuer, audiences and checks come from AuthSettings
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

import httpx
import jwt
from fastapi import Depends, Request, Response
from starlette.concurrency import run_in_threadpool

from app.core.config import AuthSettings
from app.core.errors import (
    AppError,
    AuthenticationAppError,
    AuthorizationAppError,
    ConfigurationAppError,
)
from app.core.middleware import CallNext, Stage

logger = logging.getLogger(__name__)

SigningKeyResolver = Callable[[str], Awaitable[Any]]

DISCOVERY_PATH = "/.well-known/openid-configuration"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller.

    Attributes:
        subject: The ``sub`` claim.
        roles: Role names collected from the token.
        claims: All validated claims.
    """

    subject: str
    roles: frozenset[str] = frozenset()
    claims: dict[str, Any] = field(default_factory=dict, compare=False)

    def has_role(self, role: str) -> bool:
        return role in self.roles


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an Authorization header value.

    Examples:
        >>> extract_bearer_token("Bearer abc.def.ghi")
        'abc.def.ghi'
        >>> extract_bearer_token("Basic dXNlcjpwYXNz") is None
        True
        >>> extract_bearer_token(None) is None
        True
    """
    if not authorization:
        return None

    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None

    token = token.strip()
    return token or None


def _as_role_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    return []


def collect_roles(claims: dict[str, Any], audiences: Iterable[str] = ()) -> frozenset[str]:
    """Collect role names from the usual claim locations.

    Looks at ``roles``/``role``, Keycloak's ``realm_access.roles`` and
    ``resource_access.<client>.roles`` for each accepted audience.
    """
    roles: set[str] = set()
    roles.update(_as_role_list(claims.get("roles")))
    roles.update(_as_role_list(claims.get("role")))

    realm_access = claims.get("realm_access")
    if isinstance(realm_access, dict):
        roles.update(_as_role_list(realm_access.get("roles")))

    resource_access = claims.get("resource_access")
    if isinstance(resource_access, dict):
        for audience in audiences:
            client_access = resource_access.get(audience)
            if isinstance(client_access, dict):
                roles.update(_as_role_list(client_access.get("roles")))

    return frozenset(roles)


def _require_https(url: str, what: str) -> None:
    if not url.lower().startswith("https://"):
        raise ConfigurationAppError(
            code="https_metadata_required",
            message=f"The {what} must use HTTPS when require_https_metadata is enabled",
            details={"hint": "Use an https:// URL or set AUTH_REQUIRE_HTTPS_METADATA=false"},
        )


class JwksSigningKeyResolver:
    """Resolve token signing keys from the issuer's JWKS endpoint.

    The JWKS URI comes from ``AuthSettings.jwks_url`` or, when unset, from
    the issuer's OpenID discovery document. Key sets are cached by PyJWT's
    ``PyJWKClient``; its blocking fetches run in the threadpool so other
    requests keep being served.
    """

    def __init__(
        self,
        auth_settings: AuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if auth_settings.require_https_metadata:
            _require_https(auth_settings.authority, "authority")
            if auth_settings.jwks_url:
                _require_https(auth_settings.jwks_url, "JWKS URL")

        self._settings = auth_settings
        self._transport = transport
        self._logger = logger or logging.getLogger(__name__)
        self._jwk_client: jwt.PyJWKClient | None = None

    async def _discover_jwks_uri(self) -> str:
        discovery_url = self._settings.authority.rstrip("/") + DISCOVERY_PATH
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.metadata_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get(discovery_url)
                response.raise_for_status()
                jwks_uri = response.json()["jwks_uri"]
        except (httpx.HTTPError, ValueError, KeyError) as exc:
            self._logger.error(
                "auth.discovery_failed",
                extra={"discovery_url": discovery_url, "error_type": type(exc).__name__},
            )
            raise AuthenticationAppError(
                code="issuer_metadata_unavailable",
                message="Could not load the issuer's metadata",
            ) from exc

        if self._settings.require_https_metadata:
            _require_https(jwks_uri, "JWKS URL")
        return jwks_uri

    async def _get_jwk_client(self) -> jwt.PyJWKClient:
        if self._jwk_client is None:
            jwks_uri = self._settings.jwks_url or await self._discover_jwks_uri()
            self._jwk_client = jwt.PyJWKClient(
                jwks_uri,
                cache_keys=True,
                timeout=int(self._settings.metadata_timeout_seconds),
            )
            self._logger.info("auth.jwks_configured", extra={"jwks_uri": jwks_uri})
        return self._jwk_client

    async def __call__(self, token: str) -> Any:
        client = await self._get_jwk_client()
        try:
            signing_key = await run_in_threadpool(client.get_signing_key_from_jwt, token)
        except jwt.PyJWKClientError as exc:
            raise AuthenticationAppError(
                code="signing_key_not_found",
                message="No matching signing key for the token",
            ) from exc
        except jwt.PyJWTError as exc:
            raise AuthenticationAppError(
                code="invalid_token",
                message="Malformed bearer token",
            ) from exc
        return signing_key.key


class TokenValidator:
    """Validate bearer tokens and turn their claims into a Principal."""

    def __init__(
        self,
        auth_settings: AuthSettings,
        *,
        key_resolver: SigningKeyResolver | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._settings = auth_settings
        self._logger = logger or logging.getLogger(__name__)
        self._resolve_key = key_resolver or JwksSigningKeyResolver(auth_settings, logger=self._logger)

    def _decode(self, token: str, key: Any) -> dict[str, Any]:
        cfg = self._settings
        options = {
            "verify_signature": True,
            "verify_aud": cfg.validate_audience,
            "verify_iss": cfg.validate_issuer,
            "verify_exp": cfg.validate_lifetime,
            "verify_nbf": cfg.validate_lifetime,
            "require": ["exp", "sub"] if cfg.validate_lifetime else ["sub"],
        }
        return jwt.decode(
            token,
            key,
            algorithms=cfg.algorithms,
            audience=cfg.audiences if cfg.validate_audience else None,
            issuer=cfg.authority if cfg.validate_issuer else None,
            leeway=cfg.leeway_seconds,
            options=options,
        )

    async def validate(self, token: str) -> Principal:
        """Validate ``token`` and return the authenticated principal.

        Args:
            token: Raw JWT from the Authorization header.

        Returns:
            Principal with subject, roles and claims.

        Raises:
            AuthenticationAppError: If the token is invalid for any reason.
        """
        key = await self._resolve_key(token)

        try:
            claims = self._decode(token, key)
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationAppError(code="token_expired", message="Token has expired") from exc
        except jwt.InvalidAudienceError as exc:
            raise AuthenticationAppError(code="invalid_audience", message="Token audience is not accepted") from exc
        except jwt.InvalidIssuerError as exc:
            raise AuthenticationAppError(code="invalid_issuer", message="Token issuer is not accepted") from exc
        except jwt.PyJWTError as exc:
            raise AuthenticationAppError(code="invalid_token", message="Token validation failed") from exc

        return Principal(
            subject=str(claims["sub"]),
            roles=collect_roles(claims, self._settings.audiences),
            claims=claims,
        )


def _subject_hash(subject: str) -> str:
    return hashlib.sha256(subject.encode()).hexdigest()[:16]


def authentication_stage(
    validator: TokenValidator,
    logger: logging.Logger | None = None,
) -> Stage:
    """Build the pipeline stage that authenticates bearer tokens.

    Args:
        validator: Token validator shared across requests.
        logger: Logger for authentication outcomes.

    Returns:
        Stage function for the pipeline.
    """

    log = logger or logging.getLogger(__name__)

    async def authenticate(request: Request, call_next: CallNext) -> Response:
        request.state.principal = None
        token = extract_bearer_token(request.headers.get("Authorization"))

        if token:
            try:
                principal = await validator.validate(token)
            except AuthenticationAppError as exc:
                log.info(
                    "auth.token_rejected",
                    extra={"reason": exc.code, "request_path": request.url.path},
                )
            except AppError as exc:
                # Issuer misconfiguration: the request continues anonymously
                log.error(
                    "auth.validation_unavailable",
                    extra={"reason": exc.code, "request_path": request.url.path},
                )
            else:
                request.state.principal = principal
                log.debug(
                    "auth.success",
                    extra={
                        "subject_hash": _subject_hash(principal.subject),
                        "roles": sorted(principal.roles),
                    },
                )

        return await call_next(request)

    return authenticate


def get_principal(request: Request) -> Principal | None:
    """FastAPI dependency returning the caller, or None when anonymous."""
    return getattr(request.state, "principal", None)


async def require_authenticated(
    principal: Principal | None = Depends(get_principal),
) -> Principal:
    """FastAPI dependency rejecting anonymous callers with 401.

    Usage:
        @router.get("/secure", dependencies=[Depends(require_authenticated)])
        async def secure_endpoint():
            return "You are authenticated!"
    """
    if principal is None:
        raise AuthenticationAppError(
            code="not_authenticated",
            message="A valid bearer token is required",
        )
    return principal


def require_role(role: str) -> Callable[..., Awaitable[Principal]]:
    """Build a dependency that requires ``role`` (401 if anonymous, 403 if missing)."""

    async def dependency(principal: Principal = Depends(require_authenticated)) -> Principal:
        if not principal.has_role(role):
            logger.warning(
                "auth.role_missing",
                extra={"required_role": role, "subject_hash": _subject_hash(principal.subject)},
            )
            raise AuthorizationAppError(
                code="forbidden",
                message=f"The '{role}' role is required",
                details={"required_role": role},
            )
        return principal

    return dependency
