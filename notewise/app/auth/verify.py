from __future__ import annotations

from dataclasses import dataclass

import jwt
from jwt import InvalidTokenError, PyJWKClient

from notewise.core.config import AppConfig


class AuthVerificationError(Exception):
    pass


@dataclass(frozen=True)
class AuthSettings:
    jwks_url: str | None
    jwt_audience: str | None
    jwt_issuer: str | None


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str | None = None
    via_token: bool = False


def auth_settings_from_config(config: AppConfig) -> AuthSettings:
    return AuthSettings(
        jwks_url=config.supabase_jwks_url,
        jwt_audience=config.supabase_jwt_audience,
        jwt_issuer=config.supabase_jwt_issuer,
    )


_jwks_clients: dict[str, PyJWKClient] = {}


def _get_jwks_client(jwks_url: str) -> PyJWKClient:
    client = _jwks_clients.get(jwks_url)
    if client is None:
        client = PyJWKClient(jwks_url)
        _jwks_clients[jwks_url] = client
    return client


def _extract_bearer_token(authorization: str) -> str:
    parts = authorization.strip().split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1].strip():
        raise AuthVerificationError("Authorization header must be Bearer token")
    return parts[1].strip()


def verify_bearer_token(authorization: str, settings: AuthSettings) -> Identity:
    token = _extract_bearer_token(authorization)
    if not settings.jwks_url:
        raise AuthVerificationError("Token verification is not configured")

    try:
        signing_key = _get_jwks_client(settings.jwks_url).get_signing_key_from_jwt(
            token
        )
        decode_kwargs: dict[str, object] = {
            "key": signing_key.key,
            "algorithms": ["RS256", "ES256"],
            "options": {"verify_aud": bool(settings.jwt_audience)},
        }
        if settings.jwt_audience:
            decode_kwargs["audience"] = settings.jwt_audience
        if settings.jwt_issuer:
            decode_kwargs["issuer"] = settings.jwt_issuer
        claims = jwt.decode(token, **decode_kwargs)
    except InvalidTokenError as exc:
        raise AuthVerificationError("Token verification failed") from exc
    except Exception as exc:
        raise AuthVerificationError("Unable to verify token with JWKS") from exc

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthVerificationError("Token missing subject claim")
    email = claims.get("email")
    return Identity(
        user_id=user_id,
        email=email if isinstance(email, str) else None,
        via_token=True,
    )


def resolve_identity(
    *,
    authorization: str | None,
    user_id_header: str | None,
    email_header: str | None,
    settings: AuthSettings,
) -> Identity | None:
    """Bearer tokens win when verification is configured; else trust ``X-User-Id``."""
    if authorization and settings.jwks_url:
        return verify_bearer_token(authorization, settings)
    if user_id_header and user_id_header.strip():
        email = email_header.strip() if email_header and email_header.strip() else None
        return Identity(user_id=user_id_header.strip(), email=email)
    return None
