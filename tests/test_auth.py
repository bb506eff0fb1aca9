import jwt
import pytest

from notewise.app.auth.verify import (
    AuthSettings,
    AuthVerificationError,
    resolve_identity,
    verify_bearer_token,
)


def _settings() -> AuthSettings:
    return AuthSettings(
        jwks_url="https://example.supabase.co/auth/v1/.well-known/jwks.json",
        jwt_audience="authenticated",
        jwt_issuer="https://example.supabase.co/auth/v1",
    )


def _install_fake_jwks(monkeypatch: pytest.MonkeyPatch) -> None:
    class _FakeSigningKey:
        key = "fake-public-key"

    class _FakeJwkClient:
        def get_signing_key_from_jwt(self, _: str) -> _FakeSigningKey:
            return _FakeSigningKey()

    monkeypatch.setattr(
        "notewise.app.auth.verify._get_jwks_client",
        lambda _: _FakeJwkClient(),
    )


def test_verify_bearer_token_rejects_non_bearer_header() -> None:
    with pytest.raises(AuthVerificationError):
        verify_bearer_token("Basic abc", _settings())


def test_verify_bearer_token_requires_jwks_url() -> None:
    settings = AuthSettings(jwks_url=None, jwt_audience=None, jwt_issuer=None)
    with pytest.raises(AuthVerificationError):
        verify_bearer_token("Bearer token", settings)


def test_verify_bearer_token_returns_identity(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_fake_jwks(monkeypatch)
    captured = {}

    def _decode(token, **kwargs):
        captured.update(kwargs)
        return {
            "sub": "09f410c5-9f7e-4c1d-9d31-d6271f7b67c0",
            "email": "student@example.com",
            "aud": "authenticated",
            "exp": 9999999999,
        }

    monkeypatch.setattr("notewise.app.auth.verify.jwt.decode", _decode)

    identity = verify_bearer_token("Bearer signed.jwt.token", _settings())

    assert identity.user_id == "09f410c5-9f7e-4c1d-9d31-d6271f7b67c0"
    assert identity.email == "student@example.com"
    assert identity.via_token
    assert captured["audience"] == "authenticated"
    assert captured["issuer"] == "https://example.supabase.co/auth/v1"


def test_verify_bearer_token_rejects_invalid_token(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_fake_jwks(monkeypatch)

    def _raise_decode_error(*args, **kwargs):
        raise jwt.InvalidTokenError("invalid")

    monkeypatch.setattr("notewise.app.auth.verify.jwt.decode", _raise_decode_error)

    with pytest.raises(AuthVerificationError):
        verify_bearer_token("Bearer signed.jwt.token", _settings())


def test_verify_bearer_token_rejects_missing_subject(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_fake_jwks(monkeypatch)
    monkeypatch.setattr(
        "notewise.app.auth.verify.jwt.decode", lambda *args, **kwargs: {"aud": "x"}
    )

    with pytest.raises(AuthVerificationError):
        verify_bearer_token("Bearer signed.jwt.token", _settings())


def test_resolve_identity_falls_back_to_user_header() -> None:
    settings = AuthSettings(jwks_url=None, jwt_audience=None, jwt_issuer=None)

    identity = resolve_identity(
        authorization="Bearer ignored",
        user_id_header=" user-1 ",
        email_header="  ",
        settings=settings,
    )

    assert identity.user_id == "user-1"
    assert identity.email is None
    assert not identity.via_token


def test_resolve_identity_returns_none_without_credentials() -> None:
    assert (
        resolve_identity(
            authorization=None,
            user_id_header=None,
            email_header=None,
            settings=_settings(),
        )
        is None
    )
