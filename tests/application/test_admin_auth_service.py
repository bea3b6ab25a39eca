"""Tests for admin token issuing and verification."""

from datetime import datetime, timedelta, timezone

from jose import jwt

from returnpilot.application.admin_auth_service import ALGORITHM, AdminAuthService


def make_service(**overrides) -> AdminAuthService:
    values = {"password": "s3cret", "secret": "signing-key", "ttl": timedelta(hours=1)}
    values.update(overrides)
    return AdminAuthService(**values)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TestLogin:
    def test_correct_password_issues_jwt(self) -> None:
        now = utc_now().replace(microsecond=0)
        token = make_service().login("s3cret", now=now)

        assert token is not None
        assert token.expires_at == now + timedelta(hours=1)
        claims = jwt.get_unverified_claims(token.token)
        assert claims["sub"] == "admin"
        assert claims["exp"] == int((now + timedelta(hours=1)).timestamp())
        assert claims["jti"]

    def test_wrong_password(self) -> None:
        assert make_service().login("guess") is None

    def test_tokens_are_unique(self) -> None:
        service = make_service()
        now = utc_now()

        assert service.login("s3cret", now=now).token != service.login("s3cret", now=now).token


class TestVerify:
    def test_fresh_token(self) -> None:
        service = make_service()

        assert service.verify(service.login("s3cret").token)

    def test_expired_token(self) -> None:
        service = make_service()
        token = service.login("s3cret", now=utc_now() - timedelta(hours=2)).token

        assert not service.verify(token)

    def test_other_secret_rejects(self) -> None:
        token = make_service().login("s3cret").token

        assert not make_service(secret="other-key").verify(token)

    def test_extended_expiry_rejects(self) -> None:
        service = make_service()
        claims = jwt.get_unverified_claims(service.login("s3cret").token)
        claims["exp"] += 86400
        forged = jwt.encode(claims, "guessed-key", algorithm=ALGORITHM)

        assert not service.verify(forged)

    def test_other_subject_rejects(self) -> None:
        now = utc_now()
        token = jwt.encode(
            {"sub": "customer", "exp": now + timedelta(hours=1)},
            "signing-key",
            algorithm=ALGORITHM,
        )

        assert not make_service().verify(token)

    def test_malformed_tokens(self) -> None:
        service = make_service()

        assert not service.verify(None)
        assert not service.verify("")
        assert not service.verify("no-dots-here")
        assert not service.verify("abc.def.0123")
