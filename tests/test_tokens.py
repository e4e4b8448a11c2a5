"""Unit tests for auth/tokens.py -- TokenSigner.

Covers:
- access and refresh tokens carry identity, issuer and audience claims
- the two token classes never verify as each other
- expired and tampered tokens fail with distinct codes
- tokens minted for the same user in the same instant are distinct
"""

from dataclasses import replace

import pytest
from jose import jwt

from auth.models import User
from auth.tokens import TokenSigner
from core.errors import ErrorKind, ServiceError
from tests.conftest import FakeClock, make_config


@pytest.fixture
def user():
    return User(id=7, email="t@example.com", hashed_password="x")


@pytest.fixture
def signer():
    return TokenSigner(make_config(), clock=FakeClock())


def _code(fn, token):
    with pytest.raises(ServiceError) as exc_info:
        fn(token)
    assert exc_info.value.kind is ErrorKind.UNAUTHORIZED
    return exc_info.value.code


class TestIssue:
    def test_access_claims(self, signer, user):
        claims = signer.verify_access(signer.issue_access(user))

        assert claims["user_id"] == 7
        assert claims["email"] == "t@example.com"
        assert claims["iss"] == "auth-service"
        assert claims["aud"] == "auth-client"
        assert claims["exp"] - claims["iat"] == 7 * 24 * 3600

    def test_refresh_lifetime(self, signer, user):
        claims = signer.verify_refresh(signer.issue_refresh(user))
        assert claims["exp"] - claims["iat"] == 30 * 24 * 3600

    def test_same_instant_tokens_are_distinct(self, signer, user):
        assert signer.issue_refresh(user) != signer.issue_refresh(user)

    def test_expiry_of_matches_exp_claim(self, signer, user):
        token = signer.issue_refresh(user)
        assert int(TokenSigner.expiry_of(token).timestamp()) == TokenSigner.decode(token)["exp"]


class TestVerify:
    def test_token_classes_do_not_cross(self, signer, user):
        assert _code(signer.verify_access, signer.issue_refresh(user)) == "token_invalid"
        assert _code(signer.verify_refresh, signer.issue_access(user)) == "token_invalid"

    def test_expired_token(self, user):
        past = FakeClock()
        past.advance(days=-31)
        old_signer = TokenSigner(make_config(), clock=past)

        assert _code(old_signer.verify_refresh, old_signer.issue_refresh(user)) == "token_expired"

    def test_garbage_and_tampered_tokens(self, signer, user):
        header, payload, sig = signer.issue_access(user).split(".")
        tampered = ".".join([header, payload, ("A" if sig[0] != "A" else "B") + sig[1:]])

        assert _code(signer.verify_access, "not-a-jwt") == "token_invalid"
        assert _code(signer.verify_access, tampered) == "token_invalid"

    def test_wrong_audience_is_rejected(self, user):
        config = make_config()
        foreign = TokenSigner(replace(config, jwt_audience="someone-else"), clock=FakeClock())
        assert _code(TokenSigner(config).verify_access, foreign.issue_access(user)) == "token_invalid"

    def test_missing_identity_claims_are_rejected(self, signer):
        config = make_config()
        now = int(FakeClock()().timestamp())
        bare = jwt.encode(
            {"iss": config.jwt_issuer, "aud": config.jwt_audience, "iat": now, "exp": now + 60},
            config.jwt_secret,
            algorithm="HS256",
        )
        assert _code(signer.verify_access, bare) == "token_invalid"
