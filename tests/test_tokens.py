import pytest
from datetime import timedelta
from types import SimpleNamespace
from jose import jwt

from carelink.core.config import Settings
from carelink.core.exceptions import ConfigurationError
from carelink.core.security import TokenFailure, TokenService, UserRole
from carelink.main import create_app

from .conftest import FakeClock, START

SECRET = "token-test-secret"

user = SimpleNamespace(id=42, email="ada@example.com", name="Ada", role=UserRole.PATIENT)


@pytest.fixture
def token_clock():
    return FakeClock(START)


@pytest.fixture
def tokens(token_clock):
    return TokenService(SECRET, clock=token_clock)


class TestTokenService:

    def test_issue_and_verify(self, tokens):
        verification = tokens.verify(tokens.issue(user))

        assert verification.valid
        assert verification.failure is None
        claims = verification.claims
        assert claims.sub == "42"
        assert claims.email == "ada@example.com"
        assert claims.name == "Ada"
        assert claims.iat == int(START.timestamp())
        assert claims.exp == int((START + timedelta(days=7)).timestamp())

    def test_valid_one_second_before_expiry(self, tokens, token_clock):
        token = tokens.issue(user)

        token_clock.advance(days=7, seconds=-1)
        assert tokens.verify(token).valid

    def test_expired_one_second_after_expiry(self, tokens, token_clock):
        token = tokens.issue(user)

        token_clock.advance(days=7, seconds=1)
        verification = tokens.verify(token)
        assert not verification.valid
        assert verification.failure == TokenFailure.EXPIRED

    def test_wrong_signature(self, tokens, token_clock):
        forged = TokenService("another-secret", clock=token_clock).issue(user)

        verification = tokens.verify(forged)
        assert verification.failure == TokenFailure.INVALID_SIGNATURE

    def test_forged_and_expired_reports_signature(self, tokens, token_clock):
        forged = TokenService("another-secret", clock=token_clock).issue(user)
        token_clock.advance(days=30)

        assert tokens.verify(forged).failure == TokenFailure.INVALID_SIGNATURE

    @pytest.mark.parametrize("token", ["", None, "not-a-token", "a.b.c"])
    def test_malformed(self, tokens, token):
        verification = tokens.verify(token)
        assert not verification.valid
        assert verification.failure == TokenFailure.MALFORMED

    def test_signed_token_missing_claims_is_malformed(self, tokens):
        token = jwt.encode({"sub": "42"}, SECRET, algorithm="HS256")

        assert tokens.verify(token).failure == TokenFailure.MALFORMED

    def test_verification_keeps_no_state(self, tokens):
        token = tokens.issue(user)

        assert tokens.verify(token).valid
        assert tokens.verify(token).valid

    @pytest.mark.parametrize("secret", [None, ""])
    def test_missing_secret_is_configuration_error(self, secret):
        with pytest.raises(ConfigurationError):
            TokenService(secret)

    def test_app_refuses_to_start_without_secret(self, tmp_path):
        settings = Settings(
            TESTING=True,
            TEST_DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
            SECRET_KEY=None,
        )

        with pytest.raises(ConfigurationError):
            create_app(settings)
