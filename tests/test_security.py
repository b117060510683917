from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from security import (
    Identity,
    InvalidTokenError,
    TokenExpiredError,
    TokenService,
    hash_password,
    verify_password,
)


@pytest.fixture
def tokens():
    return TokenService("unit-secret", lifetime_seconds=3600)


def test_password_hash_is_salted_and_verifiable():
    first = hash_password("secret1")
    second = hash_password("secret1")
    assert first != second
    assert "secret1" not in first
    assert verify_password("secret1", first)
    assert not verify_password("secret2", first)


def test_verify_password_rejects_missing_or_corrupt_hash():
    assert not verify_password("secret1", None)
    assert not verify_password("secret1", "")
    assert not verify_password("secret1", "not-a-bcrypt-hash")


def test_issue_and_verify_round_trip(tokens):
    token = tokens.issue("64b000000000000000000001", "seller")
    assert tokens.verify(token) == Identity(id="64b000000000000000000001", role="seller")


def test_token_expires_after_lifetime(tokens):
    issued_at = datetime.now(timezone.utc) - timedelta(hours=2)
    token = tokens.issue("u1", "buyer", now=issued_at)
    with pytest.raises(TokenExpiredError):
        tokens.verify(token)


def test_token_signed_with_other_secret_is_invalid(tokens):
    forged = TokenService("someone-else", lifetime_seconds=3600).issue("u1", "admin")
    with pytest.raises(InvalidTokenError):
        tokens.verify(forged)


def test_tampered_role_breaks_signature(tokens):
    token = tokens.issue("u1", "buyer")
    header, payload, signature = token.split(".")
    forged_payload = jwt.encode({"sub": "u1", "role": "admin"}, "x").split(".")[1]
    with pytest.raises(InvalidTokenError):
        tokens.verify(".".join([header, forged_payload, signature]))


def test_garbage_token_is_invalid(tokens):
    with pytest.raises(InvalidTokenError):
        tokens.verify("definitely.not.a-token")


def test_token_without_role_claim_is_invalid(tokens):
    exp = int((datetime.now(timezone.utc) + timedelta(minutes=5)).timestamp())
    token = jwt.encode({"sub": "u1", "exp": exp}, "unit-secret", algorithm="HS256")
    with pytest.raises(InvalidTokenError):
        tokens.verify(token)


def test_service_requires_a_secret():
    with pytest.raises(ValueError):
        TokenService("", lifetime_seconds=60)


def test_from_settings_uses_configured_lifetime(settings):
    service = TokenService.from_settings(settings)
    assert service.lifetime_seconds == 7 * 24 * 3600
    claims = jwt.get_unverified_claims(service.issue("u1", "buyer"))
    assert claims["exp"] - claims["iat"] == 7 * 24 * 3600
    assert claims["role"] == "buyer"
