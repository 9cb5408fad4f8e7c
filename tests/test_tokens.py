from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from shelf.errors import InvalidTokenError
from shelf.tokens import TokenClaims, TokenSigner


def test_sign_and_verify_carry_identity(signer):
    token = signer.issue(7, "a@b.com")

    claims = signer.verify(token)

    assert claims.subject == 7
    assert claims.email == "a@b.com"
    assert claims.expires_at - claims.issued_at == timedelta(minutes=60)


def test_subject_is_encoded_as_string(signer):
    token = signer.issue(7, "a@b.com")

    assert jwt.get_unverified_claims(token)["sub"] == "7"


def test_expired_token_is_rejected(signer):
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    token = signer.sign(TokenClaims(subject=1, email="a@b.com", issued_at=past))

    with pytest.raises(InvalidTokenError):
        signer.verify(token)


def test_foreign_or_tampered_tokens_are_rejected(signer):
    other = TokenSigner("another-secret")
    token = signer.issue(1, "a@b.com")
    header, payload, signature = token.split(".")

    with pytest.raises(InvalidTokenError):
        signer.verify(other.issue(1, "a@b.com"))
    with pytest.raises(InvalidTokenError):
        signer.verify(f"{header}.{payload}.{signature[::-1]}")
    with pytest.raises(InvalidTokenError):
        signer.verify("")


def test_token_without_identity_claims_is_rejected(signer):
    token = jwt.encode({"sub": "abc", "email": "a@b.com"}, signer.secret_key, algorithm="HS256")

    with pytest.raises(InvalidTokenError):
        signer.verify(token)


def test_empty_secret_is_refused():
    with pytest.raises(ValueError):
        TokenSigner("")
