"""
Tests for token issuance and verification.
"""
from datetime import timedelta

import jwt
import pytest

from src.auth.errors import (
    ConfigurationError,
    TokenExpired,
    TokenMalformed,
    TokenRevoked,
    TokenSignatureInvalid,
)
from src.auth.tokens import TokenService, derive_signing_key
from src.auth.types import TokenPurpose
from src.utils.settings import AuthSettings

from conftest import TEST_JWT_SECRET


def _payload(clock, purpose="access", **overrides):
    now = int(clock.now.timestamp())
    payload = {
        "sub": "user-1",
        "purpose": purpose,
        "iat": now,
        "exp": now + 3600,
        "jti": "jti-1",
    }
    payload.update(overrides)
    return payload


class TestIssue:

    def test_access_token_round_trip(self, tokens, clock):
        issued = tokens.issue("user-1", TokenPurpose.ACCESS)
        claims = tokens.verify(issued.token)

        assert claims == issued.claims
        assert claims.subject == "user-1"
        assert claims.purpose is TokenPurpose.ACCESS
        assert claims.issued_at == clock.now
        assert claims.expires_at == clock.now + timedelta(hours=3)
        assert claims.scope == ()

    @pytest.mark.parametrize("purpose, ttl", [
        (TokenPurpose.ACCESS, timedelta(hours=3)),
        (TokenPurpose.TEMPORARY, timedelta(minutes=5)),
        (TokenPurpose.ADMIN, timedelta(hours=3)),
    ])
    def test_lifetimes(self, tokens, purpose, ttl):
        issued = tokens.issue("user-1", purpose)
        assert issued.claims.expires_at - issued.claims.issued_at == ttl
        assert issued.max_age == int(ttl.total_seconds())

    def test_fresh_jti_every_time(self, tokens):
        first = tokens.issue("user-1", TokenPurpose.ACCESS)
        second = tokens.issue("user-1", TokenPurpose.ACCESS)
        assert first.claims.jti != second.claims.jti
        assert first.token != second.token

    def test_admin_tokens_carry_admin_scope_and_kid(self, tokens):
        issued = tokens.issue("admin-1", TokenPurpose.ADMIN)

        assert issued.claims.scope == ("admin",)
        assert jwt.get_unverified_header(issued.token)["kid"] == "admin"

    def test_user_tokens_carry_user_kid(self, tokens):
        issued = tokens.issue("user-1", TokenPurpose.TEMPORARY, scope=("user",))

        assert jwt.get_unverified_header(issued.token)["kid"] == "user"
        assert tokens.verify(issued.token).scope == ("user",)

    def test_missing_secret_fails_at_construction(self, clock):
        with pytest.raises(ConfigurationError):
            TokenService(AuthSettings(jwt_secret=""), clock=clock)


class TestVerify:

    def test_expired_exactly_at_exp(self, tokens, clock):
        issued = tokens.issue("user-1", TokenPurpose.ACCESS)

        clock.advance(hours=3, seconds=-1)
        assert tokens.verify(issued.token).subject == "user-1"

        clock.advance(seconds=1)
        with pytest.raises(TokenExpired):
            tokens.verify(issued.token)

    def test_temporary_token_expires_after_five_minutes(self, tokens, clock):
        issued = tokens.issue("user-1", TokenPurpose.TEMPORARY)
        clock.advance(minutes=5)
        with pytest.raises(TokenExpired):
            tokens.verify(issued.token)

    @pytest.mark.parametrize("token", ["", "not-a-token", "a.b.c", "x" * 300])
    def test_garbage_is_malformed(self, tokens, token):
        with pytest.raises(TokenMalformed):
            tokens.verify(token)

    def test_wrong_key_is_signature_invalid(self, tokens, clock):
        forged = jwt.encode(_payload(clock), "some-other-secret" * 4, algorithm="HS256", headers={"kid": "user"})
        with pytest.raises(TokenSignatureInvalid):
            tokens.verify(forged)

    def test_raw_secret_is_not_the_signing_key(self, tokens, clock):
        forged = jwt.encode(_payload(clock), TEST_JWT_SECRET, algorithm="HS256", headers={"kid": "user"})
        with pytest.raises(TokenSignatureInvalid):
            tokens.verify(forged)

    def test_tampered_payload_is_signature_invalid(self, tokens):
        issued = tokens.issue("user-1", TokenPurpose.ACCESS)
        header, payload, signature = issued.token.split(".")
        other = tokens.issue("user-2", TokenPurpose.ACCESS).token.split(".")[1]

        with pytest.raises(TokenSignatureInvalid):
            tokens.verify(".".join([header, other, signature]))

    def test_admin_token_relabelled_as_user_is_rejected(self, tokens, clock):
        """Moving an admin token into the user signing context breaks its signature."""
        admin_key = derive_signing_key(TEST_JWT_SECRET, "admin")
        relabelled = jwt.encode(
            _payload(clock, purpose="admin", scope=["admin"]),
            admin_key, algorithm="HS256", headers={"kid": "user"},
        )
        with pytest.raises(TokenSignatureInvalid):
            tokens.verify(relabelled)

    def test_admin_purpose_in_user_context_is_rejected(self, tokens, clock):
        """A user-key token claiming admin purpose never verifies as admin."""
        user_key = derive_signing_key(TEST_JWT_SECRET, "user")
        forged = jwt.encode(
            _payload(clock, purpose="admin"),
            user_key, algorithm="HS256", headers={"kid": "user"},
        )
        with pytest.raises(TokenMalformed):
            tokens.verify(forged)

    def test_user_purpose_in_admin_context_is_rejected(self, tokens, clock):
        admin_key = derive_signing_key(TEST_JWT_SECRET, "admin")
        forged = jwt.encode(
            _payload(clock, purpose="access"),
            admin_key, algorithm="HS256", headers={"kid": "admin"},
        )
        with pytest.raises(TokenMalformed):
            tokens.verify(forged)

    def test_unknown_kid_is_malformed(self, tokens, clock):
        forged = jwt.encode(_payload(clock), "k" * 32, algorithm="HS256", headers={"kid": "root"})
        with pytest.raises(TokenMalformed):
            tokens.verify(forged)

    def test_unsigned_token_is_rejected(self, tokens, clock):
        unsigned = jwt.encode(_payload(clock), None, algorithm="none", headers={"kid": "user"})
        with pytest.raises(TokenMalformed):
            tokens.verify(unsigned)

    def test_unknown_purpose_is_malformed(self, tokens, clock):
        user_key = derive_signing_key(TEST_JWT_SECRET, "user")
        forged = jwt.encode(_payload(clock, purpose="refresh"), user_key, algorithm="HS256", headers={"kid": "user"})
        with pytest.raises(TokenMalformed):
            tokens.verify(forged)

    @pytest.mark.parametrize("claim", ["sub", "exp", "iat", "jti", "purpose"])
    def test_missing_claim_is_malformed(self, tokens, clock, claim):
        payload = _payload(clock)
        del payload[claim]
        user_key = derive_signing_key(TEST_JWT_SECRET, "user")
        token = jwt.encode(payload, user_key, algorithm="HS256", headers={"kid": "user"})
        with pytest.raises(TokenMalformed):
            tokens.verify(token)


class TestRevocation:

    def test_revoked_token_rejected(self, tokens):
        issued = tokens.issue("user-1", TokenPurpose.ACCESS)
        tokens.revoke(issued.claims)

        with pytest.raises(TokenRevoked):
            tokens.verify(issued.token)

    def test_revocation_is_per_jti(self, tokens):
        first = tokens.issue("user-1", TokenPurpose.ACCESS)
        second = tokens.issue("user-1", TokenPurpose.ACCESS)
        tokens.revoke(first.claims)

        assert tokens.verify(second.token).jti == second.claims.jti

    def test_revocation_uses_redis_ttl(self, auth_settings, clock, mock_redis_client):
        from src.auth.revocation import RevocationList

        service = TokenService(auth_settings, clock=clock, revocations=RevocationList(mock_redis_client, clock=clock))
        issued = service.issue("user-1", TokenPurpose.ACCESS)
        service.revoke(issued.claims)

        key = f"emporium:revoked:{issued.claims.jti}"
        assert mock_redis_client.get(key) == "1"
        assert mock_redis_client.expiry[key] == 3 * 3600
        with pytest.raises(TokenRevoked):
            service.verify(issued.token)

    def test_memory_fallback_forgets_after_expiry(self, clock):
        from src.auth.revocation import RevocationList

        revocations = RevocationList(clock=clock)
        revocations.revoke("jti-1", clock.now + timedelta(minutes=5))
        assert revocations.is_revoked("jti-1") is True

        clock.advance(minutes=5)
        assert revocations.is_revoked("jti-1") is False

    def test_memory_fallback_sweeps_expired_entries(self, clock):
        from src.auth.revocation import RevocationList

        revocations = RevocationList(clock=clock)
        for i in range(1000):
            revocations.revoke(f"jti-{i}", clock.now + timedelta(minutes=5))

        clock.advance(hours=1)
        revocations.revoke("jti-fresh", clock.now + timedelta(minutes=5))

        assert list(revocations._memory_store) == ["jti-fresh"]
        assert revocations.is_revoked("jti-fresh") is True
