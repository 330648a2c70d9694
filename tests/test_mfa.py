"""
Tests for the TOTP engine.
"""
import base64
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlsplit

import pyotp
import pytest

from src.auth.errors import InvalidTotpSecret
from src.auth.mfa import (
    generate_totp_secret,
    get_provisioning_data,
    get_totp_at,
    get_totp_provisioning_uri,
    validate_totp_secret,
    verify_totp,
)

# Aligned to a 30 second step
FROZEN_NOW = datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def secret():
    return generate_totp_secret()


class TestSecretGeneration:

    def test_secret_is_160_bit_base32(self, secret):
        assert len(secret) == 32
        assert len(base64.b32decode(secret)) == 20

    def test_secrets_are_unique(self):
        assert generate_totp_secret() != generate_totp_secret()

    def test_short_secret_rejected(self):
        short = base64.b32encode(b"x" * 10).decode()
        with pytest.raises(InvalidTotpSecret):
            validate_totp_secret(short)

    @pytest.mark.parametrize("bad", ["", None, "not base32 at all!", "11111111"])
    def test_malformed_secret_rejected(self, bad):
        with pytest.raises(InvalidTotpSecret):
            validate_totp_secret(bad)


class TestProvisioning:

    def test_uri_states_parameters_explicitly(self, secret):
        uri = get_totp_provisioning_uri(secret, "collector@example.com", issuer="EMPORIUM")
        parts = urlsplit(uri)
        params = parse_qs(parts.query)

        assert parts.scheme == "otpauth"
        assert parts.netloc == "totp"
        assert params["secret"] == [secret]
        assert params["issuer"] == ["EMPORIUM"]
        assert params["algorithm"] == ["SHA1"]
        assert params["digits"] == ["6"]
        assert params["period"] == ["30"]

    def test_uri_parses_with_pyotp(self, secret):
        uri = get_totp_provisioning_uri(secret, "collector@example.com")
        parsed = pyotp.parse_uri(uri)

        assert parsed.secret == secret
        assert parsed.digits == 6
        assert parsed.interval == 30

    def test_provisioning_data(self, secret):
        data = get_provisioning_data(secret, "collector@example.com", "EMPORIUM")

        assert data.secret == secret
        assert data.provisioning_uri.startswith("otpauth://totp/")
        assert data.qr_code_base64.startswith("data:image/png;base64,")
        assert (data.algorithm, data.digits, data.period, data.skew) == ("SHA1", 6, 30, 1)

    def test_provisioning_is_deterministic_for_uri(self, secret):
        first = get_provisioning_data(secret, "collector@example.com", "EMPORIUM")
        second = get_provisioning_data(secret, "collector@example.com", "EMPORIUM")
        assert first.provisioning_uri == second.provisioning_uri

    def test_provisioning_rejects_bad_secret(self):
        with pytest.raises(InvalidTotpSecret):
            get_provisioning_data("short", "collector@example.com", "EMPORIUM")


class TestVerification:

    def test_current_code_accepted(self, secret):
        code = get_totp_at(secret, FROZEN_NOW)
        assert verify_totp(secret, code, for_time=FROZEN_NOW) is True

    @pytest.mark.parametrize("steps", [-1, 1])
    def test_one_step_skew_accepted(self, secret, steps):
        code = get_totp_at(secret, FROZEN_NOW + timedelta(seconds=30 * steps))
        assert verify_totp(secret, code, for_time=FROZEN_NOW) is True

    @pytest.mark.parametrize("steps", [-2, 2])
    def test_two_steps_rejected(self, secret, steps):
        code = get_totp_at(secret, FROZEN_NOW + timedelta(seconds=30 * steps))
        window = {get_totp_at(secret, FROZEN_NOW + timedelta(seconds=30 * s)) for s in (-1, 0, 1)}
        if code in window:
            pytest.skip("code collision inside the accepted window")
        assert verify_totp(secret, code, for_time=FROZEN_NOW) is False

    def test_code_with_separators_accepted(self, secret):
        code = get_totp_at(secret, FROZEN_NOW)
        assert verify_totp(secret, f"{code[:3]} {code[3:]}", for_time=FROZEN_NOW) is True
        assert verify_totp(secret, f"{code[:3]}-{code[3:]}", for_time=FROZEN_NOW) is True

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12a456", "١٢٣٤٥٦"])
    def test_malformed_codes_return_false(self, secret, code):
        assert verify_totp(secret, code, for_time=FROZEN_NOW) is False

    def test_bad_secret_raises_not_false(self):
        with pytest.raises(InvalidTotpSecret):
            verify_totp("short", "123456", for_time=FROZEN_NOW)
