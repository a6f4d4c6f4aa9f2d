import hashlib
import hmac

import jwt
import pytest

from app.core.config import settings
from app.core.security import (
    TokenError,
    decode_token,
    payment_signature,
    signatures_match,
    webhook_signature,
)
from tests.helpers import admin_token


def test_payment_signature_matches_razorpay_scheme():
    expected = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()
    assert payment_signature("order_1", "pay_1", "secret") == expected


def test_webhook_signature_is_over_raw_body():
    body = b'{"event":"payment.captured"}'
    assert webhook_signature(body, "whsec") == hmac.new(b"whsec", body, hashlib.sha256).hexdigest()


@pytest.mark.parametrize("supplied", [None, "", "abc", "0" * 64])
def test_signatures_match_rejects(supplied):
    assert signatures_match(payment_signature("o", "p", "s"), supplied) is False


def test_signatures_match_accepts():
    sig = payment_signature("o", "p", "s")
    assert signatures_match(sig, sig) is True


def test_token_round_trip():
    token = admin_token(subject="ops@example.com", role="admin")
    payload = decode_token(token)
    assert payload["sub"] == "ops@example.com"
    assert payload["role"] == "admin"


def test_token_with_wrong_secret():
    token = jwt.encode({"sub": "x", "role": "admin"}, "another-secret-0123456789abcdef01234", algorithm=settings.JWT_ALG)
    with pytest.raises(TokenError):
        decode_token(token)


def test_expired_token():
    token = jwt.encode({"sub": "x", "role": "admin", "exp": 1}, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    with pytest.raises(TokenError):
        decode_token(token)
