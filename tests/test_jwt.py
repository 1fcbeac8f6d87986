"""
Tests for access token creation and verification
"""
from datetime import timedelta

from app.auth.jwt import STAFF_ROLE, create_access_token, verify_token
from app.core.config import Settings


def test_token_round_trip(settings):
    token = create_access_token({"member_id": 7, "roles": [STAFF_ROLE]}, settings)

    payload = verify_token(token, settings)

    assert payload["member_id"] == 7
    assert payload["roles"] == [STAFF_ROLE]
    assert "exp" in payload


def test_expired_token_is_rejected(settings):
    token = create_access_token({"member_id": 7}, settings, expires_delta=timedelta(seconds=-5))

    assert verify_token(token, settings) is None


def test_token_signed_with_other_key_is_rejected(settings):
    other = Settings(jwt_secret_key="another-secret")
    token = create_access_token({"member_id": 7}, other)

    assert verify_token(token, settings) is None


def test_garbage_token_is_rejected(settings):
    assert verify_token("not-a-token", settings) is None
