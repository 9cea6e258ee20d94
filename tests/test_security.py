from uuid import uuid4

import pytest

from keyshop.exceptions import Unauthorized
from keyshop.utils.security import generate_access_token, verify_access_token, verify_webhook_api_key


def test_token_round_trip():
    user_id = uuid4()
    token = generate_access_token(user_id, "admin")
    assert verify_access_token(token) == (user_id, "admin")


def test_tampered_role_is_rejected():
    user_id = uuid4()
    token = generate_access_token(user_id, "user")
    forged = token.replace(".user.", ".super.")
    with pytest.raises(Unauthorized):
        verify_access_token(forged)


def test_expired_token_is_rejected():
    token = generate_access_token(uuid4(), "user", ttl=-10)
    with pytest.raises(Unauthorized) as exc_info:
        verify_access_token(token)
    assert exc_info.value.message == "Token expired"


@pytest.mark.parametrize("token", ["", "garbage", "a.b.c.d", "not-a-uuid.user.123.sig"])
def test_malformed_token_is_rejected(token):
    with pytest.raises(Unauthorized):
        verify_access_token(token)


def test_webhook_api_key():
    assert verify_webhook_api_key("Apikey secret", "secret")
    assert not verify_webhook_api_key("Apikey wrong", "secret")
    assert not verify_webhook_api_key("Bearer secret", "secret")
    assert not verify_webhook_api_key(None, "secret")
