from datetime import timedelta

import pytest
from jose import jwt

from app.auth.jwt_handler import create_access_token, decode_token, extract_bearer, identity_from_authorization
from app.core.config import settings


@pytest.mark.parametrize("identity", ["trader@example.com", "5012345", "user with spaces", "ünïcødé"])
def test_token_identity_round_trips_and_verifies_against_secret(identity):
    token = create_access_token(identity, "capital.com")

    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=["HS256"])
    assert payload["sub"] == identity
    assert payload["platform"] == "capital.com"
    assert identity_from_authorization(f"Bearer {token}", "capital.com") == identity


def test_token_is_valid_for_24_hours():
    payload = decode_token(create_access_token("trader", "mt5"))
    assert payload["exp"] - payload["iat"] == 24 * 3600


def test_extra_claims_are_embedded():
    payload = decode_token(create_access_token("5012345", "mt5", {"server": "Demo-Server"}))
    assert payload["server"] == "Demo-Server"


def test_expired_token_is_rejected():
    token = create_access_token("trader", "capital.com", expires_delta=timedelta(seconds=-5))
    assert identity_from_authorization(f"Bearer {token}", "capital.com") is None


def test_token_signed_with_another_secret_is_rejected():
    token = jwt.encode({"sub": "trader", "platform": "capital.com"}, "not-the-secret", algorithm="HS256")
    assert identity_from_authorization(f"Bearer {token}", "capital.com") is None


def test_token_for_other_platform_is_rejected():
    token = create_access_token("trader", "mt5")
    assert identity_from_authorization(f"Bearer {token}", "capital.com") is None
    assert identity_from_authorization(f"Bearer {token}", "mt5") == "trader"


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Token abc", "Basic dXNlcjpwdw==", "Bearer not.a.jwt"])
def test_malformed_headers_yield_no_identity(header):
    assert identity_from_authorization(header, "capital.com") is None


def test_extract_bearer_is_case_insensitive_on_scheme():
    assert extract_bearer("bearer abc.def.ghi") == "abc.def.ghi"
