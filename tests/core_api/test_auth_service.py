import jwt
import pytest
from unittest.mock import patch

from rule_handler.core_api import auth_service
from rule_handler.core_api.exceptions import AuthTokenError


def test_get_auth_token_signs_uid_claim():
    token = auth_service.get_auth_token("user-1", "secret")
    payload = jwt.decode(token, "secret", algorithms=["HS256"])
    assert payload["uid"] == "user-1"
    assert "iat" in payload


def test_get_auth_token_wrong_secret_does_not_verify():
    token = auth_service.get_auth_token("user-1", "secret")
    with pytest.raises(jwt.InvalidSignatureError):
        jwt.decode(token, "other-secret", algorithms=["HS256"])


@pytest.mark.parametrize("user_id, secret", [("", "secret"), ("user-1", ""), ("user-1", None)])
def test_get_auth_token_missing_inputs(user_id, secret):
    with pytest.raises(AuthTokenError):
        auth_service.get_auth_token(user_id, secret)


def test_get_auth_token_signing_failure_is_wrapped():
    with patch("rule_handler.core_api.auth_service.jwt.encode", side_effect=jwt.PyJWTError("bad key")):
        with pytest.raises(AuthTokenError, match="Could not sign auth token") as excinfo:
            auth_service.get_auth_token("user-1", "secret")
    assert isinstance(excinfo.value.original_exception, jwt.PyJWTError)
