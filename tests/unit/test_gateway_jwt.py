"""Unit tests for JWT handler."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from jose import jwt

from src.ar_common.errors import InvalidCredentialsError, InvalidRefreshTokenError
from src.ar_gateway.auth.jwt_handler import (
    create_access_token,
    create_refresh_token,
    decode_token,
)


def test_access_token_claims() -> None:
    payload = jwt.get_unverified_claims(create_access_token("player-1"))
    assert payload["sub"] == "player-1"
    assert payload["type"] == "access"


def test_refresh_token_claims() -> None:
    payload = jwt.get_unverified_claims(create_refresh_token("player-1"))
    assert payload["type"] == "refresh"


def test_decode_round_trip() -> None:
    token = create_access_token("player-2")
    assert decode_token(token, expected_type="access")["sub"] == "player-2"


def test_access_token_rejected_as_refresh() -> None:
    with pytest.raises(InvalidRefreshTokenError):
        decode_token(create_access_token("player-1"), expected_type="refresh")


def test_refresh_token_rejected_as_access() -> None:
    with pytest.raises(InvalidCredentialsError):
        decode_token(create_refresh_token("player-1"), expected_type="access")


def test_expired_access_token() -> None:
    with patch("src.ar_gateway.auth.jwt_handler._ACCESS_EXPIRE", timedelta(seconds=-1)):
        token = create_access_token("player-1")
    with pytest.raises(InvalidCredentialsError):
        decode_token(token, expected_type="access")


def test_expired_refresh_token() -> None:
    with patch("src.ar_gateway.auth.jwt_handler._REFRESH_EXPIRE", timedelta(seconds=-1)):
        token = create_refresh_token("player-1")
    with pytest.raises(InvalidRefreshTokenError):
        decode_token(token, expected_type="refresh")


def test_token_signed_with_other_secret() -> None:
    forged = jwt.encode({"sub": "player-1", "type": "access"}, "wrong-secret", algorithm="HS256")
    with pytest.raises(InvalidCredentialsError):
        decode_token(forged, expected_type="access")
