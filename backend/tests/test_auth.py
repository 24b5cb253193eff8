"""Tests for bearer token decoding and identity field extraction."""

from __future__ import annotations

import datetime
from typing import Any

import fastapi
import jwt
import pytest

from restoration.core import auth, config


def _settings() -> config.Settings:
    return config.Settings(
        keycloak_public_key="test-secret-key-with-enough-length",
        keycloak_algorithms=["HS256"],
    )


def test_identity_fields_from_idir_token(keycloak_token: dict[str, Any]) -> None:
    assert auth.get_user_guid(keycloak_token) == "AbC123DeF"
    assert auth.get_user_identifier(keycloak_token) == "jdoe"
    assert auth.get_user_identity_source(keycloak_token) == "IDIR"


def test_identity_fields_fall_back_to_preferred_username() -> None:
    token = {
        "preferred_username": "restoration_api@database",
        "restoration_system_username": "restoration_api",
    }
    assert auth.get_user_guid(token) == "restoration_api"
    assert auth.get_user_identifier(token) == "restoration_api"
    assert auth.get_user_identity_source(token) == "DATABASE"


def test_identity_fields_missing() -> None:
    assert auth.get_user_guid({}) is None
    assert auth.get_user_identifier({}) is None
    assert auth.get_user_identity_source({}) is None


def test_decode_token_valid() -> None:
    settings = _settings()
    raw = jwt.encode(
        {"preferred_username": "jdoe@idir"},
        settings.keycloak_public_key,
        algorithm="HS256",
    )
    assert auth.decode_token(raw, settings)["preferred_username"] == "jdoe@idir"


def test_decode_token_expired() -> None:
    settings = _settings()
    expired = datetime.datetime.now(datetime.UTC) - datetime.timedelta(minutes=5)
    raw = jwt.encode(
        {"preferred_username": "jdoe@idir", "exp": expired},
        settings.keycloak_public_key,
        algorithm="HS256",
    )
    with pytest.raises(fastapi.HTTPException) as excinfo:
        auth.decode_token(raw, settings)
    assert excinfo.value.status_code == 401
    assert excinfo.value.detail == "Access token expired"


def test_decode_token_invalid() -> None:
    with pytest.raises(fastapi.HTTPException) as excinfo:
        auth.decode_token("not-a-token", _settings())
    assert excinfo.value.status_code == 401
