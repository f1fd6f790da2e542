# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

import pytest
from pydantic import ValidationError

from coreason_oidc.models import (
    CustomGrantConfig,
    MetadataState,
    OIDCProviderMetadata,
    SessionData,
    TokenResponse,
)


def test_token_response_requires_access_token() -> None:
    with pytest.raises(ValidationError):
        TokenResponse()  # type: ignore[call-arg]
    with pytest.raises(ValidationError):
        TokenResponse(access_token="")


def test_token_response_ignores_unknown_fields() -> None:
    response = TokenResponse(access_token="at", not_a_field="x")  # type: ignore[call-arg]
    assert "not_a_field" not in response.model_dump()


def test_metadata_is_frozen_and_ignores_unknown() -> None:
    metadata = OIDCProviderMetadata(token_endpoint="https://idp/token", grant_types_supported=["code"])

    assert "grant_types_supported" not in metadata.model_dump()
    with pytest.raises(ValidationError):
        metadata.token_endpoint = "https://evil/token"  # type: ignore[misc]


def test_session_data_keeps_unknown_fields() -> None:
    session = SessionData(access_token="at", tenant_domain="acme")  # type: ignore[call-arg]
    assert session.model_dump()["tenant_domain"] == "acme"


def test_custom_grant_defaults() -> None:
    grant = CustomGrantConfig()

    assert grant.id == "custom-grant"
    assert grant.data == {}
    assert grant.token_endpoint is None
    assert grant.attach_token is False
    assert grant.returns_session is False


def test_metadata_state_values() -> None:
    assert MetadataState("fallback") is MetadataState.FALLBACK
    assert str(MetadataState.DISCOVERED) == "discovered"
