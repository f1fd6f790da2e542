# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

"""
Data models for the coreason-oidc package.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MetadataState(StrEnum):
    UNINITIALIZED = "uninitialized"
    DISCOVERED = "discovered"
    FALLBACK = "fallback"


class OIDCProviderMetadata(BaseModel):
    """
    OIDC provider metadata, as served by the well-known discovery endpoint.

    Every endpoint is optional. A missing endpoint only becomes an error when an operation needs it.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    issuer: str | None = None
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    revocation_endpoint: str | None = None
    end_session_endpoint: str | None = None
    jwks_uri: str | None = None
    userinfo_endpoint: str | None = None
    introspection_endpoint: str | None = None
    registration_endpoint: str | None = None
    check_session_iframe: str | None = None


class OIDCEndpoints(BaseModel):
    """Resolved service endpoints of the current authentication context."""

    model_config = ConfigDict(frozen=True)

    authorization_endpoint: str | None = None
    check_session_iframe: str | None = None
    end_session_endpoint: str | None = None
    introspection_endpoint: str | None = None
    issuer: str | None = None
    jwks_uri: str | None = None
    registration_endpoint: str | None = None
    revocation_endpoint: str | None = None
    token_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    well_known_endpoint: str


class SessionData(BaseModel):
    """
    Session record of an authentication context.

    Provider responses are stored verbatim, so unknown fields are kept.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    session_state: str | None = None
    created_at: int | None = None


class TokenResponse(BaseModel):
    """
    Typed result of a successful token exchange, refresh or session-returning custom grant.

    Attributes:
        access_token (str): The access token issued by the authorization server.
        refresh_token (str | None): The refresh token, if issued.
        id_token (str | None): The ID token, if issued.
        token_type (str | None): The type of the token (e.g. "Bearer").
        expires_in (int | None): The lifetime in seconds of the access token.
        scope (str | None): Space-delimited scopes granted by the provider.
        session_state (str | None): Session state returned with the authorization response.
        created_at (int | None): Epoch seconds at which the session was stored.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str = Field(..., min_length=1)
    refresh_token: str | None = None
    id_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    session_state: str | None = None
    created_at: int | None = None


class DecodedIDTokenPayload(BaseModel):
    """Claim set decoded (not verified) from the payload segment of an ID token."""

    model_config = ConfigDict(frozen=True, extra="allow")

    sub: Any = None
    iss: Any = None
    aud: Any = None
    exp: Any = None
    iat: Any = None


class BasicUserInfo(BaseModel):
    """
    User information derived from the stored ID token.

    Non-empty decoded claims are kept as extra fields next to the derived ones.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    allowed_scopes: str | None = None
    session_state: str | None = None
    username: str | None = None
    display_name: str | None = None
    email: str | None = None


class CustomGrantConfig(BaseModel):
    """
    Shape of a custom grant request.

    Attributes:
        id (str): Caller-chosen identifier of the grant, used in logs.
        data (dict[str, str]): Body fields. Values may contain template tags such as ``{{token}}``.
        token_endpoint (str | None): Endpoint overriding the discovered token endpoint.
        attach_token (bool): Send ``Authorization: Bearer <access_token>`` with the request.
        returns_session (bool): Materialize the response into the session instead of returning it raw.
    """

    model_config = ConfigDict(frozen=True)

    id: str = "custom-grant"
    data: dict[str, Any] = Field(default_factory=dict)
    token_endpoint: str | None = None
    attach_token: bool = False
    returns_session: bool = False
