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
Client-side OAuth2 authorization code flow with PKCE against an OpenID Connect provider.
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import AuthClientConfig
from .data_layer import DataLayer, MemoryStore, Store
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    CoreasonOIDCError,
    EndpointNotFoundError,
    IDTokenError,
    InvalidResponseError,
    MissingRefreshTokenError,
    NetworkError,
    NetworkRequestError,
    TokenDecodingError,
)
from .manager import AuthenticationManager
from .models import BasicUserInfo, CustomGrantConfig, MetadataState, OIDCProviderMetadata, SessionData, TokenResponse

__all__ = [
    "AuthClientConfig",
    "AuthenticationError",
    "AuthenticationManager",
    "BasicUserInfo",
    "ConfigurationError",
    "CoreasonOIDCError",
    "CustomGrantConfig",
    "DataLayer",
    "EndpointNotFoundError",
    "IDTokenError",
    "InvalidResponseError",
    "MemoryStore",
    "MetadataState",
    "MissingRefreshTokenError",
    "NetworkError",
    "NetworkRequestError",
    "OIDCProviderMetadata",
    "SessionData",
    "Store",
    "TokenDecodingError",
    "TokenResponse",
]
