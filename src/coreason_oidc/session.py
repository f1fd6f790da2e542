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
Session materialization: turning token responses into stored session data.
"""

import time
from typing import Any

import httpx

from coreason_oidc.crypto import decode_id_token, verify_id_token
from coreason_oidc.data_layer import DataLayer
from coreason_oidc.exceptions import AuthenticationError, EndpointNotFoundError, TokenValidationError
from coreason_oidc.models import TokenResponse
from coreason_oidc.oidc_provider import OIDCMetadataResolver
from coreason_oidc.utils.logger import logger


class SessionMaterializer:
    """
    Stores token responses as the session of an authentication context.

    Attributes:
        data_layer (DataLayer): The data layer of the context.
        resolver (OIDCMetadataResolver): Used to fetch the JWKS when ID tokens are validated.
    """

    def __init__(self, data_layer: DataLayer, resolver: OIDCMetadataResolver) -> None:
        self.data_layer = data_layer
        self.resolver = resolver

    async def validate_id_token(self, id_token: str) -> bool:
        """
        Verifies the ID token against the provider's JWKS and the configured client.

        The expected subject is the token's own 'sub'; the issuer comes from the provider metadata.

        Raises:
            EndpointNotFoundError: If the metadata has no jwks_uri.
            TokenValidationError: If the token is invalid.
        """
        config = await self.data_layer.get_config_data()
        metadata = await self.data_layer.get_oidc_provider_metadata()

        if not metadata.jwks_uri or not metadata.jwks_uri.strip():
            raise EndpointNotFoundError("jwks_uri")

        jwks = await self.resolver.get_jwks(metadata.jwks_uri)
        subject = decode_id_token(id_token).sub
        if not subject:
            raise TokenValidationError("Validating ID token failed: the token has no 'sub' claim.")

        return verify_id_token(
            id_token,
            jwks,
            client_id=config.client_id,
            issuer=metadata.issuer or "",
            subject=str(subject),
            clock_tolerance=config.clock_tolerance,
            allowed_algorithms=config.allowed_algorithms,
        )

    async def handle_token_response(
        self, response: httpx.Response, replace: bool = False, session_state: str | None = None
    ) -> TokenResponse:
        """
        Stores a token response as the session and returns the typed result.

        By default the body is merged into the stored session, so a refresh response without a
        refresh_token keeps the previous one. With replace set, the stored session is discarded first
        and only the given session_state is carried into the new one.

        Raises:
            AuthenticationError: If the body is not a token response, ID token validation fails,
                or the session cannot be stored.
        """
        try:
            body: Any = response.json()
        except ValueError as e:
            raise AuthenticationError(f"Token response is not valid JSON: {e}") from e

        if not isinstance(body, dict):
            raise AuthenticationError("Token response is not a JSON object.")
        if not body.get("access_token"):
            raise AuthenticationError("Token response does not contain an access_token.")

        config = await self.data_layer.get_config_data()
        if config.validate_id_token:
            id_token = body.get("id_token")
            if not id_token:
                raise AuthenticationError("ID token validation is enabled but the token response has no id_token.")
            await self.validate_id_token(id_token)

        record: dict[str, Any] = {}
        if replace:
            await self.data_layer.remove_session_data()
            if session_state:
                record["session_state"] = session_state

        record.update(body)
        record["created_at"] = int(time.time())
        session = await self.data_layer.set_session_data(record)
        logger.info("Session data stored from token response.")
        return TokenResponse(**session.model_dump())

    async def clear_user_session_data(self) -> None:
        await self.data_layer.remove_session_data()
        logger.info("Session data cleared.")
