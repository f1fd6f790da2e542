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
OIDC metadata resolution: well-known discovery, endpoint overrides, fallback endpoints and JWKS caching.
"""

import time
from typing import Any

import anyio
import httpx
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from pydantic import ValidationError

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.exceptions import CoreasonOIDCError, NetworkRequestError
from coreason_oidc.models import MetadataState, OIDCProviderMetadata
from coreason_oidc.transport import HttpsClient
from coreason_oidc.utils.logger import logger

tracer = trace.get_tracer(__name__)

FALLBACK_ENDPOINT_PATHS: dict[str, str] = {
    "authorization_endpoint": "/oauth2/authorize",
    "check_session_iframe": "/oidc/checksession",
    "end_session_endpoint": "/oidc/logout",
    "introspection_endpoint": "/oauth2/introspect",
    "issuer": "/oauth2/token",
    "jwks_uri": "/oauth2/jwks",
    "registration_endpoint": "/api/identity/oauth2/dcr/v1.1/register",
    "revocation_endpoint": "/oauth2/revoke",
    "token_endpoint": "/oauth2/token",
    "userinfo_endpoint": "/oauth2/userinfo",
}


def _overrides(config: AuthClientConfig) -> dict[str, Any]:
    if config.endpoints is None:
        return {}
    return config.endpoints.model_dump(exclude_none=True)


class OIDCMetadataResolver:
    """
    Resolves the Identity Provider's metadata and caches its JWKS.

    Attributes:
        transport (HttpsClient): The transport of the owning authentication context.
        cache_ttl (int): The JWKS cache time-to-live in seconds.
    """

    def __init__(self, transport: HttpsClient, cache_ttl: int = 3600) -> None:
        self.transport = transport
        self.cache_ttl = cache_ttl
        self._jwks_cache: dict[str, Any] | None = None
        self._jwks_uri: str | None = None
        self._last_update: float = 0.0
        self._lock: anyio.Lock | None = None

    @staticmethod
    def resolve_well_known_endpoint(config: AuthClientConfig) -> str:
        return f"{config.base_url}{config.well_known_endpoint}"

    @staticmethod
    def resolve_endpoints(config: AuthClientConfig, discovered: dict[str, Any]) -> OIDCProviderMetadata:
        """
        Merges discovered metadata with the explicit endpoint overrides of the configuration.
        Overrides take precedence.
        """
        return OIDCProviderMetadata(**{**discovered, **_overrides(config)})

    @staticmethod
    def resolve_fallback_endpoints(config: AuthClientConfig) -> OIDCProviderMetadata:
        """
        Derives every endpoint from the base URL using fixed path suffixes, then applies the overrides.
        """
        fallback = {name: f"{config.base_url}{path}" for name, path in FALLBACK_ENDPOINT_PATHS.items()}
        return OIDCProviderMetadata(**{**fallback, **_overrides(config)})

    async def fetch_metadata(self, config: AuthClientConfig) -> dict[str, Any]:
        """
        Fetches the provider metadata from the well-known endpoint.

        Raises:
            NetworkRequestError: If the request fails or the status is not exactly 200.
            CoreasonOIDCError: If the body is not a JSON object.
        """
        url = self.resolve_well_known_endpoint(config)
        response = await self.transport.get(url, headers={"Accept": "application/json"}, raise_for_status=False)
        if response.status_code != 200:
            raise NetworkRequestError(
                f"Invalid response status {response.status_code} received for OIDC provider metadata request.",
                status_code=response.status_code,
                body=response.text,
            )
        data = response.json()
        if not isinstance(data, dict):
            raise CoreasonOIDCError(f"OIDC provider metadata from {url} is not a JSON object")
        return data

    async def discover(self, config: AuthClientConfig) -> tuple[MetadataState, OIDCProviderMetadata]:
        """
        Resolves the provider metadata. Never raises for discovery failures.

        Returns:
            tuple[MetadataState, OIDCProviderMetadata]: DISCOVERED with the fetched metadata merged with
            the overrides, or FALLBACK with the derived endpoints when discovery failed.
        """
        with tracer.start_as_current_span("oidc_discovery") as span:
            try:
                data = await self.fetch_metadata(config)
                metadata = self.resolve_endpoints(config, data)
                span.set_status(Status(StatusCode.OK))
                return MetadataState.DISCOVERED, metadata
            except (CoreasonOIDCError, httpx.HTTPError, ValueError, ValidationError) as e:
                logger.warning(
                    f"OIDC discovery from {self.resolve_well_known_endpoint(config)} failed, "
                    f"using fallback endpoints: {e}"
                )
                span.record_exception(e)
                span.add_event("fallback_endpoints")
                return MetadataState.FALLBACK, self.resolve_fallback_endpoints(config)

    async def _fetch_jwks(self, jwks_uri: str) -> dict[str, Any]:
        try:
            response = await self.transport.get(jwks_uri, headers={"Accept": "application/json"})
            jwks = response.json()
        except httpx.HTTPStatusError as e:
            raise NetworkRequestError(
                f"Failed to fetch JWKS from {jwks_uri}: {e}",
                code=type(e).__name__,
                status_code=e.response.status_code,
                body=e.response.text,
            ) from e
        except httpx.HTTPError as e:
            raise NetworkRequestError(f"Failed to fetch JWKS from {jwks_uri}: {e}", code=type(e).__name__) from e
        except ValueError as e:
            raise NetworkRequestError(f"Invalid JWKS returned from {jwks_uri}: {e}") from e

        if not isinstance(jwks, dict) or not isinstance(jwks.get("keys"), list):
            raise NetworkRequestError(f"Invalid JWKS returned from {jwks_uri}: missing 'keys'")
        return jwks

    async def get_jwks(self, jwks_uri: str, force_refresh: bool = False) -> dict[str, Any]:
        """
        Returns the JWKS, using the cache if valid.

        Args:
            jwks_uri: The URI to fetch the JWKS from.
            force_refresh: If True, bypasses the cache and fetches fresh keys.

        Raises:
            NetworkRequestError: If fetching fails.
        """
        if self._lock is None:
            self._lock = anyio.Lock()

        def cache_valid() -> bool:
            return (
                self._jwks_cache is not None
                and self._jwks_uri == jwks_uri
                and (time.time() - self._last_update) < self.cache_ttl
            )

        if not force_refresh and cache_valid():
            return self._jwks_cache  # type: ignore[return-value]

        async with self._lock:
            # Another task may have refreshed while we waited
            if not force_refresh and cache_valid():
                return self._jwks_cache  # type: ignore[return-value]

            jwks = await self._fetch_jwks(jwks_uri)
            self._jwks_cache = jwks
            self._jwks_uri = jwks_uri
            self._last_update = time.time()
            return jwks
