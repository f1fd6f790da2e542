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
HTTPS transport honoring the configured TLS trust anchor, cookie policy and response size limit.
"""

import ssl
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any

import httpx
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.exceptions import OversizedResponseError
from coreason_oidc.utils.logger import logger

TOKEN_REQUEST_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/x-www-form-urlencoded",
}

# Recomputed when the buffered body is wrapped in a new Response
_STRIPPED_HEADERS = {"content-encoding", "content-length", "transfer-encoding"}


def build_ssl_context(certificate: str) -> ssl.SSLContext:
    """
    Builds an SSL context trusting the given certificate.

    Args:
        certificate: PEM-encoded certificate(s), or the path of a CA bundle.
    """
    if "-----BEGIN" in certificate:
        return ssl.create_default_context(cadata=certificate)
    return ssl.create_default_context(cafile=certificate)


def build_cookie_jar(send_cookies: bool) -> CookieJar:
    """Returns a cookie jar; when cookies are disabled its policy neither stores nor sends any cookie."""
    if send_cookies:
        return CookieJar()
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


class HttpsClient:
    """
    Transport client of an authentication context.

    Attributes:
        client (httpx.AsyncClient): The underlying async HTTP client.
        context_id (str | None): Identity of the owning authentication context, used in logs.
        max_response_bytes (int): Responses larger than this are rejected.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        context_id: str | None = None,
        max_response_bytes: int = 1_000_000,
    ) -> None:
        self.client = client
        self.context_id = context_id
        self.max_response_bytes = max_response_bytes

    @classmethod
    def from_config(cls, config: AuthClientConfig, context_id: str | None = None) -> "HttpsClient":
        """
        Creates an instrumented client from the configuration.
        """
        verify: ssl.SSLContext | bool = build_ssl_context(config.certificate) if config.certificate else True
        client = httpx.AsyncClient(
            verify=verify,
            cookies=httpx.Cookies(build_cookie_jar(config.send_cookies_in_requests)),
            timeout=config.http_timeout,
        )
        # Instrument the client for distributed tracing
        HTTPXClientInstrumentor().instrument_client(client)
        logger.debug(f"Created HTTPS client for authentication context {context_id}")
        return cls(client, context_id=context_id, max_response_bytes=config.max_response_bytes)

    async def request(
        self,
        method: str,
        url: str,
        *,
        data: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        raise_for_status: bool = True,
    ) -> httpx.Response:
        """
        Sends a request and returns the fully buffered response.

        Args:
            method: HTTP method.
            url: Target URL.
            data: Form fields, sent url-encoded.
            headers: Extra request headers.
            raise_for_status: Raise `httpx.HTTPStatusError` when the status is not 2xx.

        Raises:
            httpx.HTTPError: On transport failures, and on non-2xx statuses when `raise_for_status` is set.
            OversizedResponseError: If the body exceeds `max_response_bytes`.
        """
        async with self.client.stream(method, url, data=data, headers=headers) as response:
            content_length = response.headers.get("Content-Length")
            if content_length:
                try:
                    if int(content_length) > self.max_response_bytes:
                        raise OversizedResponseError(
                            f"Response from {url} too large", status_code=response.status_code
                        )
                except ValueError:
                    pass

            content = bytearray()
            async for chunk in response.aiter_bytes():
                content.extend(chunk)
                if len(content) > self.max_response_bytes:
                    raise OversizedResponseError(f"Response from {url} too large", status_code=response.status_code)

        buffered = httpx.Response(
            status_code=response.status_code,
            headers=[(k, v) for k, v in response.headers.multi_items() if k.lower() not in _STRIPPED_HEADERS],
            content=bytes(content),
            request=response.request,
        )
        logger.debug(f"{method} {url} -> {buffered.status_code}")

        if raise_for_status:
            buffered.raise_for_status()
        return buffered

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        await self.client.aclose()
