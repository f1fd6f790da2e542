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
Tests for the HttpsClient component.
"""

import ssl
from unittest.mock import patch

import httpx
import pytest
from conftest import MockIdP, form_body

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.exceptions import OversizedResponseError
from coreason_oidc.transport import TOKEN_REQUEST_HEADERS, HttpsClient, build_cookie_jar, build_ssl_context

URL = "https://idp.example.com/resource"


def make_client(handler: MockIdP | None = None, max_response_bytes: int = 1_000) -> HttpsClient:
    idp = handler or MockIdP()
    client = httpx.AsyncClient(transport=httpx.MockTransport(idp.handler))
    return HttpsClient(client, context_id="ctx", max_response_bytes=max_response_bytes)


@pytest.mark.asyncio
async def test_post_sends_form_body() -> None:
    idp = MockIdP()
    idp.add("POST", URL, json_data={"ok": True})
    transport = make_client(idp)

    response = await transport.post(
        URL, data={"grant_type": "refresh_token", "scope": "a b"}, headers=TOKEN_REQUEST_HEADERS
    )

    assert response.json() == {"ok": True}
    request = idp.requests[0]
    assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert request.headers["Accept"] == "application/json"
    assert form_body(request) == {"grant_type": "refresh_token", "scope": "a b"}
    await transport.aclose()


@pytest.mark.asyncio
async def test_non_2xx_raises_by_default() -> None:
    idp = MockIdP()
    idp.add("GET", URL, status_code=400, json_data={"error": "invalid_request"})
    transport = make_client(idp)

    with pytest.raises(httpx.HTTPStatusError) as exc_info:
        await transport.get(URL)

    assert exc_info.value.response.status_code == 400
    assert exc_info.value.response.json() == {"error": "invalid_request"}
    await transport.aclose()


@pytest.mark.asyncio
async def test_non_2xx_returned_when_not_raising() -> None:
    idp = MockIdP()
    idp.add("GET", URL, status_code=503, content=b"unavailable")
    transport = make_client(idp)

    response = await transport.get(URL, raise_for_status=False)

    assert response.status_code == 503
    assert response.text == "unavailable"
    await transport.aclose()


@pytest.mark.asyncio
async def test_oversized_body_rejected() -> None:
    idp = MockIdP()
    idp.add("GET", URL, content=b"x" * 2_000)
    transport = make_client(idp, max_response_bytes=1_000)

    with pytest.raises(OversizedResponseError, match="too large"):
        await transport.get(URL)
    await transport.aclose()


@pytest.mark.asyncio
async def test_oversized_content_length_rejected() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"Content-Length": "5000"}, content=b"x" * 10)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    transport = HttpsClient(client, max_response_bytes=1_000)

    with pytest.raises(OversizedResponseError):
        await transport.get(URL)
    await transport.aclose()


@pytest.mark.asyncio
async def test_body_at_limit_accepted() -> None:
    idp = MockIdP()
    idp.add("GET", URL, content=b"x" * 1_000)
    transport = make_client(idp, max_response_bytes=1_000)

    response = await transport.get(URL)
    assert len(response.content) == 1_000
    await transport.aclose()


@pytest.mark.asyncio
async def test_transport_error_propagates() -> None:
    idp = MockIdP()
    idp.add("GET", URL, error=httpx.ConnectError)
    transport = make_client(idp)

    with pytest.raises(httpx.ConnectError):
        await transport.get(URL)
    await transport.aclose()


def test_cookie_jar_disabled_policy() -> None:
    enabled = build_cookie_jar(True)
    disabled = build_cookie_jar(False)

    assert enabled._policy.allowed_domains() is None  # type: ignore[attr-defined]
    assert disabled._policy.allowed_domains() == []  # type: ignore[attr-defined]
    assert disabled._policy.is_not_allowed("idp.example.com")  # type: ignore[attr-defined]


def test_ssl_context_from_path() -> None:
    with patch("ssl.create_default_context") as mock_ctx:
        build_ssl_context("/etc/ssl/custom-ca.pem")
        mock_ctx.assert_called_once_with(cafile="/etc/ssl/custom-ca.pem")


def test_ssl_context_from_pem() -> None:
    pem = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"
    with patch("ssl.create_default_context") as mock_ctx:
        build_ssl_context(pem)
        mock_ctx.assert_called_once_with(cadata=pem)


@pytest.mark.asyncio
async def test_from_config(config: AuthClientConfig) -> None:
    with patch("coreason_oidc.transport.HTTPXClientInstrumentor") as mock_instrumentor:
        transport = HttpsClient.from_config(
            config.model_copy(update={"http_timeout": 3.0, "max_response_bytes": 42}), context_id="ctx"
        )

    mock_instrumentor.return_value.instrument_client.assert_called_once_with(transport.client)
    assert transport.max_response_bytes == 42
    assert transport.client.timeout.read == 3.0
    assert transport.context_id == "ctx"
    await transport.aclose()


@pytest.mark.asyncio
async def test_from_config_with_certificate(config: AuthClientConfig) -> None:
    context = ssl.create_default_context()
    with (
        patch("coreason_oidc.transport.HTTPXClientInstrumentor"),
        patch("coreason_oidc.transport.build_ssl_context", return_value=context) as mock_build,
    ):
        transport = HttpsClient.from_config(config.model_copy(update={"certificate": "/etc/ssl/ca.pem"}))

    mock_build.assert_called_once_with("/etc/ssl/ca.pem")
    await transport.aclose()
