# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

import json
import time
from collections.abc import AsyncGenerator, Callable
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from authlib.jose import JsonWebKey, jwt

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.crypto import base64url_encode
from coreason_oidc.data_layer import DataLayer, MemoryStore
from coreason_oidc.manager import AuthenticationManager
from coreason_oidc.models import OIDCProviderMetadata

BASE_URL = "https://idp.example.com/t/acme"
CLIENT_ID = "test-client"
REDIRECT_URL = "https://app.example.com/callback"

DISCOVERY_DOCUMENT = {
    "issuer": f"{BASE_URL}/oauth2/token",
    "authorization_endpoint": f"{BASE_URL}/oauth2/authorize",
    "token_endpoint": f"{BASE_URL}/oauth2/token",
    "revocation_endpoint": f"{BASE_URL}/oauth2/revoke",
    "end_session_endpoint": f"{BASE_URL}/oidc/logout",
    "jwks_uri": f"{BASE_URL}/oauth2/jwks",
    "userinfo_endpoint": f"{BASE_URL}/oauth2/userinfo",
}

Route = Callable[[httpx.Request], httpx.Response]


class MockIdP:
    """
    Fake Identity Provider served through httpx.MockTransport.
    Routes are keyed by method and URL without query; every request is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        status_code: int = 200,
        json_data: Any = None,
        content: bytes | None = None,
        error: type[httpx.HTTPError] | None = None,
    ) -> None:
        def route(request: httpx.Request) -> httpx.Response:
            if error is not None:
                raise error("Simulated transport failure", request=request)  # type: ignore[call-arg]
            if json_data is not None:
                return httpx.Response(status_code, json=json_data)
            return httpx.Response(status_code, content=content or b"")

        self.routes[(method, url)] = route

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, str(request.url.copy_with(query=None)))
        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        return route(request)

    def calls(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url.copy_with(query=None)) == url]


def form_body(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}


def make_unsigned_token(claims: dict[str, Any], header: dict[str, Any] | None = None) -> str:
    head = base64url_encode(json.dumps(header or {"alg": "RS256", "kid": "k1"}))
    body = base64url_encode(json.dumps(claims))
    return f"{head}.{body}.signature"


@pytest.fixture(scope="session")
def rsa_key() -> Any:
    return JsonWebKey.generate_key("RSA", 2048, is_private=True, options={"kid": "signing-key-1"})


@pytest.fixture
def jwks(rsa_key: Any) -> dict[str, Any]:
    return {"keys": [rsa_key.as_dict(private=False)]}


@pytest.fixture
def make_id_token(rsa_key: Any) -> Callable[..., str]:
    def _make(alg: str = "RS256", kid: str | None = None, **overrides: Any) -> str:
        now = int(time.time())
        claims = {
            "sub": "alice",
            "aud": CLIENT_ID,
            "iss": DISCOVERY_DOCUMENT["issuer"],
            "iat": now,
            "exp": now + 3600,
        }
        claims.update(overrides)
        header = {"alg": alg, "kid": kid or rsa_key.as_dict()["kid"]}
        return jwt.encode(header, claims, rsa_key).decode("utf-8")  # type: ignore[no-any-return]

    return _make


@pytest.fixture
def idp() -> MockIdP:
    return MockIdP()


@pytest.fixture
def config() -> AuthClientConfig:
    return AuthClientConfig(
        client_id=CLIENT_ID,
        base_url=BASE_URL,
        sign_in_redirect_url=REDIRECT_URL,
        scope=["profile"],
    )


@pytest.fixture
def data_layer() -> DataLayer:
    return DataLayer(MemoryStore(), instance_id="test-context")


@pytest_asyncio.fixture
async def manager(
    idp: MockIdP, config: AuthClientConfig, data_layer: DataLayer
) -> AsyncGenerator[AuthenticationManager, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(idp.handler))
    async with AuthenticationManager(data_layer, client=client) as auth:
        await auth.initialize(config)
        await data_layer.set_oidc_provider_metadata(OIDCProviderMetadata(**DISCOVERY_DOCUMENT))
        yield auth
    await client.aclose()
