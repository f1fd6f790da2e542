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
AuthenticationManager component orchestrating the OAuth2 authorization code flow with PKCE.
"""

from collections.abc import Mapping
from typing import Any

import anyio
import httpx
from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.crypto import (
    CODE_CHALLENGE_METHOD,
    RandomByteSource,
    decode_id_token,
    derive_code_challenge,
    generate_code_verifier,
)
from coreason_oidc.data_layer import DataLayer
from coreason_oidc.exceptions import (
    AuthenticationError,
    EndpointNotFoundError,
    IDTokenNotFoundError,
    InvalidResponseError,
    MissingRefreshTokenError,
    NetworkError,
    NetworkRequestError,
    PKCECodeVerifierNotFoundError,
    SignOutEndpointNotFoundError,
    SignOutRedirectURLNotFoundError,
)
from coreason_oidc.models import (
    BasicUserInfo,
    CustomGrantConfig,
    DecodedIDTokenPayload,
    MetadataState,
    OIDCEndpoints,
    TokenResponse,
)
from coreason_oidc.oidc_provider import OIDCMetadataResolver
from coreason_oidc.session import SessionMaterializer
from coreason_oidc.templates import TemplateContext, substitute_template_tags
from coreason_oidc.transport import TOKEN_REQUEST_HEADERS, HttpsClient
from coreason_oidc.utils.logger import logger

tracer = trace.get_tracer(__name__)

PKCE_CODE_VERIFIER = "pkce_code_verifier"
OP_CONFIG_INITIATED = "op_config_initiated"
METADATA_STATE = "metadata_state"
SESSION_STATE = "session_state"
SIGN_OUT_SUCCESS_PARAM = "sign_out_success"

# Changing any of these requires a new HTTP client
_TRANSPORT_CONFIG_KEYS = {"certificate", "send_cookies_in_requests", "http_timeout", "max_response_bytes"}


def _is_blank(value: str | None) -> bool:
    return not value or not value.strip()


def _append_params(url: str, params: list[tuple[str, str]]) -> str:
    return str(httpx.URL(url).copy_merge_params(httpx.QueryParams(params)))


def _response_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _network_error(message: str, error: Exception) -> NetworkRequestError:
    """Wraps a transport failure, keeping the provider status and body when available."""
    if isinstance(error, NetworkError):
        return NetworkRequestError(
            f"{message}: {error}", code=error.code, status_code=error.status_code, body=error.body
        )
    if isinstance(error, httpx.HTTPStatusError):
        return NetworkRequestError(
            f"{message}: {error}",
            code=type(error).__name__,
            status_code=error.response.status_code,
            body=_response_body(error.response),
        )
    return NetworkRequestError(f"{message}: {error}", code=type(error).__name__)


def _fail_span(span: Span, error: Exception) -> None:
    span.record_exception(error)
    span.set_status(Status(StatusCode.ERROR, str(error)))


class AuthenticationManager:
    """
    Authentication engine of one authentication context (The Core).

    Owns the context's HTTP client. Handles resources via async context manager.

    Attributes:
        data_layer (DataLayer): Persistent state of the context.
    """

    def __init__(
        self,
        data_layer: DataLayer,
        client: httpx.AsyncClient | None = None,
        random_source: RandomByteSource | None = None,
    ) -> None:
        """
        Initialize the AuthenticationManager.

        Args:
            data_layer: The data layer of the authentication context.
            client: External async client (optional). If not provided, one is created from the
                stored configuration on first use and closed by `aclose`.
            random_source: Random byte source for PKCE code verifiers. Defaults to `secrets.token_bytes`.
        """
        self.data_layer = data_layer
        self.random_source = random_source
        self._external_client = client
        self._transport: HttpsClient | None = None
        self._resolver: OIDCMetadataResolver | None = None
        self._session: SessionMaterializer | None = None
        self._metadata_lock: anyio.Lock | None = None

    async def __aenter__(self) -> "AuthenticationManager":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Closes the internally created HTTP client. An external client is left open."""
        if self._transport is not None and self._external_client is None:
            await self._transport.aclose()
        self._transport = None
        self._resolver = None
        self._session = None

    async def _get_transport(self) -> HttpsClient:
        if self._transport is None:
            config = await self.data_layer.get_config_data()
            if self._external_client is not None:
                self._transport = HttpsClient(
                    self._external_client,
                    context_id=self.data_layer.instance_id,
                    max_response_bytes=config.max_response_bytes,
                )
            else:
                self._transport = HttpsClient.from_config(config, context_id=self.data_layer.instance_id)
            self._resolver = OIDCMetadataResolver(self._transport)
            self._session = SessionMaterializer(self.data_layer, self._resolver)
        return self._transport

    async def _get_resolver(self) -> OIDCMetadataResolver:
        await self._get_transport()
        assert self._resolver is not None
        return self._resolver

    async def _get_session(self) -> SessionMaterializer:
        await self._get_transport()
        assert self._session is not None
        return self._session

    async def _materialize(
        self, response: httpx.Response, operation: str, replace: bool = False, session_state: str | None = None
    ) -> TokenResponse:
        session = await self._get_session()
        try:
            return await session.handle_token_response(response, replace=replace, session_state=session_state)
        except AuthenticationError:
            raise
        except Exception as e:
            raise AuthenticationError(f"{operation} failed while storing the session: {e}") from e

    async def initialize(self, config: AuthClientConfig) -> None:
        """Stores the configuration of a new authentication context."""
        await self.data_layer.set_config_data(config)

    async def build_authorization_url(self, extra_params: Mapping[str, Any] | None = None) -> str:
        """
        Builds the authorization request URL.

        When PKCE is enabled a fresh code verifier is stored, replacing any unconsumed one.

        Args:
            extra_params: Additional query parameters, appended last. Entries with an empty key or value are skipped.

        Returns:
            str: The URL to redirect the user agent to.

        Raises:
            EndpointNotFoundError: If no authorization endpoint is known.
        """
        authorize_endpoint = await self.data_layer.get_oidc_provider_metadata_parameter("authorization_endpoint")
        config = await self.data_layer.get_config_data()

        if _is_blank(authorize_endpoint):
            raise EndpointNotFoundError("authorization_endpoint")

        params: list[tuple[str, str]] = [
            ("response_type", "code"),
            ("client_id", config.client_id),
            ("scope", " ".join(config.get_scope())),
            ("redirect_uri", config.sign_in_redirect_url),
        ]

        if config.response_mode:
            params.append(("response_mode", config.response_mode))

        if config.enable_pkce:
            code_verifier = generate_code_verifier(self.random_source)
            await self.data_layer.set_temporary_data_parameter(PKCE_CODE_VERIFIER, code_verifier)
            params.append(("code_challenge_method", CODE_CHALLENGE_METHOD))
            params.append(("code_challenge", derive_code_challenge(code_verifier)))

        if config.prompt:
            params.append(("prompt", config.prompt))

        for key, value in (extra_params or {}).items():
            if key == "" or value is None or str(value) == "":
                continue
            params.append((str(key), str(value)))

        return _append_params(authorize_endpoint, params)

    async def exchange_authorization_code(self, code: str, session_state: str | None = None) -> TokenResponse:
        """
        Exchanges an authorization code for tokens and stores them as a new session.

        The session state is stored before the request is sent. On success the previous session is
        replaced, keeping only that session state. With PKCE, the stored code verifier is removed as
        soon as it is read, so a retry requires a new authorization request.

        Raises:
            EndpointNotFoundError: If no token endpoint is known.
            PKCECodeVerifierNotFoundError: If PKCE is enabled and no code verifier is stored.
            NetworkRequestError: If the request fails or the provider returns a non-2xx status.
            AuthenticationError: If the response cannot be interpreted or stored.
        """
        with tracer.start_as_current_span("exchange_authorization_code") as span:
            token_endpoint = (await self.data_layer.get_oidc_provider_metadata()).token_endpoint
            config = await self.data_layer.get_config_data()

            if _is_blank(token_endpoint):
                raise EndpointNotFoundError("token_endpoint")
            assert token_endpoint is not None

            if session_state:
                await self.data_layer.set_session_data_parameter(SESSION_STATE, session_state)

            body: dict[str, str] = {"client_id": config.client_id}
            client_secret = config.get_client_secret()
            if client_secret:
                body["client_secret"] = client_secret
            body["code"] = code
            body["grant_type"] = "authorization_code"
            body["redirect_uri"] = config.sign_in_redirect_url

            if config.enable_pkce:
                code_verifier = await self.data_layer.get_temporary_data_parameter(PKCE_CODE_VERIFIER)
                await self.data_layer.remove_temporary_data_parameter(PKCE_CODE_VERIFIER)
                if _is_blank(code_verifier):
                    raise PKCECodeVerifierNotFoundError(
                        "PKCE is enabled but no code verifier is stored. Build a new authorization URL first."
                    )
                body["code_verifier"] = code_verifier

            transport = await self._get_transport()
            try:
                response = await transport.post(token_endpoint, data=body, headers=TOKEN_REQUEST_HEADERS)
            except (httpx.HTTPError, NetworkError) as e:
                _fail_span(span, e)
                logger.error(f"Requesting access token failed: {e}")
                raise _network_error("Requesting access token failed", e) from e

            try:
                result = await self._materialize(
                    response, "Requesting access token", replace=True, session_state=session_state
                )
            except AuthenticationError as e:
                _fail_span(span, e)
                raise

            span.set_status(Status(StatusCode.OK))
            logger.info("Access token obtained from authorization code.")
            return result

    async def refresh_access_token(self) -> TokenResponse:
        """
        Refreshes the access token with the stored refresh token.

        Raises:
            MissingRefreshTokenError: If no refresh token is stored. No request is sent.
            EndpointNotFoundError: If no token endpoint is known.
            NetworkRequestError: If the request fails or the provider returns a non-2xx status.
            AuthenticationError: If the response cannot be interpreted or stored.
        """
        with tracer.start_as_current_span("refresh_access_token") as span:
            token_endpoint = (await self.data_layer.get_oidc_provider_metadata()).token_endpoint
            config = await self.data_layer.get_config_data()
            session_data = await self.data_layer.get_session_data()

            if _is_blank(session_data.refresh_token):
                raise MissingRefreshTokenError(
                    "No refresh token found. The provider does not return a refresh token "
                    "if the refresh token grant is not enabled."
                )
            if _is_blank(token_endpoint):
                raise EndpointNotFoundError("token_endpoint")
            assert token_endpoint is not None and session_data.refresh_token is not None

            body: dict[str, str] = {
                "client_id": config.client_id,
                "refresh_token": session_data.refresh_token,
                "grant_type": "refresh_token",
            }
            client_secret = config.get_client_secret()
            if client_secret:
                body["client_secret"] = client_secret

            transport = await self._get_transport()
            try:
                response = await transport.post(token_endpoint, data=body, headers=TOKEN_REQUEST_HEADERS)
            except (httpx.HTTPError, NetworkError) as e:
                _fail_span(span, e)
                logger.error(f"Refresh access token request failed: {e}")
                raise _network_error("Refresh access token request failed", e) from e

            try:
                result = await self._materialize(response, "Refreshing access token")
            except AuthenticationError as e:
                _fail_span(span, e)
                raise

            span.set_status(Status(StatusCode.OK))
            logger.info("Access token refreshed.")
            return result

    async def revoke_access_token(self) -> httpx.Response:
        """
        Revokes the current access token and clears the session.

        Returns:
            httpx.Response: The provider's response.

        Raises:
            EndpointNotFoundError: If no revocation endpoint is known.
            InvalidResponseError: If the status is not 200. The session is left untouched.
            NetworkRequestError: If the request fails.
        """
        with tracer.start_as_current_span("revoke_access_token") as span:
            revocation_endpoint = (await self.data_layer.get_oidc_provider_metadata()).revocation_endpoint
            config = await self.data_layer.get_config_data()

            if _is_blank(revocation_endpoint):
                raise EndpointNotFoundError("revocation_endpoint")
            assert revocation_endpoint is not None

            body = {
                "client_id": config.client_id,
                "token": (await self.data_layer.get_session_data()).access_token or "",
                "token_type_hint": "access_token",
            }

            transport = await self._get_transport()
            try:
                response = await transport.post(
                    revocation_endpoint, data=body, headers=TOKEN_REQUEST_HEADERS, raise_for_status=False
                )
            except (httpx.HTTPError, NetworkError) as e:
                _fail_span(span, e)
                logger.error(f"The request to revoke access token failed: {e}")
                raise _network_error("The request to revoke access token failed", e) from e

            if response.status_code != 200:
                error = InvalidResponseError(
                    f"The request sent to revoke the access token returned {response.status_code}, which is invalid.",
                    status_code=response.status_code,
                    body=_response_body(response),
                )
                _fail_span(span, error)
                raise error

            await (await self._get_session()).clear_user_session_data()
            span.set_status(Status(StatusCode.OK))
            logger.info("Access token revoked.")
            return response

    async def request_custom_grant(self, grant: CustomGrantConfig) -> TokenResponse | httpx.Response:
        """
        Sends a custom grant request to the token endpoint.

        Every body value goes through template tag substitution before it is form-encoded.

        Args:
            grant: The grant description.

        Returns:
            TokenResponse | httpx.Response: The stored session when `grant.returns_session` is set,
            otherwise the untouched provider response.

        Raises:
            EndpointNotFoundError: If neither the grant nor the metadata provides a token endpoint.
            InvalidResponseError: If the status is not 200.
            NetworkRequestError: If the request fails.
            AuthenticationError: If a session was expected but the response cannot be stored.
        """
        with tracer.start_as_current_span("request_custom_grant") as span:
            span.set_attribute("oidc.custom_grant.id", grant.id)
            metadata = await self.data_layer.get_oidc_provider_metadata()
            config = await self.data_layer.get_config_data()

            token_endpoint = grant.token_endpoint if not _is_blank(grant.token_endpoint) else metadata.token_endpoint
            if _is_blank(token_endpoint):
                raise EndpointNotFoundError("token_endpoint")
            assert token_endpoint is not None

            session_data = await self.data_layer.get_session_data()
            context = TemplateContext(config=config, session=session_data)
            body = {key: substitute_template_tags(str(value), context) for key, value in grant.data.items()}

            headers = dict(TOKEN_REQUEST_HEADERS)
            if grant.attach_token:
                headers["Authorization"] = f"Bearer {session_data.access_token or ''}"

            transport = await self._get_transport()
            try:
                response = await transport.post(token_endpoint, data=body, headers=headers, raise_for_status=False)
            except (httpx.HTTPError, NetworkError) as e:
                _fail_span(span, e)
                logger.error(f"The custom grant request '{grant.id}' failed: {e}")
                raise _network_error("The custom grant request failed", e) from e

            if response.status_code != 200:
                error = InvalidResponseError(
                    f"The custom grant request '{grant.id}' returned {response.status_code}, which is invalid.",
                    status_code=response.status_code,
                    body=_response_body(response),
                )
                _fail_span(span, error)
                raise error

            if not grant.returns_session:
                span.set_status(Status(StatusCode.OK))
                return response

            try:
                result = await self._materialize(response, f"Custom grant '{grant.id}'")
            except AuthenticationError as e:
                _fail_span(span, e)
                raise

            span.set_status(Status(StatusCode.OK))
            return result

    async def get_oidc_provider_metadata(self, force_init: bool = False) -> bool:
        """
        Resolves and stores the provider metadata.

        Resolution runs once per context unless forced. Discovery failures are never raised:
        fallback endpoints derived from the base URL are stored instead.

        Args:
            force_init: Resolve again even if metadata was already resolved.

        Returns:
            bool: Always True.
        """
        if not force_init and await self.data_layer.get_temporary_data_parameter(OP_CONFIG_INITIATED):
            return True

        if self._metadata_lock is None:
            self._metadata_lock = anyio.Lock()

        async with self._metadata_lock:
            # Another task may have completed resolution while we waited
            if not force_init and await self.data_layer.get_temporary_data_parameter(OP_CONFIG_INITIATED):
                return True

            config = await self.data_layer.get_config_data()
            resolver = await self._get_resolver()
            state, metadata = await resolver.discover(config)

            await self.data_layer.set_oidc_provider_metadata(metadata)
            await self.data_layer.set_temporary_data_parameter(METADATA_STATE, state.value)
            await self.data_layer.set_temporary_data_parameter(OP_CONFIG_INITIATED, True)
            logger.info(f"OIDC provider metadata resolved ({state.value}).")
            return True

    async def get_metadata_state(self) -> MetadataState:
        value = await self.data_layer.get_temporary_data_parameter(METADATA_STATE)
        return MetadataState(value) if value else MetadataState.UNINITIALIZED

    async def get_oidc_service_endpoints(self) -> OIDCEndpoints:
        metadata = await self.data_layer.get_oidc_provider_metadata()
        config = await self.data_layer.get_config_data()
        return OIDCEndpoints(
            **metadata.model_dump(),
            well_known_endpoint=OIDCMetadataResolver.resolve_well_known_endpoint(config),
        )

    async def get_sign_out_url(self) -> str:
        """
        Builds the end-session URL.

        Raises:
            SignOutEndpointNotFoundError: If no end_session_endpoint is known.
            IDTokenNotFoundError: If no ID token is stored.
            SignOutRedirectURLNotFoundError: If no sign-out or sign-in redirect URL is configured.
        """
        logout_endpoint = (await self.data_layer.get_oidc_provider_metadata()).end_session_endpoint
        config = await self.data_layer.get_config_data()

        if _is_blank(logout_endpoint):
            raise SignOutEndpointNotFoundError()
        assert logout_endpoint is not None

        id_token = (await self.data_layer.get_session_data()).id_token
        if _is_blank(id_token):
            raise IDTokenNotFoundError(
                "No ID token could be found. Either the session information is lost or you have not signed in."
            )
        assert id_token is not None

        callback_url = config.get_sign_out_callback_url()
        if _is_blank(callback_url):
            raise SignOutRedirectURLNotFoundError("No sign-out or sign-in redirect URL is configured.")
        assert callback_url is not None

        return _append_params(
            logout_endpoint,
            [
                ("id_token_hint", id_token),
                ("post_logout_redirect_uri", callback_url),
                ("state", SIGN_OUT_SUCCESS_PARAM),
            ],
        )

    async def sign_out(self) -> str:
        """Clears the session and returns the end-session URL."""
        sign_out_url = await self.get_sign_out_url()
        await (await self._get_session()).clear_user_session_data()
        return sign_out_url

    async def get_basic_user_info(self) -> BasicUserInfo:
        """
        Derives user information from the stored ID token.

        Claims whose value is None or an empty string are dropped.

        Raises:
            TokenDecodingError: If the stored ID token is missing or malformed.
        """
        session_data = await self.data_layer.get_session_data()
        claims = {
            key: value
            for key, value in decode_id_token(session_data.id_token or "").model_dump().items()
            if value is not None and value != ""
        }

        derived: dict[str, Any] = {
            "username": claims.get("sub"),
            "display_name": claims.get("preferred_username") or claims.get("given_name"),
            "email": claims.get("email"),
        }
        info: dict[str, Any] = {
            "allowed_scopes": session_data.scope,
            "session_state": session_data.session_state,
        }
        info.update({key: str(value) for key, value in derived.items() if value is not None and value != ""})
        info.update(claims)
        return BasicUserInfo(**info)

    async def get_decoded_id_token(self) -> DecodedIDTokenPayload:
        return decode_id_token((await self.data_layer.get_session_data()).id_token or "")

    async def get_id_token(self) -> str | None:
        return (await self.data_layer.get_session_data()).id_token

    async def get_access_token(self) -> str | None:
        return (await self.data_layer.get_session_data()).access_token

    async def is_authenticated(self) -> bool:
        return bool(await self.get_access_token())

    async def get_pkce_code(self) -> str | None:
        return await self.data_layer.get_temporary_data_parameter(PKCE_CODE_VERIFIER)

    async def set_pkce_code(self, code_verifier: str) -> None:
        await self.data_layer.set_temporary_data_parameter(PKCE_CODE_VERIFIER, code_verifier)

    async def validate_id_token(self, id_token: str) -> bool:
        """
        Verifies an ID token against the provider's JWKS.

        Raises:
            EndpointNotFoundError: If the metadata has no jwks_uri.
            KeyNotFoundError: If no key matches the token 'kid'.
            TokenValidationError: If the token is invalid.
            NetworkRequestError: If the JWKS cannot be fetched.
        """
        return await (await self._get_session()).validate_id_token(id_token)

    async def update_config(self, config: Mapping[str, Any]) -> None:
        """
        Merges a partial configuration into the stored one.

        With `override_well_known_endpoint_config` and `endpoints`, the metadata is rebuilt from the overrides
        alone and marked as resolved, so no discovery follows. Otherwise a change of `endpoints` forces a
        new metadata resolution.
        """
        partial = dict(config)
        await self.data_layer.set_config_data(partial)

        if _TRANSPORT_CONFIG_KEYS & partial.keys():
            await self.aclose()

        new_config = await self.data_layer.get_config_data()
        if partial.get("override_well_known_endpoint_config"):
            if partial.get("endpoints"):
                await self.data_layer.set_oidc_provider_metadata(
                    OIDCMetadataResolver.resolve_endpoints(new_config, {})
                )
                await self.data_layer.set_temporary_data_parameter(METADATA_STATE, MetadataState.DISCOVERED.value)
                await self.data_layer.set_temporary_data_parameter(OP_CONFIG_INITIATED, True)
        elif partial.get("endpoints"):
            await self.get_oidc_provider_metadata(force_init=True)
