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
Custom exceptions for the coreason-oidc package.
"""

from typing import Any


class CoreasonOIDCError(Exception):
    """Base exception for all coreason-oidc errors."""


class ConfigurationError(CoreasonOIDCError):
    """
    Raised when a caller-fixable precondition is not met (missing endpoint, token or credential).
    Never retried internally.
    """


class EndpointNotFoundError(ConfigurationError):
    """Raised when a required OIDC endpoint is missing or blank in the provider metadata."""

    def __init__(self, endpoint: str, message: str | None = None) -> None:
        self.endpoint = endpoint
        super().__init__(
            message
            or f"No {endpoint} was found in the OIDC provider metadata or the value passed to the client is empty."
        )


class MissingRefreshTokenError(ConfigurationError):
    """Raised when a refresh is requested but the provider never issued a refresh token."""


class NotFoundError(ConfigurationError):
    """Raised when a value required to build a sign-out request is missing."""


class SignOutEndpointNotFoundError(NotFoundError, EndpointNotFoundError):
    """Raised when the provider metadata has no end_session_endpoint."""

    def __init__(self) -> None:
        EndpointNotFoundError.__init__(self, "end_session_endpoint")


class IDTokenNotFoundError(NotFoundError):
    """Raised when no ID token is stored for the current session."""


class SignOutRedirectURLNotFoundError(NotFoundError):
    """Raised when neither a sign-out nor a sign-in redirect URL is configured."""


class PKCECodeVerifierNotFoundError(NotFoundError):
    """Raised when PKCE is enabled but no code verifier is stored for the token exchange."""


class NetworkError(CoreasonOIDCError):
    """
    Raised when a request to the Identity Provider fails or returns an unexpected status.

    Attributes:
        code (str | None): Transport error code (e.g. the exception class name).
        status_code (int | None): HTTP status returned by the provider, if any.
        body (Any): Decoded response body returned by the provider, if any.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.body = body


class NetworkRequestError(NetworkError):
    """Raised when the transport fails (timeout, connection error, non-2xx status)."""


class InvalidResponseError(NetworkError):
    """Raised when a response arrives with a status other than the one the operation requires."""


class OversizedResponseError(NetworkError):
    """Raised when an HTTP response is too large."""


class IDTokenError(CoreasonOIDCError):
    """Base exception for ID token decoding and verification failures."""


class TokenDecodingError(IDTokenError):
    """Raised when an ID token is structurally malformed."""


class KeyNotFoundError(IDTokenError):
    """Raised when no JSON Web Key matches the 'kid' in the ID token header."""

    def __init__(self, kid: str | None, candidates: list[str | None]) -> None:
        self.kid = kid
        self.candidates = candidates
        expected = ", ".join(str(c) for c in candidates) or "<none>"
        super().__init__(
            f"Failed to find the 'kid' specified in the id_token. 'kid' found in the header: {kid}, "
            f"expected values: {expected}"
        )


class TokenValidationError(IDTokenError):
    """Raised when ID token signature or claim verification fails."""


class AuthenticationError(CoreasonOIDCError):
    """Raised when a token response cannot be interpreted or persisted. The original cause is chained."""
