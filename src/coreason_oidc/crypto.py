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
Cryptographic primitives: PKCE code verifier/challenge pairs and ID token decoding and verification.
"""

import hashlib
import json
import secrets
from collections.abc import Callable
from typing import Any, cast

from authlib.common.encoding import to_bytes, to_unicode, urlsafe_b64decode, urlsafe_b64encode
from authlib.jose import JsonWebToken
from authlib.jose.errors import JoseError

from coreason_oidc.config import DEFAULT_SIGNATURE_ALGORITHMS
from coreason_oidc.exceptions import KeyNotFoundError, TokenDecodingError, TokenValidationError
from coreason_oidc.models import DecodedIDTokenPayload
from coreason_oidc.utils.logger import logger

RandomByteSource = Callable[[int], bytes]

CODE_VERIFIER_BYTES = 32
CODE_CHALLENGE_METHOD = "S256"


def base64url_encode(value: bytes | str) -> str:
    """Base64url-encodes the value without padding."""
    return to_unicode(urlsafe_b64encode(to_bytes(value)))


def generate_code_verifier(random_source: RandomByteSource | None = None) -> str:
    """
    Generates a PKCE code verifier from 32 random bytes.

    Args:
        random_source: Callable returning n random bytes. Defaults to `secrets.token_bytes`.

    Returns:
        str: The base64url-encoded verifier (43 characters).
    """
    source = random_source or secrets.token_bytes
    return base64url_encode(source(CODE_VERIFIER_BYTES))


def derive_code_challenge(verifier: str) -> str:
    """
    Derives the S256 code challenge: BASE64URL(SHA256(UTF-8 verifier)) without padding.
    """
    return base64url_encode(hashlib.sha256(verifier.encode("utf-8")).digest())


def _decode_segment(segment: str) -> dict[str, Any]:
    data = json.loads(urlsafe_b64decode(to_bytes(segment)).decode("utf-8"))
    if not isinstance(data, dict):
        raise ValueError("JWT segment is not a JSON object")
    return data


def decode_id_token(id_token: str) -> DecodedIDTokenPayload:
    """
    Decodes the payload segment of an ID token. The signature is not checked.

    Args:
        id_token: The compact-serialized ID token.

    Returns:
        DecodedIDTokenPayload: The claim set.

    Raises:
        TokenDecodingError: If the token is not a well-formed JWT with a JSON object payload.
    """
    if not isinstance(id_token, str) or not id_token.strip():
        raise TokenDecodingError("Decoding ID token failed: the token is empty.")

    try:
        segments = id_token.strip().split(".")
        if len(segments) < 2:
            raise ValueError("expected at least two '.'-separated segments")
        return DecodedIDTokenPayload(**_decode_segment(segments[1]))
    except (ValueError, TypeError) as e:
        raise TokenDecodingError(f"Decoding ID token failed: {e}") from e


def decode_id_token_header(id_token: str) -> dict[str, Any]:
    try:
        return _decode_segment(id_token.strip().split(".")[0])
    except (ValueError, TypeError, AttributeError) as e:
        raise TokenDecodingError(f"Decoding ID token header failed: {e}") from e


def get_jwk_for_id_token(id_token: str, jwks: dict[str, Any]) -> dict[str, Any]:
    """
    Selects the JSON Web Key whose 'kid' matches the ID token header.

    Args:
        id_token: The compact-serialized ID token.
        jwks: A JWK Set ({"keys": [...]}).

    Raises:
        TokenDecodingError: If the header cannot be decoded.
        KeyNotFoundError: If no key matches; lists the candidate kids.
    """
    kid = decode_id_token_header(id_token).get("kid")
    keys = [key for key in jwks.get("keys", []) if isinstance(key, dict)]

    for key in keys:
        if key.get("kid") == kid:
            return key

    raise KeyNotFoundError(kid, [key.get("kid") for key in keys])


def verify_id_token(
    id_token: str,
    jwks: dict[str, Any],
    client_id: str,
    issuer: str,
    subject: str,
    clock_tolerance: int,
    allowed_algorithms: list[str] | None = None,
) -> bool:
    """
    Verifies the ID token signature and its standard claims.

    The signing algorithm must be in the allow-list; 'aud' must equal the client ID,
    'iss' the issuer and 'sub' the subject; 'exp' is checked with the given leeway.

    Returns:
        bool: True if the token is valid.

    Raises:
        KeyNotFoundError: If no key in the set matches the token 'kid'.
        TokenValidationError: If verification fails.
    """
    jwk = get_jwk_for_id_token(id_token, jwks)
    jwt = JsonWebToken(allowed_algorithms or DEFAULT_SIGNATURE_ALGORITHMS)

    claims_options = {
        "iss": {"essential": True, "value": issuer},
        "aud": {"essential": True, "value": client_id},
        "sub": {"essential": True, "value": subject},
        "exp": {"essential": True},
    }

    try:
        jwt_any = cast("Any", jwt)
        claims = jwt_any.decode(id_token, jwk, claims_options=claims_options)
        claims.validate(leeway=clock_tolerance)
    except JoseError as e:
        logger.warning(f"ID token validation failed: {e.error}")
        raise TokenValidationError(f"Validating ID token failed: {e}") from e
    except ValueError as e:
        logger.warning(f"ID token validation failed: {e}")
        raise TokenValidationError(f"Validating ID token failed: {e}") from e

    return True
