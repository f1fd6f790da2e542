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
Configuration for the coreason-oidc package.
"""

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from coreason_oidc.models import OIDCProviderMetadata

OIDC_SCOPE = "openid"

DEFAULT_SIGNATURE_ALGORITHMS = ["RS256", "RS512", "RS384", "PS256"]


class AuthClientConfig(BaseSettings):
    """
    Configuration settings of an authentication context.

    Attributes:
        client_id (str): The OAuth2 client ID.
        client_secret (SecretStr | None): The client secret, sent only when non-blank.
        base_url (str): Base URL of the Identity Provider (e.g. https://api.asgardeo.io/t/acme).
        sign_in_redirect_url (str): The redirect_uri of the authorization request.
        sign_out_redirect_url (str | None): Post-logout redirect. Defaults to sign_in_redirect_url.
        scope (list[str]): Requested scopes. "openid" is always added.
        enable_pkce (bool): Use PKCE (S256) for the authorization code flow.
        certificate (str | None): PEM text or path of the CA bundle trusted for TLS.
    """

    model_config = SettingsConfigDict(
        env_prefix="COREASON_OIDC_",
        case_sensitive=False,
        frozen=True,
    )

    client_id: str
    client_secret: SecretStr | None = None
    base_url: str
    sign_in_redirect_url: str
    sign_out_redirect_url: str | None = None
    scope: list[str] = Field(default_factory=list)
    response_mode: str | None = None
    prompt: str | None = None
    enable_pkce: bool = True
    send_cookies_in_requests: bool = True
    certificate: str | None = None
    well_known_endpoint: str = "/.well-known/openid-configuration"
    override_well_known_endpoint_config: bool = False
    endpoints: OIDCProviderMetadata | None = None
    validate_id_token: bool = False
    clock_tolerance: int = Field(default=300, ge=0, description="Leeway in seconds for ID token time claims.")
    allowed_algorithms: list[str] = Field(default_factory=lambda: list(DEFAULT_SIGNATURE_ALGORITHMS))
    http_timeout: float = Field(default=10.0, gt=0, description="Timeout in seconds for all IdP network operations.")
    max_response_bytes: int = Field(default=1_000_000, gt=0)
    unsafe_local_dev: bool = False

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, v: str) -> str:
        """
        Strips any trailing slash so that endpoint paths can be appended.
        """
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("base_url must not be empty.")
        return v

    @model_validator(mode="after")
    def validate_https(self) -> "AuthClientConfig":
        """
        Ensures that the base URL uses HTTPS, unless strictly opted out for local dev.
        """
        if self.base_url.startswith("http://") and not self.unsafe_local_dev:
            raise ValueError("HTTPS is required for production. Set 'unsafe_local_dev=True' only for local testing.")
        return self

    @field_validator("well_known_endpoint")
    @classmethod
    def normalize_well_known_endpoint(cls, v: str) -> str:
        v = v.strip()
        if v and not v.startswith("/"):
            v = f"/{v}"
        return v

    def get_scope(self) -> list[str]:
        """
        Returns the scopes to request: configured scopes in order, without duplicates,
        with the mandatory "openid" scope present exactly once.
        """
        scopes: list[str] = []
        for item in self.scope:
            item = item.strip()
            if item and item not in scopes:
                scopes.append(item)
        if OIDC_SCOPE not in scopes:
            scopes.append(OIDC_SCOPE)
        return scopes

    def get_sign_out_callback_url(self) -> str | None:
        return self.sign_out_redirect_url or self.sign_in_redirect_url

    def get_client_secret(self) -> str | None:
        """Returns the client secret, or None when it is unset or blank."""
        if self.client_secret is None:
            return None
        secret = self.client_secret.get_secret_value()
        return secret if secret.strip() else None
