# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

from unittest.mock import patch

import pytest
from conftest import CLIENT_ID, make_unsigned_token
from pydantic import SecretStr

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.exceptions import TokenDecodingError
from coreason_oidc.models import SessionData
from coreason_oidc.templates import TemplateContext, substitute_template_tags


@pytest.fixture
def context(config: AuthClientConfig) -> TemplateContext:
    return TemplateContext(
        config=config.model_copy(update={"client_secret": SecretStr("s3cret")}),
        session=SessionData(
            access_token="at-1",
            refresh_token="rt-1",
            id_token=make_unsigned_token({"sub": "alice"}),
        ),
    )


def test_substitutes_session_tags(context: TemplateContext) -> None:
    assert substitute_template_tags("Bearer {{token}}", context) == "Bearer at-1"
    assert substitute_template_tags("{{access_token}}:{{refresh_token}}", context) == "at-1:rt-1"
    assert substitute_template_tags("{{id_token}}", context) == context.session.id_token


def test_substitutes_config_tags(context: TemplateContext) -> None:
    assert substitute_template_tags("{{clientID}}/{{clientSecret}}", context) == f"{CLIENT_ID}/s3cret"
    assert substitute_template_tags("{{scope}}", context) == "profile openid"


def test_substitutes_username_from_id_token(context: TemplateContext) -> None:
    assert substitute_template_tags("user={{username}}", context) == "user=alice"


def test_repeated_tags_all_replaced(context: TemplateContext) -> None:
    assert substitute_template_tags("{{token}}-{{token}}", context) == "at-1-at-1"


def test_unknown_tags_left_untouched(context: TemplateContext) -> None:
    assert substitute_template_tags("{{unknown}} plain", context) == "{{unknown}} plain"


def test_substituted_values_are_not_rescanned(context: TemplateContext) -> None:
    session = context.session.model_copy(update={"access_token": "{{clientSecret}}", "refresh_token": "{{token}}"})
    tricky = TemplateContext(config=context.config, session=session)

    assert substitute_template_tags("{{token}}", tricky) == "{{clientSecret}}"
    assert substitute_template_tags("{{refresh_token}}|{{clientSecret}}", tricky) == "{{token}}|s3cret"


def test_missing_values_become_empty(config: AuthClientConfig) -> None:
    context = TemplateContext(config=config, session=SessionData())
    assert substitute_template_tags("[{{token}}][{{username}}][{{clientSecret}}]", context) == "[][][]"


def test_id_token_only_decoded_when_needed(config: AuthClientConfig) -> None:
    context = TemplateContext(config=config, session=SessionData(access_token="at", id_token="not-a-jwt"))
    with patch("coreason_oidc.templates.decode_id_token") as mock_decode:
        assert substitute_template_tags("{{token}}", context) == "at"
        mock_decode.assert_not_called()


def test_malformed_id_token_raises_for_username(config: AuthClientConfig) -> None:
    context = TemplateContext(config=config, session=SessionData(id_token="not-a-jwt"))
    with pytest.raises(TokenDecodingError):
        substitute_template_tags("{{username}}", context)
