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
Template tag substitution for custom grant request bodies.
"""

import re
from collections.abc import Callable
from dataclasses import dataclass

from coreason_oidc.config import AuthClientConfig
from coreason_oidc.crypto import decode_id_token
from coreason_oidc.models import SessionData


@dataclass(frozen=True)
class TemplateContext:
    config: AuthClientConfig
    session: SessionData


def _username(context: TemplateContext) -> str:
    if not context.session.id_token:
        return ""
    sub = decode_id_token(context.session.id_token).sub
    return "" if sub is None else str(sub)


TemplateTagResolver = Callable[[TemplateContext], str]

_TAG_PATTERN = re.compile(r"\{\{\w+\}\}")

TEMPLATE_TAGS: dict[str, TemplateTagResolver] = {
    "{{token}}": lambda ctx: ctx.session.access_token or "",
    "{{access_token}}": lambda ctx: ctx.session.access_token or "",
    "{{refresh_token}}": lambda ctx: ctx.session.refresh_token or "",
    "{{id_token}}": lambda ctx: ctx.session.id_token or "",
    "{{username}}": _username,
    "{{scope}}": lambda ctx: " ".join(ctx.config.get_scope()),
    "{{clientID}}": lambda ctx: ctx.config.client_id,
    "{{clientSecret}}": lambda ctx: ctx.config.get_client_secret() or "",
}


def substitute_template_tags(template: str, context: TemplateContext) -> str:
    """
    Replaces every recognised tag in the template with its current value.

    Tags are resolved only when present, so a template without "{{username}}" never decodes the ID token.
    Unrecognised text, including unknown "{{...}}" tags, is left untouched. Substituted values are not
    scanned again, so a token that contains a tag is inserted literally.

    Args:
        template: The raw body value.
        context: Current configuration and session.

    Returns:
        str: The substituted value.
    """

    def _replace(match: re.Match[str]) -> str:
        tag = match.group(0)
        resolve = TEMPLATE_TAGS.get(tag)
        return resolve(context) if resolve else tag

    return _TAG_PATTERN.sub(_replace, str(template))
