# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc

import logging
import os
import re
import sys
from typing import Any

from loguru import logger
from opentelemetry import trace

__all__ = ["logger", "configure_logging", "redact_tokens"]

# Three base64url segments separated by dots, as in a compact JWS.
_JWT_PATTERN = re.compile(r"\beyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*")

REDACTED = "<REDACTED_JWT>"


class InterceptHandler(logging.Handler):
    """
    Redirects standard logging messages to Loguru.
    httpx and authlib log through the standard library, so their records end up in the same sinks.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno  # type: ignore[assignment]

        frame = logging.currentframe()
        depth = 2
        while frame and (frame.f_code.co_filename == logging.__file__ or frame.f_code.co_filename == __file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def redact_tokens(message: str) -> str:
    """Replaces anything shaped like a JWT in the message."""
    return _JWT_PATTERN.sub(REDACTED, message)


def record_patcher(record: dict[str, Any]) -> None:
    """
    Loguru patcher. Strips tokens from the message and injects the OpenTelemetry
    trace_id and span_id into the record extras.
    """
    record["message"] = redact_tokens(record["message"])

    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        record["extra"]["trace_id"] = format(ctx.trace_id, "032x")
        record["extra"]["span_id"] = format(ctx.span_id, "016x")


def configure_logging() -> None:
    """
    Configures the logger based on environment variables.
    Call this to reload configuration if env vars change.

    Environment:
        COREASON_OIDC_LOG_LEVEL: Minimum level (default INFO).
        COREASON_OIDC_LOG_JSON: "true" for JSON lines on stdout, human-readable stderr otherwise.
        COREASON_OIDC_LOG_FILE: Optional path of a rotating JSON log file.
    """
    log_level = os.getenv("COREASON_OIDC_LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("COREASON_OIDC_LOG_JSON", "false").lower() == "true"
    log_file = os.getenv("COREASON_OIDC_LOG_FILE")

    try:
        logger.level(log_level)
    except ValueError:
        log_level = "INFO"

    logger.configure(handlers=[], patcher=record_patcher)

    if log_json:
        logger.add(sys.stdout, level=log_level, serialize=True)
    else:
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )
        logger.add(sys.stderr, level=log_level, format=format_str)

    if log_file:
        try:
            logger.add(
                log_file,
                rotation="500 MB",
                retention="10 days",
                serialize=True,
                enqueue=True,
                level=log_level,
            )
        except (PermissionError, OSError) as e:
            # Read-only filesystems keep console logging only
            logger.warning(f"File logging disabled, cannot write to {log_file}: {e}")

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    numeric_level = logging.getLevelName(log_level)
    if isinstance(numeric_level, int):
        logging.getLogger().setLevel(numeric_level)
    else:
        logging.getLogger().setLevel(logging.INFO)


# Initialize on import
configure_logging()
