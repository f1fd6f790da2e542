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
import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from conftest import make_unsigned_token
from opentelemetry import trace
from opentelemetry.trace import NonRecordingSpan, SpanContext, TraceFlags

from coreason_oidc.utils.logger import configure_logging, logger, redact_tokens


@pytest.fixture(autouse=True)
def reset_logging(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    for name in ("COREASON_OIDC_LOG_LEVEL", "COREASON_OIDC_LOG_JSON", "COREASON_OIDC_LOG_FILE"):
        monkeypatch.delenv(name, raising=False)
    yield
    monkeypatch.undo()
    configure_logging()


@pytest.fixture
def messages() -> Generator[list[str], None, None]:
    captured: list[str] = []
    sink_id = logger.add(captured.append, format="{message} {extra}")
    yield captured
    logger.remove(sink_id)


def test_redact_tokens() -> None:
    token = make_unsigned_token({"sub": "alice"})
    redacted = redact_tokens(f"id_token={token} other=value")

    assert token not in redacted
    assert "<REDACTED_JWT>" in redacted
    assert "other=value" in redacted


def test_redact_leaves_plain_text() -> None:
    assert redact_tokens("Access token refreshed.") == "Access token refreshed."
    assert redact_tokens("version 1.2.3") == "version 1.2.3"


def test_log_records_are_redacted(messages: list[str]) -> None:
    token = make_unsigned_token({"sub": "alice"})
    logger.info(f"Received {token}")
    logger.complete()

    assert len(messages) == 1
    assert token not in messages[0]
    assert "<REDACTED_JWT>" in messages[0]


def test_trace_context_injected(messages: list[str]) -> None:
    context = SpanContext(
        trace_id=0x1234, span_id=0x5678, is_remote=False, trace_flags=TraceFlags(TraceFlags.SAMPLED)
    )
    with trace.use_span(NonRecordingSpan(context)):
        logger.info("inside span")
    logger.complete()

    assert format(0x1234, "032x") in messages[0]
    assert format(0x5678, "016x") in messages[0]


def test_standard_logging_intercepted(messages: list[str]) -> None:
    logging.getLogger("httpx").info("HTTP Request: GET https://idp.example.com")
    logger.complete()

    assert any("HTTP Request" in m for m in messages)


def test_invalid_level_falls_back_to_info(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COREASON_OIDC_LOG_LEVEL", "NOT_A_LEVEL")
    configure_logging()

    assert logging.getLogger().level == logging.INFO


def test_debug_level(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("COREASON_OIDC_LOG_LEVEL", "debug")
    configure_logging()

    assert logging.getLogger().level == logging.DEBUG


def test_json_output(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]) -> None:
    monkeypatch.setenv("COREASON_OIDC_LOG_JSON", "true")
    configure_logging()

    logger.info("structured")
    logger.complete()

    line = capsys.readouterr().out.strip().splitlines()[-1]
    assert json.loads(line)["record"]["message"] == "structured"


def test_file_sink(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    log_file = tmp_path / "oidc.log"
    monkeypatch.setenv("COREASON_OIDC_LOG_FILE", str(log_file))
    configure_logging()

    logger.info("to file")
    logger.complete()
    logger.remove()

    assert "to file" in log_file.read_text()


def test_no_file_by_default(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    configure_logging()
    logger.info("console only")
    logger.complete()

    assert list(tmp_path.iterdir()) == []
