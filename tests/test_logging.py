"""Logging configuration tests."""

import structlog

from scmsync.logging_config import bind_scan_context, clear_scan_context, redact_secrets


def test_credentials_are_masked():
    event = redact_secrets(None, "info", {"event": "scan", "token": "ghp_secret", "password": "", "repo": "octo/app"})
    assert event["token"] == "***"
    # Empty values stay empty so a missing credential is still visible
    assert event["password"] == ""
    assert event["repo"] == "octo/app"


def test_scan_context_bind_and_clear():
    structlog.contextvars.clear_contextvars()
    bind_scan_context("scan_1", scope_id="conn_1", platform="github")
    assert structlog.contextvars.get_contextvars() == {
        "scan_id": "scan_1", "scope_id": "conn_1", "platform": "github",
    }

    clear_scan_context()
    assert structlog.contextvars.get_contextvars() == {}
