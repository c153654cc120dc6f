import json
import logging

import httpx
import pytest

from storage_gateway.monitoring import slack_alerts
from storage_gateway.monitoring.context import get_request_context, set_request_context
from storage_gateway.monitoring.logger import JsonFormatter, log, logger


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def captured():
    handler = _Capture()
    previous = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield handler.records
    logger.removeHandler(handler)
    logger.setLevel(previous)


def test_logger_context_injection():
    # Ensure log() doesn't crash when context is missing
    log("INFO", "test message", component="test")


def test_log_fills_fields_from_context(captured):
    set_request_context(request_id="rid-1", provider="dropbox", operation="upload")
    log("WARNING", "slow upload", module="storage_service", file_id="f-1")

    [record] = captured
    payload = json.loads(JsonFormatter().format(record))
    assert payload["level"] == "WARNING"
    assert payload["component"] == "storage_service"
    assert payload["request_id"] == "rid-1"
    assert payload["provider"] == "dropbox"
    assert payload["operation"] == "upload"
    assert payload["file_id"] == "f-1"


def test_explicit_fields_override_context(captured):
    set_request_context(provider="dropbox")
    log("INFO", "listing", provider="mega")
    assert captured[0].provider == "mega"


def test_context_setter_ignores_none():
    set_request_context(request_id="rid-2")
    set_request_context(provider="onedrive")
    ctx = get_request_context()
    assert ctx["request_id"] == "rid-2"
    assert ctx["provider"] == "onedrive"


@pytest.mark.asyncio
async def test_slack_alert_without_webhook_is_noop(monkeypatch):
    monkeypatch.setattr(slack_alerts.settings, "SLACK_WEBHOOK_URL", None)
    # Should not raise
    await slack_alerts.send_slack_alert("disk full", severity="CRITICAL", module="jobs")


@pytest.mark.asyncio
async def test_slack_alert_failure_is_logged_not_raised(monkeypatch, captured):
    monkeypatch.setattr(slack_alerts.settings, "SLACK_WEBHOOK_URL", "https://hooks.slack.test/abc")

    class BrokenClient:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, *args, **kwargs):
            raise httpx.ConnectError("unreachable")

    monkeypatch.setattr(slack_alerts.httpx, "AsyncClient", BrokenClient)
    await slack_alerts.send_slack_alert("purge failed", context={"x": 1}, module="jobs", request_id="rid")
    assert any("Failed to send Slack alert" in r.getMessage() for r in captured)


@pytest.mark.asyncio
async def test_slack_alert_payload(monkeypatch):
    monkeypatch.setattr(slack_alerts.settings, "SLACK_WEBHOOK_URL", "https://hooks.slack.test/abc")
    sent = {}

    class RecordingClient:
        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def post(self, url, json=None, timeout=None):
            sent.update(url=url, json=json)

    monkeypatch.setattr(slack_alerts.httpx, "AsyncClient", RecordingClient)
    await slack_alerts.send_slack_alert("boom", severity="CRITICAL", module="main", request_id="rid-9")
    assert sent["url"] == "https://hooks.slack.test/abc"
    assert "[CRITICAL] [main] boom" in sent["json"]["text"]
    [attachment] = sent["json"]["attachments"]
    assert attachment["color"] == slack_alerts.SEVERITY_COLORS["CRITICAL"]
    fields = {f["title"]: f["value"] for f in attachment["fields"]}
    assert fields["Request ID"] == "rid-9"


def test_slack_payload_carries_provider_context():
    set_request_context(provider="backblaze", operation="delete")
    payload = slack_alerts.build_payload("delete failed", None, "WARNING", "storage_service", None)
    fields = {f["title"]: f["value"] for f in payload["attachments"][0]["fields"]}
    assert fields["Provider"] == "backblaze"
    assert fields["Operation"] == "delete"
