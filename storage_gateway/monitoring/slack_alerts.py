"""
Slack alerting for the storage gateway.

Alerts go to an incoming webhook as one attachment colored by severity.
Provider and operation are taken from the request context when not given.
Delivery failures are logged, never raised.
"""
from typing import Dict, Optional

import httpx

from storage_gateway.config import settings
from storage_gateway.monitoring.context import get_request_context
from storage_gateway.monitoring.logger import log

SEVERITY_COLORS = {
    "CRITICAL": "#8b0000",
    "ERROR": "#d32f2f",
    "WARNING": "#f9a825",
    "INFO": "#1976d2",
}


def build_payload(message: str, context: Optional[Dict], severity: str, module: str, request_id: str) -> Dict:
    ctx = get_request_context()
    fields = [
        {"title": "Environment", "value": settings.ENVIRONMENT, "short": True},
        {"title": "Component", "value": module or "-", "short": True},
        {"title": "Request ID", "value": request_id or ctx.get("request_id") or "-", "short": True},
    ]
    for title, key in (("Provider", "provider"), ("Operation", "operation")):
        if ctx.get(key):
            fields.append({"title": title, "value": ctx[key], "short": True})
    return {
        "text": f"[{settings.ENVIRONMENT}] [{severity}] [{module}] {message}",
        "attachments": [
            {
                "color": SEVERITY_COLORS.get(severity, SEVERITY_COLORS["ERROR"]),
                "fields": fields,
                "text": f"Context: {context or {}}",
            }
        ],
    }


async def send_slack_alert(message: str, context: Optional[Dict] = None, severity: str = "ERROR", module: str = None, request_id: str = None):
    webhook_url = settings.SLACK_WEBHOOK_URL
    if not webhook_url:
        log("WARNING", "Slack webhook URL not configured", module=module, request_id=request_id)
        return
    payload = build_payload(message, context, severity, module, request_id)
    try:
        async with httpx.AsyncClient() as client:
            await client.post(webhook_url, json=payload, timeout=5)
    except Exception as e:
        log("ERROR", f"Failed to send Slack alert: {e}", module=module, request_id=request_id)
