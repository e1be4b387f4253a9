"""Outbound notification boundary.

The core only decides that a notification must fire and to whom. Delivery,
bounces and templates belong to whatever sits behind the webhook.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import requests
import structlog

from redroom.core.config import settings
from redroom.core.http.webhook_client import post_json

logger = structlog.get_logger(__name__)


class NotificationError(RuntimeError):
    """Raised when the transport rejects or fails a notification."""


class Notifier(Protocol):
    def notify(self, recipient_user_ids: Sequence[str], template_name: str, variables: Mapping[str, Any]) -> None: ...


class LoggingNotifier:
    def notify(self, recipient_user_ids: Sequence[str], template_name: str, variables: Mapping[str, Any]) -> None:
        logger.info(
            "notification.dispatched",
            template=template_name,
            recipients=list(recipient_user_ids),
            variables=dict(variables),
        )


class WebhookNotifier:
    def __init__(self, url: str) -> None:
        self.url = url

    def notify(self, recipient_user_ids: Sequence[str], template_name: str, variables: Mapping[str, Any]) -> None:
        payload = {
            "recipients": list(recipient_user_ids),
            "template": template_name,
            "variables": dict(variables),
        }
        try:
            response = post_json(self.url, payload)
        except requests.RequestException as exc:
            raise NotificationError(f"Notification transport failed: {exc}") from exc

        if response.status_code >= 300:
            raise NotificationError(f"Notification rejected with HTTP {response.status_code}")

        logger.info("notification.delivered", template=template_name, recipients=len(payload["recipients"]))


def get_notifier() -> Notifier:
    if settings.NOTIFIER_WEBHOOK_URL:
        return WebhookNotifier(settings.NOTIFIER_WEBHOOK_URL)
    return LoggingNotifier()
