from __future__ import annotations

import logging
from typing import Any

import requests

from redroom.core.config import settings

logger = logging.getLogger(__name__)


def build_webhook_headers(extra_headers: dict[str, str] | None = None) -> dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if settings.NOTIFIER_WEBHOOK_TOKEN:
        headers["Authorization"] = f"Bearer {settings.NOTIFIER_WEBHOOK_TOKEN}"
    if extra_headers:
        headers.update(extra_headers)
    return headers


def post_json(url: str, payload: dict[str, Any], **kwargs: Any) -> requests.Response:
    if not url:
        logger.error("Webhook URL is empty; refusing outbound call")
        raise RuntimeError("Missing webhook URL")

    headers = build_webhook_headers(dict(kwargs.pop("headers", {}) or {}))
    timeout = kwargs.pop("timeout", settings.NOTIFIER_TIMEOUT_SECONDS)

    return requests.request(method="POST", url=url, json=payload, headers=headers, timeout=timeout, **kwargs)
