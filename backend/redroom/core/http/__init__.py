from .webhook_client import build_webhook_headers, post_json

__all__ = [
    "build_webhook_headers",
    "post_json",
]
