"""Shared-token guard for the admin API."""
import hmac
import logging
from flask import current_app, g, request

logger = logging.getLogger(__name__)


def _presented_token():
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip()
    # EventSource cannot set headers, so the stream accepts a query token
    return request.args.get("access_token", "")


def check_admin():
    """``before_request`` hook: reject callers without the admin token.

    The reviewer identity for audit rows comes from ``X-Admin-Id``.
    """
    expected = current_app.config["ADMIN_API_TOKEN"]
    token = _presented_token()
    if not expected or not hmac.compare_digest(
        token.encode(), expected.encode()
    ):
        logger.info("Rejected admin API call to %s", request.path)
        return {"error": "Forbidden"}, 403

    g.admin_id = request.headers.get("X-Admin-Id", "").strip()[:100] or "admin"
    return None
