"""
Base utilities for API Blueprints

Provides the injected dependencies and response helpers shared across blueprints.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import current_app, jsonify

from gasless.core.sponsor import SponsorProvider, get_sponsor_provider
from gasless.wallet.session import SessionStore

logger = logging.getLogger(__name__)

SPONSOR_PROVIDER_KEY = "GASLESS_SPONSOR_PROVIDER"
SESSION_STORE_KEY = "GASLESS_SESSION_STORE"


def get_api_sponsor_provider() -> SponsorProvider:
    """Sponsor provider configured on the app, or the process-wide one."""
    return current_app.config.get(SPONSOR_PROVIDER_KEY) or get_sponsor_provider()


def get_api_session_store() -> Optional[SessionStore]:
    """Session store configured on the app, if any."""
    return current_app.config.get(SESSION_STORE_KEY)


def error_response(
    message: str,
    status: int = 400,
    code: str = "bad_request",
    context: Optional[Dict[str, Any]] = None,
    event_type: str = "api.error",
) -> Tuple[Any, int]:
    """Return an error response and log it."""
    level = logging.ERROR if status >= 500 else logging.WARNING
    logger.log(
        level,
        "API error: %s",
        message,
        extra={"event": event_type, "code": code, "status": status, **(context or {})},
    )
    return jsonify({"success": False, "error": message, "code": code}), status
