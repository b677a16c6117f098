"""
Wallet API Blueprint

Server-side wallet actions: sponsor lookup and session validation.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from flask import Blueprint, Flask, jsonify, request

from gasless.api.base import (
    SESSION_STORE_KEY,
    SPONSOR_PROVIDER_KEY,
    error_response,
    get_api_session_store,
    get_api_sponsor_provider,
)
from gasless.core.config import Config
from gasless.core.exceptions import GaslessError, InvalidInputError, get_error_context
from gasless.core.sponsor import SponsorProvider
from gasless.core.transaction import to_pubkey
from gasless.wallet.session import SessionStore

logger = logging.getLogger(__name__)

wallet_bp = Blueprint("wallet", __name__)

WALLET_ACTIONS = ("get_sponsor", "validate_session")


@wallet_bp.route("/api/wallet", methods=["GET"])
def describe_wallet_api() -> Dict[str, Any]:
    """List the supported POST actions."""
    return jsonify(
        {
            "message": "Gasless Wallet API",
            "cluster": Config.CLUSTER,
            "endpoints": {"POST": {"actions": list(WALLET_ACTIONS)}},
        }
    )


@wallet_bp.route("/api/wallet", methods=["POST"])
def wallet_action() -> Tuple[Any, int]:
    """Dispatch a wallet action named by the ``action`` field."""
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return error_response("Request body must be a JSON object", code="invalid_payload")

    action = body.get("action")
    if action == "get_sponsor":
        return _handle_get_sponsor()
    if action == "validate_session":
        return _handle_validate_session(body)
    return error_response(
        "Invalid action",
        code="invalid_action",
        context={"action": str(action)},
    )


def _handle_get_sponsor() -> Tuple[Any, int]:
    try:
        resolution = get_api_sponsor_provider().get()
    except GaslessError as exc:
        logger.error(
            "Sponsor unavailable: %s",
            exc,
            extra={"event": "api.sponsor_unavailable", **get_error_context(exc)},
        )
        return error_response("Sponsor unavailable", status=503, code="sponsor_unavailable")
    return jsonify(resolution.to_dict()), 200


def _handle_validate_session(body: Dict[str, Any]) -> Tuple[Any, int]:
    credential_id = body.get("credential_id") or body.get("credentialId")
    wallet_address = body.get("wallet_address") or body.get("walletAddress")

    if not credential_id or not wallet_address:
        return jsonify({"valid": False, "error": "Missing credentials"}), 400

    try:
        to_pubkey(str(wallet_address), "wallet_address")
    except InvalidInputError as exc:
        return jsonify({"valid": False, "error": exc.message}), 400

    store = get_api_session_store()
    record = store.load() if store is not None else None
    if record is not None and record.credential_id == credential_id and record.address != wallet_address:
        logger.warning(
            "Session address mismatch",
            extra={"event": "api.session_mismatch", "address": wallet_address},
        )
        return jsonify({"valid": False, "error": "Wallet does not belong to this credential"}), 200

    return jsonify({"valid": True, "wallet_address": wallet_address}), 200


def create_app(
    sponsor_provider: Optional[SponsorProvider] = None,
    session_store: Optional[SessionStore] = None,
) -> Flask:
    """Flask app serving the wallet blueprint."""
    app = Flask(__name__)
    app.config[SPONSOR_PROVIDER_KEY] = sponsor_provider
    app.config[SESSION_STORE_KEY] = session_store
    app.register_blueprint(wallet_bp)
    return app
