#!/usr/bin/env python3
"""
Payment gateway callback receiver

Small Flask service that sits beside the Streamlit storefront:
- POST /webhooks/mpesa  signed gateway events (x-lipana-signature header)
- GET  /health          database reachability

Run: python webhook_server.py  (port from WEBHOOK_PORT, default 5005)
"""

import logging
from typing import Optional

from flask import Blueprint, Flask, current_app, jsonify, request

from config import StorefrontConfig
from database import DatabaseManager, get_db_manager
from payment_webhook import process_payment_webhook, verify_webhook_signature

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-lipana-signature"

webhook_bp = Blueprint("webhooks", __name__)


@webhook_bp.route("/webhooks/mpesa", methods=["POST"])
def mpesa_webhook():
    body = request.get_data()
    secret = current_app.config["WEBHOOK_SECRET"]

    if not verify_webhook_signature(body, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("Rejected webhook with a bad signature")
        return jsonify({"error": "Invalid signature"}), 401

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "Invalid JSON body"}), 400

    db_manager = current_app.config["DB_MANAGER"]
    with db_manager.session_scope() as session:
        result = process_payment_webhook(session, payload)

    return jsonify({
        "processed": result.processed,
        "message": result.message,
        "orderId": result.order_id,
    }), 200


@webhook_bp.route("/health", methods=["GET"])
def health():
    healthy = current_app.config["DB_MANAGER"].health_check()
    return jsonify({"status": "healthy" if healthy else "error"}), 200 if healthy else 503


def create_app(db_manager: Optional[DatabaseManager] = None,
               webhook_secret: Optional[str] = None) -> Flask:
    """
    Build the receiver.

    Args:
        db_manager: Defaults to the process-wide manager
        webhook_secret: Defaults to LIPANA_WEBHOOK_SECRET
    """
    app = Flask(__name__)
    app.config["DB_MANAGER"] = db_manager or get_db_manager()
    app.config["WEBHOOK_SECRET"] = webhook_secret or StorefrontConfig.LIPANA_WEBHOOK_SECRET

    if not app.config["WEBHOOK_SECRET"]:
        logger.warning("LIPANA_WEBHOOK_SECRET is not set; webhook signatures are not checked")

    app.register_blueprint(webhook_bp)
    return app


def main():
    app = create_app()
    app.config["DB_MANAGER"].init_db()

    logger.info("=" * 60)
    logger.info(f"FreshCart payment webhooks on port {StorefrontConfig.WEBHOOK_PORT}")
    logger.info("   - POST /webhooks/mpesa")
    logger.info("   - GET  /health")
    logger.info("=" * 60)

    app.run(host="0.0.0.0", port=StorefrontConfig.WEBHOOK_PORT, debug=False)


if __name__ == "__main__":
    main()
