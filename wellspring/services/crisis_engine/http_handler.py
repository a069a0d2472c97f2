"""Crisis Engine HTTP handler - evaluation and alert endpoints.

Chat-message handling and assessment-response recording call
POST /crisis/evaluate; handlers resolve alerts through
POST /crisis/alerts/<id>/resolve.
"""
import logging
import os

from flask import Flask, request, jsonify

from wellspring.shared.database import get_connection_manager
from wellspring.shared.utils import hash_pii, configure_pii_salt
from .errors import AlertNotFound
from .handler import build_default

logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)

# Configure PII salt
pii_salt = os.getenv("PII_HASH_SALT", "default_dev_salt_change_in_production_32chars")
configure_pii_salt(pii_salt)

# Wires collaborators, starts the escalation scheduler and re-arms open alerts
crisis_handler = build_default()


@app.route("/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "crisis-engine",
    }), 200


@app.route("/ready", methods=["GET"])
def ready():
    """Readiness check, including the database pool when alerts live in PostgreSQL."""
    if crisis_handler is None:
        return jsonify({"status": "not_ready"}), 503

    if crisis_handler.config.alert_store == "postgres":
        database = get_connection_manager().health_check()
        if not database["healthy"]:
            return jsonify({"status": "not_ready", "database": database}), 503

    return jsonify({"status": "ready"}), 200


@app.route("/crisis/evaluate", methods=["POST"])
def evaluate():
    """Evaluate a chat message or assessment answer.

    Request Body:
        {
            "subject_id": "user_123",
            "text": "I can't cope anymore",
            "context": "chat",
            "language": "en",
            "jurisdiction": "US",
            "timezone": "America/New_York",
            "behaviors": ["social_withdrawal"],
            "assessment": {"instrument": "phq9", "question_id": "phq9_9", "response": 2}
        }

    Response:
        {
            "isCrisis": true,
            "severity": "medium",
            "indicators": [...],
            "resources": [...],
            "protocol": {...},
            "alertId": "alert_abc123"
        }
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({"error": "Request body required"}), 400

    subject_id = data.get("subject_id")
    if not subject_id:
        return jsonify({"error": "Missing subject_id"}), 400

    assessment = data.get("assessment")
    if assessment is not None and not isinstance(assessment, dict):
        return jsonify({"error": "assessment must be an object"}), 400

    behaviors = data.get("behaviors") or []
    if not isinstance(behaviors, list) or not all(isinstance(b, str) for b in behaviors):
        return jsonify({"error": "behaviors must be a list of strings"}), 400

    try:
        result = crisis_handler.evaluate_input(
            subject_id=subject_id,
            text=data.get("text", ""),
            context=data.get("context", "unknown"),
            language=data.get("language", "en"),
            jurisdiction=data.get("jurisdiction"),
            timezone=data.get("timezone"),
            behaviors=behaviors,
            assessment=assessment,
        )
    except Exception as e:
        logger.error("CRISIS_EVALUATE_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to evaluate input"}), 500

    logger.info(
        "CRISIS_EVALUATED_HTTP",
        extra={
            "subject_id_hash": hash_pii(subject_id),
            "is_crisis": result.is_crisis,
            "severity": result.severity.value,
        }
    )
    return jsonify(result.to_dict()), 200


@app.route("/crisis/alerts/<alert_id>/resolve", methods=["POST"])
def resolve_alert(alert_id: str):
    """Resolve a safety alert. Resolving twice is a no-op.

    Request Body:
        {
            "handled_by": "counselor_123"
        }
    """
    data = request.get_json(silent=True) or {}
    handled_by = data.get("handled_by")
    if not handled_by:
        return jsonify({"error": "Missing handled_by"}), 400

    try:
        alert = crisis_handler.resolve_alert(alert_id, handled_by)
    except AlertNotFound:
        return jsonify({"error": "Alert not found"}), 404
    except Exception as e:
        logger.error("CRISIS_RESOLVE_ERROR", extra={"alert_id": alert_id, "error": str(e)})
        return jsonify({"error": "Failed to resolve alert"}), 500

    logger.info(
        "CRISIS_RESOLVED_HTTP",
        extra={"alert_id": alert_id, "handled_by": handled_by}
    )
    return jsonify(alert.to_dict()), 200


@app.route("/crisis/alerts/active", methods=["GET"])
def get_active_alerts():
    """List unhandled alerts, newest first."""
    try:
        active = crisis_handler.get_active_alerts()
    except Exception as e:
        logger.error("CRISIS_LIST_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to list alerts"}), 500

    return jsonify({
        "count": len(active),
        "alerts": [a.to_dict() for a in active],
    }), 200


@app.route("/crisis/alerts/<alert_id>", methods=["GET"])
def get_alert(alert_id: str):
    try:
        alert = crisis_handler.get_alert(alert_id)
    except Exception as e:
        logger.error("CRISIS_GET_ERROR", extra={"alert_id": alert_id, "error": str(e)})
        return jsonify({"error": "Failed to load alert"}), 500

    if alert is None:
        return jsonify({"error": "Alert not found"}), 404
    return jsonify(alert.to_dict()), 200


@app.route("/crisis/stats", methods=["GET"])
def get_stats():
    """Totals, resolved-today count and average response minutes."""
    try:
        stats = crisis_handler.get_crisis_stats()
    except Exception as e:
        logger.error("CRISIS_STATS_ERROR", extra={"error": str(e)})
        return jsonify({"error": "Failed to compute stats"}), 500

    return jsonify(stats), 200


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "8003"))
    app.run(host="0.0.0.0", port=port, debug=False)
