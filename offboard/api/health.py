"""Health check endpoints."""
from flask import Blueprint, current_app, jsonify

bp = Blueprint("health", __name__)


@bp.route("/health")
def health_check():
    """Basic health check endpoint."""
    return ("ok", 200, {"Content-Type": "text/plain"})


@bp.route("/ready")
def readiness_check():
    """Readiness check endpoint."""
    return ("ready", 200, {"Content-Type": "text/plain"})


@bp.route("/health/graph")
def graph_status():
    """Microsoft Graph integration status (no outbound call)."""
    cfg = current_app.config.get("APP_CONFIG")
    if cfg is None:
        return jsonify({"status": "error", "error": "Application not configured"}), 503
    return jsonify({
        "status": "success",
        "data": {
            "configured": cfg.graph_configured,
            "missing_settings": cfg.missing_graph_settings,
            "required_permissions": list(cfg.required_permissions),
            "tenant_id": cfg.tenant_id or None,
            "demo_mode": cfg.demo_mode,
        },
    })
