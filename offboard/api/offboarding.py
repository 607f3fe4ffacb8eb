"""Offboarding engine JSON API.

Every response has the shape ``{"status": "success", "data": ...}`` or
``{"status": "error", "error": "..."}``. Remediation routes go through the
orchestrated case provider, so the case record is updated even when the live
directory leg fails; the live result is reported under
``data.identity_provider``.
"""
from __future__ import annotations
import logging
from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request
from werkzeug.exceptions import BadRequest

from offboard.core.discovery_service import normalize_effective_date
from offboard.core.engine import OffboardEngine

bp = Blueprint("offboarding", __name__, url_prefix="/api")

logger = logging.getLogger(__name__)


def _engine() -> OffboardEngine:
    return current_app.extensions["offboard"]


def _ok(data: Any, status: int = 200):
    return jsonify({"status": "success", "data": data}), status


def _json_body() -> Dict[str, Any]:
    """Request JSON object; an empty body is treated as {}."""
    if not request.data:
        return {}
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise BadRequest("Request body must be a JSON object")
    return payload


def _require(payload: Dict[str, Any], key: str):
    value = payload.get(key)
    if value in (None, "", []):
        raise BadRequest(f"Missing required field: {key}")
    return value


def _string_list(payload: Dict[str, Any], key: str, allow_empty: bool = False) -> list:
    value = payload.get(key)
    if value is None and allow_empty:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise BadRequest(f"Field '{key}' must be a list of strings")
    if not value and not allow_empty:
        raise BadRequest(f"Field '{key}' must not be empty")
    return value


# ─────────────────────────────────────────────────────────────────────────────
# Discovery
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/discovery", methods=["POST"])
def discover():
    """Discover lingering access for one e-mail address."""
    payload = _json_body()
    email = _require(payload, "email")
    effective_date = payload.get("effective_date")
    try:
        normalize_effective_date(effective_date)
    except (TypeError, ValueError):
        raise BadRequest(f"Invalid effective_date: {effective_date}")
    result = _engine().discovery.discover_user_access(
        email,
        case_ref=payload.get("case"),
        effective_date=effective_date,
    )
    logger.info("Discovery for %s: %d artifact(s)", email, len(result.artifacts))
    return _ok(result.to_dict())


# ─────────────────────────────────────────────────────────────────────────────
# Cases
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/dashboard", methods=["GET"])
def dashboard():
    return _ok(_engine().provider.get_dashboard_stats())


@bp.route("/cases", methods=["GET"])
def list_cases():
    filters = {key: value for key, value in request.args.items() if key in ("status", "employee_id", "primary_email")}
    return _ok(_engine().provider.list_cases(filters or None))


@bp.route("/cases/<case_id>", methods=["GET"])
def case_detail(case_id: str):
    return _ok(_engine().provider.get_case_detail(case_id))


@bp.route("/cases/<case_id>/remediate", methods=["POST"])
def remediate_case(case_id: str):
    """Run a remediation action (full_bundle, revoke_token, sign_out, ...) on a case."""
    payload = _json_body()
    if payload.get("artifact_names"):
        return _ok(_engine().provider.bulk_remediate(case_id, _string_list(payload, "artifact_names")))
    action = _require(payload, "action")
    options = payload.get("options") or {}
    if not isinstance(options, dict):
        raise BadRequest("Field 'options' must be an object")
    return _ok(_engine().provider.execute_remediation(case_id, action, options))


@bp.route("/cases/<case_id>/scan", methods=["POST"])
def scan_case(case_id: str):
    return _ok(_engine().provider.trigger_scan(case_id))


@bp.route("/cases/<case_id>/scheduled-remediation", methods=["POST"])
def run_scheduled_remediation(case_id: str):
    return _ok(_engine().provider.run_scheduled_remediation_now(case_id))


# ─────────────────────────────────────────────────────────────────────────────
# Employees, findings, artifacts
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/employees/<employee_id>/revoke", methods=["POST"])
def revoke_employee(employee_id: str):
    payload = _json_body()
    scope = payload.get("scope") or "all"
    return _ok(_engine().provider.revoke_employee_access(employee_id, scope))


@bp.route("/findings/<finding_id>/remediate", methods=["POST"])
def remediate_finding(finding_id: str):
    return _ok(_engine().provider.remediate_finding(finding_id))


@bp.route("/artifacts/remediate", methods=["POST"])
def remediate_artifacts():
    payload = _json_body()
    return _ok(_engine().provider.remediate_artifacts(_string_list(payload, "artifact_names")))


# ─────────────────────────────────────────────────────────────────────────────
# Applications
# ─────────────────────────────────────────────────────────────────────────────
@bp.route("/apps", methods=["GET"])
def list_apps():
    return _ok(_engine().provider.get_all_active_oauth_apps())


@bp.route("/apps/update-scopes", methods=["POST"])
def update_scopes():
    payload = _json_body()
    artifact_id = _require(payload, "artifact_name")
    scopes = _string_list(payload, "scopes", allow_empty=True)
    return _ok(_engine().provider.update_user_scopes(artifact_id, scopes))


@bp.route("/apps/<client_id>", methods=["GET"])
def app_detail(client_id: str):
    return _ok(_engine().provider.get_app_detail(client_id))


@bp.route("/apps/<client_id>/global-remove", methods=["POST"])
def global_remove(client_id: str):
    payload = _json_body()
    return _ok(_engine().provider.global_app_removal(client_id, payload.get("app_name") or client_id))


@bp.route("/apps/<client_id>/revoke-users", methods=["POST"])
def revoke_users(client_id: str):
    payload = _json_body()
    return _ok(_engine().provider.revoke_app_for_users(client_id, _string_list(payload, "artifact_names")))


@bp.route("/apps/<client_id>/restore-users", methods=["POST"])
def restore_users(client_id: str):
    payload = _json_body()
    return _ok(_engine().provider.restore_app_for_users(client_id, _string_list(payload, "artifact_names")))
