"""Tests for the shared domain model and engine wiring."""
import pytest

from offboard.config import AppConfig
from offboard.core.engine import build_engine
from offboard.core.graph import NotFoundError
from offboard.core.models import Attempt, RemediationOutcome, RemediationResult, error_detail


def test_result_omits_error_when_successful():
    result = RemediationResult(success=True, action="revoke_sign_in_sessions", principal_name="alice@example.com")
    data = result.to_dict()
    assert "error" not in data
    assert data["outcomes"] == []


def test_result_carries_outcomes_and_error():
    outcome = RemediationOutcome("delete_oauth_grant", False, {"grant_id": "g1"})
    result = RemediationResult(
        success=False,
        action="revoke_all_oauth_grants",
        principal_name="alice@example.com",
        outcomes=[outcome],
        error="denied",
    )
    data = result.to_dict()
    assert data["error"] == "denied"
    assert data["outcomes"][0] == {"action": "delete_oauth_grant", "success": False, "detail": {"grant_id": "g1"}}


def test_attempt_captures_graph_errors_only():
    def missing():
        raise NotFoundError("get_service_principal", 404, "Request_ResourceNotFound", "gone")

    attempt = Attempt.run(missing)
    assert not attempt.ok
    assert attempt.value_or("fallback") == "fallback"
    assert Attempt.run(lambda: 3).value == 3

    with pytest.raises(ZeroDivisionError):
        Attempt.run(lambda: 1 / 0)


def test_error_detail_for_plain_exception():
    detail = error_detail(RuntimeError("boom"))
    assert detail["error_kind"] == "Unknown"
    assert detail["message"] == "boom"


def test_build_engine_without_credentials():
    engine = build_engine(AppConfig(demo_mode=True))
    assert engine.graph_configured is False
    assert engine.remediation.is_configured is False
    assert engine.provider.get_case_detail("CASE-0001")["case"]["employee_id"] == "EMP-001"


def test_build_engine_production_store_is_empty():
    engine = build_engine(AppConfig())
    assert engine.provider.list_cases() == []
