"""Unit tests for remediation audit logging."""

import json

import pytest

from scripts import audit


@pytest.fixture
def audit_file(_isolated_audit_log):
    return audit.AUDIT_LOG_FILE


def test_log_remediation_event_creates_file(audit_file):
    """Test that logging creates the audit file."""
    assert not audit_file.exists()

    audit.log_remediation_event(
        "remediation_full",
        "alice@example.com",
        operator="api",
        case_ref="CASE-0001",
        details={"grants_success": True},
        success=True,
    )

    assert audit_file.exists()
    assert audit_file.stat().st_mode & 0o777 == 0o600


def test_logged_event_fields(audit_file):
    audit.log_remediation_event(
        "remediation_sign_out",
        "bob@example.com",
        operator="cli",
        details={"sessions_revoked": False},
        success=False,
    )

    event = json.loads(audit_file.read_text().strip())

    assert event["event_type"] == "remediation_sign_out"
    assert event["principal"] == "bob@example.com"
    assert event["operator"] == "cli"
    assert event["case_ref"] is None
    assert event["success"] is False
    assert event["details"] == {"sessions_revoked": False}
    assert len(event["signature"]) == 64


def test_non_json_details_are_stringified(audit_file):
    from datetime import datetime, timezone

    when = datetime(2025, 12, 5, tzinfo=timezone.utc)
    audit.log_remediation_event("discovery", "alice@example.com", details={"at": when})

    total, valid = audit.verify_audit_log()
    assert (total, valid) == (1, 1)
    assert next(audit.read_events())["details"]["at"] == str(when)


def test_verify_detects_tampering(audit_file):
    audit.log_remediation_event("remediation_full", "alice@example.com", success=True)
    audit.log_remediation_event("remediation_full", "bob@example.com", success=True)

    lines = audit_file.read_text().splitlines()
    tampered = json.loads(lines[1])
    tampered["success"] = False
    lines[1] = json.dumps(tampered)
    audit_file.write_text("\n".join(lines) + "\n")

    assert audit.verify_audit_log() == (2, 1)


def test_verify_without_log():
    assert audit.verify_audit_log() == (0, 0)
    assert list(audit.read_events()) == []


def test_signing_key_change_invalidates(audit_file, monkeypatch):
    audit.log_remediation_event("remediation_full", "alice@example.com")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "another-key")
    assert audit.verify_audit_log() == (1, 0)


def test_safe_log_never_raises(monkeypatch, capsys):
    def explode(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(audit, "log_remediation_event", explode)

    assert audit.safe_log_remediation_event("remediation_full", "alice@example.com") is False
    assert "Failed to log remediation_full event" in capsys.readouterr().err


def test_safe_log_writes(audit_file):
    assert audit.safe_log_remediation_event("remediation_revoke_app", "alice@example.com", case_ref="CASE-1") is True
    assert next(audit.read_events())["case_ref"] == "CASE-1"
