"""Tests for the offboarding command-line interface."""
import json

import pytest

from offboard.config import AppConfig
from offboard.core.graph import TransientError
from scripts import audit
from scripts import offboard_cli as cli


@pytest.fixture()
def directory(fake_directory):
    fake_directory.add_user("alice@example.com", "user-a", enabled=False)
    fake_directory.add_user("carol@example.com", "user-c", enabled=True)
    fake_directory.add_service_principal("sp-crm", "app-crm", "Contoso CRM")
    fake_directory.add_grant("user-a", "g1", "sp-crm", "Mail.ReadWrite")
    fake_directory.add_grant("user-c", "g2", "sp-crm", "User.Read")
    return fake_directory


@pytest.fixture()
def configured(monkeypatch, directory, graph_config):
    monkeypatch.setattr(cli, "load_settings", lambda: graph_config)
    monkeypatch.setattr(cli, "build_directory", lambda cfg: directory)
    return directory


def _stdout_json(capsys):
    return json.loads(capsys.readouterr().out)


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 0
    assert "discover" in capsys.readouterr().out


def test_unconfigured_exits_with_2(monkeypatch, capsys):
    monkeypatch.setattr(cli, "load_settings", lambda: AppConfig())

    assert cli.main(["sign-out", "--email", "alice@example.com"]) == 2
    assert "Microsoft Graph not configured" in capsys.readouterr().err


def test_discover(configured, capsys):
    assert cli.main(["discover", "--email", "alice@example.com", "--case", "CASE-1"]) == 0

    report = _stdout_json(capsys)
    assert report["artifacts"][0]["id"] == "grant-g1"
    assert report["artifacts"][0]["case_ref"] == "CASE-1"
    assert report["findings"][0]["type"] == "LingeringOAuthGrant"


def test_discover_unknown_user(configured, capsys):
    assert cli.main(["discover", "--email", "ghost@example.com"]) == 1
    assert "User not found" in capsys.readouterr().err


def test_full_remediation_is_audited(configured, capsys):
    assert cli.main(["--operator", "oncall", "full-remediation", "--email", "alice@example.com"]) == 0

    result = _stdout_json(capsys)
    assert result["action"] == "full_remediation"
    assert configured.grants["user-a"] == []
    event = next(audit.read_events())
    assert event["event_type"] == "remediation_full"
    assert event["operator"] == "oncall"
    assert event["principal"] == "alice@example.com"


def test_revoke_app(configured, capsys):
    assert cli.main(["revoke-app", "--email", "alice@example.com", "--app-id", "app-crm"]) == 0
    assert _stdout_json(capsys)["details"]["matching_grants"] == 1


def test_failed_sign_out_exits_with_1(configured, capsys):
    configured.revoke_confirms = False

    assert cli.main(["sign-out", "--email", "alice@example.com"]) == 1

    assert "[sign-out] Error" in capsys.readouterr().err
    assert next(audit.read_events())["success"] is False


def test_scan_tenant_dry_run(configured, capsys):
    assert cli.main(["scan-tenant"]) == 0

    report = _stdout_json(capsys)
    assert [entry["principal"] for entry in report] == ["alice@example.com"]
    assert report[0]["active_grants"] == 1
    assert "remediation" not in report[0]
    assert "delete_oauth_grant" not in configured.call_names()


def test_scan_tenant_revoke_only_touches_disabled_users(configured, capsys):
    assert cli.main(["scan-tenant", "--revoke", "--include-enabled"]) == 0

    report = {entry["principal"]: entry for entry in _stdout_json(capsys)}
    assert report["alice@example.com"]["remediation"]["success"] is True
    assert "remediation" not in report["carol@example.com"]
    assert configured.grants["user-a"] == []
    assert [grant.id for grant in configured.grants["user-c"]] == ["g2"]


def test_scan_tenant_listing_failure(configured, capsys):
    configured.failures["list_users"] = TransientError("list_users", 503, None, "unavailable")
    assert cli.main(["scan-tenant"]) == 1
    assert "Error listing users" in capsys.readouterr().err
