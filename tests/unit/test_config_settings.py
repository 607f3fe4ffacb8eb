import pytest

from offboard.config import settings
from offboard.config.settings import AppConfig, load_settings

GRAPH_ENV = (
    "DEMO_MODE",
    "MICROSOFT_TENANT_ID",
    "MICROSOFT_CLIENT_ID",
    "MICROSOFT_CLIENT_SECRET",
    "GRAPH_MAX_RETRIES",
    "OFFBOARD_MAX_CONCURRENCY",
    "DISCOVER_SIGN_INS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for var in GRAPH_ENV:
        monkeypatch.delenv(var, raising=False)

    # /run/secrets points at an empty directory unless a test fills it
    real_path = settings.Path

    def fake_path(target):
        if str(target) == "/run/secrets":
            return tmp_path
        return real_path(target)

    monkeypatch.setattr(settings, "Path", fake_path)
    return tmp_path


def test_defaults_leave_graph_disabled():
    cfg = load_settings()
    assert cfg.demo_mode is False
    assert cfg.graph_configured is False
    assert cfg.missing_graph_settings == [
        "MICROSOFT_TENANT_ID",
        "MICROSOFT_CLIENT_ID",
        "MICROSOFT_CLIENT_SECRET",
    ]
    assert cfg.max_retries == 2
    assert cfg.max_concurrency == 8


def test_credentials_from_environment(monkeypatch):
    monkeypatch.setenv("MICROSOFT_TENANT_ID", "tenant-123")
    monkeypatch.setenv("MICROSOFT_CLIENT_ID", "client-abc")
    monkeypatch.setenv("MICROSOFT_CLIENT_SECRET", "env-secret")

    cfg = load_settings()

    assert cfg.graph_configured is True
    assert cfg.client_secret == "env-secret"


def test_client_secret_prefers_run_secrets(monkeypatch, clean_env):
    (clean_env / "microsoft_client_secret").write_text("file-secret\n")
    monkeypatch.setenv("MICROSOFT_CLIENT_SECRET", "env-secret")

    cfg = load_settings()

    assert cfg.client_secret == "file-secret"


def test_integer_settings_are_validated(monkeypatch, capsys):
    monkeypatch.setenv("GRAPH_MAX_RETRIES", "lots")
    monkeypatch.setenv("OFFBOARD_MAX_CONCURRENCY", "0")

    cfg = load_settings()

    assert cfg.max_retries == 2
    assert cfg.max_concurrency == 1
    assert "GRAPH_MAX_RETRIES" in capsys.readouterr().out


def test_optional_sources_toggle(monkeypatch):
    monkeypatch.setenv("DISCOVER_SIGN_INS", "false")
    monkeypatch.setenv("DEMO_MODE", "true")
    cfg = load_settings()
    assert cfg.include_sign_ins is False
    assert cfg.demo_mode is True


def test_required_permissions_listed():
    cfg = AppConfig()
    assert "DelegatedPermissionGrant.ReadWrite.All" in cfg.required_permissions
    assert "User.RevokeSessions.All" in cfg.required_permissions
