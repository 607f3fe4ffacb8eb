"""Settings loader with environment variable and Docker secrets integration."""
from __future__ import annotations
import os
from dataclasses import dataclass, field
from pathlib import Path

GRAPH_DEFAULT_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_DEFAULT_AUTHORITY = "https://login.microsoftonline.com"

# Application permissions the app registration needs (admin consented)
REQUIRED_GRAPH_PERMISSIONS = (
    "User.Read.All",
    "AuditLog.Read.All",
    "Application.Read.All",
    "Directory.Read.All",
    "DelegatedPermissionGrant.ReadWrite.All",
    "AppRoleAssignment.ReadWrite.All",
    "User.RevokeSessions.All",
)


def _load_secret_from_file(secret_name: str, env_var: str | None = None) -> str | None:
    """
    Load secret from /run/secrets (Docker secrets pattern).

    Priority:
    1. /run/secrets/{secret_name} (Docker secrets mount)
    2. Environment variable (fallback)

    Args:
        secret_name: Name of the secret file in /run/secrets
        env_var: Optional environment variable name to check as fallback

    Returns:
        Secret value or None if not found
    """
    secret_file = Path("/run/secrets") / secret_name

    # Priority 1: Read from /run/secrets
    if secret_file.exists() and secret_file.is_file():
        try:
            secret_value = secret_file.read_text().strip()
            if secret_value:
                print(f"[settings] ✓ Loaded {secret_name} from /run/secrets")
                return secret_value
        except OSError as e:
            print(f"[settings] ✗ Failed to read /run/secrets/{secret_name}: {e}")

    # Priority 2: Fallback to environment variable
    if env_var:
        secret_value = os.getenv(env_var)
        if secret_value:
            return secret_value

    return None


def _env_int(var_name: str, default: int, minimum: int = 0) -> int:
    """Read an integer setting, falling back to the default on bad input."""
    raw = os.environ.get(var_name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        print(f"[settings] WARNING: {var_name}={raw!r} is not an integer, using {default}")
        return default
    return max(minimum, value)


@dataclass
class AppConfig:
    """Application configuration container."""
    # Mode
    demo_mode: bool = False

    # Microsoft Graph app registration (client credentials flow)
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    graph_base_url: str = GRAPH_DEFAULT_BASE_URL
    graph_authority: str = GRAPH_DEFAULT_AUTHORITY

    # Outbound call policy
    request_timeout: int = 10
    max_retries: int = 2
    max_concurrency: int = 8

    # Discovery
    sign_in_lookback_days: int = 30
    include_sign_ins: bool = True
    include_devices: bool = True

    # Service principal display-name cache
    sp_cache_ttl_seconds: int = 3600
    sp_cache_max_entries: int = 512

    required_permissions: tuple[str, ...] = field(default=REQUIRED_GRAPH_PERMISSIONS)

    @property
    def missing_graph_settings(self) -> list[str]:
        """Names of the Graph credential settings that are not set."""
        required = [
            ("MICROSOFT_TENANT_ID", self.tenant_id),
            ("MICROSOFT_CLIENT_ID", self.client_id),
            ("MICROSOFT_CLIENT_SECRET", self.client_secret),
        ]
        return [name for name, value in required if not value]

    @property
    def graph_configured(self) -> bool:
        """True when all Graph credentials are present.

        An unconfigured engine is valid: remediation becomes a documented
        no-op and discovery reports that the integration is disabled.
        """
        return not self.missing_graph_settings


def load_settings() -> AppConfig:
    """Load application settings from environment and /run/secrets."""
    demo_mode = os.environ.get("DEMO_MODE", "false").lower() == "true"

    tenant_id = os.environ.get("MICROSOFT_TENANT_ID", "").strip()
    client_id = os.environ.get("MICROSOFT_CLIENT_ID", "").strip()
    client_secret = _load_secret_from_file("microsoft_client_secret", "MICROSOFT_CLIENT_SECRET") or ""

    graph_base_url = os.environ.get("GRAPH_BASE_URL", GRAPH_DEFAULT_BASE_URL).rstrip("/")
    graph_authority = os.environ.get("GRAPH_AUTHORITY", GRAPH_DEFAULT_AUTHORITY).rstrip("/")

    request_timeout = _env_int("GRAPH_REQUEST_TIMEOUT", 10, minimum=1)
    max_retries = _env_int("GRAPH_MAX_RETRIES", 2)
    max_concurrency = _env_int("OFFBOARD_MAX_CONCURRENCY", 8, minimum=1)

    sign_in_lookback_days = _env_int("SIGN_IN_LOOKBACK_DAYS", 30, minimum=1)
    include_sign_ins = os.environ.get("DISCOVER_SIGN_INS", "true").lower() == "true"
    include_devices = os.environ.get("DISCOVER_DEVICES", "true").lower() == "true"

    sp_cache_ttl_seconds = _env_int("SP_CACHE_TTL_SECONDS", 3600)
    sp_cache_max_entries = _env_int("SP_CACHE_MAX_ENTRIES", 512, minimum=1)

    cfg = AppConfig(
        demo_mode=demo_mode,
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
        graph_base_url=graph_base_url,
        graph_authority=graph_authority,
        request_timeout=request_timeout,
        max_retries=max_retries,
        max_concurrency=max_concurrency,
        sign_in_lookback_days=sign_in_lookback_days,
        include_sign_ins=include_sign_ins,
        include_devices=include_devices,
        sp_cache_ttl_seconds=sp_cache_ttl_seconds,
        sp_cache_max_entries=sp_cache_max_entries,
    )

    mode_label = "DEMO" if demo_mode else "PRODUCTION"
    if cfg.graph_configured:
        print(f"[settings] Mode={mode_label}; graph tenant={tenant_id}; client_id={client_id}")
    else:
        missing = ", ".join(cfg.missing_graph_settings)
        print(f"[settings] Mode={mode_label}; Microsoft Graph integration disabled (missing: {missing})")

    return cfg
