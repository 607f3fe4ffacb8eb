"""Audit trail for offboarding remediation (signed JSONL)."""

from __future__ import annotations
import datetime
import hashlib
import hmac
import json
import os
import sys
from pathlib import Path
from typing import Any, Iterator, Literal

AUDIT_LOG_DIR = Path(os.environ.get("AUDIT_LOG_DIR", ".runtime/audit"))
AUDIT_LOG_FILE = AUDIT_LOG_DIR / "offboarding-events.jsonl"

_env_secret_path_str = os.environ.get("AUDIT_LOG_SIGNING_KEY_FILE")
_env_secret_path: Path | None = Path(_env_secret_path_str) if _env_secret_path_str else None
_default_secret_paths: list[Path] = [
    Path(".runtime/secrets/audit_log_signing_key"),
    Path("/run/secrets/audit_log_signing_key"),
]


def _get_signing_key() -> bytes:
    """Signing key: key file, then AUDIT_LOG_SIGNING_KEY, then default secret paths, then the demo key."""
    if _env_secret_path and _env_secret_path.exists():
        try:
            return _env_secret_path.read_text(encoding="utf-8").strip().encode("utf-8")
        except OSError:
            pass
    if "AUDIT_LOG_SIGNING_KEY" in os.environ:
        return os.environ.get("AUDIT_LOG_SIGNING_KEY", "").strip().encode("utf-8")
    for path in _default_secret_paths:
        if path.exists():
            try:
                return path.read_text(encoding="utf-8").strip().encode("utf-8")
            except OSError:
                continue
    return os.environ.get("AUDIT_LOG_SIGNING_KEY_DEMO", "demo-audit-signing-key-change-in-production").encode("utf-8")


EventType = Literal[
    "discovery",
    "remediation_full",
    "remediation_revoke_grants",
    "remediation_revoke_app",
    "remediation_revoke_app_roles",
    "remediation_sign_out",
    "remediation_update_scopes",
]


def _ensure_audit_dir() -> None:
    """Create audit directory with restricted permissions."""
    AUDIT_LOG_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_LOG_DIR.chmod(0o700)


def _sign_event(event: dict[str, Any]) -> str:
    """HMAC-SHA256 over the canonical JSON of the event."""
    signing_key = _get_signing_key()
    if not signing_key:
        return ""
    canonical = json.dumps(event, sort_keys=True, separators=(",", ":"), default=str)
    return hmac.new(signing_key, canonical.encode("utf-8"), hashlib.sha256).hexdigest()


def log_remediation_event(
    event_type: EventType,
    principal: str,
    *,
    operator: str = "system",
    case_ref: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Append one signed event to the audit trail.

    Args:
        event_type: Kind of operation (remediation_full, remediation_sign_out, ...)
        principal: Subject the operation targeted
        operator: Who triggered it ("api", "cli", "system")
        case_ref: Offboarding case the operation belongs to
        details: Operation result details
        success: Whether the live operation succeeded
    """
    _ensure_audit_dir()

    event = {
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "event_type": event_type,
        "principal": principal,
        "operator": operator,
        "case_ref": case_ref,
        "success": success,
        # Round-trip through JSON so the signed form matches what is stored
        "details": json.loads(json.dumps(details or {}, default=str)),
    }

    signature = _sign_event(event)
    if signature:
        event["signature"] = signature

    with AUDIT_LOG_FILE.open("a", encoding="utf-8") as f:
        f.write(json.dumps(event, ensure_ascii=False) + "\n")

    AUDIT_LOG_FILE.chmod(0o600)


def safe_log_remediation_event(
    event_type: EventType,
    principal: str,
    *,
    operator: str = "system",
    case_ref: str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> bool:
    """Log a remediation event, never raising.

    Returns:
        True if the event was written, False if logging failed

    Note:
        Failures are reported on stderr
    """
    try:
        log_remediation_event(
            event_type,
            principal,
            operator=operator,
            case_ref=case_ref,
            details=details,
            success=success,
        )
        return True
    except Exception as e:
        print(
            f"[audit] Warning: Failed to log {event_type} event for {principal}: {e}",
            file=sys.stderr,
        )
        return False


def read_events() -> Iterator[dict[str, Any]]:
    """Yield decoded events, skipping malformed lines."""
    if not AUDIT_LOG_FILE.exists():
        return
    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                continue


def verify_audit_log() -> tuple[int, int]:
    """Verify all signatures in the audit log.

    Returns:
        Tuple of (total_events, valid_signatures)
    """
    if not AUDIT_LOG_FILE.exists():
        return 0, 0

    total = 0
    valid = 0

    with AUDIT_LOG_FILE.open("r", encoding="utf-8") as f:
        for line in f:
            if not line.strip():
                continue
            total += 1
            try:
                event = json.loads(line)
                stored_sig = event.pop("signature", "")
                if not stored_sig:
                    continue
                computed_sig = _sign_event(event)
                if hmac.compare_digest(stored_sig, computed_sig):
                    valid += 1
            except (json.JSONDecodeError, KeyError):
                continue

    return total, valid


if __name__ == "__main__":
    total, valid = verify_audit_log()
    print(f"Audit log: {valid}/{total} events with valid signatures")
    sys.exit(0 if total == valid else 1)
