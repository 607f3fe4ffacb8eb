"""Command-line access discovery and remediation against Microsoft Graph.

This module serves as a CLI wrapper around offboard.core services.

Usage:
    python scripts/offboard_cli.py discover --email alice@example.com
    python scripts/offboard_cli.py full-remediation --email alice@example.com
    python scripts/offboard_cli.py scan-tenant            # dry run
    python scripts/offboard_cli.py scan-tenant --revoke   # revoke for disabled users
"""
from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from offboard.config import load_settings
from offboard.core.discovery_service import DiscoveryService
from offboard.core.graph import GraphError, build_directory
from offboard.core.remediation_service import RemediationService
from scripts import audit

_AUDIT_EVENT_BY_CMD = {
    "revoke-grants": "remediation_revoke_grants",
    "revoke-app": "remediation_revoke_app",
    "sign-out": "remediation_sign_out",
    "full-remediation": "remediation_full",
}


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Offboarding access discovery & remediation")
    parser.add_argument("--operator", default="cli", help="Operator name recorded in the audit trail")
    sub = parser.add_subparsers(dest="cmd")

    sd = sub.add_parser("discover", help="List lingering access for a user")
    sd.add_argument("--email", required=True)
    sd.add_argument("--case", default=None)
    sd.add_argument("--effective-date", default=None, help="Offboarding date (YYYY-MM-DD)")

    sg = sub.add_parser("revoke-grants", help="Delete every delegated grant of a user")
    sg.add_argument("--email", required=True)

    sa = sub.add_parser("revoke-app", help="Delete a user's grants to one application")
    sa.add_argument("--email", required=True)
    sa.add_argument("--app-id", required=True)

    so = sub.add_parser("sign-out", help="Revoke all sign-in sessions of a user")
    so.add_argument("--email", required=True)

    sf = sub.add_parser("full-remediation", help="Revoke grants then sessions")
    sf.add_argument("--email", required=True)

    st = sub.add_parser("scan-tenant", help="Discover access for disabled users across the tenant")
    st.add_argument("--revoke", action="store_true", help="Run full remediation for users with active access")
    st.add_argument("--include-enabled", action="store_true", help="Also scan enabled accounts (never revoked)")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.cmd:
        parser.print_help()
        return 0

    cfg = load_settings()
    directory = build_directory(cfg)
    if directory is None:
        missing = ", ".join(cfg.missing_graph_settings)
        print(f"[offboard] Error: Microsoft Graph not configured (missing: {missing})", file=sys.stderr)
        return 2

    discovery = DiscoveryService.from_settings(cfg, directory)
    remediation = RemediationService.from_settings(cfg, directory)

    if args.cmd == "discover":
        result = discovery.discover_user_access(args.email, case_ref=args.case, effective_date=args.effective_date)
        _print_json(result.to_dict())
        for source, detail in result.source_errors.items():
            print(f"[discover] Warning: {source} unavailable ({detail.get('error_kind')})", file=sys.stderr)
        if result.error:
            print(f"[discover] Error: {result.error}", file=sys.stderr)
            return 1
        return 0

    if args.cmd == "scan-tenant":
        return _scan_tenant(args, directory, discovery, remediation)

    if args.cmd == "revoke-grants":
        result = remediation.revoke_all_oauth_grants(args.email)
    elif args.cmd == "revoke-app":
        result = remediation.revoke_oauth_grants_for_app(args.email, args.app_id)
    elif args.cmd == "sign-out":
        result = remediation.revoke_sign_in_sessions(args.email)
    else:
        result = remediation.full_remediation(args.email)

    audit.safe_log_remediation_event(
        _AUDIT_EVENT_BY_CMD[args.cmd],
        args.email,
        operator=args.operator,
        details=result.to_dict(),
        success=result.success,
    )
    _print_json(result.to_dict())
    if not result.success:
        print(f"[{args.cmd}] Error: {result.error}", file=sys.stderr)
        return 1
    print(f"[{args.cmd}] Done for {args.email}", file=sys.stderr)
    return 0


def _scan_tenant(args, directory, discovery: DiscoveryService, remediation: RemediationService) -> int:
    mode = "REVOKE (live)" if args.revoke else "DISCOVERY ONLY (dry run)"
    print(f"[scan-tenant] Mode: {mode}", file=sys.stderr)
    try:
        users = directory.list_users()
    except GraphError as e:
        print(f"[scan-tenant] Error listing users: {e}", file=sys.stderr)
        return 1

    targets = [user for user in users if args.include_enabled or not user.enabled]
    print(f"[scan-tenant] {len(users)} user(s), scanning {len(targets)}", file=sys.stderr)

    report = []
    failures = 0
    for user in targets:
        result = discovery.discover_user_access(user.principal_name)
        entry = {
            "principal": user.principal_name,
            "enabled": user.enabled,
            "artifacts": len(result.artifacts),
            "active_grants": sum(1 for a in result.active_artifacts if a.kind.value == "OAuthGrant"),
            "findings": [f.type.value for f in result.findings],
            "source_errors": sorted(result.source_errors),
        }
        print(
            f"[scan-tenant] {user.principal_name}: {entry['artifacts']} artifact(s), "
            f"{len(entry['findings'])} finding(s)",
            file=sys.stderr,
        )
        if args.revoke and not user.enabled and result.active_artifacts:
            outcome = remediation.full_remediation(user.principal_name)
            audit.safe_log_remediation_event(
                "remediation_full",
                user.principal_name,
                operator=args.operator,
                details=outcome.to_dict(),
                success=outcome.success,
            )
            entry["remediation"] = {"success": outcome.success, "error": outcome.error}
            if not outcome.success:
                failures += 1
        report.append(entry)

    _print_json(report)
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
