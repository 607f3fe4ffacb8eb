"""In-memory case provider used in demo mode, by the CLI and in tests."""
from __future__ import annotations
import copy
import threading
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from .case_provider import CaseProvider, InvalidRequestError, RecordNotFoundError
from .models import ArtifactKind, DiscoveryResult, FindingType

ACTIVE = "Active"
REVOKED = "Revoked"
DELETED = "Deleted"

REMEDIATION_ACTIONS = ("full_bundle", "revoke_token", "sign_out", "revoke_app_roles", "delete_asp")
EMPLOYEE_SCOPES = ("all", "full_bundle", "tokens", "sign_out")

_GRANT_KINDS = (ArtifactKind.OAUTH_GRANT.value, ArtifactKind.APP_ROLE_ASSIGNMENT.value)
_LOGIN_FINDINGS = (FindingType.POST_OFFBOARD_LOGIN.value, FindingType.POST_OFFBOARD_SUSPICIOUS_LOGIN.value)
# Artifact kind -> discovery source that produces it
_SOURCE_BY_KIND = {
    ArtifactKind.OAUTH_GRANT.value: "oauth_grants",
    ArtifactKind.APP_ROLE_ASSIGNMENT.value: "app_role_assignments",
    ArtifactKind.SESSION.value: "sign_ins",
    ArtifactKind.REGISTERED_DEVICE.value: "devices",
}
# Finding type -> discovery sources it is derived from
_SOURCES_BY_FINDING = {
    FindingType.LINGERING_OAUTH_GRANT.value: ("oauth_grants", "app_role_assignments"),
    FindingType.POST_OFFBOARD_LOGIN.value: ("sign_ins",),
    FindingType.POST_OFFBOARD_SUSPICIOUS_LOGIN.value: ("sign_ins",),
    FindingType.OFFBOARDING_NOT_ENFORCED.value: (),
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _matches(record: Dict[str, Any], filters: Optional[Dict[str, Any]]) -> bool:
    return all(record.get(key) == value for key, value in (filters or {}).items())


class InMemoryCaseProvider(CaseProvider):
    """Thread-safe dict-backed system of record."""

    name = "memory"

    def __init__(
        self,
        cases: Iterable[Dict[str, Any]] = (),
        artifacts: Iterable[Dict[str, Any]] = (),
        findings: Iterable[Dict[str, Any]] = (),
        employees: Iterable[Dict[str, Any]] = (),
    ):
        self._lock = threading.RLock()
        self._cases = {case["id"]: copy.deepcopy(case) for case in cases}
        self._artifacts = {artifact["id"]: copy.deepcopy(artifact) for artifact in artifacts}
        self._findings = {finding["id"]: copy.deepcopy(finding) for finding in findings}
        self._employees = {employee["id"]: copy.deepcopy(employee) for employee in employees}
        self._scan_history: List[Dict[str, Any]] = []

    @classmethod
    def with_demo_data(cls) -> "InMemoryCaseProvider":
        return cls(**demo_seed())

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────
    def get_dashboard_stats(self) -> Dict[str, Any]:
        with self._lock:
            open_findings = [f for f in self._findings.values() if not f.get("closed_at")]
            active_grants = [
                a for a in self._artifacts.values()
                if a["status"] == ACTIVE and a["kind"] == ArtifactKind.OAUTH_GRANT.value
            ]
            risky_cases = []
            for case in self._cases.values():
                case_findings = [f for f in open_findings if f.get("case") == case["id"]]
                if not case_findings:
                    continue
                risky_cases.append({
                    "case_id": case["id"],
                    "primary_email": case.get("primary_email"),
                    "employee_name": case.get("employee_name"),
                    "status": case.get("status"),
                    "effective_date": case.get("effective_date"),
                    "finding_count": len(case_findings),
                    "critical_count": sum(1 for f in case_findings if f.get("severity") == "Critical"),
                })
            risky_cases.sort(key=lambda c: (c["critical_count"], c["finding_count"]), reverse=True)
            return {
                "kpis": {
                    "pending_scan": sum(1 for c in self._cases.values() if c.get("status") in ("Draft", "Scheduled")),
                    "critical_gaps": sum(1 for f in open_findings if f.get("severity") == "Critical"),
                    "oauth_grants": len(active_grants),
                    "post_offboard_logins": sum(1 for f in open_findings if f.get("type") in _LOGIN_FINDINGS),
                    "total_cases": len(self._cases),
                    "total_findings": len(self._findings),
                    "total_artifacts": len(self._artifacts),
                },
                "top_oauth_apps": self.get_all_active_oauth_apps()[:5],
                "risky_cases": risky_cases[:5],
            }

    def list_cases(self, filters=None) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(c) for c in self._cases.values() if _matches(c, filters)]

    def get_case_detail(self, case_id: str) -> Dict[str, Any]:
        with self._lock:
            case = self._case(case_id)
            return {
                "case": copy.deepcopy(case),
                "artifacts": [copy.deepcopy(a) for a in self._artifacts.values() if a.get("case") == case_id],
                "findings": [copy.deepcopy(f) for f in self._findings.values() if f.get("case") == case_id],
            }

    def list_artifacts(self, filters=None) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(a) for a in self._artifacts.values() if _matches(a, filters)]

    def get_artifact(self, artifact_id: str) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._artifact(artifact_id))

    def list_findings(self, filters=None) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(f) for f in self._findings.values() if _matches(f, filters)]

    def get_finding(self, finding_id: str) -> Dict[str, Any]:
        with self._lock:
            finding = self._findings.get(finding_id)
            if finding is None:
                raise RecordNotFoundError("Finding", finding_id)
            return copy.deepcopy(finding)

    def get_employee_list(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [copy.deepcopy(e) for e in self._employees.values()]

    def get_employee_detail(self, employee_id: str) -> Dict[str, Any]:
        with self._lock:
            employee = self._employees.get(employee_id)
            if employee is None:
                raise RecordNotFoundError("Employee", employee_id)
            return {
                "employee": copy.deepcopy(employee),
                "cases": [copy.deepcopy(c) for c in self._cases.values() if c.get("employee_id") == employee_id],
            }

    def get_all_active_oauth_apps(self) -> List[Dict[str, Any]]:
        with self._lock:
            apps: Dict[str, Dict[str, Any]] = {}
            for artifact in self._artifacts.values():
                if artifact["status"] != ACTIVE or artifact["kind"] != ArtifactKind.OAUTH_GRANT.value:
                    continue
                summary = apps.setdefault(artifact["app_id"], {
                    "client_id": artifact["app_id"],
                    "app_display_name": artifact.get("app_display_name"),
                    "grant_count": 0,
                    "_users": set(),
                    "_cases": set(),
                })
                summary["grant_count"] += 1
                summary["_users"].add(artifact.get("subject_email"))
                summary["_cases"].add(artifact.get("case"))
            result = []
            for summary in apps.values():
                summary["user_count"] = len(summary.pop("_users"))
                summary["case_count"] = len(summary.pop("_cases"))
                result.append(summary)
            result.sort(key=lambda app: app["grant_count"], reverse=True)
            return result

    def get_app_detail(self, client_id: str) -> Dict[str, Any]:
        with self._lock:
            grants = [
                a for a in self._artifacts.values()
                if a["app_id"] == client_id and a["kind"] == ArtifactKind.OAUTH_GRANT.value
            ]
            if not grants:
                raise RecordNotFoundError("App", client_id)
            statuses = Counter(a["status"] for a in grants)
            return {
                "client_id": client_id,
                "app_name": grants[0].get("app_display_name"),
                "total_grants": len(grants),
                "active_grants": statuses.get(ACTIVE, 0),
                "revoked_grants": statuses.get(REVOKED, 0),
                "cases_affected": sorted({a.get("case") for a in grants if a.get("case")}),
                "scopes": sorted({scope for a in grants for scope in a.get("scopes", [])}),
                "users": [
                    {
                        "email": a.get("subject_email"),
                        "status": a["status"],
                        "risk_level": a.get("risk_level"),
                        "case": a.get("case"),
                        "artifact_id": a["id"],
                        "scopes": list(a.get("scopes", [])),
                    }
                    for a in grants
                ],
            }

    def get_scan_history(self) -> List[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._scan_history)

    # ─────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────
    def execute_remediation(self, case_id, action, options=None) -> Dict[str, Any]:
        if action not in REMEDIATION_ACTIONS:
            raise InvalidRequestError(f"Unsupported remediation action: {action}")
        options = options or {}
        with self._lock:
            case = self._case(case_id)
            revoked, closed = self._apply_action(case_id, action, options.get("client_id"))
            if action == "full_bundle":
                case["status"] = "Remediated"
            return {
                "success": True,
                "message": f"{action} applied to {case_id}",
                "case": case_id,
                "action": action,
                "revoked": revoked,
                "findings_closed": closed,
            }

    def bulk_remediate(self, case_id, artifact_ids) -> Dict[str, Any]:
        with self._lock:
            self._case(case_id)
            targets = [self._artifacts[a] for a in artifact_ids if a in self._artifacts and self._artifacts[a].get("case") == case_id]
            revoked = self._revoke(targets)
            closed = self._close_resolved_findings(case_id)
            return {"success": True, "message": f"Revoked {revoked} artifact(s)", "revoked": revoked, "findings_closed": closed}

    def remediate_artifacts(self, artifact_ids) -> Dict[str, Any]:
        with self._lock:
            targets = [self._artifacts[a] for a in artifact_ids if a in self._artifacts]
            revoked = self._revoke(targets)
            closed = sum(self._close_resolved_findings(c) for c in {a.get("case") for a in targets if a.get("case")})
            return {"success": True, "message": f"Revoked {revoked} artifact(s)", "revoked": revoked, "findings_closed": closed}

    def run_scheduled_remediation_now(self, case_id) -> Dict[str, Any]:
        with self._lock:
            case = self._case(case_id)
            revoked, closed = self._apply_action(case_id, "full_bundle", None)
            case["status"] = "Remediated"
            case["scheduled_remediation_date"] = None
            return {"success": True, "message": f"Scheduled remediation executed for {case_id}", "revoked": revoked, "findings_closed": closed}

    def remediate_finding(self, finding_id) -> Dict[str, Any]:
        with self._lock:
            finding = self._findings.get(finding_id)
            if finding is None:
                raise RecordNotFoundError("Finding", finding_id)
            case_id = finding.get("case")
            kinds: tuple = ()
            if finding["type"] == FindingType.LINGERING_OAUTH_GRANT.value:
                kinds = _GRANT_KINDS
            elif finding["type"] in _LOGIN_FINDINGS:
                kinds = (ArtifactKind.SESSION.value,)
            revoked = self._revoke(
                a for a in self._artifacts.values() if a.get("case") == case_id and a["kind"] in kinds
            )
            if not finding.get("closed_at"):
                finding["closed_at"] = _now()
            return {"success": True, "message": f"Finding {finding_id} remediated", "revoked": revoked, "findings_closed": 1}

    def revoke_employee_access(self, employee_id, scope) -> Dict[str, Any]:
        if scope not in EMPLOYEE_SCOPES:
            raise InvalidRequestError(f"Unsupported revocation scope: {scope}")
        action = {"all": "full_bundle", "full_bundle": "full_bundle", "tokens": "revoke_token", "sign_out": "sign_out"}[scope]
        with self._lock:
            if employee_id not in self._employees:
                raise RecordNotFoundError("Employee", employee_id)
            revoked = closed = 0
            for case in self._cases.values():
                if case.get("employee_id") != employee_id:
                    continue
                case_revoked, case_closed = self._apply_action(case["id"], action, None)
                revoked += case_revoked
                closed += case_closed
            return {"success": True, "message": f"Access revoked for {employee_id} ({scope})", "revoked": revoked, "findings_closed": closed}

    def global_app_removal(self, app_id, app_name) -> Dict[str, Any]:
        with self._lock:
            targets = [
                a for a in self._artifacts.values()
                if a["app_id"] == app_id and a["kind"] == ArtifactKind.OAUTH_GRANT.value
            ]
            revoked = self._revoke(targets)
            for case_id in {a.get("case") for a in targets if a.get("case")}:
                self._close_resolved_findings(case_id)
            return {"success": True, "message": f"Removed {app_name or app_id} for {revoked} grant(s)", "revoked": revoked}

    def revoke_app_for_users(self, app_id, artifact_ids) -> Dict[str, Any]:
        with self._lock:
            targets = [
                self._artifacts[a] for a in artifact_ids
                if a in self._artifacts and self._artifacts[a]["app_id"] == app_id
            ]
            revoked = self._revoke(targets)
            for case_id in {a.get("case") for a in targets if a.get("case")}:
                self._close_resolved_findings(case_id)
            return {"success": True, "message": f"Revoked {app_id} for {revoked} user(s)", "revoked": revoked}

    def restore_app_for_users(self, app_id, artifact_ids) -> Dict[str, Any]:
        with self._lock:
            restored = 0
            for artifact_id in artifact_ids:
                artifact = self._artifacts.get(artifact_id)
                if (
                    artifact is not None
                    and artifact["app_id"] == app_id
                    and artifact["kind"] == ArtifactKind.OAUTH_GRANT.value
                    and artifact["status"] == REVOKED
                ):
                    artifact["status"] = ACTIVE
                    artifact["modified_at"] = _now()
                    restored += 1
            return {"success": True, "message": f"Restored {app_id} for {restored} user(s)", "restored": restored}

    def update_user_scopes(self, artifact_id, scopes) -> Dict[str, Any]:
        with self._lock:
            artifact = self._artifact(artifact_id)
            current = list(artifact.get("scopes", []))
            wanted = list(dict.fromkeys(s for s in scopes if s))
            removed = len([s for s in current if s not in wanted])
            added = len([s for s in wanted if s not in current])
            artifact["scopes"] = wanted
            if not wanted:
                self._revoke([artifact])
                if artifact.get("case"):
                    self._close_resolved_findings(artifact["case"])
            return {"success": True, "message": f"Scopes updated for {artifact_id}", "removed": removed, "added": added}

    def trigger_scan(self, case_id) -> Dict[str, Any]:
        with self._lock:
            case = self._case(case_id)
            active = [a for a in self._artifacts.values() if a.get("case") == case_id and a["status"] == ACTIVE]
            open_findings = [f for f in self._findings.values() if f.get("case") == case_id and not f.get("closed_at")]
            case["status"] = "Gaps Found" if active or open_findings else "All Clear"
            entry = {
                "case": case_id,
                "timestamp": _now(),
                "active_artifacts": len(active),
                "open_findings": len(open_findings),
                "status": case["status"],
            }
            self._scan_history.append(entry)
            return {"success": True, "message": f"Scan completed for {case_id}: {case['status']}", "scan": dict(entry)}

    def record_discovery(self, case_id, result: DiscoveryResult) -> Dict[str, Any]:
        """Upsert discovered artifacts and findings for a case.

        Directory artifacts of this case that were not rediscovered, and whose
        source was read without error, are marked Deleted, and findings whose
        cause is gone are closed. A rediscovered finding is reopened.
        """
        with self._lock:
            self._case(case_id)
            seen = set()
            reactivated = 0
            for artifact in result.artifacts:
                seen.add(artifact.id)
                record = {
                    "id": artifact.id,
                    "case": case_id,
                    "kind": artifact.kind.value,
                    "subject_email": artifact.subject_principal,
                    "status": artifact.status.value,
                    "app_id": artifact.app_id,
                    "app_display_name": artifact.app_display_name,
                    "risk_level": artifact.risk_level.value,
                    "scopes": list(artifact.scopes),
                    "source_id": artifact.source_id,
                    "origin": "directory",
                    "created_at": artifact.created_at.isoformat() if artifact.created_at else _now(),
                }
                existing = self._artifacts.get(artifact.id)
                if existing and existing["status"] != ACTIVE and artifact.is_active:
                    # Revoked locally but still present upstream
                    record["modified_at"] = _now()
                    reactivated += 1
                self._artifacts[artifact.id] = record

            def settled(sources) -> bool:
                return all(s in result.sources and s not in result.source_errors for s in sources)

            vanished = 0
            for record in self._artifacts.values():
                if (
                    record.get("case") == case_id
                    and record.get("origin") == "directory"
                    and record["id"] not in seen
                    and record["status"] == ACTIVE
                    and settled((_SOURCE_BY_KIND[record["kind"]],))
                ):
                    record["status"] = DELETED
                    record["modified_at"] = _now()
                    vanished += 1

            found = set()
            for finding in result.findings:
                found.add(finding.id)
                existing = self._findings.get(finding.id)
                self._findings[finding.id] = {
                    "id": finding.id,
                    "case": case_id,
                    "type": finding.type.value,
                    "severity": finding.severity.value,
                    "summary": finding.summary,
                    "recommended_action": finding.recommended_action,
                    "origin": "directory",
                    "created_at": existing["created_at"] if existing else finding.created_at.isoformat(),
                    "closed_at": None,
                }

            closed = 0
            for finding in self._findings.values():
                if (
                    finding.get("case") == case_id
                    and finding.get("origin") == "directory"
                    and finding["id"] not in found
                    and not finding.get("closed_at")
                    and finding["type"] in _SOURCES_BY_FINDING
                    and settled(_SOURCES_BY_FINDING[finding["type"]])
                ):
                    finding["closed_at"] = _now()
                    closed += 1
            if vanished and not result.source_errors:
                closed += self._close_resolved_findings(case_id)
            return {
                "success": True,
                "message": f"Recorded discovery for {case_id}",
                "artifacts": len(result.artifacts),
                "findings": len(result.findings),
                "vanished": vanished,
                "reactivated": reactivated,
                "findings_closed": closed,
            }

    # ─────────────────────────────────────────────────────────────────────
    # Internals (caller holds the lock)
    # ─────────────────────────────────────────────────────────────────────
    def _case(self, case_id: str) -> Dict[str, Any]:
        case = self._cases.get(case_id)
        if case is None:
            raise RecordNotFoundError("Case", case_id)
        return case

    def _artifact(self, artifact_id: str) -> Dict[str, Any]:
        artifact = self._artifacts.get(artifact_id)
        if artifact is None:
            raise RecordNotFoundError("Artifact", artifact_id)
        return artifact

    def _revoke(self, artifacts) -> int:
        count = 0
        for artifact in artifacts:
            if artifact["status"] == ACTIVE:
                artifact["status"] = REVOKED
                artifact["modified_at"] = _now()
                count += 1
        return count

    def _apply_action(self, case_id: str, action: str, client_id: Optional[str]) -> tuple[int, int]:
        case_artifacts = [a for a in self._artifacts.values() if a.get("case") == case_id]
        if action == "full_bundle":
            targets = [a for a in case_artifacts if a["kind"] != ArtifactKind.REGISTERED_DEVICE.value]
        elif action == "revoke_token":
            targets = [
                a for a in case_artifacts
                if a["kind"] == ArtifactKind.OAUTH_GRANT.value and (not client_id or a["app_id"] == client_id)
            ]
        elif action == "sign_out":
            targets = [a for a in case_artifacts if a["kind"] == ArtifactKind.SESSION.value]
        elif action == "revoke_app_roles":
            targets = [a for a in case_artifacts if a["kind"] == ArtifactKind.APP_ROLE_ASSIGNMENT.value]
        else:
            targets = []
        revoked = self._revoke(targets)
        if action == "full_bundle":
            closed = 0
            for finding in self._findings.values():
                if finding.get("case") == case_id and not finding.get("closed_at"):
                    finding["closed_at"] = _now()
                    closed += 1
            return revoked, closed
        if action == "delete_asp":
            return revoked, self._close_findings(case_id, (FindingType.LINGERING_ASP.value,))
        return revoked, self._close_resolved_findings(case_id)

    def _close_findings(self, case_id: str, types: Iterable[str]) -> int:
        closed = 0
        for finding in self._findings.values():
            if finding.get("case") == case_id and finding["type"] in types and not finding.get("closed_at"):
                finding["closed_at"] = _now()
                closed += 1
        return closed

    def _close_resolved_findings(self, case_id: str) -> int:
        """Close grant/login findings whose artifacts are no longer active."""
        active_kinds = {
            a["kind"] for a in self._artifacts.values() if a.get("case") == case_id and a["status"] == ACTIVE
        }
        closed = 0
        if not active_kinds.intersection(_GRANT_KINDS):
            closed += self._close_findings(case_id, (FindingType.LINGERING_OAUTH_GRANT.value,))
        if ArtifactKind.SESSION.value not in active_kinds:
            closed += self._close_findings(case_id, _LOGIN_FINDINGS)
        return closed


def demo_seed() -> Dict[str, List[Dict[str, Any]]]:
    """Two offboarded employees with lingering Microsoft 365 access."""
    created = "2025-12-01T09:00:00+00:00"
    employees = [
        {"id": "EMP-001", "name": "Alice Johnson", "email": "alice.johnson@testcorp.com", "status": "Left", "department": "Engineering"},
        {"id": "EMP-002", "name": "Bob Smith", "email": "bob.smith@testcorp.com", "status": "Left", "department": "Marketing"},
    ]
    cases = [
        {
            "id": "CASE-0001",
            "employee_id": "EMP-001",
            "employee_name": "Alice Johnson",
            "primary_email": "alice.johnson@testcorp.com",
            "event_type": "Offboard",
            "effective_date": "2025-12-01",
            "status": "Gaps Found",
            "scheduled_remediation_date": "2025-12-08",
            "created_at": created,
        },
        {
            "id": "CASE-0002",
            "employee_id": "EMP-002",
            "employee_name": "Bob Smith",
            "primary_email": "bob.smith@testcorp.com",
            "event_type": "Offboard",
            "effective_date": "2025-11-15",
            "status": "Draft",
            "scheduled_remediation_date": None,
            "created_at": created,
        },
    ]
    artifacts = [
        {
            "id": "grant-demo-001",
            "case": "CASE-0001",
            "kind": ArtifactKind.OAUTH_GRANT.value,
            "subject_email": "alice.johnson@testcorp.com",
            "status": ACTIVE,
            "app_id": "app-teams-001",
            "app_display_name": "Microsoft Teams",
            "risk_level": "Medium",
            "scopes": ["Calendars.Read", "Mail.Read"],
            "source_id": "grant-001",
            "origin": "seed",
            "created_at": created,
        },
        {
            "id": "grant-demo-002",
            "case": "CASE-0001",
            "kind": ArtifactKind.OAUTH_GRANT.value,
            "subject_email": "alice.johnson@testcorp.com",
            "status": ACTIVE,
            "app_id": "app-sharepoint-001",
            "app_display_name": "SharePoint Sync",
            "risk_level": "Medium",
            "scopes": ["Files.ReadWrite", "Sites.Read.All"],
            "source_id": "grant-002",
            "origin": "seed",
            "created_at": created,
        },
        {
            "id": "session-demo-001",
            "case": "CASE-0001",
            "kind": ArtifactKind.SESSION.value,
            "subject_email": "alice.johnson@testcorp.com",
            "status": ACTIVE,
            "app_id": "app-teams-001",
            "app_display_name": "Microsoft Teams",
            "risk_level": "Medium",
            "scopes": [],
            "source_id": "signin-001",
            "origin": "seed",
            "created_at": "2025-12-05T14:30:00+00:00",
        },
    ]
    findings = [
        {
            "id": "fnd-demo-001",
            "case": "CASE-0001",
            "type": FindingType.LINGERING_OAUTH_GRANT.value,
            "severity": "Medium",
            "summary": "2 active grant(s) remain for offboarded user alice.johnson@testcorp.com",
            "recommended_action": "Revoke all OAuth grants and sign-in sessions",
            "created_at": created,
            "closed_at": None,
        },
        {
            "id": "fnd-demo-002",
            "case": "CASE-0001",
            "type": FindingType.POST_OFFBOARD_LOGIN.value,
            "severity": "High",
            "summary": "1 sign-in(s) by offboarded user alice.johnson@testcorp.com",
            "recommended_action": "Revoke sign-in sessions and review activity",
            "created_at": created,
            "closed_at": None,
        },
    ]
    return {"cases": cases, "artifacts": artifacts, "findings": findings, "employees": employees}
