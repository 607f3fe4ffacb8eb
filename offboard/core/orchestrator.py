"""Case provider wrapper that enforces remediation in the live directory.

For each mutating operation the wrapper resolves the subject through the
delegate's read APIs, runs the matching directory operation, then always
calls the delegate. Live failures are logged and reported in the response
under ``identity_provider``; they never block the case record update.
"""
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional

from scripts import audit

from .case_provider import CaseProvider, CaseProviderError, InvalidRequestError, RecordNotFoundError
from .discovery_service import DiscoveryService
from .models import ArtifactKind, FindingType, RemediationResult
from .remediation_service import SKIPPED_REASON, RemediationService

logger = logging.getLogger(__name__)

ACTIVE = "Active"

_AUDIT_EVENT_BY_ACTION = {
    "full_remediation": "remediation_full",
    "revoke_all_oauth_grants": "remediation_revoke_grants",
    "revoke_oauth_grant": "remediation_revoke_grants",
    "revoke_oauth_grants_for_app": "remediation_revoke_app",
    "revoke_all_app_role_assignments": "remediation_revoke_app_roles",
    "revoke_app_role_assignment": "remediation_revoke_app_roles",
    "revoke_sign_in_sessions": "remediation_sign_out",
    "update_grant_scopes": "remediation_update_scopes",
}

__all__ = [
    "CaseProvider",
    "CaseProviderError",
    "InvalidRequestError",
    "RecordNotFoundError",
    "OrchestratedCaseProvider",
]


class OrchestratedCaseProvider(CaseProvider):
    """CaseProvider decorator adding live directory enforcement.

    Usage:
        provider = OrchestratedCaseProvider(InMemoryCaseProvider.with_demo_data(), discovery, remediation)
        provider.execute_remediation("CASE-0001", "full_bundle")
    """

    def __init__(
        self,
        inner: CaseProvider,
        discovery: DiscoveryService,
        remediation: RemediationService,
        max_concurrency: int = 8,
        operator: str = "system",
    ):
        self.inner = inner
        self.discovery = discovery
        self.remediation = remediation
        self.max_concurrency = max(1, max_concurrency)
        self.operator = operator
        self.name = f"{inner.name}+microsoft"

    # ─────────────────────────────────────────────────────────────────────
    # Pass-through reads
    # ─────────────────────────────────────────────────────────────────────
    def get_dashboard_stats(self):
        return self.inner.get_dashboard_stats()

    def list_cases(self, filters=None):
        return self.inner.list_cases(filters)

    def get_case_detail(self, case_id):
        return self.inner.get_case_detail(case_id)

    def list_artifacts(self, filters=None):
        return self.inner.list_artifacts(filters)

    def get_artifact(self, artifact_id):
        return self.inner.get_artifact(artifact_id)

    def list_findings(self, filters=None):
        return self.inner.list_findings(filters)

    def get_finding(self, finding_id):
        return self.inner.get_finding(finding_id)

    def get_employee_list(self):
        return self.inner.get_employee_list()

    def get_employee_detail(self, employee_id):
        return self.inner.get_employee_detail(employee_id)

    def get_all_active_oauth_apps(self):
        return self.inner.get_all_active_oauth_apps()

    def get_app_detail(self, client_id):
        return self.inner.get_app_detail(client_id)

    def get_scan_history(self):
        return self.inner.get_scan_history()

    def record_discovery(self, case_id, result):
        return self.inner.record_discovery(case_id, result)

    def restore_app_for_users(self, app_id, artifact_ids):
        # Grants come back through user consent; only the case record changes
        detail = {"attempted": False, "skipped": True, "reason": "Restoring access requires user consent"}
        return _merge(self.inner.restore_app_for_users(app_id, artifact_ids), detail)

    # ─────────────────────────────────────────────────────────────────────
    # Enhanced mutations
    # ─────────────────────────────────────────────────────────────────────
    def execute_remediation(self, case_id: str, action: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        options = options or {}

        def live() -> List[RemediationResult]:
            email = self._email_for_case(case_id)
            if action == "full_bundle":
                return self._full_bundle(email)
            if action == "revoke_token":
                client_id = options.get("client_id")
                if client_id:
                    return [self.remediation.revoke_oauth_grants_for_app(email, client_id)]
                return [self.remediation.revoke_all_oauth_grants(email)]
            if action == "sign_out":
                return [self.remediation.revoke_sign_in_sessions(email)]
            if action == "revoke_app_roles":
                return [self.remediation.revoke_all_app_role_assignments(email)]
            return []

        detail = self._run_live("execute_remediation", live, case_ref=case_id)
        return _merge(self.inner.execute_remediation(case_id, action, options), detail)

    def bulk_remediate(self, case_id: str, artifact_ids: List[str]) -> Dict[str, Any]:
        def live() -> List[RemediationResult]:
            email = self._email_for_case(case_id)
            app_ids = []
            for artifact in self._load_artifacts(artifact_ids):
                if artifact.get("kind") == ArtifactKind.OAUTH_GRANT.value and artifact.get("app_id"):
                    app_ids.append(artifact["app_id"])
            return [self.remediation.revoke_oauth_grants_for_app(email, app_id) for app_id in dict.fromkeys(app_ids)]

        detail = self._run_live("bulk_remediate", live, case_ref=case_id)
        return _merge(self.inner.bulk_remediate(case_id, artifact_ids), detail)

    def remediate_artifacts(self, artifact_ids: List[str]) -> Dict[str, Any]:
        def live() -> List[RemediationResult]:
            app_pairs = []
            session_subjects = []
            for artifact in self._load_artifacts(artifact_ids):
                subject = artifact.get("subject_email")
                if not subject:
                    continue
                if artifact.get("kind") == ArtifactKind.OAUTH_GRANT.value and artifact.get("app_id"):
                    app_pairs.append((subject, artifact["app_id"]))
                elif artifact.get("kind") == ArtifactKind.SESSION.value:
                    session_subjects.append(subject)
            results = [
                self.remediation.revoke_oauth_grants_for_app(subject, app_id)
                for subject, app_id in dict.fromkeys(app_pairs)
            ]
            results.extend(self.remediation.revoke_sign_in_sessions(subject) for subject in dict.fromkeys(session_subjects))
            return results

        detail = self._run_live("remediate_artifacts", live)
        return _merge(self.inner.remediate_artifacts(artifact_ids), detail)

    def run_scheduled_remediation_now(self, case_id: str) -> Dict[str, Any]:
        detail = self._run_live(
            "run_scheduled_remediation_now",
            lambda: self._full_bundle(self._email_for_case(case_id)),
            case_ref=case_id,
        )
        return _merge(self.inner.run_scheduled_remediation_now(case_id), detail)

    def remediate_finding(self, finding_id: str) -> Dict[str, Any]:
        case_ref = None

        def live() -> List[RemediationResult]:
            nonlocal case_ref
            finding = self.inner.get_finding(finding_id)
            case_ref = finding.get("case")
            email = self._email_for_case(case_ref)
            finding_type = finding.get("type")
            if finding_type == FindingType.LINGERING_OAUTH_GRANT.value:
                return [
                    self.remediation.revoke_all_oauth_grants(email),
                    self.remediation.revoke_all_app_role_assignments(email),
                ]
            if finding_type in (
                FindingType.POST_OFFBOARD_LOGIN.value,
                FindingType.POST_OFFBOARD_SUSPICIOUS_LOGIN.value,
            ):
                return [self.remediation.revoke_sign_in_sessions(email)]
            return []

        detail = self._run_live("remediate_finding", live, case_ref_getter=lambda: case_ref)
        return _merge(self.inner.remediate_finding(finding_id), detail)

    def revoke_employee_access(self, employee_id: str, scope: str) -> Dict[str, Any]:
        def live() -> List[RemediationResult]:
            email = (self.inner.get_employee_detail(employee_id).get("employee") or {}).get("email")
            if not email:
                raise CaseProviderError(f"Employee {employee_id} has no e-mail address")
            if scope in ("all", "full_bundle"):
                return self._full_bundle(email)
            if scope == "tokens":
                return [self.remediation.revoke_all_oauth_grants(email)]
            if scope == "sign_out":
                return [self.remediation.revoke_sign_in_sessions(email)]
            return []

        detail = self._run_live("revoke_employee_access", live)
        return _merge(self.inner.revoke_employee_access(employee_id, scope), detail)

    def global_app_removal(self, app_id: str, app_name: str) -> Dict[str, Any]:
        def live() -> List[RemediationResult]:
            users = self.inner.get_app_detail(app_id).get("users") or []
            emails = list(dict.fromkeys(user["email"] for user in users if user.get("status") == ACTIVE and user.get("email")))
            if not emails:
                return []
            with ThreadPoolExecutor(max_workers=min(len(emails), self.max_concurrency)) as pool:
                return list(pool.map(lambda email: self.remediation.revoke_oauth_grants_for_app(email, app_id), emails))

        detail = self._run_live("global_app_removal", live)
        return _merge(self.inner.global_app_removal(app_id, app_name), detail)

    def revoke_app_for_users(self, app_id: str, artifact_ids: List[str]) -> Dict[str, Any]:
        def live() -> List[RemediationResult]:
            emails = [
                artifact["subject_email"]
                for artifact in self._load_artifacts(artifact_ids)
                if artifact.get("status") == ACTIVE and artifact.get("subject_email")
            ]
            return [self.remediation.revoke_oauth_grants_for_app(email, app_id) for email in dict.fromkeys(emails)]

        detail = self._run_live("revoke_app_for_users", live)
        return _merge(self.inner.revoke_app_for_users(app_id, artifact_ids), detail)

    def update_user_scopes(self, artifact_id: str, scopes: List[str]) -> Dict[str, Any]:
        def live() -> List[RemediationResult]:
            artifact = self.inner.get_artifact(artifact_id)
            if artifact.get("kind") != ArtifactKind.OAUTH_GRANT.value or not artifact.get("source_id"):
                return []
            return [
                self.remediation.update_grant_scopes(
                    artifact["source_id"],
                    scopes,
                    principal_name=artifact.get("subject_email"),
                )
            ]

        detail = self._run_live("update_user_scopes", live)
        return _merge(self.inner.update_user_scopes(artifact_id, scopes), detail)

    def trigger_scan(self, case_id: str) -> Dict[str, Any]:
        detail = self._live_discovery(case_id)
        return _merge(self.inner.trigger_scan(case_id), detail)

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────
    def _email_for_case(self, case_id: Optional[str]) -> str:
        if not case_id:
            raise CaseProviderError("No case associated with this record")
        case = self.inner.get_case_detail(case_id).get("case") or {}
        email = case.get("primary_email")
        if not email:
            raise CaseProviderError(f"Case {case_id} has no primary e-mail")
        return email

    def _full_bundle(self, email: str) -> List[RemediationResult]:
        # Grants then sessions, then enterprise app memberships
        return [
            self.remediation.full_remediation(email),
            self.remediation.revoke_all_app_role_assignments(email),
        ]

    def _load_artifacts(self, artifact_ids: List[str]) -> List[Dict[str, Any]]:
        artifacts = []
        for artifact_id in artifact_ids:
            try:
                artifacts.append(self.inner.get_artifact(artifact_id))
            except RecordNotFoundError:
                logger.info("Skipping unknown artifact %s", artifact_id)
        return artifacts

    def _run_live(
        self,
        operation: str,
        live: Callable[[], List[RemediationResult]],
        case_ref: Optional[str] = None,
        case_ref_getter: Optional[Callable[[], Optional[str]]] = None,
    ) -> Dict[str, Any]:
        """Run the directory leg, never raising."""
        if not self.remediation.is_configured:
            return {"attempted": False, "skipped": True, "reason": SKIPPED_REASON}
        try:
            results = live()
        except Exception as exc:
            logger.exception("Live %s leg failed; updating case record only", operation)
            return {"attempted": True, "success": False, "error": str(exc)}

        if case_ref_getter is not None:
            case_ref = case_ref_getter()
        if not results:
            return {"attempted": False, "skipped": True, "reason": f"No directory action for {operation}"}

        for result in results:
            self._audit(result, case_ref)
        return {
            "attempted": True,
            "success": all(result.success for result in results),
            "results": [result.to_dict() for result in results],
        }

    def _live_discovery(self, case_id: str) -> Dict[str, Any]:
        if not self.discovery.is_configured:
            return {"attempted": False, "skipped": True, "reason": SKIPPED_REASON}
        try:
            case = self.inner.get_case_detail(case_id).get("case") or {}
            email = case.get("primary_email")
            if not email:
                raise CaseProviderError(f"Case {case_id} has no primary e-mail")
            result = self.discovery.discover_user_access(
                email,
                case_ref=case_id,
                effective_date=case.get("effective_date"),
            )
            if result.identity is not None:
                self.inner.record_discovery(case_id, result)
        except Exception as exc:
            logger.exception("Live discovery for case %s failed; scanning case record only", case_id)
            return {"attempted": True, "success": False, "error": str(exc)}

        audit.safe_log_remediation_event(
            "discovery",
            email,
            operator=self.operator,
            case_ref=case_id,
            details={
                "artifacts": len(result.artifacts),
                "findings": len(result.findings),
                "source_errors": result.source_errors,
            },
            success=result.error is None,
        )
        detail = {
            "attempted": True,
            "success": result.error is None,
            "artifacts": len(result.artifacts),
            "findings": len(result.findings),
            "source_errors": result.source_errors,
        }
        if result.error:
            detail["error"] = result.error
        return detail

    def _audit(self, result: RemediationResult, case_ref: Optional[str]) -> None:
        event_type = _AUDIT_EVENT_BY_ACTION.get(result.action, "remediation_full")
        audit.safe_log_remediation_event(
            event_type,
            result.principal_name or "unknown",
            operator=self.operator,
            case_ref=case_ref,
            details=result.to_dict(),
            success=result.success,
        )


def _merge(response: Dict[str, Any], detail: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(response)
    merged["identity_provider"] = detail
    return merged
