"""Remediation of lingering access in the directory.

Every public method returns a RemediationResult and never raises for
upstream failures. When Graph is not configured each method is a no-op that
reports ``success=True`` with ``details["skipped"] = True``.
"""
from __future__ import annotations
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Optional, Sequence

from offboard.core.graph import GraphDirectory, GraphError, Identity
from offboard.core.graph.models import split_scopes
from offboard.core.models import (
    Attempt,
    RemediationOutcome,
    RemediationResult,
    error_detail,
)

logger = logging.getLogger(__name__)

SKIPPED_REASON = "Microsoft Graph integration is not configured"


class SubjectNotFound(Exception):
    """Principal could not be resolved in the directory."""


class RemediationService:
    """Revoke grants, role assignments and sessions for a subject.

    Args:
        directory: GraphDirectory, or None when Graph is not configured
        max_concurrency: Upper bound on parallel delete calls
    """

    def __init__(self, directory: Optional[GraphDirectory], max_concurrency: int = 8):
        self.directory = directory
        self.max_concurrency = max(1, max_concurrency)

    @classmethod
    def from_settings(cls, cfg, directory: Optional[GraphDirectory] = None) -> "RemediationService":
        return cls(directory, max_concurrency=cfg.max_concurrency)

    @property
    def is_configured(self) -> bool:
        return self.directory is not None

    # ─────────────────────────────────────────────────────────────────────
    # OAuth grants
    # ─────────────────────────────────────────────────────────────────────
    def revoke_oauth_grant(self, grant_id: str, principal_name: Optional[str] = None) -> RemediationResult:
        """Delete one delegated grant. A grant that is already gone counts as revoked."""
        action = "revoke_oauth_grant"
        if not self.is_configured:
            return _skipped(action, principal_name)
        outcome = self._delete_grant(grant_id)
        return RemediationResult(
            success=outcome.success,
            action=action,
            principal_name=principal_name,
            details=dict(outcome.detail),
            outcomes=[outcome],
            error=_first_error([outcome]),
        )

    def revoke_all_oauth_grants(self, principal: str) -> RemediationResult:
        """Delete every delegated grant the subject holds."""
        action = "revoke_all_oauth_grants"
        if not self.is_configured:
            return _skipped(action, principal)
        return self._guarded(action, principal, lambda identity: self._revoke_grants(action, identity))

    def revoke_oauth_grants_for_app(self, principal: str, app_id: str) -> RemediationResult:
        """Delete the subject's grants to one client application.

        ``app_id`` may be the application (client) id or the service
        principal object id; grants matching either are deleted.
        """
        action = "revoke_oauth_grants_for_app"
        if not self.is_configured:
            return _skipped(action, principal)

        def run(identity: Identity) -> RemediationResult:
            client_ids = {app_id}
            details = {"app_id": app_id}
            lookup = Attempt.run(self.directory.find_service_principal_by_app_id, app_id)
            if lookup.ok and lookup.value is not None:
                client_ids.add(lookup.value.id)
                details["service_principal_id"] = lookup.value.id
            elif not lookup.ok:
                details["service_principal_lookup_error"] = error_detail(lookup.error)
            return self._revoke_grants(
                action,
                identity,
                predicate=lambda grant: grant.client_id in client_ids,
                extra_details=details,
            )

        return self._guarded(action, principal, run)

    def update_grant_scopes(
        self,
        grant_id: str,
        scopes: Iterable[str],
        principal_name: Optional[str] = None,
    ) -> RemediationResult:
        """Replace the scopes of a grant; an empty scope list deletes it."""
        action = "update_grant_scopes"
        if not self.is_configured:
            return _skipped(action, principal_name)

        ordered = split_scopes(" ".join(scopes))
        if not ordered:
            outcome = self._delete_grant(grant_id)
            details = dict(outcome.detail, result="deleted", reason="empty scopes")
            return RemediationResult(
                success=outcome.success,
                action=action,
                principal_name=principal_name,
                details=details,
                outcomes=[outcome],
                error=_first_error([outcome]),
            )

        scope_string = " ".join(ordered)
        try:
            self.directory.update_oauth_grant_scopes(grant_id, scope_string)
            outcome = RemediationOutcome(
                "update_oauth_grant_scopes",
                True,
                {"grant_id": grant_id, "scopes": ordered},
            )
        except GraphError as exc:
            logger.warning("Scope update failed for grant %s: %s", grant_id, exc)
            outcome = RemediationOutcome(
                "update_oauth_grant_scopes",
                False,
                dict(error_detail(exc), grant_id=grant_id),
            )
        details = {"grant_id": grant_id, "result": "updated" if outcome.success else "failed", "scopes": ordered}
        return RemediationResult(
            success=outcome.success,
            action=action,
            principal_name=principal_name,
            details=details if outcome.success else dict(details, error=outcome.detail),
            outcomes=[outcome],
            error=_first_error([outcome]),
        )

    # ─────────────────────────────────────────────────────────────────────
    # App role assignments
    # ─────────────────────────────────────────────────────────────────────
    def revoke_app_role_assignment(self, principal: str, assignment_id: str) -> RemediationResult:
        action = "revoke_app_role_assignment"
        if not self.is_configured:
            return _skipped(action, principal)

        def run(identity: Identity) -> RemediationResult:
            outcome = self._delete_assignment(identity.provider_id, assignment_id)
            return RemediationResult(
                success=outcome.success,
                action=action,
                principal_name=principal,
                details=dict(outcome.detail),
                outcomes=[outcome],
                error=_first_error([outcome]),
            )

        return self._guarded(action, principal, run)

    def revoke_all_app_role_assignments(self, principal: str) -> RemediationResult:
        """Remove the subject from every enterprise application."""
        action = "revoke_all_app_role_assignments"
        if not self.is_configured:
            return _skipped(action, principal)

        def run(identity: Identity) -> RemediationResult:
            assignments = self.directory.list_user_app_role_assignments(identity.provider_id)
            outcomes = self._fan_out(
                lambda assignment: self._delete_assignment(identity.provider_id, assignment.id),
                assignments,
            )
            return _aggregate(action, principal, outcomes, {"total_assignments": len(assignments)})

        return self._guarded(action, principal, run)

    # ─────────────────────────────────────────────────────────────────────
    # Sessions and bundles
    # ─────────────────────────────────────────────────────────────────────
    def revoke_sign_in_sessions(self, principal: str) -> RemediationResult:
        """Invalidate every session. Succeeds only if the directory confirms."""
        action = "revoke_sign_in_sessions"
        if not self.is_configured:
            return _skipped(action, principal)

        def run(identity: Identity) -> RemediationResult:
            confirmed = self.directory.revoke_sign_in_sessions(identity.provider_id)
            outcome = RemediationOutcome(
                "revoke_sign_in_sessions",
                confirmed,
                {"subject_id": identity.provider_id, "sessions_revoked": confirmed},
            )
            return RemediationResult(
                success=confirmed,
                action=action,
                principal_name=principal,
                details={"sessions_revoked": confirmed},
                outcomes=[outcome],
                error=None if confirmed else "Session revocation was not confirmed by the directory",
            )

        return self._guarded(action, principal, run)

    def full_remediation(self, principal: str) -> RemediationResult:
        """Revoke all grants, then all sessions. Fails if either part failed."""
        action = "full_remediation"
        if not self.is_configured:
            return _skipped(action, principal)

        grants = self.revoke_all_oauth_grants(principal)
        sessions = self.revoke_sign_in_sessions(principal)
        success = grants.success and sessions.success
        errors = [result.error for result in (grants, sessions) if result.error]
        logger.info(
            "Full remediation for %s: grants=%s sessions=%s",
            principal,
            grants.success,
            sessions.success,
        )
        return RemediationResult(
            success=success,
            action=action,
            principal_name=principal,
            details={
                "grants": grants.details,
                "sessions": sessions.details,
                "grants_success": grants.success,
                "sessions_success": sessions.success,
            },
            outcomes=grants.outcomes + sessions.outcomes,
            error="; ".join(errors) if errors else None,
        )

    def is_user_disabled(self, principal: str) -> Optional[bool]:
        """True/False for a known subject, None when unknown or unconfigured."""
        if not self.is_configured:
            return None
        lookup = Attempt.run(self.directory.get_user_by_principal, principal)
        if not lookup.ok or lookup.value is None:
            return None
        return not lookup.value.enabled

    # ─────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────
    def _guarded(self, action: str, principal: str, run: Callable[[Identity], RemediationResult]) -> RemediationResult:
        """Resolve the subject, then run; upstream failures become a failed result."""
        try:
            identity = self.directory.get_user_by_principal(principal)
            if identity is None:
                raise SubjectNotFound(f"User not found in directory: {principal}")
            return run(identity)
        except SubjectNotFound as exc:
            return RemediationResult(
                success=False,
                action=action,
                principal_name=principal,
                details={"error_kind": "NotFound"},
                error=str(exc),
            )
        except GraphError as exc:
            logger.warning("%s failed for %s: %s", action, principal, exc)
            return RemediationResult(
                success=False,
                action=action,
                principal_name=principal,
                details=error_detail(exc),
                error=str(exc),
            )

    def _revoke_grants(self, action, identity: Identity, predicate=None, extra_details=None) -> RemediationResult:
        grants = self.directory.list_user_oauth_grants(identity.provider_id)
        matching = [grant for grant in grants if predicate is None or predicate(grant)]
        outcomes = self._fan_out(lambda grant: self._delete_grant(grant.id), matching)
        details = dict(extra_details or {})
        details["total_grants"] = len(grants)
        details["matching_grants"] = len(matching)
        return _aggregate(action, identity.principal_name, outcomes, details)

    def _delete_grant(self, grant_id: str) -> RemediationOutcome:
        try:
            deleted = self.directory.delete_oauth_grant(grant_id)
        except GraphError as exc:
            logger.warning("Failed to delete grant %s: %s", grant_id, exc)
            return RemediationOutcome("delete_oauth_grant", False, dict(error_detail(exc), grant_id=grant_id))
        return RemediationOutcome("delete_oauth_grant", True, {"grant_id": grant_id, "already_absent": not deleted})

    def _delete_assignment(self, subject_id: str, assignment_id: str) -> RemediationOutcome:
        try:
            deleted = self.directory.delete_app_role_assignment(subject_id, assignment_id)
        except GraphError as exc:
            logger.warning("Failed to delete app role assignment %s: %s", assignment_id, exc)
            return RemediationOutcome(
                "delete_app_role_assignment",
                False,
                dict(error_detail(exc), assignment_id=assignment_id),
            )
        return RemediationOutcome(
            "delete_app_role_assignment",
            True,
            {"assignment_id": assignment_id, "already_absent": not deleted},
        )

    def _fan_out(self, func, items: Sequence) -> List[RemediationOutcome]:
        if not items:
            return []
        with ThreadPoolExecutor(max_workers=min(len(items), self.max_concurrency)) as pool:
            return list(pool.map(func, items))


def _aggregate(action: str, principal: Optional[str], outcomes: List[RemediationOutcome], details: dict) -> RemediationResult:
    failed = [outcome for outcome in outcomes if not outcome.success]
    already_absent = sum(1 for outcome in outcomes if outcome.success and outcome.detail.get("already_absent"))
    details = dict(details)
    details["revoked"] = len(outcomes) - len(failed)
    details["already_absent"] = already_absent
    details["failed"] = len(failed)
    return RemediationResult(
        success=not failed,
        action=action,
        principal_name=principal,
        details=details,
        outcomes=outcomes,
        error=_first_error(outcomes) if failed else None,
    )


def _first_error(outcomes: List[RemediationOutcome]) -> Optional[str]:
    for outcome in outcomes:
        if not outcome.success:
            return outcome.detail.get("message") or f"{outcome.action} failed"
    return None


def _skipped(action: str, principal: Optional[str]) -> RemediationResult:
    return RemediationResult(
        success=True,
        action=action,
        principal_name=principal,
        details={"skipped": True, "reason": SKIPPED_REASON},
    )
