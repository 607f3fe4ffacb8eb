"""Interface of the case-management system of record.

Records are plain JSON-compatible dicts:

- case: ``{id, employee_id, employee_name, primary_email, event_type,
  effective_date, status, scheduled_remediation_date, created_at}``
- artifact: ``{id, case, kind, subject_email, status, app_id,
  app_display_name, risk_level, scopes, source_id, origin, created_at}``
- finding: ``{id, case, type, severity, summary, recommended_action,
  created_at, closed_at}``
- employee: ``{id, name, email, status, department}``

Mutating operations return ``{"success": bool, "message": str, ...}``.
Lookups of unknown records raise RecordNotFoundError.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import DiscoveryResult


class CaseProviderError(Exception):
    """Base error raised by case providers."""


class RecordNotFoundError(CaseProviderError, LookupError):
    """Case, artifact, finding, employee or app does not exist."""

    def __init__(self, record_type: str, record_id: str):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} not found: {record_id}")


class InvalidRequestError(CaseProviderError, ValueError):
    """Unsupported action or scope."""


class CaseProvider(ABC):
    """System of record for offboarding cases, artifacts and findings."""

    name = "case-provider"

    # Reads
    @abstractmethod
    def get_dashboard_stats(self) -> Dict[str, Any]: ...

    @abstractmethod
    def list_cases(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_case_detail(self, case_id: str) -> Dict[str, Any]:
        """``{"case": case, "artifacts": [...], "findings": [...]}``"""

    @abstractmethod
    def list_artifacts(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_artifact(self, artifact_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    def list_findings(self, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_finding(self, finding_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    def get_employee_list(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_employee_detail(self, employee_id: str) -> Dict[str, Any]:
        """``{"employee": employee, "cases": [...]}``"""

    @abstractmethod
    def get_all_active_oauth_apps(self) -> List[Dict[str, Any]]: ...

    @abstractmethod
    def get_app_detail(self, client_id: str) -> Dict[str, Any]:
        """``{"client_id", "app_name", "users": [{"email", "status", "artifact_id", ...}], ...}``"""

    @abstractmethod
    def get_scan_history(self) -> List[Dict[str, Any]]: ...

    # Mutations
    @abstractmethod
    def execute_remediation(self, case_id: str, action: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]: ...

    @abstractmethod
    def bulk_remediate(self, case_id: str, artifact_ids: List[str]) -> Dict[str, Any]: ...

    @abstractmethod
    def remediate_artifacts(self, artifact_ids: List[str]) -> Dict[str, Any]: ...

    @abstractmethod
    def run_scheduled_remediation_now(self, case_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    def remediate_finding(self, finding_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    def revoke_employee_access(self, employee_id: str, scope: str) -> Dict[str, Any]: ...

    @abstractmethod
    def global_app_removal(self, app_id: str, app_name: str) -> Dict[str, Any]: ...

    @abstractmethod
    def revoke_app_for_users(self, app_id: str, artifact_ids: List[str]) -> Dict[str, Any]: ...

    @abstractmethod
    def restore_app_for_users(self, app_id: str, artifact_ids: List[str]) -> Dict[str, Any]:
        """Mark previously revoked grants to an app Active again."""

    @abstractmethod
    def update_user_scopes(self, artifact_id: str, scopes: List[str]) -> Dict[str, Any]: ...

    @abstractmethod
    def trigger_scan(self, case_id: str) -> Dict[str, Any]: ...

    @abstractmethod
    def record_discovery(self, case_id: str, result: DiscoveryResult) -> Dict[str, Any]:
        """Store live artifacts and findings for a case (upsert by id)."""
