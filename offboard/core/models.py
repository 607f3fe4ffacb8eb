"""Domain model shared by discovery, remediation and the orchestrator."""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from offboard.core.graph.exceptions import GraphAPIError, GraphError
from offboard.core.graph.models import Identity

T = TypeVar("T")

DISCOVERY_SOURCES = ("oauth_grants", "app_role_assignments", "sign_ins", "devices")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArtifactKind(str, Enum):
    OAUTH_GRANT = "OAuthGrant"
    APP_ROLE_ASSIGNMENT = "AppRoleAssignment"
    SESSION = "Session"
    REGISTERED_DEVICE = "RegisteredDevice"


class ConsentKind(str, Enum):
    PRINCIPAL = "Principal"
    ALL_PRINCIPALS = "AllPrincipals"
    APP_ROLE = "AppRole"
    SIGN_IN = "SignIn"
    DEVICE = "Device"


class RiskLevel(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    @classmethod
    def highest(cls, levels) -> Optional["RiskLevel"]:
        levels = list(levels)
        if not levels:
            return None
        return max(levels, key=lambda level: level.rank)


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]

# Findings use the same four-level scale
Severity = RiskLevel


class ArtifactStatus(str, Enum):
    ACTIVE = "Active"
    REVOKED = "Revoked"
    DELETED = "Deleted"


class FindingType(str, Enum):
    LINGERING_OAUTH_GRANT = "LingeringOAuthGrant"
    LINGERING_ASP = "LingeringASP"
    POST_OFFBOARD_LOGIN = "PostOffboardLogin"
    POST_OFFBOARD_SUSPICIOUS_LOGIN = "PostOffboardSuspiciousLogin"
    ADMIN_MFA_WEAK = "AdminMFAWeak"
    DWD_HIGH_RISK = "DWDHighRisk"
    OFFBOARDING_NOT_ENFORCED = "OffboardingNotEnforced"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class AccessArtifact:
    """One lingering access mechanism held by a subject.

    ``source_id`` is the upstream object id used for revocation (grant id,
    assignment id, sign-in id, device id).
    """
    id: str
    kind: ArtifactKind
    subject_id: str
    subject_principal: str
    source_id: str
    app_id: str
    app_display_name: str
    scopes: Tuple[str, ...]
    consent_kind: ConsentKind
    risk_level: RiskLevel
    status: ArtifactStatus = ArtifactStatus.ACTIVE
    case_ref: Optional[str] = None
    created_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.status == ArtifactStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "subject_id": self.subject_id,
            "subject_principal": self.subject_principal,
            "source_id": self.source_id,
            "app_id": self.app_id,
            "app_display_name": self.app_display_name,
            "scopes": list(self.scopes),
            "consent_kind": self.consent_kind.value,
            "risk_level": self.risk_level.value,
            "status": self.status.value,
            "case_ref": self.case_ref,
            "created_at": _iso(self.created_at),
            "metadata": dict(self.metadata),
        }


@dataclass
class Finding:
    """Security finding derived from discovered artifacts. Closed, never deleted."""
    id: str
    type: FindingType
    severity: Severity
    subject_id: str
    summary: str
    recommended_action: str = ""
    case_ref: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    closed_at: Optional[datetime] = None
    evidence: List[str] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.closed_at is None

    def close(self, when: Optional[datetime] = None) -> None:
        if self.closed_at is None:
            self.closed_at = when or utcnow()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "subject_id": self.subject_id,
            "summary": self.summary,
            "recommended_action": self.recommended_action,
            "case_ref": self.case_ref,
            "created_at": _iso(self.created_at),
            "closed_at": _iso(self.closed_at),
            "evidence": list(self.evidence),
        }


@dataclass
class RemediationOutcome:
    """Result of one externally invoked operation."""
    action: str
    success: bool
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "success": self.success, "detail": dict(self.detail)}


@dataclass
class RemediationResult:
    """Uniform result of a remediation method."""
    success: bool
    action: str
    principal_name: Optional[str]
    details: Dict[str, Any] = field(default_factory=dict)
    outcomes: List[RemediationOutcome] = field(default_factory=list)
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def skipped(self) -> bool:
        return bool(self.details.get("skipped"))

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "success": self.success,
            "action": self.action,
            "principal_name": self.principal_name,
            "details": self.details,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "timestamp": self.timestamp.isoformat(),
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DiscoveryResult:
    identity: Optional[Identity]
    artifacts: List[AccessArtifact] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    error: Optional[str] = None
    # source name -> error detail for each fetch that failed
    source_errors: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    # sources that were queried in this run
    sources: Tuple[str, ...] = DISCOVERY_SOURCES

    @property
    def active_artifacts(self) -> List[AccessArtifact]:
        return [artifact for artifact in self.artifacts if artifact.is_active]

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "identity": self.identity.to_dict() if self.identity else None,
            "artifacts": [artifact.to_dict() for artifact in self.artifacts],
            "findings": [finding.to_dict() for finding in self.findings],
            "source_errors": dict(self.source_errors),
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class Attempt(Generic[T]):
    """Value-or-error container for calls that may fail upstream.

    Only GraphError is captured; programming errors still propagate.
    """
    value: Optional[T] = None
    error: Optional[GraphError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def run(cls, func: Callable[..., T], *args, **kwargs) -> "Attempt[T]":
        try:
            return cls(value=func(*args, **kwargs))
        except GraphError as exc:
            return cls(error=exc)

    def value_or(self, default: T) -> T:
        return self.value if self.ok else default


def error_detail(exc: BaseException) -> Dict[str, Any]:
    """Diagnostic dict for any failure (typed Graph errors carry more)."""
    if isinstance(exc, GraphAPIError):
        return exc.to_detail()
    return {
        "error_kind": getattr(exc, "kind", "Unknown"),
        "operation": None,
        "status_code": None,
        "graph_code": None,
        "message": str(exc),
    }
