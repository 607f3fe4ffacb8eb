"""Access discovery for offboarded identities.

Resolves a subject in the directory, fetches every kind of lingering access
it holds, normalizes it into AccessArtifact records, scores each one and
derives findings.

Sources (fetched concurrently, each failing independently):
- oauth_grants: delegated consent grants
- app_role_assignments: enterprise app assignments
- sign_ins: recent successful sign-ins, one session artifact per app
- devices: registered devices

License-governed first-party access (Outlook, Teams usage that comes with a
license) leaves no grant or assignment and is not reported.
"""
from __future__ import annotations
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, time, timezone
from typing import Callable, Dict, Iterable, List, Optional, Union

from offboard.core.graph import GraphDirectory, Identity, OAuthGrant, AppRoleAssignment, SignIn, RegisteredDevice
from offboard.core.models import (
    AccessArtifact,
    ArtifactKind,
    Attempt,
    ConsentKind,
    DiscoveryResult,
    Finding,
    FindingType,
    RiskLevel,
    error_detail,
    utcnow,
)
from offboard.core.risk import classify_risk

logger = logging.getLogger(__name__)

NOT_CONFIGURED_MESSAGE = "Microsoft Graph integration is not configured"
_FINDING_NAMESPACE = uuid.UUID("7f0c6f3e-2b1d-4c59-9a53-6a1d0c2e9b41")
# appRoleId used by Graph for "default access" assignments without a role
_DEFAULT_ACCESS_ROLE_ID = "00000000-0000-0000-0000-000000000000"

EffectiveDate = Union[date, datetime, str, None]


def normalize_effective_date(value: EffectiveDate) -> Optional[datetime]:
    """Coerce a date, datetime or ISO string to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError:
            value = date.fromisoformat(text[:10])
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def finding_id(finding_type: FindingType, subject_id: str, case_ref: Optional[str]) -> str:
    """Stable id so that re-scanning the same case converges on one finding."""
    key = f"{finding_type.value}|{subject_id}|{case_ref or ''}"
    return f"fnd-{uuid.uuid5(_FINDING_NAMESPACE, key).hex[:16]}"


class DiscoveryService:
    """Discover everything an identity can still use.

    Args:
        directory: GraphDirectory, or None when Graph is not configured
        max_concurrency: Upper bound on parallel Graph calls
        sign_in_lookback_days: Window for sign-in based session discovery
        include_sign_ins: Query /auditLogs/signIns (needs Entra ID P1)
        include_devices: Query registered devices
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        directory: Optional[GraphDirectory],
        max_concurrency: int = 8,
        sign_in_lookback_days: int = 30,
        include_sign_ins: bool = True,
        include_devices: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.directory = directory
        self.max_concurrency = max(1, max_concurrency)
        self.sign_in_lookback_days = sign_in_lookback_days
        self.include_sign_ins = include_sign_ins
        self.include_devices = include_devices
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg, directory: Optional[GraphDirectory] = None) -> "DiscoveryService":
        return cls(
            directory,
            max_concurrency=cfg.max_concurrency,
            sign_in_lookback_days=cfg.sign_in_lookback_days,
            include_sign_ins=cfg.include_sign_ins,
            include_devices=cfg.include_devices,
        )

    @property
    def is_configured(self) -> bool:
        return self.directory is not None

    # ─────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────
    def discover_user_access(
        self,
        principal: str,
        case_ref: Optional[str] = None,
        effective_date: EffectiveDate = None,
    ) -> DiscoveryResult:
        """Discover all lingering access for one subject.

        Never raises: an unresolvable subject or an unparseable effective date
        yields an empty result with ``error`` set, a failing source yields zero
        artifacts and an entry in ``source_errors``.
        """
        if self.directory is None:
            return DiscoveryResult(identity=None, error=NOT_CONFIGURED_MESSAGE)

        try:
            effective_at = normalize_effective_date(effective_date)
        except (TypeError, ValueError):
            return DiscoveryResult(identity=None, error=f"Invalid effective date: {effective_date!r}")

        lookup = Attempt.run(self.directory.get_user_by_principal, principal)
        if not lookup.ok:
            logger.warning("Identity lookup failed for %s: %s", principal, lookup.error)
            return DiscoveryResult(
                identity=None,
                error=f"Identity lookup failed for {principal}: {lookup.error}",
                source_errors={"identity": error_detail(lookup.error)},
            )
        identity = lookup.value
        if identity is None:
            return DiscoveryResult(identity=None, error=f"User not found in directory: {principal}")

        fetched = self._fetch_sources(identity)

        source_errors = {}
        for source, attempt in fetched.items():
            if not attempt.ok:
                logger.warning("Discovery source %s failed for %s: %s", source, principal, attempt.error)
                source_errors[source] = error_detail(attempt.error)

        grants: List[OAuthGrant] = fetched["oauth_grants"].value_or([])
        assignments: List[AppRoleAssignment] = fetched["app_role_assignments"].value_or([])
        sign_ins: List[SignIn] = fetched["sign_ins"].value_or([]) if "sign_ins" in fetched else []
        devices: List[RegisteredDevice] = fetched["devices"].value_or([]) if "devices" in fetched else []

        service_principals = self._resolve_service_principals(
            [grant.client_id for grant in grants] + [assignment.resource_id for assignment in assignments]
        )

        artifacts: List[AccessArtifact] = []
        artifacts.extend(self._grant_artifact(identity, grant, service_principals, case_ref) for grant in grants)
        artifacts.extend(
            self._role_artifact(identity, assignment, service_principals, case_ref) for assignment in assignments
        )
        artifacts.extend(self._session_artifacts(identity, sign_ins, case_ref))
        artifacts.extend(self._device_artifact(identity, device, case_ref) for device in devices)

        findings = self._derive_findings(identity, artifacts, sign_ins, case_ref, effective_at)

        logger.info(
            "Discovered %d artifact(s) and %d finding(s) for %s",
            len(artifacts),
            len(findings),
            principal,
        )
        return DiscoveryResult(
            identity=identity,
            artifacts=artifacts,
            findings=findings,
            source_errors=source_errors,
            sources=tuple(fetched),
        )

    def has_active_access(self, principal: str) -> bool:
        """True if the subject still holds any grant or role assignment."""
        if self.directory is None:
            return False
        lookup = Attempt.run(self.directory.get_user_by_principal, principal)
        if not lookup.ok or lookup.value is None:
            return False
        subject_id = lookup.value.provider_id
        with ThreadPoolExecutor(max_workers=min(2, self.max_concurrency)) as pool:
            grants = pool.submit(Attempt.run, self.directory.list_user_oauth_grants, subject_id)
            roles = pool.submit(Attempt.run, self.directory.list_user_app_role_assignments, subject_id)
            return bool(grants.result().value_or([])) or bool(roles.result().value_or([]))

    def discover_many(self, principals: Iterable[str], case_ref: Optional[str] = None) -> Dict[str, DiscoveryResult]:
        """Run discovery for several subjects (tenant-wide scans)."""
        results: Dict[str, DiscoveryResult] = {}
        for principal in principals:
            results[principal] = self.discover_user_access(principal, case_ref=case_ref)
        return results

    # ─────────────────────────────────────────────────────────────────────
    # Fetching
    # ─────────────────────────────────────────────────────────────────────
    def _fetch_sources(self, identity: Identity) -> Dict[str, Attempt]:
        directory = self.directory
        calls = {
            "oauth_grants": (directory.list_user_oauth_grants, (identity.provider_id,), {}),
            "app_role_assignments": (directory.list_user_app_role_assignments, (identity.provider_id,), {}),
        }
        if self.include_sign_ins:
            calls["sign_ins"] = (
                directory.list_sign_ins,
                (identity.principal_name,),
                {"days_back": self.sign_in_lookback_days},
            )
        if self.include_devices:
            calls["devices"] = (directory.list_registered_devices, (identity.provider_id,), {})

        with ThreadPoolExecutor(max_workers=min(len(calls), self.max_concurrency)) as pool:
            futures = {
                source: pool.submit(Attempt.run, func, *args, **kwargs)
                for source, (func, args, kwargs) in calls.items()
            }
            return {source: future.result() for source, future in futures.items()}

    def _resolve_service_principals(self, sp_ids: List[str]) -> Dict[str, object]:
        """Best-effort id -> ServicePrincipal map; unresolvable ids are omitted."""
        unique = [sp_id for sp_id in dict.fromkeys(sp_ids) if sp_id]
        if not unique:
            return {}
        with ThreadPoolExecutor(max_workers=min(len(unique), self.max_concurrency)) as pool:
            attempts = dict(zip(unique, pool.map(lambda sp_id: Attempt.run(self.directory.get_service_principal, sp_id), unique)))
        resolved = {}
        for sp_id, attempt in attempts.items():
            if attempt.ok and attempt.value is not None:
                resolved[sp_id] = attempt.value
            elif not attempt.ok:
                logger.debug("Could not resolve service principal %s: %s", sp_id, attempt.error)
        return resolved

    # ─────────────────────────────────────────────────────────────────────
    # Normalization
    # ─────────────────────────────────────────────────────────────────────
    def _grant_artifact(self, identity, grant: OAuthGrant, service_principals, case_ref) -> AccessArtifact:
        sp = service_principals.get(grant.client_id)
        scopes = tuple(grant.scopes)
        consent = ConsentKind.ALL_PRINCIPALS if grant.consent_type == "AllPrincipals" else ConsentKind.PRINCIPAL
        return AccessArtifact(
            id=f"grant-{grant.id}",
            kind=ArtifactKind.OAUTH_GRANT,
            subject_id=identity.provider_id,
            subject_principal=identity.principal_name,
            source_id=grant.id,
            app_id=sp.app_id if sp else grant.client_id,
            app_display_name=sp.display_name if sp else f"ServicePrincipal:{grant.client_id}",
            scopes=scopes,
            consent_kind=consent,
            risk_level=classify_risk(scopes, consent),
            case_ref=case_ref,
            metadata={
                "client_sp_id": grant.client_id,
                "resource_id": grant.resource_id,
                "consent_type": grant.consent_type,
            },
        )

    def _role_artifact(self, identity, assignment: AppRoleAssignment, service_principals, case_ref) -> AccessArtifact:
        sp = service_principals.get(assignment.resource_id)
        if assignment.app_role_id == _DEFAULT_ACCESS_ROLE_ID:
            role = "AppRole:default"
        elif sp and assignment.app_role_id in sp.app_roles:
            role = sp.app_roles[assignment.app_role_id]
        else:
            role = f"AppRole:{assignment.app_role_id}"
        scopes = (role,)
        return AccessArtifact(
            id=f"role-{assignment.id}",
            kind=ArtifactKind.APP_ROLE_ASSIGNMENT,
            subject_id=identity.provider_id,
            subject_principal=identity.principal_name,
            source_id=assignment.id,
            app_id=sp.app_id if sp else assignment.resource_id,
            app_display_name=assignment.resource_display_name or (sp.display_name if sp else f"App:{assignment.resource_id}"),
            scopes=scopes,
            consent_kind=ConsentKind.APP_ROLE,
            risk_level=classify_risk(scopes, ConsentKind.APP_ROLE),
            case_ref=case_ref,
            created_at=assignment.created_at,
            metadata={"resource_sp_id": assignment.resource_id, "app_role_id": assignment.app_role_id},
        )

    def _session_artifacts(self, identity, sign_ins: List[SignIn], case_ref) -> List[AccessArtifact]:
        """One session artifact per app, from the newest successful sign-in."""
        artifacts = []
        seen_apps = set()
        ordered = sorted(
            (sign_in for sign_in in sign_ins if sign_in.succeeded),
            key=lambda sign_in: sign_in.created_at or datetime.min.replace(tzinfo=timezone.utc),
            reverse=True,
        )
        for sign_in in ordered:
            app_key = sign_in.app_id or sign_in.app_display_name
            if app_key in seen_apps:
                continue
            seen_apps.add(app_key)
            artifacts.append(
                AccessArtifact(
                    id=f"session-{sign_in.id}",
                    kind=ArtifactKind.SESSION,
                    subject_id=identity.provider_id,
                    subject_principal=identity.principal_name,
                    source_id=sign_in.id,
                    app_id=sign_in.app_id,
                    app_display_name=sign_in.app_display_name,
                    scopes=(),
                    consent_kind=ConsentKind.SIGN_IN,
                    risk_level=classify_risk((), ConsentKind.SIGN_IN),
                    case_ref=case_ref,
                    created_at=sign_in.created_at,
                    metadata={
                        "ip_address": sign_in.ip_address,
                        "location": ", ".join(filter(None, [sign_in.city, sign_in.country])),
                        "sign_in_risk": sign_in.risk_level,
                    },
                )
            )
        return artifacts

    def _device_artifact(self, identity, device: RegisteredDevice, case_ref) -> AccessArtifact:
        return AccessArtifact(
            id=f"device-{device.id}",
            kind=ArtifactKind.REGISTERED_DEVICE,
            subject_id=identity.provider_id,
            subject_principal=identity.principal_name,
            source_id=device.id,
            app_id="",
            app_display_name=device.display_name,
            scopes=(),
            consent_kind=ConsentKind.DEVICE,
            risk_level=classify_risk((), ConsentKind.DEVICE),
            case_ref=case_ref,
            created_at=device.registered_at,
            metadata={"operating_system": device.operating_system, "enabled": device.enabled},
        )

    # ─────────────────────────────────────────────────────────────────────
    # Findings
    # ─────────────────────────────────────────────────────────────────────
    def _derive_findings(
        self,
        identity: Identity,
        artifacts: List[AccessArtifact],
        sign_ins: List[SignIn],
        case_ref: Optional[str],
        effective_at: Optional[datetime],
    ) -> List[Finding]:
        now = self._clock()
        past_effective = effective_at is not None and now >= effective_at
        if identity.enabled and not past_effective:
            return []

        findings: List[Finding] = []
        subject = identity.principal_name

        lingering = [
            artifact
            for artifact in artifacts
            if artifact.is_active
            and artifact.kind in (ArtifactKind.OAUTH_GRANT, ArtifactKind.APP_ROLE_ASSIGNMENT)
        ]
        if lingering:
            severity = RiskLevel.highest(artifact.risk_level for artifact in lingering)
            apps = ", ".join(dict.fromkeys(artifact.app_display_name for artifact in lingering))
            findings.append(
                Finding(
                    id=finding_id(FindingType.LINGERING_OAUTH_GRANT, identity.provider_id, case_ref),
                    type=FindingType.LINGERING_OAUTH_GRANT,
                    severity=severity,
                    subject_id=identity.provider_id,
                    case_ref=case_ref,
                    summary=f"{len(lingering)} active grant(s) remain for offboarded user {subject}: {apps}",
                    recommended_action="Revoke all OAuth grants and sign-in sessions",
                    evidence=[artifact.id for artifact in lingering],
                )
            )

        post_logins = [
            sign_in
            for sign_in in sign_ins
            if sign_in.succeeded
            and (effective_at is None or (sign_in.created_at is not None and sign_in.created_at > effective_at))
        ]
        if post_logins:
            suspicious = [sign_in for sign_in in post_logins if sign_in.risky]
            if suspicious:
                finding_type, severity, flagged = FindingType.POST_OFFBOARD_SUSPICIOUS_LOGIN, RiskLevel.CRITICAL, suspicious
                summary = f"{len(suspicious)} risky sign-in(s) by offboarded user {subject}"
            else:
                finding_type, severity, flagged = FindingType.POST_OFFBOARD_LOGIN, RiskLevel.HIGH, post_logins
                summary = f"{len(post_logins)} sign-in(s) by offboarded user {subject}"
            findings.append(
                Finding(
                    id=finding_id(finding_type, identity.provider_id, case_ref),
                    type=finding_type,
                    severity=severity,
                    subject_id=identity.provider_id,
                    case_ref=case_ref,
                    summary=summary,
                    recommended_action="Revoke sign-in sessions and review activity",
                    evidence=[sign_in.id for sign_in in flagged],
                )
            )

        if past_effective and identity.enabled:
            findings.append(
                Finding(
                    id=finding_id(FindingType.OFFBOARDING_NOT_ENFORCED, identity.provider_id, case_ref),
                    type=FindingType.OFFBOARDING_NOT_ENFORCED,
                    severity=RiskLevel.HIGH,
                    subject_id=identity.provider_id,
                    case_ref=case_ref,
                    summary=(
                        f"Account {subject} is still enabled after its offboarding date "
                        f"{effective_at.date().isoformat()}"
                    ),
                    recommended_action="Disable the account and run full remediation",
                )
            )

        return findings
