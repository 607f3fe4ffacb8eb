"""Risk classification for access artifacts.

``classify_risk`` depends only on the scope set and the consent kind, and is
monotone in the scope set: granting more scopes never lowers the level.
"""
from __future__ import annotations
from typing import Iterable, Union

from .models import ConsentKind, RiskLevel

HIGH_RISK_SCOPES = (
    "Mail.ReadWrite",
    "Mail.Send",
    "MailboxSettings.ReadWrite",
    "EWS.AccessAsUser.All",
    "full_access_as_user",
    "SMTP.Send",
    "Files.ReadWrite.All",
    "Sites.ReadWrite.All",
    "Sites.FullControl.All",
    "Sites.Manage.All",
    "Directory.ReadWrite.All",
    "Directory.AccessAsUser.All",
    "User.ReadWrite.All",
    "Group.ReadWrite.All",
    "Application.ReadWrite.All",
    "AppRoleAssignment.ReadWrite.All",
)

ALWAYS_CRITICAL_SCOPES = (
    "full_access_as_app",
    "Exchange.ManageAsApp",
    "RoleManagement.ReadWrite.Directory",
)

MAIL_SEND_SCOPES = ("Mail.Send", "SMTP.Send")

PROFILE_SCOPES = frozenset(
    scope.lower()
    for scope in ("openid", "profile", "email", "offline_access", "User.Read", "User.ReadBasic.All")
)

# Consent kinds whose artifacts are never rated below a given level
_FLOOR_BY_CONSENT = {
    ConsentKind.APP_ROLE: RiskLevel.MEDIUM,
    ConsentKind.SIGN_IN: RiskLevel.MEDIUM,
}


def _matches(scope: str, pattern: str) -> bool:
    """Exact match or a dotted extension ("Mail.Send" covers "Mail.Send.Shared")."""
    scope = scope.lower()
    pattern = pattern.lower()
    return scope == pattern or scope.startswith(pattern + ".")


def _matches_any(scope: str, patterns: Iterable[str]) -> bool:
    return any(_matches(scope, pattern) for pattern in patterns)


def is_data_write_scope(scope: str) -> bool:
    lowered = scope.lower()
    return "readwrite" in lowered or ".write" in lowered or "fullcontrol" in lowered


def classify_risk(scopes: Iterable[str], consent_kind: Union[ConsentKind, str] = ConsentKind.PRINCIPAL) -> RiskLevel:
    """Risk level for a set of granted scopes.

    Rules, first match wins:
    - Device artifacts are Low.
    - Any always-critical scope, two or more high-risk scopes, or a mail-send
      scope together with any data-write scope: Critical.
    - Exactly one high-risk scope: High.
    - Only profile scopes (or none): Low.
    - Otherwise Medium.
    AppRole and SignIn artifacts are never below Medium.
    """
    consent_kind = ConsentKind(consent_kind)
    if consent_kind == ConsentKind.DEVICE:
        return RiskLevel.LOW

    unique = {scope for scope in scopes if scope}
    high_matches = [scope for scope in unique if _matches_any(scope, HIGH_RISK_SCOPES)]
    has_mail_send = any(_matches_any(scope, MAIL_SEND_SCOPES) for scope in unique)
    has_data_write = any(is_data_write_scope(scope) for scope in unique)

    if any(_matches_any(scope, ALWAYS_CRITICAL_SCOPES) for scope in unique):
        level = RiskLevel.CRITICAL
    elif len(high_matches) >= 2 or (has_mail_send and has_data_write):
        level = RiskLevel.CRITICAL
    elif high_matches:
        level = RiskLevel.HIGH
    elif all(scope.lower() in PROFILE_SCOPES for scope in unique):
        level = RiskLevel.LOW
    else:
        level = RiskLevel.MEDIUM

    floor = _FLOOR_BY_CONSENT.get(consent_kind)
    if floor is not None and floor.rank > level.rank:
        return floor
    return level
