"""Typed views over Microsoft Graph JSON payloads.

Only the fields the engine reads are kept. Each ``from_graph`` accepts the raw
camelCase object returned by the API.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 Graph timestamp ("2025-12-05T14:30:00Z")."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # Graph emits up to 7 fractional digits; fromisoformat accepts 6
    if "." in text:
        head, _, tail = text.partition(".")
        digits = ""
        rest = ""
        for idx, char in enumerate(tail):
            if not char.isdigit():
                rest = tail[idx:]
                break
            digits += char
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


@dataclass
class Identity:
    """Directory user as resolved for one operation."""
    provider_id: str
    principal_name: str
    display_name: str = ""
    enabled: bool = True
    mail: Optional[str] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "Identity":
        return cls(
            provider_id=data["id"],
            principal_name=data.get("userPrincipalName") or data.get("mail") or "",
            display_name=data.get("displayName") or "",
            enabled=bool(data.get("accountEnabled", True)),
            mail=data.get("mail"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "principal_name": self.principal_name,
            "display_name": self.display_name,
            "enabled": self.enabled,
            "mail": self.mail,
        }


@dataclass
class OAuthGrant:
    """oauth2PermissionGrant: delegated consent of a client app."""
    id: str
    client_id: str
    resource_id: str = ""
    scope: str = ""
    consent_type: str = "Principal"
    principal_id: Optional[str] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "OAuthGrant":
        return cls(
            id=data["id"],
            client_id=data.get("clientId") or "",
            resource_id=data.get("resourceId") or "",
            scope=data.get("scope") or "",
            consent_type=data.get("consentType") or "Principal",
            principal_id=data.get("principalId"),
        )

    @property
    def scopes(self) -> List[str]:
        return split_scopes(self.scope)


@dataclass
class AppRoleAssignment:
    """Enterprise application role assigned to a user."""
    id: str
    app_role_id: str
    resource_id: str
    resource_display_name: str = ""
    principal_type: str = "User"
    created_at: Optional[datetime] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "AppRoleAssignment":
        return cls(
            id=data["id"],
            app_role_id=data.get("appRoleId") or "",
            resource_id=data.get("resourceId") or "",
            resource_display_name=data.get("resourceDisplayName") or "",
            principal_type=data.get("principalType") or "User",
            created_at=parse_graph_datetime(data.get("createdDateTime")),
        )


@dataclass
class SignIn:
    """Entry from /auditLogs/signIns."""
    id: str
    app_id: str = ""
    app_display_name: str = ""
    ip_address: str = ""
    created_at: Optional[datetime] = None
    error_code: int = 0
    risk_level: str = "none"
    city: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "SignIn":
        status = data.get("status") or {}
        location = data.get("location") or {}
        return cls(
            id=data["id"],
            app_id=data.get("appId") or "",
            app_display_name=data.get("appDisplayName") or "",
            ip_address=data.get("ipAddress") or "",
            created_at=parse_graph_datetime(data.get("createdDateTime")),
            error_code=int(status.get("errorCode") or 0),
            risk_level=(data.get("riskLevelAggregated") or "none").lower(),
            city=location.get("city"),
            country=location.get("countryOrRegion"),
        )

    @property
    def succeeded(self) -> bool:
        return self.error_code == 0

    @property
    def risky(self) -> bool:
        return self.risk_level in ("medium", "high")


@dataclass
class RegisteredDevice:
    id: str
    display_name: str = ""
    operating_system: Optional[str] = None
    enabled: bool = True
    registered_at: Optional[datetime] = None

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "RegisteredDevice":
        return cls(
            id=data["id"],
            display_name=data.get("displayName") or "",
            operating_system=data.get("operatingSystem"),
            enabled=bool(data.get("accountEnabled", True)),
            registered_at=parse_graph_datetime(data.get("registrationDateTime")),
        )


@dataclass
class ServicePrincipal:
    id: str
    app_id: str
    display_name: str = ""
    app_roles: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_graph(cls, data: Dict[str, Any]) -> "ServicePrincipal":
        roles = {}
        for role in data.get("appRoles") or []:
            if role.get("id"):
                roles[role["id"]] = role.get("value") or role.get("displayName") or role["id"]
        return cls(
            id=data["id"],
            app_id=data.get("appId") or "",
            display_name=data.get("displayName") or "",
            app_roles=roles,
        )


def split_scopes(scope: Optional[str]) -> List[str]:
    """Space-delimited scope string -> ordered list without duplicates."""
    seen = set()
    ordered = []
    for item in (scope or "").split():
        if item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered
