"""Facade exposing the full identity-provider contract over one client."""
from __future__ import annotations
from typing import List, Optional

from .client import GraphClient
from .devices import DeviceService
from .grants import GrantService
from .models import (
    AppRoleAssignment,
    Identity,
    OAuthGrant,
    RegisteredDevice,
    ServicePrincipal,
    SignIn,
)
from .roles import AppRoleService
from .service_principals import ServicePrincipalCache, ServicePrincipalService
from .sessions import SessionService
from .users import UserService


class GraphDirectory:
    """One object that discovery and remediation talk to.

    Usage:
        directory = GraphDirectory(GraphClient(tenant, client_id, secret))
        identity = directory.get_user_by_principal("alice@example.com")
        grants = directory.list_user_oauth_grants(identity.provider_id)
    """

    def __init__(self, client: GraphClient, sp_cache: Optional[ServicePrincipalCache] = None):
        self.client = client
        self.users = UserService(client)
        self.grants = GrantService(client)
        self.roles = AppRoleService(client)
        self.sessions = SessionService(client)
        self.devices = DeviceService(client)
        self.service_principals = ServicePrincipalService(client, sp_cache)

    # Users
    def get_user_by_principal(self, principal: str) -> Optional[Identity]:
        return self.users.get_user_by_principal(principal)

    def list_users(self) -> List[Identity]:
        return self.users.list_users()

    # Grants
    def list_user_oauth_grants(self, subject_id: str) -> List[OAuthGrant]:
        return self.grants.list_user_oauth_grants(subject_id)

    def delete_oauth_grant(self, grant_id: str) -> bool:
        return self.grants.delete_oauth_grant(grant_id)

    def update_oauth_grant_scopes(self, grant_id: str, scope: str) -> None:
        self.grants.update_oauth_grant_scopes(grant_id, scope)

    # App roles
    def list_user_app_role_assignments(self, subject_id: str) -> List[AppRoleAssignment]:
        return self.roles.list_user_app_role_assignments(subject_id)

    def delete_app_role_assignment(self, subject_id: str, assignment_id: str) -> bool:
        return self.roles.delete_app_role_assignment(subject_id, assignment_id)

    # Sessions
    def revoke_sign_in_sessions(self, subject_id: str) -> bool:
        return self.sessions.revoke_sign_in_sessions(subject_id)

    def list_sign_ins(self, principal: str, days_back: int = 30, top: int = 50) -> List[SignIn]:
        return self.sessions.list_sign_ins(principal, days_back=days_back, top=top)

    # Devices
    def list_registered_devices(self, subject_id: str) -> List[RegisteredDevice]:
        return self.devices.list_registered_devices(subject_id)

    # Service principals
    def get_service_principal(self, sp_id: str) -> Optional[ServicePrincipal]:
        return self.service_principals.get_service_principal(sp_id)

    def find_service_principal_by_app_id(self, app_id: str) -> Optional[ServicePrincipal]:
        return self.service_principals.find_service_principal_by_app_id(app_id)


def build_directory(cfg) -> Optional[GraphDirectory]:
    """GraphDirectory for AppConfig, or None when Graph is not configured."""
    client = GraphClient.from_settings(cfg)
    if client is None:
        return None
    cache = ServicePrincipalCache(
        ttl_seconds=cfg.sp_cache_ttl_seconds,
        max_entries=cfg.sp_cache_max_entries,
    )
    return GraphDirectory(client, sp_cache=cache)
