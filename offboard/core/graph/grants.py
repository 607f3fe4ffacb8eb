"""Delegated OAuth2 permission grant operations."""
from __future__ import annotations
from typing import List

from .client import GraphClient
from .exceptions import NotFoundError
from .models import OAuthGrant


class GrantService:
    """Service for listing and revoking oauth2PermissionGrants."""

    def __init__(self, client: GraphClient):
        self.client = client

    def list_user_oauth_grants(self, subject_id: str) -> List[OAuthGrant]:
        """Return all delegated grants held by a user (every page)."""
        items = self.client.collect_pages(
            f"/users/{subject_id}/oauth2PermissionGrants",
            operation="list_user_oauth_grants",
        )
        return [OAuthGrant.from_graph(item) for item in items]

    def delete_oauth_grant(self, grant_id: str) -> bool:
        """Delete a grant.

        Returns:
            True if deleted, False if it was already gone
        """
        try:
            self.client.delete(f"/oauth2PermissionGrants/{grant_id}", operation="delete_oauth_grant")
        except NotFoundError:
            return False
        return True

    def update_oauth_grant_scopes(self, grant_id: str, scope: str) -> None:
        """Replace the scope string of a grant.

        Raises:
            NotFoundError: If the grant does not exist
        """
        self.client.patch(
            f"/oauth2PermissionGrants/{grant_id}",
            json={"scope": scope},
            operation="update_oauth_grant_scopes",
        )
