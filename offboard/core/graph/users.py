"""Directory user lookups."""
from __future__ import annotations
from typing import List, Optional
from urllib.parse import quote

from .client import GraphClient
from .exceptions import NotFoundError
from .models import Identity

USER_SELECT = "id,displayName,userPrincipalName,mail,accountEnabled"


class UserService:
    """Service for reading Entra ID users."""

    def __init__(self, client: GraphClient):
        """Initialize user service.

        Args:
            client: Graph client
        """
        self.client = client

    def get_user_by_principal(self, principal: str) -> Optional[Identity]:
        """Resolve a user by UPN, mail or object id.

        Args:
            principal: userPrincipalName, e-mail or object id

        Returns:
            Identity or None if the user does not exist
        """
        try:
            data = self.client.get(
                f"/users/{quote(principal, safe='@')}",
                params={"$select": USER_SELECT},
                operation="get_user_by_principal",
            )
        except NotFoundError:
            return None
        return Identity.from_graph(data)

    def list_users(self) -> List[Identity]:
        """Return every user in the tenant."""
        items = self.client.collect_pages(
            "/users",
            params={"$select": USER_SELECT, "$top": 999},
            operation="list_users",
        )
        return [Identity.from_graph(item) for item in items]
