"""Enterprise application role assignment operations."""
from __future__ import annotations
from typing import List

from .client import GraphClient
from .exceptions import NotFoundError
from .models import AppRoleAssignment


class AppRoleService:
    """Service for user appRoleAssignments."""

    def __init__(self, client: GraphClient):
        self.client = client

    def list_user_app_role_assignments(self, subject_id: str) -> List[AppRoleAssignment]:
        items = self.client.collect_pages(
            f"/users/{subject_id}/appRoleAssignments",
            operation="list_user_app_role_assignments",
        )
        return [AppRoleAssignment.from_graph(item) for item in items]

    def delete_app_role_assignment(self, subject_id: str, assignment_id: str) -> bool:
        """Remove an assignment. Returns False if it was already gone."""
        try:
            self.client.delete(
                f"/users/{subject_id}/appRoleAssignments/{assignment_id}",
                operation="delete_app_role_assignment",
            )
        except NotFoundError:
            return False
        return True
