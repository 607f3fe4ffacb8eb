"""Sign-in session and sign-in log operations."""
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import List

from .client import GraphClient
from .models import SignIn


class SessionService:
    """Service for revoking sessions and reading sign-in activity."""

    def __init__(self, client: GraphClient):
        """Initialize session service.

        Args:
            client: Graph client
        """
        self.client = client

    def revoke_sign_in_sessions(self, subject_id: str) -> bool:
        """Invalidate every refresh token and session cookie of a user.

        Args:
            subject_id: User object id or UPN

        Returns:
            True only if Graph confirmed the revocation
        """
        body = self.client.post(
            f"/users/{subject_id}/revokeSignInSessions",
            operation="revoke_sign_in_sessions",
        )
        return body.get("value") is True

    def list_sign_ins(self, principal: str, days_back: int = 30, top: int = 50) -> List[SignIn]:
        """Return recent sign-ins for a user, newest first.

        Needs an Entra ID P1/P2 tenant; otherwise UpstreamUnavailableError.

        Args:
            principal: userPrincipalName
            days_back: Look-back window in days
            top: Page size
        """
        since = datetime.now(timezone.utc) - timedelta(days=days_back)
        escaped = principal.replace("'", "''")
        params = {
            "$filter": (
                f"userPrincipalName eq '{escaped}' and "
                f"createdDateTime ge {since.strftime('%Y-%m-%dT%H:%M:%SZ')}"
            ),
            "$orderby": "createdDateTime desc",
            "$top": top,
        }
        items = self.client.collect_pages("/auditLogs/signIns", params=params, operation="list_sign_ins")
        return [SignIn.from_graph(item) for item in items]
