"""Offboarding access discovery & remediation package.

To use the Flask app:
    from offboard.flask_app import create_app

To use the Microsoft Graph client:
    from offboard.core.graph import GraphClient, GraphDirectory

To use the engine services:
    from offboard.core.discovery_service import DiscoveryService
    from offboard.core.remediation_service import RemediationService
"""
# Note: We don't import flask_app by default to avoid Flask dependency
# for CLI scripts that only use offboard.core
