"""Flask application factory.

Builds the offboarding engine from settings and registers the health and
offboarding blueprints plus JSON error handlers.
"""
from __future__ import annotations
from typing import Optional

from flask import Flask

from offboard.config import AppConfig, load_settings
from offboard.core.case_provider import CaseProvider
from offboard.core.engine import build_engine
from offboard.core.graph import GraphDirectory


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(
    case_provider: Optional[CaseProvider] = None,
    config: Optional[AppConfig] = None,
    directory: Optional[GraphDirectory] = None,
) -> Flask:
    """Create and configure Flask application.

    Args:
        case_provider: System of record; defaults to the in-memory store
        config: Settings; defaults to load_settings()
        directory: Pre-built Graph directory (tests); defaults to one built from config
    """
    cfg = config or load_settings()

    app = Flask(__name__)
    app.config["APP_CONFIG"] = cfg
    app.config["DEMO_MODE"] = cfg.demo_mode
    app.json.sort_keys = False

    engine = build_engine(cfg, case_provider=case_provider, directory=directory, operator="api")
    app.extensions["offboard"] = engine

    from offboard.api import errors, health, offboarding

    app.register_blueprint(health.bp)
    app.register_blueprint(offboarding.bp)

    errors.register_error_handlers(app)

    mode_label = "DEMO" if cfg.demo_mode else "PRODUCTION"
    print(f"[flask_app] Mode={mode_label}")
    print(f"[flask_app] Case provider: {engine.provider.name}")
    if not engine.graph_configured:
        print("[flask_app] WARNING: Microsoft Graph not configured - remediation runs against the case record only")

    return app
