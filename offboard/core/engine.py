"""Wiring of the directory, services and case provider from AppConfig."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

from offboard.config import AppConfig

from .case_provider import CaseProvider
from .case_store import InMemoryCaseProvider
from .discovery_service import DiscoveryService
from .graph import GraphDirectory, build_directory
from .orchestrator import OrchestratedCaseProvider
from .remediation_service import RemediationService


@dataclass
class OffboardEngine:
    config: AppConfig
    directory: Optional[GraphDirectory]
    discovery: DiscoveryService
    remediation: RemediationService
    provider: OrchestratedCaseProvider

    @property
    def graph_configured(self) -> bool:
        return self.directory is not None


def build_engine(
    cfg: AppConfig,
    case_provider: Optional[CaseProvider] = None,
    directory: Optional[GraphDirectory] = None,
    operator: str = "system",
) -> OffboardEngine:
    """Assemble the engine. Without a case provider the in-memory store is used
    (seeded with demo data in demo mode)."""
    if directory is None:
        directory = build_directory(cfg)
    if case_provider is None:
        case_provider = InMemoryCaseProvider.with_demo_data() if cfg.demo_mode else InMemoryCaseProvider()
    discovery = DiscoveryService.from_settings(cfg, directory)
    remediation = RemediationService.from_settings(cfg, directory)
    provider = OrchestratedCaseProvider(
        case_provider,
        discovery,
        remediation,
        max_concurrency=cfg.max_concurrency,
        operator=operator,
    )
    return OffboardEngine(
        config=cfg,
        directory=directory,
        discovery=discovery,
        remediation=remediation,
        provider=provider,
    )
