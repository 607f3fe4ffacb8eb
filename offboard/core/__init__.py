"""Core offboarding engine: directory client, discovery, remediation, orchestration."""
