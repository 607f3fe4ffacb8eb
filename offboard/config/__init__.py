"""Configuration module for the offboarding engine."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
