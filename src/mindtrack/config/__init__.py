"""
Package: config
Description: Configuration for the mindtrack agent.

Provides environment-driven settings, the engine's typed configuration
and collector endpoint resolution.
"""

from .endpoints import Endpoints, build_endpoints, resolve_base_url
from .settings import TrackerConfig, TrackerSettings, get_settings, merge_config

__all__ = [
    "Endpoints",
    "TrackerConfig",
    "TrackerSettings",
    "build_endpoints",
    "get_settings",
    "merge_config",
    "resolve_base_url",
]
