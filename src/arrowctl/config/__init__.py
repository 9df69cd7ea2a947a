"""Configuration management for arrowctl.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides, including the unprefixed
variables used by existing deployments.
"""

from arrowctl.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
