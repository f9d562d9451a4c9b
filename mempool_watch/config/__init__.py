"""
Configuration management for Mempool Watch.

Loads and validates settings from environment variables and an optional
.env file. Exposes a single source of truth for node, store and pipeline
configuration.
"""

from mempool_watch.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
