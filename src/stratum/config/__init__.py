"""
Stratum Configuration System.

Settings come from environment variables (STRATUM_ prefix) or a .env file.
"""

from stratum.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
