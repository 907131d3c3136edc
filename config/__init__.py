"""
Policy Engine Configuration Module

Provides centralized configuration management using Pydantic Settings.
"""

from .settings import CacheBackend, Environment, Settings, get_settings

__all__ = ["CacheBackend", "Environment", "Settings", "get_settings"]
