"""
Policy Engine API Package

FastAPI application exposing policy administration and enforcement.
"""

from .app import create_app
from .dependencies import (
    build_policy_engine,
    get_policy_engine,
    require_admin_key,
    require_permission,
)

__all__ = [
    "create_app",
    "build_policy_engine",
    "get_policy_engine",
    "require_admin_key",
    "require_permission",
]
