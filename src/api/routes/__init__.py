"""
API Routes Package
"""

from . import health, policies

__all__ = ["health", "policies"]
