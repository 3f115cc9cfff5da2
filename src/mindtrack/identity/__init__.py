"""
Package: identity
Description: User and session identifiers for the mindtrack agent.
"""

from .manager import IdentityManager, generate_token

__all__ = ["IdentityManager", "generate_token"]
