"""
Identity sync service.

Keeps a local mirror of Clerk users, organizations and memberships
consistent with the identity provider by consuming its webhook stream.
"""

__version__ = "1.0.0"
