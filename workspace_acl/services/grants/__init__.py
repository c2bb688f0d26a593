"""
Grant Services
Direct permission grants
"""

from workspace_acl.services.grants.service import GrantStore

__all__ = [
    "GrantStore",
]
