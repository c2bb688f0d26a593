"""
Hierarchy Services
File-tree structure queries and mutations
"""

from workspace_acl.services.hierarchy.service import HierarchyIndex

__all__ = [
    "HierarchyIndex",
]
