"""
Workspace Services
Application-facing permission entry points
"""

from workspace_acl.services.workspace.service import (
    WorkspacePermissionService,
    get_workspace_service,
)

__all__ = [
    "WorkspacePermissionService",
    "get_workspace_service",
]
