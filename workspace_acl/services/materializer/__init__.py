"""
Materializer Services
Effective (inherited, max-wins) permission table
"""

from workspace_acl.services.materializer.models import GrantReach, compute_effective_rows
from workspace_acl.services.materializer.service import EffectivePermissionMaterializer

__all__ = [
    "EffectivePermissionMaterializer",
    "GrantReach",
    "compute_effective_rows",
]
