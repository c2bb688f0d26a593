"""
Materializer Models
Effective-row computation from a user's grants
"""

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping

from workspace_acl.models.permission import EffectivePermissionRow, PermissionLevel


@dataclass(frozen=True)
class GrantReach:
    """One grant and the distance from its file to every file it covers"""
    file_id: int
    level: PermissionLevel
    descendant_depths: Mapping[int, int]

    def covered(self) -> Iterable[tuple]:
        yield self.file_id, 0
        yield from self.descendant_depths.items()


def _beats(level: PermissionLevel, distance: int, current: EffectivePermissionRow) -> bool:
    # Higher level wins; equal levels go to the nearer source
    if level.ordinal != current.level.ordinal:
        return level.ordinal > current.level.ordinal
    return distance < current.source_distance


def compute_effective_rows(
    user_id: str, reaches: Iterable[GrantReach]
) -> List[EffectivePermissionRow]:
    """
    Fold grants over their subtrees into one row per file.

    The level of each row is the maximum over every grant covering the file.
    ``source_file_id`` names the nearest grant holding that maximum. Output is
    ordered by file id so identical inputs give identical rows.
    """
    rows: Dict[int, EffectivePermissionRow] = {}

    for reach in reaches:
        for file_id, distance in reach.covered():
            current = rows.get(file_id)
            if current is not None and not _beats(reach.level, distance, current):
                continue
            rows[file_id] = EffectivePermissionRow(
                user_id=user_id,
                file_id=file_id,
                level=reach.level,
                is_direct=distance == 0,
                source_file_id=reach.file_id,
                source_distance=distance,
            )

    return [rows[file_id] for file_id in sorted(rows)]
