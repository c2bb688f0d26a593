"""
File Models
File-node types and schemas for the hierarchy
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FileType(str, Enum):
    """Kinds of node in the workspace tree"""

    FOLDER = "folder"
    PROGRAMME = "programme"
    PAGE = "page"
    SHEET = "sheet"
    FORM = "form"
    UPLOAD = "upload"

    @property
    def is_container(self) -> bool:
        return self in (FileType.FOLDER, FileType.PROGRAMME)


class FileNode(BaseModel):
    """File node as seen by the permission core"""
    model_config = {"from_attributes": True}

    id: int
    name: str
    type: FileType
    parent_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class FileMove(BaseModel):
    """Outcome of a move: the node after the move and where it came from"""
    file: FileNode
    old_parent_id: Optional[int] = None

    @property
    def new_parent_id(self) -> Optional[int]:
        return self.file.parent_id


class FileTreeNode(FileNode):
    """File node with nested children, for the file-tree view"""
    children: List["FileTreeNode"] = Field(default_factory=list)

    @property
    def is_folder(self) -> bool:
        return self.type.is_container
