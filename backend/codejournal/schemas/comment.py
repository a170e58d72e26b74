"""
Code Journal Backend — Comment Schemas
=======================================

What:  Request models for adding / editing comments and the recursive
       response node used to return a file's comment forest.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from codejournal.schemas.common import CamelModel


class NewCommentRequest(CamelModel):
    parent_id: Optional[int] = Field(default=None, description="Comment being replied to")
    start_line: int = Field(ge=0)
    end_line: int = Field(ge=0)
    base64_value: str = Field(description="Comment body, base64 encoded")


class EditCommentRequest(CamelModel):
    base64_value: str = Field(description="Replacement body, base64 encoded")


class CommentCreatedResponse(CamelModel):
    id: int


class CommentNode(CamelModel):
    """
    One comment with its replies.

    Tombstoned comments keep their place in the forest with `deleted: true`
    and the sentinel body so their replies stay attached.
    """
    id: int
    author: str
    parent_id: Optional[int] = None
    start_line: int
    end_line: int
    base64_value: str
    deleted: bool = False
    time: Optional[datetime] = None
    replies: List["CommentNode"] = Field(default_factory=list)


CommentNode.model_rebuild()
