"""Pydantic schemas for tmux control routes."""
from pydantic import BaseModel, ConfigDict, Field


class RenameRequest(BaseModel):
    """Request body for tmux session rename.

    Both names default to empty so the rename rules, not schema
    validation, produce the error message.
    """
    model_config = ConfigDict(populate_by_name=True)

    current_name: str = Field(default='', alias='currentName')
    new_name: str = Field(default='', alias='newName')
