"""
User Profile Model.

The authenticated student's profile as returned by the backend login
exchange and persisted (encrypted) for optimistic restore.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class UserProfile(BaseModel):
    """Represents the logged-in user.

    The backend names the identifier ``user_id``; both spellings are
    accepted on input and ``id`` is used everywhere in the client.
    """

    model_config = ConfigDict(
        from_attributes=True, populate_by_name=True, coerce_numbers_to_str=True,
    )

    id: str = Field(alias="user_id")
    username: str
    email: str = ""
    role: str
    department: Optional[str] = None
    branch: Optional[str] = None
    semester: Optional[int] = None
    section: Optional[str] = None
    profile_image: Optional[str] = None
