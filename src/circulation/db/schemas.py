"""Pydantic schemas for catalog and membership data."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class BookStatus(str, Enum):
    """Circulation status of a book."""

    AVAILABLE = "available"
    BORROWED = "borrowed"


class MemberCreate(BaseModel):
    """Schema for registering a member."""

    username: str = Field(..., min_length=1, max_length=100)
    full_name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=200)

    @field_validator("username")
    @classmethod
    def normalize_username(cls, v: str) -> str:
        """Usernames are stored trimmed and lowercase."""
        return v.strip().lower()


class MemberResponse(BaseModel):
    """Schema for member responses."""

    id: str
    username: str
    full_name: str
    email: Optional[str]
    active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class BookCreate(BaseModel):
    """Schema for adding a book to the catalog."""

    isbn: str = Field(..., min_length=10, max_length=20)
    title: str = Field(..., min_length=1, max_length=500)
    author: str = Field(..., min_length=1, max_length=500)
    publisher: Optional[str] = Field(None, max_length=500)

    @field_validator("isbn")
    @classmethod
    def strip_isbn(cls, v: str) -> str:
        """Remove surrounding whitespace from ISBN."""
        return v.strip()


class BookResponse(BaseModel):
    """Schema for book responses."""

    id: str
    isbn: str
    title: str
    author: str
    publisher: Optional[str]
    status: BookStatus
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
