"""Database module for local SQLite storage."""

from .models import Base, Book, Member
from .schemas import BookCreate, BookResponse, BookStatus, MemberCreate, MemberResponse
from .sqlite import Database, get_db, is_contention, reset_db

__all__ = [
    "Base",
    "Book",
    "Member",
    "BookCreate",
    "BookResponse",
    "BookStatus",
    "MemberCreate",
    "MemberResponse",
    "Database",
    "get_db",
    "is_contention",
    "reset_db",
]
