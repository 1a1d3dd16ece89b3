"""Demo catalog and member data.

Seeding is idempotent: members and books that already exist (by username
or ISBN) are skipped.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from .db.models import Book, Member
from .db.schemas import BookCreate, MemberCreate
from .db.sqlite import Database, get_db

logger = logging.getLogger(__name__)

DEMO_MEMBERS = [
    MemberCreate(username="john.doe", full_name="John Doe", email="john.doe@email.com"),
    MemberCreate(username="jane.smith", full_name="Jane Smith", email="jane.smith@email.com"),
    MemberCreate(username="bob.wilson", full_name="Bob Wilson", email="bob.wilson@email.com"),
    MemberCreate(username="alice.brown", full_name="Alice Brown", email="alice.brown@email.com"),
]

DEMO_BOOKS = [
    BookCreate(
        isbn="978-0134685991",
        title="Effective Java",
        author="Joshua Bloch",
        publisher="Addison-Wesley",
    ),
    BookCreate(
        isbn="978-0596009205",
        title="Head First Design Patterns",
        author="Eric Freeman, Elisabeth Robson",
        publisher="O'Reilly Media",
    ),
    BookCreate(
        isbn="978-0132350884",
        title="Clean Code",
        author="Robert C. Martin",
        publisher="Prentice Hall",
    ),
    BookCreate(
        isbn="978-0201633610",
        title="Design Patterns",
        author="Gang of Four",
        publisher="Addison-Wesley",
    ),
    BookCreate(
        isbn="978-1617294945",
        title="Spring in Action",
        author="Craig Walls",
        publisher="Manning Publications",
    ),
    BookCreate(
        isbn="978-1491950357",
        title="Building Microservices",
        author="Sam Newman",
        publisher="O'Reilly Media",
    ),
    BookCreate(
        isbn="978-0135957059",
        title="The Pragmatic Programmer",
        author="David Thomas, Andrew Hunt",
        publisher="Addison-Wesley",
    ),
    BookCreate(
        isbn="978-0596007126",
        title="Head First Java",
        author="Kathy Sierra, Bert Bates",
        publisher="O'Reilly Media",
    ),
    BookCreate(
        isbn="978-0321349606",
        title="Java Concurrency in Practice",
        author="Brian Goetz",
        publisher="Addison-Wesley",
    ),
]


@dataclass
class SeedResult:
    """Result of a seeding run."""

    members: list[Member] = field(default_factory=list)
    books: list[Book] = field(default_factory=list)
    skipped: int = 0

    @property
    def created(self) -> int:
        return len(self.members) + len(self.books)


def seed_demo_data(db: Optional[Database] = None) -> SeedResult:
    """Insert the demo members and books that are not present yet."""
    db = db or get_db()
    result = SeedResult()

    with db.get_session() as session:
        for member in DEMO_MEMBERS:
            if db.get_member_by_username(member.username, session):
                result.skipped += 1
                continue
            result.members.append(db.create_member(member, session))

        for book in DEMO_BOOKS:
            if db.get_book_by_isbn(book.isbn, session):
                result.skipped += 1
                continue
            result.books.append(db.create_book(book, session))

    logger.info(
        "Seeded %d members and %d books (%d already present)",
        len(result.members),
        len(result.books),
        result.skipped,
    )
    return result
