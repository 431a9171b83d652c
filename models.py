"""Domain records for the circulation manager.

Every record converts to and from the camelCase dictionaries that travel over
the REST API and sit in the document store, so the same shape is used by the
server, the client and the local fallback store.
"""

from __future__ import annotations

import enum
import secrets
import time
from typing import List, Optional


# Document store collection names
BOOKS = "books"
USERS = "users"
REQUESTS = "requests"
HISTORY = "history"
FINES = "fines"
COLLECTIONS = (BOOKS, USERS, REQUESTS, HISTORY, FINES)


class Role(str, enum.Enum):
    ADMIN = "ADMIN"
    STUDENT = "STUDENT"


class RequestStatus(str, enum.Enum):
    """Status of a borrow request. PENDING -> APPROVED | DENIED, both terminal."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DENIED = "DENIED"


class FineStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"


def now_ms() -> int:
    """Current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def new_id(prefix: str, timestamp: Optional[int] = None) -> str:
    """Build an id such as ``R1718000000000a1b2``."""
    stamp = timestamp if timestamp is not None else now_ms()
    return f"{prefix}{stamp}{secrets.token_hex(2)}"


class Borrower:
    """A user currently holding a copy of a book."""

    def __init__(self, user_id: str, user_name: str = "") -> None:
        self.user_id = user_id
        self.user_name = user_name

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Borrower):
            return NotImplemented
        return self.user_id == other.user_id and self.user_name == other.user_name

    def __repr__(self) -> str:  # pragma: no cover - debugging aid
        return f"Borrower({self.user_id!r}, {self.user_name!r})"

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "userName": self.user_name}

    @staticmethod
    def from_dict(data: dict) -> "Borrower":
        return Borrower(user_id=data["userId"], user_name=data.get("userName") or "")


class Book:
    """A catalog entry with its availability counters and borrower list."""

    def __init__(self, id: str, title: str, author: str, category: str = "General", year: int | None = None,
                 isbn: str = "", cover_url: str = "", price: float = 0.0, total_copies: int = 1,
                 available_copies: int | None = None, current_borrowers: list | None = None) -> None:
        self.id = id
        self.title = title.strip()
        self.author = author.strip()
        self.category = category or "General"
        self.year = year
        self.isbn = isbn or ""
        self.cover_url = cover_url or ""
        self.price = price or 0.0
        self.total_copies = total_copies
        self.available_copies = total_copies if available_copies is None else available_copies
        self.current_borrowers: List[Borrower] = list(current_borrowers or [])

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} by {self.author} ({self.available_copies}/{self.total_copies} available)"

    @property
    def issued_copies(self) -> int:
        return self.total_copies - self.available_copies

    def has_borrower(self, user_id: str) -> bool:
        return any(b.user_id == user_id for b in self.current_borrowers)

    def is_consistent(self) -> bool:
        """True when the borrower list agrees with the availability counters."""
        return (
            0 <= self.available_copies <= self.total_copies
            and len(self.current_borrowers) == self.issued_copies
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "author": self.author,
            "category": self.category,
            "year": self.year,
            "isbn": self.isbn,
            "coverUrl": self.cover_url,
            "price": self.price,
            "totalCopies": self.total_copies,
            "availableCopies": self.available_copies,
            "currentBorrowers": [b.to_dict() for b in self.current_borrowers],
        }

    @staticmethod
    def from_dict(data: dict) -> "Book":
        return Book(
            id=data["id"],
            title=data["title"],
            author=data["author"],
            category=data.get("category") or "General",
            year=data.get("year"),
            isbn=data.get("isbn") or "",
            cover_url=data.get("coverUrl") or "",
            price=data.get("price") or 0.0,
            total_copies=data.get("totalCopies", 1),
            available_copies=data.get("availableCopies"),
            current_borrowers=[Borrower.from_dict(b) for b in data.get("currentBorrowers") or []],
        )


class User:
    def __init__(self, id: str, name: str, role: Role | str = Role.STUDENT, user_class: str = "",
                 avatar_url: str = "") -> None:
        self.id = id
        self.name = name.strip()
        self.role = Role(role)
        self.user_class = user_class or ""
        self.avatar_url = avatar_url or ""

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role.value,
            "class": self.user_class,
            "avatarUrl": self.avatar_url,
        }

    @staticmethod
    def from_dict(data: dict) -> "User":
        return User(
            id=data["id"],
            name=data["name"],
            role=data.get("role") or Role.STUDENT,
            user_class=data.get("class") or "",
            avatar_url=data.get("avatarUrl") or "",
        )


class BorrowRequest:
    """A student's request to borrow a book, resolved once by an admin."""

    def __init__(self, id: str, book_id: str, book_title: str, user_id: str, user_name: str,
                 status: RequestStatus | str = RequestStatus.PENDING, timestamp: int | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.book_title = book_title
        self.user_id = user_id
        self.user_name = user_name
        self.status = RequestStatus(status)
        self.timestamp = timestamp if timestamp is not None else now_ms()

    @property
    def is_pending(self) -> bool:
        return self.status is RequestStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bookId": self.book_id,
            "bookTitle": self.book_title,
            "userId": self.user_id,
            "userName": self.user_name,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }

    @staticmethod
    def from_dict(data: dict) -> "BorrowRequest":
        return BorrowRequest(
            id=data["id"],
            book_id=data["bookId"],
            book_title=data.get("bookTitle") or "",
            user_id=data["userId"],
            user_name=data.get("userName") or "",
            status=data.get("status") or RequestStatus.PENDING,
            timestamp=data.get("timestamp"),
        )


class HistoryRecord:
    """One borrow event in the circulation ledger; open until returned."""

    def __init__(self, id: str, book_id: str, book_title: str, user_id: str, user_name: str,
                 borrow_date: int | None = None, return_date: int | None = None) -> None:
        self.id = id
        self.book_id = book_id
        self.book_title = book_title
        self.user_id = user_id
        self.user_name = user_name
        self.borrow_date = borrow_date if borrow_date is not None else now_ms()
        self.return_date = return_date

    @property
    def is_open(self) -> bool:
        return self.return_date is None

    def to_dict(self) -> dict:
        data = {
            "id": self.id,
            "bookId": self.book_id,
            "bookTitle": self.book_title,
            "userId": self.user_id,
            "userName": self.user_name,
            "borrowDate": self.borrow_date,
        }
        if self.return_date is not None:
            data["returnDate"] = self.return_date
        return data

    @staticmethod
    def from_dict(data: dict) -> "HistoryRecord":
        return HistoryRecord(
            id=data["id"],
            book_id=data["bookId"],
            book_title=data.get("bookTitle") or "",
            user_id=data["userId"],
            user_name=data.get("userName") or "",
            borrow_date=data.get("borrowDate"),
            return_date=data.get("returnDate"),
        )


class Fine:
    def __init__(self, id: str, user_id: str, book_id: str, amount: float, reason: str = "",
                 status: FineStatus | str = FineStatus.PENDING, timestamp: int | None = None,
                 user_name: str = "", book_title: str = "") -> None:
        self.id = id
        self.user_id = user_id
        self.user_name = user_name
        self.book_id = book_id
        self.book_title = book_title
        self.amount = amount
        self.reason = reason
        self.status = FineStatus(status)
        self.timestamp = timestamp if timestamp is not None else now_ms()

    @property
    def is_paid(self) -> bool:
        return self.status is FineStatus.PAID

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userName": self.user_name,
            "bookId": self.book_id,
            "bookTitle": self.book_title,
            "amount": self.amount,
            "reason": self.reason,
            "status": self.status.value,
            "timestamp": self.timestamp,
        }

    @staticmethod
    def from_dict(data: dict) -> "Fine":
        return Fine(
            id=data["id"],
            user_id=data["userId"],
            user_name=data.get("userName") or "",
            book_id=data["bookId"],
            book_title=data.get("bookTitle") or "",
            amount=data.get("amount") or 0,
            reason=data.get("reason") or "",
            status=data.get("status") or FineStatus.PENDING,
            timestamp=data.get("timestamp"),
        )
