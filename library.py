import logging
import os
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

import circulation
import database
import waitlist
from circulation import Action, FineAssessment, Resolution, ReturnReceipt
from config import settings
from database import CREDENTIALS, initialize_database, open_session, transaction
from models import (
    BOOKS, FINES, HISTORY, REQUESTS, USERS,
    Book, BorrowRequest, Fine, FineStatus, HistoryRecord, RequestStatus, Role, User,
)

logger = logging.getLogger(__name__)


def _contains(term: str, *values: Optional[str]) -> bool:
    return any(term in (value or "").lower() for value in values)


class Library:
    """Circulation collections and the commands that change them.

    Every call reads the document store afresh; nothing is cached between
    calls, so two ``Library`` objects on the same file always agree.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file or os.environ.get("LIBRARY_DB_FILE") or database.DATABASE_FILE
        initialize_database(self.db_file)

    # ------------------------- Catalog ------------------------- #
    def list_books(self, query: Optional[str] = None, category: Optional[str] = None) -> List[Book]:
        """All books, optionally narrowed by a search term and a category."""
        with open_session(self.db_file) as docs:
            books = [Book.from_dict(d) for d in docs.all(BOOKS)]
        if category and category != "All":
            books = [b for b in books if b.category == category]
        if query and query.strip():
            term = query.strip().lower()
            books = [b for b in books if _contains(term, b.title, b.author, b.id)]
        return books

    def find_book(self, book_id: str) -> Optional[Book]:
        with open_session(self.db_file) as docs:
            data = docs.get(BOOKS, book_id)
        return Book.from_dict(data) if data else None

    def categories(self) -> List[str]:
        return sorted({b.category for b in self.list_books()})

    def save_book(self, book: Book) -> Book:
        """Insert or replace a book by id."""
        self._validate_book(book)
        with transaction(self.db_file) as docs:
            docs.put(BOOKS, book.to_dict())
        return book

    def bulk_save_books(self, books: Iterable[Book]) -> List[Book]:
        books = list(books)
        for book in books:
            self._validate_book(book)
        with transaction(self.db_file) as docs:
            for book in books:
                docs.put(BOOKS, book.to_dict())
        logger.info("Upserted %d books", len(books))
        return books

    def remove_book(self, book_id: str) -> bool:
        with transaction(self.db_file) as docs:
            return docs.delete(BOOKS, book_id)

    # ------------------------- Users ------------------------- #
    def list_users(self, query: Optional[str] = None) -> List[User]:
        with open_session(self.db_file) as docs:
            users = [User.from_dict(d) for d in docs.all(USERS)]
        if query and query.strip():
            term = query.strip().lower()
            users = [u for u in users if _contains(term, u.name, u.id)]
        return users

    def find_user(self, user_id: str) -> Optional[User]:
        with open_session(self.db_file) as docs:
            data = docs.get(USERS, user_id)
        return User.from_dict(data) if data else None

    def save_user(self, user: User) -> User:
        """Insert or replace a user by id. Ids in ADMIN_USER_IDS always get the ADMIN role."""
        self._apply_admin_override(user)
        with transaction(self.db_file) as docs:
            docs.put(USERS, user.to_dict())
        return user

    def bulk_save_users(self, users: Iterable[User]) -> List[User]:
        users = list(users)
        with transaction(self.db_file) as docs:
            for user in users:
                self._apply_admin_override(user)
                docs.put(USERS, user.to_dict())
        logger.info("Upserted %d users", len(users))
        return users

    def remove_user(self, user_id: str) -> bool:
        with transaction(self.db_file) as docs:
            return docs.delete(USERS, user_id)

    # ------------------------- Borrow requests ------------------------- #
    def list_requests(self, status: Optional[RequestStatus] = None) -> List[BorrowRequest]:
        """Requests, newest first."""
        with open_session(self.db_file) as docs:
            requests = [BorrowRequest.from_dict(d) for d in docs.all(REQUESTS)]
        if status is not None:
            requests = [r for r in requests if r.status is RequestStatus(status)]
        return sorted(requests, key=lambda r: r.timestamp, reverse=True)

    def create_request(self, book_id: str, user_id: str, now: Optional[int] = None) -> BorrowRequest:
        with transaction(self.db_file) as docs:
            return circulation.request_borrow(docs, book_id, user_id, now)

    def resolve_request(self, request_id: str, action: Action, now: Optional[int] = None) -> Resolution:
        with transaction(self.db_file) as docs:
            return circulation.resolve_request(docs, request_id, action, now)

    def clear_requests(self) -> int:
        with transaction(self.db_file) as docs:
            return docs.clear(REQUESTS)

    # ------------------------- Waitlists ------------------------- #
    def queues(self) -> Dict[str, List[BorrowRequest]]:
        return waitlist.build_queues(self.list_requests())

    def waitlist(self, book_id: str) -> List[BorrowRequest]:
        if self.find_book(book_id) is None:
            raise circulation.BookNotFound(f"Book {book_id} not found")
        return waitlist.queue_for_book(self.list_requests(), book_id)

    def queue_position(self, book_id: str, user_id: str) -> Optional[int]:
        return waitlist.queue_position(self.list_requests(), book_id, user_id)

    def waitlist_for_user(self, user_id: str) -> Dict[str, int]:
        return waitlist.positions_for_user(self.list_requests(), user_id)

    # ------------------------- Circulation ledger ------------------------- #
    def list_history(self, active: Optional[bool] = None, user_id: Optional[str] = None) -> List[HistoryRecord]:
        """Ledger rows, most recent borrow first."""
        with open_session(self.db_file) as docs:
            records = [HistoryRecord.from_dict(d) for d in docs.all(HISTORY)]
        if active is not None:
            records = [h for h in records if h.is_open == active]
        if user_id:
            records = [h for h in records if h.user_id == user_id]
        return sorted(records, key=lambda h: h.borrow_date, reverse=True)

    def active_loans(self, user_id: Optional[str] = None) -> List[HistoryRecord]:
        return self.list_history(active=True, user_id=user_id)

    def add_history_record(self, record: HistoryRecord) -> HistoryRecord:
        """Append a ledger row; existing ids are never overwritten."""
        with transaction(self.db_file) as docs:
            if docs.get(HISTORY, record.id) is not None:
                raise ValueError(f"History record {record.id} already exists.")
            docs.put(HISTORY, record.to_dict())
        return record

    def close_history_record(self, record_id: str, return_date: Optional[int] = None) -> HistoryRecord:
        with transaction(self.db_file) as docs:
            return circulation.close_history_record(docs, record_id, return_date)

    def return_book(self, book_id: str, user_id: str, fine: Optional[FineAssessment] = None,
                    now: Optional[int] = None) -> ReturnReceipt:
        with transaction(self.db_file) as docs:
            return circulation.process_return(docs, book_id, user_id, fine, now)

    def clear_history(self) -> int:
        with transaction(self.db_file) as docs:
            return docs.clear(HISTORY)

    # ------------------------- Fines ------------------------- #
    def list_fines(self, status: Optional[FineStatus] = None, user_id: Optional[str] = None) -> List[Fine]:
        with open_session(self.db_file) as docs:
            fines = [Fine.from_dict(d) for d in docs.all(FINES)]
        if status is not None:
            fines = [f for f in fines if f.status is FineStatus(status)]
        if user_id:
            fines = [f for f in fines if f.user_id == user_id]
        return sorted(fines, key=lambda f: f.timestamp, reverse=True)

    def add_fine(self, fine: Fine) -> Fine:
        if fine.amount <= 0:
            raise ValueError("Fine amount must be greater than zero.")
        with transaction(self.db_file) as docs:
            docs.put(FINES, fine.to_dict())
        return fine

    def pay_fine(self, fine_id: str) -> Fine:
        with transaction(self.db_file) as docs:
            return circulation.pay_fine(docs, fine_id)

    def set_fine_status(self, fine_id: str, status: FineStatus) -> Fine:
        with transaction(self.db_file) as docs:
            return circulation.set_fine_status(docs, fine_id, status)

    def clear_fines(self) -> int:
        with transaction(self.db_file) as docs:
            return docs.clear(FINES)

    # ------------------------- Credentials ------------------------- #
    def get_admin_password_hash(self) -> Optional[str]:
        with open_session(self.db_file) as docs:
            data = docs.get(CREDENTIALS, "admin")
        return data.get("passwordHash") if data else None

    def set_admin_password_hash(self, password_hash: str) -> None:
        with transaction(self.db_file) as docs:
            docs.put(CREDENTIALS, {"id": "admin", "passwordHash": password_hash})

    # ------------------------- Statistics ------------------------- #
    def counts(self) -> Dict[str, int]:
        with open_session(self.db_file) as docs:
            return {name: docs.count(name) for name in (BOOKS, USERS, REQUESTS, HISTORY, FINES)}

    def get_statistics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Circulation figures for the analytics dashboard."""
        with open_session(self.db_file) as docs:
            books = [Book.from_dict(d) for d in docs.all(BOOKS)]
            requests = [BorrowRequest.from_dict(d) for d in docs.all(REQUESTS)]
            history = [HistoryRecord.from_dict(d) for d in docs.all(HISTORY)]
            fines = [Fine.from_dict(d) for d in docs.all(FINES)]

        total_copies = sum(b.total_copies for b in books)
        available_copies = sum(b.available_copies for b in books)
        issued_copies = total_copies - available_copies

        categories: Dict[str, int] = {}
        for book in books:
            categories[book.category] = categories.get(book.category, 0) + book.total_copies

        reader_counts = Counter(h.user_id for h in history)
        reader_names = {h.user_id: h.user_name for h in history}
        top_readers = [
            {"userId": user_id, "userName": reader_names[user_id], "count": count}
            for user_id, count in reader_counts.most_common(5)
        ]

        return {
            "totalTitles": len(books),
            "totalCopies": total_copies,
            "availableCopies": available_copies,
            "issuedCopies": issued_copies,
            "utilization": round(issued_copies / total_copies * 100, 1) if total_copies else 0.0,
            "activeLoans": sum(1 for h in history if h.is_open),
            "pendingRequests": sum(1 for r in requests if r.is_pending),
            "paidFineRevenue": sum(f.amount for f in fines if f.is_paid),
            "outstandingFines": sum(f.amount for f in fines if not f.is_paid),
            "categoryDistribution": categories,
            "topReaders": top_readers,
            "borrowingTrend": self._borrowing_trend(history, now),
            "driftedBooks": [b.id for b in books if not b.is_consistent()],
        }

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _borrowing_trend(history: List[HistoryRecord], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Borrowed/returned counts for each of the last seven days (UTC)."""
        today = (now or datetime.now(timezone.utc)).date()

        def day_of(ms: int):
            return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).date()

        trend = []
        for offset in range(6, -1, -1):
            day = today - timedelta(days=offset)
            trend.append({
                "date": day.isoformat(),
                "borrowed": sum(1 for h in history if day_of(h.borrow_date) == day),
                "returned": sum(1 for h in history if h.return_date is not None and day_of(h.return_date) == day),
            })
        return trend

    @staticmethod
    def _validate_book(book: Book) -> None:
        if not book.id:
            raise ValueError("Book id cannot be empty.")
        if not book.title or not book.author:
            raise ValueError("Book title and author are required.")
        if book.total_copies < 0:
            raise ValueError("totalCopies cannot be negative.")
        if not 0 <= book.available_copies <= book.total_copies:
            raise ValueError("availableCopies must be between 0 and totalCopies.")

    @staticmethod
    def _apply_admin_override(user: User) -> None:
        if user.id in settings.admin_user_ids:
            user.role = Role.ADMIN

    def close(self) -> None:
        """Connections are opened per operation; kept so callers can close() unconditionally."""
        return None
