"""Circulation state machine.

The module has two layers. The ``apply_*`` functions are pure transitions on
domain records: they mutate the records they are given and return whatever
new records the transition produced. The commands below them (``resolve_request``,
``process_return``, ``request_borrow``, ``pay_fine`` ...) load documents from a
store, run a transition and write back every changed document.

A store is any object with::

    get(collection, doc_id) -> dict | None
    all(collection) -> list[dict]
    put(collection, doc) -> None

The SQLite document store (``database.DocumentSession``) and the client-side
JSON fallback (``local_store.LocalStore``) both satisfy it, so the server and
the offline client run the very same rules.
"""

from __future__ import annotations

import enum
import logging
from typing import Iterable, List, NamedTuple, Optional, Tuple

from models import (
    BOOKS, FINES, HISTORY, REQUESTS, USERS,
    Book, Borrower, BorrowRequest, Fine, FineStatus, HistoryRecord, RequestStatus, User,
    new_id, now_ms,
)

logger = logging.getLogger(__name__)


# ------------------------- Errors ------------------------- #
class CirculationError(Exception):
    """Base class for circulation rule violations."""


class NotFoundError(CirculationError, LookupError):
    pass


class BookNotFound(NotFoundError):
    pass


class UserNotFound(NotFoundError):
    pass


class RequestNotFound(NotFoundError):
    pass


class HistoryRecordNotFound(NotFoundError):
    pass


class FineNotFound(NotFoundError):
    pass


class ConflictError(CirculationError):
    """The target exists but is in a state that forbids the operation."""


class RequestAlreadyResolved(ConflictError):
    pass


class LoanAlreadyClosed(ConflictError):
    pass


class FineReversalError(ConflictError):
    pass


# ------------------------- Inputs / results ------------------------- #
class Action(str, enum.Enum):
    APPROVE = "APPROVE"
    DENY = "DENY"

    @property
    def resulting_status(self) -> RequestStatus:
        return RequestStatus.APPROVED if self is Action.APPROVE else RequestStatus.DENIED

    @classmethod
    def from_status(cls, status: RequestStatus | str) -> "Action":
        """Map a target status (APPROVED/DENIED) onto the action producing it."""
        status = RequestStatus(status)
        if status is RequestStatus.APPROVED:
            return cls.APPROVE
        if status is RequestStatus.DENIED:
            return cls.DENY
        raise ValueError("A request can only be moved to APPROVED or DENIED.")


class FineAssessment(NamedTuple):
    amount: float
    reason: str = ""


def _dict_or_none(record) -> Optional[dict]:
    return record.to_dict() if record is not None else None


class Resolution(NamedTuple):
    request: BorrowRequest
    book: Optional[Book]
    history_record: Optional[HistoryRecord]

    def to_dict(self) -> dict:
        return {
            "request": self.request.to_dict(),
            "book": _dict_or_none(self.book),
            "historyRecord": _dict_or_none(self.history_record),
        }


class ReturnReceipt(NamedTuple):
    book: Book
    history_record: Optional[HistoryRecord]
    fine: Optional[Fine]

    def to_dict(self) -> dict:
        return {
            "book": self.book.to_dict(),
            "historyRecord": _dict_or_none(self.history_record),
            "fine": _dict_or_none(self.fine),
        }


# ------------------------- Pure transitions ------------------------- #
def new_borrow_request(book: Book, user: User, now: Optional[int] = None) -> BorrowRequest:
    """Create a PENDING request. Stock and duplicates are deliberately not checked."""
    timestamp = now if now is not None else now_ms()
    return BorrowRequest(
        id=new_id("R", timestamp),
        book_id=book.id,
        book_title=book.title,
        user_id=user.id,
        user_name=user.name,
        status=RequestStatus.PENDING,
        timestamp=timestamp,
    )


def apply_resolution(request: BorrowRequest, book: Optional[Book], action: Action | str,
                     now: Optional[int] = None) -> Optional[HistoryRecord]:
    """Resolve a pending request.

    Approving only touches inventory when the book has a free copy. With no
    copy left (or no book at all) the request still becomes APPROVED and the
    book is left as it was.
    """
    action = Action(action)
    if not request.is_pending:
        raise RequestAlreadyResolved(f"Request {request.id} is already {request.status.value}.")

    record = None
    if action is Action.APPROVE and book is not None and book.available_copies > 0:
        timestamp = now if now is not None else now_ms()
        book.available_copies -= 1
        book.current_borrowers.append(Borrower(request.user_id, request.user_name))
        record = HistoryRecord(
            id=new_id("H", timestamp),
            book_id=request.book_id,
            book_title=request.book_title,
            user_id=request.user_id,
            user_name=request.user_name,
            borrow_date=timestamp,
        )
    request.status = action.resulting_status
    return record


def find_open_record(history: Iterable[HistoryRecord], book_id: str, user_id: str) -> Optional[HistoryRecord]:
    """Oldest active loan of ``book_id`` held by ``user_id``."""
    candidates = [h for h in history if h.is_open and h.book_id == book_id and h.user_id == user_id]
    if not candidates:
        return None
    return min(candidates, key=lambda h: (h.borrow_date, h.id))


def apply_return(book: Book, history: Iterable[HistoryRecord], user_id: str,
                 fine: Optional[FineAssessment] = None,
                 now: Optional[int] = None) -> Tuple[Optional[HistoryRecord], Optional[Fine]]:
    """Check a copy back in; returns the closed history record and any new fine."""
    timestamp = now if now is not None else now_ms()
    borrower_name = next((b.user_name for b in book.current_borrowers if b.user_id == user_id), "")

    book.available_copies = min(book.total_copies, book.available_copies + 1)
    book.current_borrowers = [b for b in book.current_borrowers if b.user_id != user_id]

    record = find_open_record(history, book.id, user_id)
    if record is not None:
        record.return_date = timestamp

    new_fine = None
    if fine is not None and fine.amount > 0:
        new_fine = Fine(
            id=new_id("F", timestamp),
            user_id=user_id,
            user_name=record.user_name if record else borrower_name,
            book_id=book.id,
            book_title=record.book_title if record else book.title,
            amount=fine.amount,
            reason=fine.reason,
            status=FineStatus.PENDING,
            timestamp=timestamp,
        )
    return record, new_fine


def settle_fine(fine: Fine) -> bool:
    """Mark a fine PAID. Returns False when it already was."""
    if fine.is_paid:
        return False
    fine.status = FineStatus.PAID
    return True


# ------------------------- Commands over a store ------------------------- #
_LABELS = {BOOKS: "Book", USERS: "User", REQUESTS: "Request", HISTORY: "History record", FINES: "Fine"}


def _load(store, collection: str, doc_id: str, factory, error: type):
    data = store.get(collection, doc_id)
    if data is None:
        raise error(f"{_LABELS[collection]} {doc_id} not found")
    return factory(data)


def request_borrow(store, book_id: str, user_id: str, now: Optional[int] = None) -> BorrowRequest:
    book = _load(store, BOOKS, book_id, Book.from_dict, BookNotFound)
    user = _load(store, USERS, user_id, User.from_dict, UserNotFound)
    request = new_borrow_request(book, user, now)
    store.put(REQUESTS, request.to_dict())
    logger.info("Borrow request %s: user %s -> book %s", request.id, user.id, book.id)
    return request


def resolve_request(store, request_id: str, action: Action | str, now: Optional[int] = None) -> Resolution:
    request = _load(store, REQUESTS, request_id, BorrowRequest.from_dict, RequestNotFound)
    book_data = store.get(BOOKS, request.book_id)
    book = Book.from_dict(book_data) if book_data is not None else None

    record = apply_resolution(request, book, action, now)
    if record is not None:
        store.put(BOOKS, book.to_dict())
        store.put(HISTORY, record.to_dict())
    elif request.status is RequestStatus.APPROVED:
        logger.warning("Request %s approved without a free copy of book %s; inventory unchanged",
                       request.id, request.book_id)
    store.put(REQUESTS, request.to_dict())
    logger.info("Request %s resolved as %s", request.id, request.status.value)
    return Resolution(request, book, record)


def process_return(store, book_id: str, user_id: str, fine: Optional[FineAssessment] = None,
                   now: Optional[int] = None) -> ReturnReceipt:
    book = _load(store, BOOKS, book_id, Book.from_dict, BookNotFound)
    history: List[HistoryRecord] = [HistoryRecord.from_dict(h) for h in store.all(HISTORY)]

    record, new_fine = apply_return(book, history, user_id, fine, now)
    store.put(BOOKS, book.to_dict())
    if record is not None:
        store.put(HISTORY, record.to_dict())
    else:
        logger.warning("Return of book %s by %s matched no open loan", book_id, user_id)
    if new_fine is not None:
        store.put(FINES, new_fine.to_dict())
        logger.info("Fine %s of %s issued to %s", new_fine.id, new_fine.amount, user_id)
    logger.info("Book %s returned by %s", book_id, user_id)
    return ReturnReceipt(book, record, new_fine)


def close_history_record(store, record_id: str, return_date: Optional[int] = None) -> HistoryRecord:
    """Stamp a return date on one ledger row without touching the book."""
    record = _load(store, HISTORY, record_id, HistoryRecord.from_dict, HistoryRecordNotFound)
    if not record.is_open:
        raise LoanAlreadyClosed(f"History record {record_id} is already closed.")
    record.return_date = return_date if return_date is not None else now_ms()
    store.put(HISTORY, record.to_dict())
    return record


def pay_fine(store, fine_id: str) -> Fine:
    fine = _load(store, FINES, fine_id, Fine.from_dict, FineNotFound)
    if settle_fine(fine):
        store.put(FINES, fine.to_dict())
        logger.info("Fine %s paid", fine_id)
    return fine


def set_fine_status(store, fine_id: str, status: FineStatus | str) -> Fine:
    status = FineStatus(status)
    if status is FineStatus.PAID:
        return pay_fine(store, fine_id)
    fine = _load(store, FINES, fine_id, Fine.from_dict, FineNotFound)
    if fine.is_paid:
        raise FineReversalError(f"Fine {fine_id} is already paid and cannot be reopened.")
    return fine
