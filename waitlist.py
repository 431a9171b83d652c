"""Per-book waitlists derived from the request collection.

Queues are never stored. They are rebuilt from the full set of requests on
every read: a book's queue is its PENDING requests ordered by request time,
oldest first. A user's position is one more than the number of pending
requests for the same book made strictly earlier, so requests sharing a
timestamp share a position. The request id only fixes the listing order
within such a tie.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from models import BorrowRequest


def _queue_key(request: BorrowRequest):
    return (request.timestamp, request.id)


def numbered(queue: List[BorrowRequest]) -> Iterator[Tuple[int, BorrowRequest]]:
    """Yield ``(position, request)`` for a queue sorted oldest first."""
    earlier = 0
    for index, request in enumerate(queue):
        if index and queue[index - 1].timestamp < request.timestamp:
            earlier = index
        yield earlier + 1, request


def build_queues(requests: Iterable[BorrowRequest]) -> Dict[str, List[BorrowRequest]]:
    """Return every non-empty waitlist keyed by book id.

    Books appear in the order their oldest pending request was made.
    """
    grouped: Dict[str, List[BorrowRequest]] = {}
    for request in requests:
        if request.is_pending:
            grouped.setdefault(request.book_id, []).append(request)
    for queue in grouped.values():
        queue.sort(key=_queue_key)
    ordered = sorted(grouped.items(), key=lambda item: _queue_key(item[1][0]))
    return OrderedDict(ordered)


def queue_for_book(requests: Iterable[BorrowRequest], book_id: str) -> List[BorrowRequest]:
    return sorted(
        (r for r in requests if r.is_pending and r.book_id == book_id),
        key=_queue_key,
    )


def _position_in(queue: List[BorrowRequest], user_id: str) -> Optional[int]:
    for position, request in numbered(queue):
        if request.user_id == user_id:
            return position
    return None


def queue_position(requests: Iterable[BorrowRequest], book_id: str, user_id: str) -> Optional[int]:
    """1-based position of the user's earliest pending request for the book, or None."""
    return _position_in(queue_for_book(requests, book_id), user_id)


def positions_for_user(requests: Iterable[BorrowRequest], user_id: str) -> Dict[str, int]:
    """Map each book the user is waiting for to their position in its queue."""
    positions: Dict[str, int] = {}
    for book_id, queue in build_queues(requests).items():
        position = _position_in(queue, user_id)
        if position is not None:
            positions[book_id] = position
    return positions


def queue_entries(queue: List[BorrowRequest]) -> List[dict]:
    """Serialize a queue with explicit positions for API and CLI output."""
    return [
        {
            "position": position,
            "requestId": request.id,
            "bookId": request.book_id,
            "bookTitle": request.book_title,
            "userId": request.user_id,
            "userName": request.user_name,
            "timestamp": request.timestamp,
        }
        for position, request in numbered(queue)
    ]
