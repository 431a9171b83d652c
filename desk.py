"""Client-side circulation desk.

``CirculationDesk`` holds a snapshot of the five collections as last fetched
through ``LibraryApiClient`` and exposes the actions a librarian or student
takes. Every action goes to the API (or the local fallback), then the whole
snapshot is reloaded. Failures never propagate: they end up in
``status_message`` and the handler returns False.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Optional

import waitlist
from circulation import Action
from client import ApiError, LibraryApiClient
from config import settings
from models import Book, BorrowRequest, Fine, HistoryRecord, User

logger = logging.getLogger(__name__)


class CirculationDesk:
    def __init__(self, client: LibraryApiClient, current_user: Optional[User] = None) -> None:
        self.client = client
        self.current_user = current_user
        self.books: List[Book] = []
        self.users: List[User] = []
        self.requests: List[BorrowRequest] = []
        self.history: List[HistoryRecord] = []
        self.fines: List[Fine] = []
        self.is_syncing = False
        self.is_local_mode = False
        self.status_message = ""
        self._lock = threading.RLock()
        self._stop_polling = threading.Event()
        self._poller: Optional[threading.Thread] = None

    # ------------------------- Snapshot ------------------------- #
    def refresh_all(self) -> bool:
        """Reload all five collections. Returns False if the fetch failed."""
        with self._lock:
            self.is_syncing = True
            try:
                books = self.client.get_books()
                users = self.client.get_users()
                requests = self.client.get_requests()
                history = self.client.get_history()
                fines = self.client.get_fines()
            except ApiError as exc:
                logger.warning("Refresh failed: %s", exc.message)
                return False
            except Exception:
                logger.exception("Refresh failed")
                return False
            else:
                self.books, self.users, self.requests = books, users, requests
                self.history, self.fines = history, fines
                return True
            finally:
                self.is_local_mode = self.client.is_using_fallback
                self.is_syncing = False

    def start_polling(self, interval: Optional[float] = None) -> None:
        if self._poller is not None and self._poller.is_alive():
            return
        interval = interval if interval is not None else settings.poll_interval
        self._stop_polling.clear()

        def poll() -> None:
            while not self._stop_polling.wait(interval):
                self.refresh_all()

        self._poller = threading.Thread(target=poll, name="desk-poller", daemon=True)
        self._poller.start()

    def stop_polling(self) -> None:
        self._stop_polling.set()
        if self._poller is not None:
            self._poller.join()
            self._poller = None

    # ------------------------- Session ------------------------- #
    def login(self, user: User) -> None:
        self.current_user = user
        self.refresh_all()

    def switch_portal(self) -> None:
        self.current_user = None

    # ------------------------- Lookups ------------------------- #
    def find_book(self, book_id: str) -> Optional[Book]:
        return next((b for b in self.books if b.id == book_id), None)

    def pending_requests(self) -> List[BorrowRequest]:
        return [r for r in self.requests if r.is_pending]

    def my_requests(self) -> List[BorrowRequest]:
        if self.current_user is None:
            return []
        return [r for r in self.requests if r.user_id == self.current_user.id]

    def active_loans(self, user_id: Optional[str] = None) -> List[HistoryRecord]:
        return [h for h in self.history if h.is_open and (user_id is None or h.user_id == user_id)]

    def unpaid_fines(self, user_id: Optional[str] = None) -> List[Fine]:
        return [f for f in self.fines if not f.is_paid and (user_id is None or f.user_id == user_id)]

    def queue_position(self, book_id: str, user_id: Optional[str] = None) -> Optional[int]:
        """1-based waitlist position; defaults to the current user."""
        if user_id is None:
            if self.current_user is None:
                return None
            user_id = self.current_user.id
        return waitlist.queue_position(self.requests, book_id, user_id)

    def waitlists(self) -> Dict[str, List[BorrowRequest]]:
        return waitlist.build_queues(self.requests)

    def can_request_book(self, book_id: str) -> bool:
        """A user may hold only one pending request per book."""
        if self.current_user is None:
            return False
        user_id = self.current_user.id
        return not any(r.is_pending and r.book_id == book_id and r.user_id == user_id for r in self.requests)

    # ------------------------- Handlers ------------------------- #
    def _run(self, success_message: str, action, *args) -> bool:
        try:
            action(*args)
        except Exception as exc:
            self.status_message = f"Action failed: {exc}"
            logger.error("%s failed: %s", getattr(action, "__name__", "action"), exc)
            self.refresh_all()
            return False
        self.status_message = success_message
        self.refresh_all()
        return True

    def handle_borrow_request(self, book_id: str) -> bool:
        if self.current_user is None:
            self.status_message = "Sign in to request books"
            return False
        if not self.can_request_book(book_id):
            self.status_message = "You already have a pending request for this book"
            return False
        return self._run("Borrow request sent", self.client.create_request, book_id, self.current_user.id)

    def handle_request_action(self, request_id: str, action: Action | str) -> bool:
        action = Action(action)
        message = "Request approved" if action is Action.APPROVE else "Request denied"
        return self._run(message, self.client.update_request_status, request_id, action.resulting_status)

    def handle_return_book(self, book_id: str, user_id: str, fine_amount: float = 0,
                           fine_reason: str = "") -> bool:
        message = "Book returned with a fine" if fine_amount > 0 else "Book returned"
        return self._run(message, self.client.return_book, book_id, user_id, fine_amount, fine_reason)

    def handle_pay_fine(self, fine_id: str) -> bool:
        return self._run("Fine paid", self.client.pay_fine, fine_id)

    def handle_add_or_update_book(self, book: Book) -> bool:
        return self._run(f"Saved {book.title}", self.client.save_book, book)

    def handle_delete_book(self, book_id: str) -> bool:
        return self._run("Book deleted", self.client.delete_book, book_id)

    def handle_import_books(self, books: Iterable[Book]) -> bool:
        books = list(books)
        return self._run(f"Imported {len(books)} books", self.client.bulk_save_books, books)

    def handle_add_or_update_user(self, user: User) -> bool:
        return self._run(f"Saved {user.name}", self.client.save_user, user)

    def handle_delete_user(self, user_id: str) -> bool:
        return self._run("User deleted", self.client.delete_user, user_id)

    def handle_import_users(self, users: Iterable[User]) -> bool:
        users = list(users)
        return self._run(f"Imported {len(users)} users", self.client.bulk_save_users, users)
