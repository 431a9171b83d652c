"""HTTP client for the circulation API with an automatic offline fallback.

The first network failure (connection refused, timeout, ...) switches the
client to ``LocalStore`` for the rest of its life; there is no retry and no
switch back. Server responses outside 2xx, replies that are not JSON and
any other HTTP failure raise ``ApiError``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import httpx

from circulation import CirculationError
from config import settings
from local_store import LocalStore, LocalStoreError
from models import Book, BorrowRequest, Fine, FineStatus, HistoryRecord, RequestStatus, User

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"Server error: {response.status_code}"


def _decode(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError as exc:
        raise ApiError("Invalid response from server", response.status_code) from exc


class LibraryApiClient:
    """Synchronous client for ``/api``; every call may be served locally."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 local_store: Optional[LocalStore] = None, transport: Optional[httpx.BaseTransport] = None,
                 token: Optional[str] = None) -> None:
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout if timeout is not None else settings.request_timeout),
            transport=transport,
        )
        self._local_store = local_store
        self.use_fallback = False
        self.token = None
        if token:
            self.set_token(token)

    @property
    def local_store(self) -> LocalStore:
        if self._local_store is None:
            self._local_store = LocalStore()
        return self._local_store

    @property
    def is_using_fallback(self) -> bool:
        return self.use_fallback

    def set_token(self, token: Optional[str]) -> None:
        self.token = token
        if token:
            self._client.headers["Authorization"] = f"Bearer {token}"
        else:
            self._client.headers.pop("Authorization", None)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "LibraryApiClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------- Transport ------------------------- #
    def _request(self, method: str, endpoint: str, body: Any = None) -> Any:
        if not self.use_fallback:
            try:
                response = self._client.request(method, endpoint, json=body)
            except httpx.TransportError as exc:
                logger.warning("API unreachable (%s); switching to local storage", exc)
                self.use_fallback = True
            except httpx.HTTPError as exc:
                raise ApiError(f"Request failed: {exc}") from exc
            else:
                if response.is_error:
                    raise ApiError(_error_message(response), response.status_code)
                return _decode(response)
        return self._local(method, endpoint, body)

    def _local(self, method: str, endpoint: str, body: Any = None) -> Any:
        try:
            return self.local_store.handle(method, endpoint, body)
        except (CirculationError, LookupError, ValueError, LocalStoreError) as exc:
            raise ApiError(str(exc)) from exc

    # ------------------------- Books ------------------------- #
    def get_books(self) -> List[Book]:
        return [Book.from_dict(d) for d in self._request("GET", "/books") or []]

    def save_book(self, book: Book) -> Book:
        return Book.from_dict(self._request("POST", "/books", book.to_dict()))

    def bulk_save_books(self, books: List[Book]) -> List[Book]:
        data = self._request("POST", "/books/bulk", [b.to_dict() for b in books])
        return [Book.from_dict(d) for d in data]

    def delete_book(self, book_id: str) -> None:
        self._request("DELETE", f"/books/{book_id}")

    # ------------------------- Users ------------------------- #
    def get_users(self) -> List[User]:
        return [User.from_dict(d) for d in self._request("GET", "/users") or []]

    def save_user(self, user: User) -> User:
        return User.from_dict(self._request("POST", "/users", user.to_dict()))

    def bulk_save_users(self, users: List[User]) -> List[User]:
        data = self._request("POST", "/users/bulk", [u.to_dict() for u in users])
        return [User.from_dict(d) for d in data]

    def delete_user(self, user_id: str) -> None:
        self._request("DELETE", f"/users/{user_id}")

    # ------------------------- Requests ------------------------- #
    def get_requests(self) -> List[BorrowRequest]:
        return [BorrowRequest.from_dict(d) for d in self._request("GET", "/requests") or []]

    def create_request(self, book_id: str, user_id: str) -> BorrowRequest:
        data = self._request("POST", "/requests", {"bookId": book_id, "userId": user_id})
        return BorrowRequest.from_dict(data)

    def update_request_status(self, request_id: str, status: Union[RequestStatus, str]) -> Dict[str, Any]:
        """Approve or deny; returns ``{request, book, historyRecord}``."""
        return self._request("PATCH", f"/requests/{request_id}", {"status": RequestStatus(status).value})

    def delete_all_requests(self) -> None:
        self._request("DELETE", "/requests")

    # ------------------------- History ------------------------- #
    def get_history(self) -> List[HistoryRecord]:
        return [HistoryRecord.from_dict(d) for d in self._request("GET", "/history") or []]

    def add_history(self, record: HistoryRecord) -> HistoryRecord:
        return HistoryRecord.from_dict(self._request("POST", "/history", record.to_dict()))

    def close_history_record(self, record_id: str, return_date: Optional[int] = None) -> HistoryRecord:
        data = self._request("PATCH", f"/history/{record_id}", {"returnDate": return_date})
        return HistoryRecord.from_dict(data)

    def delete_all_history(self) -> None:
        self._request("DELETE", "/history")

    def return_book(self, book_id: str, user_id: str, fine_amount: float = 0,
                    fine_reason: str = "") -> Dict[str, Any]:
        """Check a book in; returns ``{book, historyRecord, fine}``."""
        body: Dict[str, Any] = {"bookId": book_id, "userId": user_id}
        if fine_amount > 0:
            body["fine"] = {"amount": fine_amount, "reason": fine_reason}
        return self._request("POST", "/returns", body)

    # ------------------------- Fines ------------------------- #
    def get_fines(self) -> List[Fine]:
        return [Fine.from_dict(d) for d in self._request("GET", "/fines") or []]

    def create_fine(self, fine: Fine) -> Fine:
        return Fine.from_dict(self._request("POST", "/fines", fine.to_dict()))

    def update_fine_status(self, fine_id: str, status: Union[FineStatus, str]) -> Fine:
        data = self._request("PATCH", f"/fines/{fine_id}", {"status": FineStatus(status).value})
        return Fine.from_dict(data)

    def pay_fine(self, fine_id: str) -> Fine:
        return self.update_fine_status(fine_id, FineStatus.PAID)

    def delete_all_fines(self) -> None:
        self._request("DELETE", "/fines")

    # ------------------------- Server-only calls ------------------------- #
    def get_stats(self) -> Dict[str, Any]:
        return self._request("GET", "/stats")

    def upload_image(self, path: Union[str, Path]) -> str:
        """Upload an image and return its public URL. Not available offline."""
        path = Path(path)
        if self.use_fallback:
            raise ApiError("Upload failed")
        try:
            with open(path, "rb") as f:
                response = self._client.post("/upload", files={"image": (path.name, f)})
        except httpx.HTTPError as exc:
            logger.warning("Upload of %s failed: %s", path.name, exc)
            raise ApiError("Upload failed") from exc
        if response.is_error:
            raise ApiError(_error_message(response), response.status_code)
        data = _decode(response)
        if not isinstance(data, dict) or "url" not in data:
            raise ApiError("Upload failed", response.status_code)
        return data["url"]

    def login(self, password: str) -> Dict[str, Any]:
        """Open an admin session; the token is sent with every later call."""
        session = self._request("POST", "/auth/login", {"password": password})
        self.set_token(session["token"])
        return session

    def logout(self) -> None:
        if self.token and not self.use_fallback:
            self._request("POST", "/auth/logout")
        self.set_token(None)
