"""CSV bulk import for books and users.

Header names are matched case-insensitively with spaces and underscores
ignored, so ``Cover URL``, ``cover_url`` and ``coverUrl`` all land on the
same field. Rows missing the required columns are skipped.
"""

import csv
import io
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, TextIO, Union

from models import Book, Role, User, now_ms

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"
DEFAULT_ISBN = "---"
DEFAULT_COVER_URL = "https://picsum.photos/seed/book/400/600"


def normalize_header(name: Optional[str]) -> str:
    return (name or "").strip().lower().replace(" ", "").replace("_", "")


def _rows(source: Union[str, TextIO]) -> Iterable[Dict[str, str]]:
    handle = io.StringIO(source) if isinstance(source, str) else source
    reader = csv.DictReader(handle)
    for row in reader:
        yield {normalize_header(k): (v or "").strip() for k, v in row.items() if k is not None}


def _to_int(value: str, default: int) -> int:
    try:
        return int(value) or default
    except (TypeError, ValueError):
        return default


def _to_float(value: str, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_books_csv(source: Union[str, TextIO], now: Optional[int] = None) -> List[Book]:
    """Books from CSV text or an open file.

    Recognised columns: id, title, author, category, year, isbn, coverurl,
    price, copies. Title and author are required.
    """
    stamp = now if now is not None else now_ms()
    current_year = datetime.now().year
    books = []
    for index, row in enumerate(_rows(source), start=1):
        if not row.get("title") or not row.get("author"):
            logger.debug("Skipping book row %d without title or author", index)
            continue
        copies = _to_int(row.get("copies"), 1)
        books.append(Book(
            id=row.get("id") or f"B{stamp}{index}",
            title=row["title"],
            author=row["author"],
            category=row.get("category") or DEFAULT_CATEGORY,
            year=_to_int(row.get("year"), current_year),
            isbn=row.get("isbn") or DEFAULT_ISBN,
            cover_url=row.get("coverurl") or DEFAULT_COVER_URL,
            price=_to_float(row.get("price")),
            total_copies=copies,
            available_copies=copies,
        ))
    logger.info("Parsed %d books from CSV", len(books))
    return books


def parse_users_csv(source: Union[str, TextIO]) -> List[User]:
    """Users from CSV text or an open file; id and name are required."""
    users = []
    for index, row in enumerate(_rows(source), start=1):
        if not row.get("id") or not row.get("name"):
            logger.debug("Skipping user row %d without id or name", index)
            continue
        role = Role.ADMIN if row.get("role", "").upper() == Role.ADMIN.value else Role.STUDENT
        users.append(User(
            id=row["id"],
            name=row["name"],
            role=role,
            user_class=row.get("class") or row.get("department") or "",
            avatar_url=row.get("avatarurl") or "",
        ))
    logger.info("Parsed %d users from CSV", len(users))
    return users
