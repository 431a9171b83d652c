import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from models import Book, BorrowRequest, HistoryRecord
from waitlist import numbered

# Environment variable controlling CLI output: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LIB_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def print_books(books: List[Book]) -> None:
    """Print the catalog.

    - plain: ``ID - Title by Author [available/total]`` lines
    - json: array of book documents
    - rich: table
    """
    if not books:
        print("No books in library.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([b.to_dict() for b in books], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Books", show_lines=True, header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title")
        table.add_column("Author")
        table.add_column("Category")
        table.add_column("Available", justify="right")
        for b in books:
            table.add_row(b.id, b.title, b.author, b.category, f"{b.available_copies}/{b.total_copies}")
        _console.print(table)
    else:
        for b in books:
            print(f"{b.id} - {b.title} by {b.author} [{b.available_copies}/{b.total_copies}]")


def print_queue(book: Book, queue: List[BorrowRequest]) -> None:
    """Print one book's waitlist, first in line first."""
    if not queue:
        print(f"No one is waiting for {book.title}.")
        return

    mode = get_output_mode()
    if mode == "json":
        entries = [
            {"position": i, "requestId": r.id, "userId": r.user_id, "userName": r.user_name, "timestamp": r.timestamp}
            for i, r in numbered(queue)
        ]
        print(json.dumps({"bookId": book.id, "queue": entries}, ensure_ascii=False))
    elif mode == "rich":
        table = Table(title=f"Waitlist: {book.title}", header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("User")
        table.add_column("Request", style="dim")
        for i, r in numbered(queue):
            table.add_row(str(i), f"{r.user_name} ({r.user_id})", r.id)
        _console.print(table)
    else:
        print(f"Waitlist for {book.title}:")
        for i, r in numbered(queue):
            print(f"{i}. {r.user_name} ({r.user_id})")


def print_loans(loans: List[HistoryRecord]) -> None:
    if not loans:
        print("No active loans.")
        return

    mode = get_output_mode()
    if mode == "json":
        print(json.dumps([h.to_dict() for h in loans], ensure_ascii=False))
    elif mode == "rich":
        table = Table(title="Active loans", header_style="bold cyan")
        table.add_column("Record", style="dim")
        table.add_column("Book")
        table.add_column("Borrower")
        for h in loans:
            table.add_row(h.id, h.book_title, h.user_name)
        _console.print(table)
    else:
        for h in loans:
            print(f"{h.id} - {h.book_title} -> {h.user_name}")


def print_stats(stats: Dict[str, Any]) -> None:
    """Print the headline statistics.

    - plain: one ``Label: value`` line per figure
    - json: the full statistics object
    - rich: panel
    """
    if not stats:
        print("No statistics available.")
        return

    mode = get_output_mode()
    lines = [
        ("Total Titles", stats.get("totalTitles", 0)),
        ("Total Copies", stats.get("totalCopies", 0)),
        ("Issued Copies", stats.get("issuedCopies", 0)),
        ("Utilization", f"{stats.get('utilization', 0.0)}%"),
        ("Active Loans", stats.get("activeLoans", 0)),
        ("Pending Requests", stats.get("pendingRequests", 0)),
        ("Fine Revenue", stats.get("paidFineRevenue", 0)),
        ("Outstanding Fines", stats.get("outstandingFines", 0)),
    ]
    if mode == "json":
        print(json.dumps(stats, ensure_ascii=False))
    elif mode == "rich":
        content = "\n".join(f"[bold]{label}:[/] {value}" for label, value in lines)
        _console.print(Panel.fit(content, title="Stats", border_style="blue"))
    else:
        for label, value in lines:
            print(f"{label}: {value}")
