import subprocess
import sys
from pathlib import Path
from typing import Optional

import typer

from auth import hash_password
from circulation import Action, CirculationError, FineAssessment
from config import settings
from importers import parse_books_csv, parse_users_csv
from library import Library
from ui_helpers import print_books, print_loans, print_queue, print_stats, set_output_mode

app = typer.Typer(help="Library circulation CLI")


def _library() -> Library:
    """A Library on the configured database file (LIBRARY_DB_FILE wins)."""
    return Library()


def _fail(message: str) -> None:
    print(f"Error: {message}")
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None,
        "--output",
        "-o",
        help="Output format: plain | json | rich (default: plain)",
    )
):
    """Global options such as the output mode."""
    if output:
        set_output_mode(output)


@app.command("serve")
def cli_serve(reload: bool = typer.Option(False, "--reload", help="Restart on code changes")):
    """Run the REST API with uvicorn."""
    host = settings.api_host
    port = int(settings.api_port)
    print(f"Starting API on http://{host}:{port}/")
    args = [sys.executable, "-m", "uvicorn", "api:app", "--host", host, "--port", str(port)]
    if reload:
        args.append("--reload")
    subprocess.run(args)


@app.command("books")
def cli_books(
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Match title, author or id"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only this category"),
):
    """List the catalog with availability."""
    print_books(_library().list_books(query, category))


@app.command("queue")
def cli_queue(book_id: str):
    """Show who is waiting for a book, in order."""
    lib = _library()
    book = lib.find_book(book_id)
    if book is None:
        _fail(f"Book {book_id} not found")
    print_queue(book, lib.waitlist(book_id))


@app.command("loans")
def cli_loans(user: Optional[str] = typer.Option(None, "--user", "-u", help="Only this user's loans")):
    """List books currently out on loan."""
    print_loans(_library().active_loans(user))


@app.command("stats")
def cli_stats():
    """Show circulation statistics."""
    print_stats(_library().get_statistics())


@app.command("approve")
def cli_approve(request_id: str):
    """Approve a pending borrow request."""
    _resolve(request_id, Action.APPROVE)


@app.command("deny")
def cli_deny(request_id: str):
    """Deny a pending borrow request."""
    _resolve(request_id, Action.DENY)


def _resolve(request_id: str, action: Action) -> None:
    try:
        resolution = _library().resolve_request(request_id, action)
    except (CirculationError, ValueError) as e:
        _fail(str(e))
    request = resolution.request
    print(f"Request {request.id} {request.status.value.lower()}: {request.book_title} for {request.user_name}")
    if action is Action.APPROVE and resolution.history_record is None:
        print("No copy was available; inventory unchanged.")


@app.command("return")
def cli_return(
    book_id: str,
    user_id: str,
    fine: float = typer.Option(0.0, "--fine", help="Fine amount for damage or lateness"),
    reason: str = typer.Option("", "--reason", help="Reason recorded with the fine"),
):
    """Check a book back in, optionally issuing a fine."""
    assessment = FineAssessment(fine, reason) if fine > 0 else None
    try:
        receipt = _library().return_book(book_id, user_id, assessment)
    except (CirculationError, ValueError) as e:
        _fail(str(e))
    book = receipt.book
    print(f"Returned {book.title} ({book.available_copies}/{book.total_copies} available)")
    if receipt.fine is not None:
        print(f"Fine {receipt.fine.id}: {receipt.fine.amount}")


@app.command("pay-fine")
def cli_pay_fine(fine_id: str):
    """Mark a fine as paid."""
    try:
        paid = _library().pay_fine(fine_id)
    except CirculationError as e:
        _fail(str(e))
    print(f"Fine {paid.id} paid ({paid.amount})")


@app.command("import-books")
def cli_import_books(file_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True)):
    """Upsert books from a CSV file."""
    with open(file_path, "r", encoding="utf-8-sig", newline="") as f:
        books = parse_books_csv(f)
    try:
        _library().bulk_save_books(books)
    except ValueError as e:
        _fail(str(e))
    print(f"Imported {len(books)} books from {file_path.name}")


@app.command("import-users")
def cli_import_users(file_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True)):
    """Upsert users from a CSV file."""
    with open(file_path, "r", encoding="utf-8-sig", newline="") as f:
        users = parse_users_csv(f)
    _library().bulk_save_users(users)
    print(f"Imported {len(users)} users from {file_path.name}")


@app.command("hash-password")
def cli_hash_password(
    password: str = typer.Option(..., prompt=True, hide_input=True, confirmation_prompt=True),
):
    """Print a hash suitable for ADMIN_PASSWORD_HASH."""
    print(hash_password(password))


if __name__ == "__main__":
    app()
