import importlib
import itertools
import os

import pytest
from fastapi.testclient import TestClient

import circulation
from config import settings
from library import Library
from models import Book, BorrowRequest, User


@pytest.fixture
def db_file(tmp_path, request):
    # A unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file, monkeypatch):
    # Point every Library() built during the test (CLI included) at the same file
    monkeypatch.setenv("LIBRARY_DB_FILE", db_file)
    lib = Library(db_file=db_file)
    yield lib
    lib.close()


@pytest.fixture
def stocked_lib(lib):
    """Two books and three students."""
    lib.save_book(Book("BK1", "Dune", "Frank Herbert", category="Fiction", total_copies=2))
    lib.save_book(Book("BK2", "SICP", "Abelson", category="Computing", total_copies=1))
    for user_id, name in (("U1", "Ada"), ("U2", "Brian"), ("U3", "Chen")):
        lib.save_user(User(user_id, name, user_class="10A"))
    return lib


@pytest.fixture
def api_module(db_file, tmp_path, monkeypatch):
    monkeypatch.setenv("LIBRARY_DB_FILE", db_file)
    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))

    import api as api_module
    # Reload api so its global Library() uses the test database and sessions start empty
    importlib.reload(api_module)
    return api_module


@pytest.fixture
def client(api_module):
    with TestClient(api_module.app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(client):
    response = client.post("/api/auth/login", json={"password": settings.admin_password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def make_request(request_id: str, book_id: str, user_id: str, timestamp: int, status="PENDING") -> BorrowRequest:
    return BorrowRequest(request_id, book_id, f"title-{book_id}", user_id, f"name-{user_id}", status, timestamp)


@pytest.fixture
def request_factory():
    return make_request


@pytest.fixture(autouse=True)
def _isolated_local_store(tmp_path, monkeypatch):
    # Keep the client fallback store out of the working directory and hashing cheap
    monkeypatch.setattr(settings, "local_store_dir", str(tmp_path / "local"))
    monkeypatch.setattr(settings, "password_hash_iterations", 1000)
    monkeypatch.delenv("LIB_CLI_OUTPUT", raising=False)
    os.makedirs(tmp_path / "local", exist_ok=True)


@pytest.fixture
def ticking_clock(monkeypatch):
    """Make each circulation timestamp one millisecond later than the last."""
    ticks = itertools.count(1_700_000_000_000)
    monkeypatch.setattr(circulation, "now_ms", lambda: next(ticks))
    return ticks
