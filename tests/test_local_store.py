import json

import pytest

from circulation import RequestAlreadyResolved
from local_store import LocalStore, LocalStoreError
from models import Book, User


@pytest.fixture
def store(tmp_path):
    s = LocalStore(directory=str(tmp_path / "offline"), prefix="test_")
    s.handle("POST", "/books", Book("BK1", "Dune", "Herbert", total_copies=1).to_dict())
    s.handle("POST", "/users/bulk", [User("U1", "Ada").to_dict(), User("U2", "Brian").to_dict()])
    return s


def test_one_json_file_per_collection(store, tmp_path):
    data = json.loads((tmp_path / "offline" / "test_books.json").read_text(encoding="utf-8"))
    assert [d["id"] for d in data] == ["BK1"]
    assert len(store.handle("GET", "/users")) == 2


def test_post_upserts_by_id(store):
    store.handle("POST", "/books", Book("BK1", "Dune (2nd ed.)", "Herbert").to_dict())
    store.handle("POST", "/books/bulk", [Book("BK2", "SICP", "Abelson").to_dict()])
    books = store.handle("GET", "/books")
    assert [b["title"] for b in books] == ["Dune (2nd ed.)", "SICP"]


def test_get_by_id_and_query_string_is_ignored(store):
    assert store.handle("GET", "/books/BK1")["title"] == "Dune"
    assert store.handle("GET", "/books/nope") is None
    assert len(store.handle("GET", "/books?q=dune")) == 1


def test_patch_merges_plain_documents(store):
    merged = store.handle("PATCH", "/users/U1", {"class": "11B"})
    assert merged["class"] == "11B"
    assert merged["name"] == "Ada"
    assert store.handle("PATCH", "/users/ghost", {"class": "x"}) is None


def test_delete_by_id_and_all(store):
    assert store.handle("DELETE", "/users/U1") == {"message": "Deleted successfully"}
    assert [u["id"] for u in store.handle("GET", "/users")] == ["U2"]
    assert store.handle("DELETE", "/users") == {"message": "All deleted successfully"}
    assert store.handle("GET", "/users") == []


def test_commands_run_locally(store):
    request = store.handle("POST", "/requests", {"bookId": "BK1", "userId": "U1"})
    assert request["status"] == "PENDING"

    resolution = store.handle("PATCH", f"/requests/{request['id']}", {"status": "APPROVED"})
    assert resolution["book"]["availableCopies"] == 0
    assert resolution["historyRecord"]["userId"] == "U1"
    with pytest.raises(RequestAlreadyResolved):
        store.handle("PATCH", f"/requests/{request['id']}", {"status": "DENIED"})

    receipt = store.handle("POST", "/returns", {"bookId": "BK1", "userId": "U1", "fine": {"amount": 2}})
    assert receipt["book"]["availableCopies"] == 1
    fine = store.handle("PATCH", f"/fines/{receipt['fine']['id']}", {"status": "PAID"})
    assert fine["status"] == "PAID"
    assert store.handle("GET", "/history")[0]["returnDate"] is not None


def test_request_with_id_is_stored_as_is(store):
    doc = {"id": "R1", "bookId": "BK1", "bookTitle": "Dune", "userId": "U1", "userName": "Ada",
           "status": "PENDING", "timestamp": 1}
    store.handle("POST", "/requests", doc)
    assert store.handle("GET", "/requests") == [doc]


def test_documents_without_id_are_rejected(store):
    with pytest.raises(ValueError):
        store.handle("POST", "/books", {"title": "Anonymous", "author": "Nobody"})
    with pytest.raises(ValueError):
        store.handle("POST", "/users/bulk", [{"id": "U9", "name": "Ivy"}, {"name": "No Id"}])
    assert [b["id"] for b in store.handle("GET", "/books")] == ["BK1"]
    assert len(store.handle("GET", "/users")) == 2


def test_fine_without_id_gets_one(store):
    fine = store.handle("POST", "/fines", {"userId": "U1", "bookId": "BK1", "amount": 3, "status": "PENDING"})
    assert fine["id"].startswith("F")
    assert store.handle("GET", f"/fines/{fine['id']}")["amount"] == 3


def test_server_only_endpoints(store):
    with pytest.raises(LocalStoreError):
        store.handle("GET", "/stats")
    with pytest.raises(LocalStoreError):
        store.handle("POST", "/auth/login", {"password": "x"})


def test_corrupt_file_reads_as_empty(tmp_path):
    s = LocalStore(directory=str(tmp_path), prefix="")
    (tmp_path / "books.json").write_text("{not json", encoding="utf-8")
    assert s.all("books") == []
