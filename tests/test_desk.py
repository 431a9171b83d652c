import time

import httpx
import pytest

from client import LibraryApiClient
from desk import CirculationDesk
from local_store import LocalStore
from models import Book, User


@pytest.fixture
def offline_client(tmp_path):
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    return LibraryApiClient(
        base_url="http://library.test/api",
        transport=httpx.MockTransport(unreachable),
        local_store=LocalStore(directory=str(tmp_path / "offline")),
    )


@pytest.fixture
def desk(offline_client):
    desk = CirculationDesk(offline_client)
    desk.handle_add_or_update_book(Book("BK1", "Dune", "Herbert", total_copies=1))
    desk.handle_import_users([User("U1", "Ada"), User("U2", "Brian"), User("U3", "Chen")])
    return desk


def test_refresh_reports_local_mode(desk):
    assert desk.is_local_mode is True
    assert desk.is_syncing is False
    assert [b.id for b in desk.books] == ["BK1"]
    assert len(desk.users) == 3


def test_borrow_request_needs_a_user(desk):
    assert desk.handle_borrow_request("BK1") is False
    assert desk.status_message == "Sign in to request books"


def test_duplicate_pending_request_is_refused(desk):
    desk.login(desk.users[0])
    assert desk.handle_borrow_request("BK1") is True
    assert desk.can_request_book("BK1") is False
    assert desk.handle_borrow_request("BK1") is False
    assert len(desk.requests) == 1


def test_waitlist_positions_and_approval(desk, ticking_clock):
    for user in desk.users:
        desk.login(user)
        assert desk.handle_borrow_request("BK1")

    desk.switch_portal()
    assert desk.queue_position("BK1") is None
    assert [desk.queue_position("BK1", u) for u in ("U1", "U2", "U3")] == [1, 2, 3]

    first = desk.waitlists()["BK1"][0]
    assert desk.handle_request_action(first.id, "APPROVE") is True
    assert desk.status_message == "Request approved"
    assert desk.find_book("BK1").available_copies == 0
    assert [h.user_id for h in desk.active_loans()] == ["U1"]
    assert desk.queue_position("BK1", "U2") == 1


def test_failed_action_lands_in_banner(desk):
    desk.login(desk.users[0])
    desk.handle_borrow_request("BK1")
    request = desk.requests[0]
    desk.handle_request_action(request.id, "DENY")

    assert desk.handle_request_action(request.id, "APPROVE") is False
    assert desk.status_message.startswith("Action failed:")
    assert "already DENIED" in desk.status_message


def test_return_with_fine_then_pay(desk):
    desk.login(desk.users[1])
    desk.handle_borrow_request("BK1")
    desk.handle_request_action(desk.requests[0].id, "APPROVE")

    assert desk.handle_return_book("BK1", "U2", fine_amount=3.0, fine_reason="Late") is True
    assert desk.status_message == "Book returned with a fine"
    assert desk.find_book("BK1").available_copies == 1
    fine = desk.unpaid_fines("U2")[0]
    assert fine.amount == 3.0

    assert desk.handle_pay_fine(fine.id) is True
    assert desk.unpaid_fines() == []


def test_delete_book_and_user(desk):
    assert desk.handle_delete_user("U3") is True
    assert desk.handle_delete_book("BK1") is True
    assert desk.books == []
    assert [u.id for u in desk.users] == ["U1", "U2"]


def test_polling_refreshes_in_background(desk, offline_client):
    offline_client.local_store.put("books", Book("BK2", "SICP", "Abelson").to_dict())
    desk.start_polling(interval=0.01)
    try:
        for _ in range(200):
            if len(desk.books) == 2:
                break
            time.sleep(0.01)
    finally:
        desk.stop_polling()
    assert [b.id for b in desk.books] == ["BK1", "BK2"]


@pytest.fixture
def maintenance_desk(tmp_path):
    calls = []

    def maintenance_page(request):
        calls.append(request.url.path)
        return httpx.Response(200, text="<html>maintenance</html>")

    client = LibraryApiClient(
        base_url="http://library.test/api",
        transport=httpx.MockTransport(maintenance_page),
        local_store=LocalStore(directory=str(tmp_path / "offline")),
    )
    desk = CirculationDesk(client)
    desk.calls = calls
    return desk


def test_refresh_survives_a_non_json_reply(maintenance_desk):
    assert maintenance_desk.refresh_all() is False
    assert maintenance_desk.books == []
    assert maintenance_desk.is_syncing is False
    assert maintenance_desk.is_local_mode is False


def test_handler_reports_a_non_json_reply(maintenance_desk):
    assert maintenance_desk.handle_pay_fine("F1") is False
    assert maintenance_desk.status_message == "Action failed: Invalid response from server"


def test_polling_keeps_running_after_bad_replies(maintenance_desk):
    maintenance_desk.start_polling(interval=0.01)
    try:
        for _ in range(200):
            if len(maintenance_desk.calls) >= 3:
                break
            time.sleep(0.01)
        assert maintenance_desk._poller.is_alive()
    finally:
        maintenance_desk.stop_polling()
    assert len(maintenance_desk.calls) >= 3
