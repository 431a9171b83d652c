import waitlist


def test_positions_follow_request_time(request_factory):
    requests = [
        request_factory("R3", "X", "C", 300),
        request_factory("R1", "X", "A", 100),
        request_factory("R2", "X", "B", 200),
    ]
    assert waitlist.queue_position(requests, "X", "A") == 1
    assert waitlist.queue_position(requests, "X", "B") == 2
    assert waitlist.queue_position(requests, "X", "C") == 3


def test_only_pending_requests_count(request_factory):
    requests = [
        request_factory("R1", "X", "A", 100, status="APPROVED"),
        request_factory("R2", "X", "B", 200, status="DENIED"),
        request_factory("R3", "X", "C", 300),
    ]
    assert waitlist.queue_position(requests, "X", "C") == 1
    assert waitlist.queue_position(requests, "X", "A") is None


def test_ties_break_by_request_id(request_factory):
    requests = [request_factory("R9", "X", "B", 100), request_factory("R1", "X", "A", 100)]
    assert [r.user_id for r in waitlist.queue_for_book(requests, "X")] == ["A", "B"]


def test_position_counts_strictly_earlier_requests(request_factory):
    requests = [
        request_factory("R2", "X", "B", 100),
        request_factory("R1", "X", "A", 100),
        request_factory("R3", "X", "C", 200),
        request_factory("R4", "X", "D", 50, status="APPROVED"),
    ]
    for request in requests:
        if request.is_pending:
            earlier = sum(1 for r in requests if r.is_pending and r.timestamp < request.timestamp)
            assert waitlist.queue_position(requests, "X", request.user_id) == 1 + earlier
    assert waitlist.queue_position(requests, "X", "B") == 1
    assert waitlist.queue_position(requests, "X", "C") == 3


def test_tied_requests_share_a_position_in_listings(request_factory):
    requests = [
        request_factory("R2", "X", "B", 100),
        request_factory("R1", "X", "A", 100),
        request_factory("R3", "X", "C", 200),
    ]
    entries = waitlist.queue_entries(waitlist.queue_for_book(requests, "X"))
    assert [(e["position"], e["userId"]) for e in entries] == [(1, "A"), (1, "B"), (3, "C")]
    assert waitlist.positions_for_user(requests, "B") == {"X": 1}


def test_build_queues_groups_by_book_oldest_first(request_factory):
    requests = [
        request_factory("R1", "Y", "A", 50),
        request_factory("R2", "X", "A", 10),
        request_factory("R3", "X", "B", 60),
        request_factory("R4", "Z", "C", 5, status="APPROVED"),
    ]
    queues = waitlist.build_queues(requests)
    assert list(queues) == ["X", "Y"]
    assert [r.id for r in queues["X"]] == ["R2", "R3"]


def test_user_positions_across_books(request_factory):
    requests = [
        request_factory("R1", "X", "A", 10),
        request_factory("R2", "X", "B", 20),
        request_factory("R3", "Y", "B", 5),
    ]
    assert waitlist.positions_for_user(requests, "B") == {"X": 2, "Y": 1}
    assert waitlist.positions_for_user(requests, "nobody") == {}


def test_duplicate_requests_use_earliest(request_factory):
    requests = [
        request_factory("R1", "X", "A", 10),
        request_factory("R2", "X", "B", 20),
        request_factory("R3", "X", "A", 30),
    ]
    assert waitlist.queue_position(requests, "X", "A") == 1


def test_queue_entries_are_numbered(request_factory):
    queue = [request_factory("R1", "X", "A", 10), request_factory("R2", "X", "B", 20)]
    entries = waitlist.queue_entries(queue)
    assert [e["position"] for e in entries] == [1, 2]
    assert entries[1]["requestId"] == "R2"
    assert entries[1]["userName"] == "name-B"
