from config import settings


BOOK = {"id": "BK1", "title": "Dune", "author": "Frank Herbert", "category": "Fiction", "totalCopies": 1}


def _seed(client, headers):
    assert client.post("/api/books", json=BOOK, headers=headers).status_code == 201
    users = [{"id": "U1", "name": "Ada", "class": "10A"}, {"id": "U2", "name": "Brian"}]
    assert client.post("/api/users/bulk", json=users, headers=headers).status_code == 201


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["counts"]["books"] == 0


def test_get_books_empty(client):
    response = client.get("/api/books")
    assert response.status_code == 200
    assert response.json() == []


def test_mutations_require_admin(client):
    response = client.post("/api/books", json=BOOK)
    assert response.status_code == 401
    assert response.json()["message"] == "Admin session required"
    bad = client.post("/api/books", json=BOOK, headers={"Authorization": "Bearer nope"})
    assert bad.status_code == 401


def test_login_with_wrong_password(client):
    response = client.post("/api/auth/login", json={"password": "wrong"})
    assert response.status_code == 401
    assert response.json() == {"message": "Invalid admin password"}


def test_book_defaults_and_camel_case(client, admin_headers):
    response = client.post("/api/books", json=BOOK, headers=admin_headers)
    assert response.status_code == 201
    body = response.json()
    assert body["availableCopies"] == 1
    assert body["currentBorrowers"] == []
    assert client.get("/api/books/BK1").json()["title"] == "Dune"
    assert client.get("/api/books", params={"q": "herb"}).json()[0]["id"] == "BK1"


def test_book_counter_validation(client, admin_headers):
    response = client.post("/api/books", json={**BOOK, "availableCopies": 3}, headers=admin_headers)
    assert response.status_code == 422
    assert "availableCopies" in response.json()["message"]


def test_unknown_book(client, admin_headers):
    assert client.get("/api/books/nope").status_code == 404
    assert client.delete("/api/books/nope", headers=admin_headers).status_code == 404
    assert client.get("/api/books/nope/queue").json() == {"message": "Book nope not found"}


def test_user_class_alias(client, admin_headers):
    _seed(client, admin_headers)
    users = {u["id"]: u for u in client.get("/api/users").json()}
    assert users["U1"]["class"] == "10A"
    assert users["U2"]["role"] == "STUDENT"


def test_full_circulation_flow(client, admin_headers, ticking_clock):
    _seed(client, admin_headers)

    first = client.post("/api/requests", json={"bookId": "BK1", "userId": "U1"})
    assert first.status_code == 201
    assert first.json()["status"] == "PENDING"
    second = client.post("/api/requests", json={"bookId": "BK1", "userId": "U2"}).json()

    queue = client.get("/api/books/BK1/queue").json()
    assert [e["userId"] for e in queue] == ["U1", "U2"]
    assert client.get("/api/users/U2/waitlist").json() == {"BK1": 2}

    resolved = client.patch(f"/api/requests/{first.json()['id']}", json={"status": "APPROVED"},
                            headers=admin_headers)
    assert resolved.status_code == 200
    body = resolved.json()
    assert body["book"]["availableCopies"] == 0
    assert body["historyRecord"]["userId"] == "U1"

    # Out of stock: approved without touching inventory
    out = client.patch(f"/api/requests/{second['id']}", json={"status": "APPROVED"}, headers=admin_headers)
    assert out.json()["historyRecord"] is None
    assert client.get("/api/books/BK1").json()["currentBorrowers"] == [{"userId": "U1", "userName": "Ada"}]

    again = client.patch(f"/api/requests/{second['id']}", json={"status": "DENIED"}, headers=admin_headers)
    assert again.status_code == 409

    loans = client.get("/api/users/U1/loans").json()
    assert len(loans) == 1

    returned = client.post(
        "/api/returns",
        json={"bookId": "BK1", "userId": "U1", "fine": {"amount": 7.5, "reason": "Water damage"}},
        headers=admin_headers,
    )
    assert returned.status_code == 200
    receipt = returned.json()
    assert receipt["book"]["availableCopies"] == 1
    assert receipt["historyRecord"]["returnDate"] is not None
    assert receipt["fine"]["status"] == "PENDING"

    fine_id = receipt["fine"]["id"]
    paid = client.patch(f"/api/fines/{fine_id}", json={"status": "PAID"}, headers=admin_headers)
    assert paid.json()["status"] == "PAID"
    assert paid.json()["amount"] == 7.5
    reopen = client.patch(f"/api/fines/{fine_id}", json={"status": "PENDING"}, headers=admin_headers)
    assert reopen.status_code == 409

    stats = client.get("/api/stats").json()
    assert stats["paidFineRevenue"] == 7.5
    assert stats["activeLoans"] == 0


def test_request_status_must_be_terminal(client, admin_headers):
    _seed(client, admin_headers)
    request_id = client.post("/api/requests", json={"bookId": "BK1", "userId": "U1"}).json()["id"]
    response = client.patch(f"/api/requests/{request_id}", json={"status": "PENDING"}, headers=admin_headers)
    assert response.status_code == 400


def test_request_for_unknown_user(client, admin_headers):
    _seed(client, admin_headers)
    response = client.post("/api/requests", json={"bookId": "BK1", "userId": "ghost"})
    assert response.status_code == 404
    assert response.json()["message"] == "User ghost not found"


def test_history_endpoints(client, admin_headers):
    record = {"id": "H1", "bookId": "BK1", "userId": "U1", "borrowDate": 1000}
    assert client.post("/api/history", json=record, headers=admin_headers).status_code == 201
    assert client.post("/api/history", json=record, headers=admin_headers).status_code == 400

    closed = client.patch("/api/history/H1", json={"returnDate": 2000}, headers=admin_headers)
    assert closed.json()["returnDate"] == 2000
    assert client.get("/api/history", params={"active": "true"}).json() == []
    assert client.patch("/api/history/H1", json={}, headers=admin_headers).status_code == 409

    cleared = client.delete("/api/history", headers=admin_headers).json()
    assert cleared == {"message": "All deleted successfully", "deleted": 1}


def test_fine_creation(client, admin_headers):
    response = client.post("/api/fines", json={"userId": "U1", "bookId": "BK1", "amount": 3}, headers=admin_headers)
    assert response.status_code == 201
    assert response.json()["id"].startswith("F")
    zero = client.post("/api/fines", json={"userId": "U1", "bookId": "BK1", "amount": 0}, headers=admin_headers)
    assert zero.status_code == 422
    assert len(client.get("/api/fines", params={"status": "PENDING"}).json()) == 1


def test_logout_revokes_token(client, admin_headers):
    assert client.post("/api/auth/logout", headers=admin_headers).status_code == 200
    assert client.post("/api/books", json=BOOK, headers=admin_headers).status_code == 401


def test_change_password(client, admin_headers):
    wrong = client.post("/api/auth/password",
                        json={"currentPassword": "nope", "newPassword": "s3cret!"}, headers=admin_headers)
    assert wrong.status_code == 403
    short = client.post("/api/auth/password",
                        json={"currentPassword": settings.admin_password, "newPassword": "abc"},
                        headers=admin_headers)
    assert short.status_code == 400

    ok = client.post("/api/auth/password",
                     json={"currentPassword": settings.admin_password, "newPassword": "s3cret!"},
                     headers=admin_headers)
    assert ok.status_code == 200
    # Existing sessions are revoked and only the new password works
    assert client.post("/api/books", json=BOOK, headers=admin_headers).status_code == 401
    assert client.post("/api/auth/login", json={"password": settings.admin_password}).status_code == 401
    assert client.post("/api/auth/login", json={"password": "s3cret!"}).status_code == 200


def test_upload_image(client, admin_headers, tmp_path):
    files = {"image": ("cover.png", b"\x89PNG fake", "image/png")}
    response = client.post("/api/upload", files=files, headers=admin_headers)
    assert response.status_code == 200
    url = response.json()["url"]
    assert url.startswith(settings.base_url + "/uploads/")
    assert url.endswith(".png")
    assert len(list((tmp_path / "uploads").iterdir())) == 1


def test_upload_rejects_other_files(client, admin_headers):
    files = {"image": ("notes.txt", b"hello", "text/plain")}
    response = client.post("/api/upload", files=files, headers=admin_headers)
    assert response.status_code == 400
    assert "Unsupported image type" in response.json()["message"]
