from datetime import datetime

from importers import DEFAULT_COVER_URL, normalize_header, parse_books_csv, parse_users_csv
from models import Role


def test_header_normalization():
    assert normalize_header(" Cover URL ") == "coverurl"
    assert normalize_header("cover_url") == "coverurl"
    assert normalize_header("coverUrl") == "coverurl"


def test_books_with_spaced_headers():
    text = (
        "ID,Title,Author,Category,Year,ISBN,Cover URL,Price,Copies\n"
        "B1,Test Book 1,Author 1,Tech,2023,123456,http://example.com/c.png,100,10\n"
    )
    [book] = parse_books_csv(text)
    assert book.id == "B1"
    assert book.cover_url == "http://example.com/c.png"
    assert book.price == 100.0
    assert (book.total_copies, book.available_copies) == (10, 10)
    assert book.year == 2023


def test_book_defaults():
    [book] = parse_books_csv("title,author\nDune,Herbert\n", now=42)
    assert book.id == "B421"
    assert book.category == "General"
    assert book.year == datetime.now().year
    assert book.isbn == "---"
    assert book.cover_url == DEFAULT_COVER_URL
    assert book.price == 0.0
    assert book.total_copies == 1


def test_quoted_fields_and_skipped_rows():
    text = 'title,author,copies\n"Gödel, Escher, Bach",Hofstadter,2\n,Nobody,1\nNo Author,,1\n'
    books = parse_books_csv(text)
    assert [b.title for b in books] == ["Gödel, Escher, Bach"]
    assert books[0].total_copies == 2


def test_users():
    text = (
        "id,name,role,department,avatar_url\n"
        "U1,Ada,admin,Science,http://a/img.png\n"
        "U2,Brian,librarian,,\n"
        ",Missing Id,,,\n"
    )
    users = parse_users_csv(text)
    assert [u.id for u in users] == ["U1", "U2"]
    assert users[0].role is Role.ADMIN
    assert users[0].user_class == "Science"
    assert users[0].avatar_url == "http://a/img.png"
    assert users[1].role is Role.STUDENT


def test_class_column_wins_over_department():
    [user] = parse_users_csv("id,name,class,department\nU1,Ada,10A,Science\n")
    assert user.user_class == "10A"
