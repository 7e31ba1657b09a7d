"""
Pytest configuration and shared fixtures.
"""

import copy
import io

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from PIL import Image
from pymongo.errors import DuplicateKeyError

from api.auth import AuthService
from api.books import BookService, average
from api.database import to_object_id
from api.dependencies import get_auth_service, get_book_service
from api.images import ImageProcessor
from api.main import app

TEST_SECRET = "test-secret-key"


class InMemoryUserStore:
    """UserStore double keeping users in a dict."""

    def __init__(self):
        self.users = {}

    async def create_user(self, email, password_hash):
        if any(u["email"] == email for u in self.users.values()):
            raise DuplicateKeyError("E11000 duplicate key error collection: users index: email_1")
        user_id = ObjectId()
        self.users[user_id] = {"_id": user_id, "email": email, "password": password_hash}
        return str(user_id)

    async def get_user_by_email(self, email):
        for user in self.users.values():
            if user["email"] == email:
                return dict(user)
        return None


class InMemoryBookStore:
    """BookStore double with the same ownership and rating semantics."""

    def __init__(self):
        self.books = {}

    async def list_books(self):
        return [copy.deepcopy(b) for b in self.books.values()]

    async def top_rated(self, limit):
        ordered = sorted(self.books.values(), key=lambda b: (-b["averageRating"], b["_id"]))
        return [copy.deepcopy(b) for b in ordered[:limit]]

    async def get_book(self, book_id):
        book = self.books.get(to_object_id(book_id))
        return copy.deepcopy(book) if book else None

    async def insert_book(self, document):
        book_id = ObjectId()
        self.books[book_id] = {"_id": book_id, **copy.deepcopy(document)}
        return str(book_id)

    async def get_owned_book(self, book_id, owner_id):
        book = self.books.get(to_object_id(book_id))
        if book and book["userId"] == owner_id:
            return copy.deepcopy(book)
        return None

    async def update_owned_book(self, book_id, owner_id, fields):
        book = self.books.get(to_object_id(book_id))
        if not book or book["userId"] != owner_id:
            return False
        book.update(copy.deepcopy(fields))
        return True

    async def delete_owned_book(self, book_id, owner_id):
        object_id = to_object_id(book_id)
        book = self.books.get(object_id)
        if not book or book["userId"] != owner_id:
            return None
        return self.books.pop(object_id)

    async def add_rating(self, book_id, user_id, grade):
        book = self.books.get(to_object_id(book_id))
        if not book or any(r["userId"] == user_id for r in book["ratings"]):
            return None
        book["ratings"].append({"userId": user_id, "grade": grade})
        book["averageRating"] = average([r["grade"] for r in book["ratings"]])
        return copy.deepcopy(book)


def make_image_bytes(width=1600, height=1200, mode="RGBA", fmt="PNG"):
    """Encode a solid-colour test image."""
    buffer = io.BytesIO()
    color = (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30)
    Image.new(mode, (width, height), color).save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def user_store():
    return InMemoryUserStore()


@pytest.fixture
def book_store():
    return InMemoryBookStore()


@pytest.fixture
def auth_service(user_store):
    return AuthService(user_store, secret_key=TEST_SECRET, password_min_length=6)


@pytest.fixture
def images_dir(tmp_path):
    path = tmp_path / "images"
    path.mkdir()
    return path


@pytest.fixture
def image_processor(images_dir):
    return ImageProcessor(images_dir=str(images_dir), max_width=800, quality=80)


@pytest.fixture
def book_service(book_store, image_processor):
    return BookService(book_store, image_processor)


@pytest.fixture
def image_factory():
    return make_image_bytes


@pytest.fixture
def sample_image():
    """Large RGBA PNG cover."""
    return make_image_bytes()


@pytest.fixture
def sample_book_details():
    """Book details as sent by the frontend."""
    return {
        "title": "Le Petit Prince",
        "author": "Antoine de Saint-Exupéry",
        "genre": "Fiction",
        "year": 1943,
    }


@pytest.fixture
def client(auth_service, book_service):
    """Test client wired to in-memory services."""
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    app.dependency_overrides[get_book_service] = lambda: book_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(auth_service):
    """Build an Authorization header for an arbitrary user id."""
    def _headers(user_id):
        return {"Authorization": f"Bearer {auth_service.create_token(user_id)}"}
    return _headers
