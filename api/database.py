"""
MongoDB store layer for users and books.
Handles connection, indexing, and the document operations used by the services.
"""

from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase, AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import ConnectionFailure

from api.errors import ValidationError

logger = structlog.get_logger(__name__)


def to_object_id(book_id: str) -> ObjectId:
    """Convert a client supplied identifier, rejecting malformed ones."""
    try:
        return ObjectId(book_id)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid book identifier", detail=str(book_id))


class DatabaseManager:
    """
    Process-wide MongoDB handle.
    Owns the client; stores are built on top of it.
    """

    def __init__(self, connection_url: str, database_name: str, use_transactions: bool = True):
        """
        Initialize the database manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            use_transactions: Wrap multi-step writes in a session transaction
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.use_transactions = use_transactions
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None

    @property
    def users(self) -> AsyncIOMotorCollection:
        return self.database.users

    @property
    def books(self) -> AsyncIOMotorCollection:
        return self.database.books

    async def connect(self) -> None:
        """Establish connection to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.database = self.client[self.database_name]

            # Test connection
            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self) -> None:
        """Create the unique email index and the book lookup indexes."""
        try:
            await self.users.create_index("email", unique=True)
            await self.books.create_index([("averageRating", DESCENDING), ("_id", ASCENDING)])
            await self.books.create_index("userId")
            logger.info("Successfully created MongoDB indexes")
        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def start_session(self):
        """Start a client session for a transaction."""
        return await self.client.start_session()

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")
            books_count = await self.books.count_documents({})
            return {
                "status": "healthy",
                "books_count": books_count,
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }


class UserStore:
    """Credential store: email plus password hash."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    async def create_user(self, email: str, password_hash: str) -> str:
        """
        Persist a new user.

        Raises:
            DuplicateKeyError: If the email is already registered
        """
        result = await self.db_manager.users.insert_one({"email": email, "password": password_hash})
        return str(result.inserted_id)

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self.db_manager.users.find_one({"email": email})


class BookStore:
    """Book documents with their embedded ratings."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    @property
    def collection(self) -> AsyncIOMotorCollection:
        return self.db_manager.books

    async def list_books(self) -> List[Dict[str, Any]]:
        """All books in natural order."""
        cursor = self.collection.find({})
        return await cursor.to_list(length=None)

    async def top_rated(self, limit: int) -> List[Dict[str, Any]]:
        """
        Books sorted by average rating, best first.
        Equal averages keep creation order (ascending _id).
        """
        cursor = self.collection.find({}).sort(
            [("averageRating", DESCENDING), ("_id", ASCENDING)]
        ).limit(limit)
        return await cursor.to_list(length=limit)

    async def get_book(self, book_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"_id": to_object_id(book_id)})

    async def insert_book(self, document: Dict[str, Any]) -> str:
        result = await self.collection.insert_one(document)
        return str(result.inserted_id)

    async def get_owned_book(self, book_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        return await self.collection.find_one({"_id": to_object_id(book_id), "userId": owner_id})

    async def update_owned_book(self, book_id: str, owner_id: str, fields: Dict[str, Any]) -> bool:
        """
        Merge fields into a book owned by owner_id.

        Returns:
            bool: True if the owner's book matched, False otherwise
        """
        result = await self.collection.update_one(
            {"_id": to_object_id(book_id), "userId": owner_id},
            {"$set": fields}
        )
        return result.matched_count > 0

    async def delete_owned_book(self, book_id: str, owner_id: str) -> Optional[Dict[str, Any]]:
        """
        Delete a book owned by owner_id.

        The lookup and the removal run inside one transaction when transactions
        are enabled, so readers never see a half-deleted record.

        Returns:
            The deleted document, or None if the owner has no such book
        """
        object_id = to_object_id(book_id)
        query = {"_id": object_id, "userId": owner_id}

        if not self.db_manager.use_transactions:
            return await self.collection.find_one_and_delete(query)

        async with await self.db_manager.start_session() as session:
            async with session.start_transaction():
                book = await self.collection.find_one(query, session=session)
                if book is None:
                    await session.abort_transaction()
                    return None
                await self.collection.delete_one({"_id": object_id}, session=session)
        return book

    async def add_rating(self, book_id: str, user_id: str, grade: float) -> Optional[Dict[str, Any]]:
        """
        Append a user's grade and recompute the average in one atomic update.

        The filter only matches while the user has no rating on the book, so
        two concurrent submissions from the same user cannot both land.

        Returns:
            The updated document, or None if nothing matched
        """
        return await self.collection.find_one_and_update(
            {"_id": to_object_id(book_id), "ratings.userId": {"$ne": user_id}},
            [
                {"$set": {"ratings": {"$concatArrays": [
                    {"$ifNull": ["$ratings", []]},
                    [{"userId": {"$literal": user_id}, "grade": {"$literal": grade}}],
                ]}}},
                {"$set": {"averageRating": {"$ifNull": [{"$avg": "$ratings.grade"}, 0]}}},
            ],
            return_document=ReturnDocument.AFTER,
        )
