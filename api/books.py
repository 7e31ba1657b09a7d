"""
Book service: CRUD, ownership checks and rating aggregation.
"""

import math
from typing import Any, Dict, List, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from pymongo.errors import PyMongoError

from api.database import BookStore
from api.errors import (
    ForbiddenError, NotFoundError, StoreError, ValidationError
)
from api.images import ImageProcessor, ImageUpload
from api.models import BookCreate, BookUpdate

logger = structlog.get_logger(__name__)

MIN_GRADE = 0
MAX_GRADE = 5


def average(grades: List[float]) -> float:
    """Arithmetic mean of the grades, 0 when there are none."""
    if not grades:
        return 0
    return sum(grades) / len(grades)


def _validation_message(error: PydanticValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first['msg']}" if location else first["msg"]


class BookService:
    """Orchestrates the book store and the image pipeline."""

    def __init__(
        self,
        book_store: BookStore,
        image_processor: ImageProcessor,
        delete_replaced_images: bool = False,
    ):
        self.book_store = book_store
        self.image_processor = image_processor
        self.delete_replaced_images = delete_replaced_images

    async def list(self) -> List[Dict[str, Any]]:
        return await self.book_store.list_books()

    async def top_rated(self, n: int = 3) -> List[Dict[str, Any]]:
        """Best average ratings first, at most n books."""
        return await self.book_store.top_rated(n)

    async def get(self, book_id: str) -> Dict[str, Any]:
        book = await self.book_store.get_book(book_id)
        if not book:
            raise NotFoundError("Book not found!")
        return book

    async def _store_image(self, image: ImageUpload, base_url: str) -> str:
        stored_path = await self.image_processor.process(image.data, image.filename)
        return f"{base_url.rstrip('/')}/{stored_path}"

    async def create(
        self,
        owner_id: str,
        details: Any,
        image: Optional[ImageUpload] = None,
        base_url: str = "",
    ) -> str:
        """
        Create a book owned by owner_id.

        Args:
            owner_id: Authenticated requester
            details: Decoded book details (title, author, genre, year)
            image: Optional cover upload
            base_url: Origin used to build the absolute image URL

        Returns:
            Identifier of the new book

        Raises:
            ValidationError: If details are not a well-formed book
            ImageProcessingError: If the cover cannot be processed
        """
        if not isinstance(details, dict):
            raise ValidationError("Book details must be a valid JSON object.")
        try:
            book = BookCreate.model_validate(details)
        except PydanticValidationError as e:
            raise ValidationError("Invalid book details", detail=_validation_message(e))

        image_url = ""
        if image is not None:
            image_url = await self._store_image(image, base_url)

        document = {
            "userId": owner_id,
            **book.model_dump(),
            "imageUrl": image_url,
            "ratings": [],
            "averageRating": 0,
        }
        book_id = await self.book_store.insert_book(document)
        logger.info("Book created", book_id=book_id, owner_id=owner_id)
        return book_id

    async def update(
        self,
        requester_id: str,
        book_id: str,
        details: Any,
        image: Optional[ImageUpload] = None,
        base_url: str = "",
    ) -> None:
        """
        Merge new details (and optionally a new cover) into the requester's book.

        A missing book and a book owned by someone else are both reported as
        ForbiddenError.
        """
        if details is None:
            details = {}
        if not isinstance(details, dict):
            raise ValidationError("Book details must be a valid JSON object.")
        try:
            fields = BookUpdate.model_validate(details).to_fields()
        except PydanticValidationError as e:
            raise ValidationError("Invalid book details", detail=_validation_message(e))

        existing = await self.book_store.get_owned_book(book_id, requester_id)
        if not existing:
            logger.warning("Update denied", book_id=book_id, requester_id=requester_id)
            raise ForbiddenError("Unauthorized request or book not found.")

        if image is not None:
            fields["imageUrl"] = await self._store_image(image, base_url)

        if fields:
            matched = await self.book_store.update_owned_book(book_id, requester_id, fields)
            if not matched:
                # Deleted between the ownership check and the write
                raise ForbiddenError("Unauthorized request or book not found.")

        if image is not None and self.delete_replaced_images and existing.get("imageUrl"):
            await self.image_processor.delete(existing["imageUrl"])

        logger.info("Book updated", book_id=book_id, fields=sorted(fields))

    async def delete(self, requester_id: str, book_id: str) -> None:
        """
        Delete the requester's book and then its cover file.

        The record removal is transactional; the file removal is best-effort and
        never undoes it.

        Raises:
            ForbiddenError: If the book is missing or owned by someone else
            StoreError: If the transaction fails
        """
        try:
            book = await self.book_store.delete_owned_book(book_id, requester_id)
        except PyMongoError as e:
            logger.error("Book deletion failed", book_id=book_id, error=str(e))
            raise StoreError("Book could not be deleted", detail=str(e))

        if not book:
            logger.warning("Delete denied", book_id=book_id, requester_id=requester_id)
            raise ForbiddenError("Unauthorized request or book not found.")

        if book.get("imageUrl"):
            await self.image_processor.delete(book["imageUrl"])

        logger.info("Book deleted", book_id=book_id, owner_id=requester_id)

    async def rate(self, requester_id: str, book_id: str, grade: Any) -> Dict[str, Any]:
        """
        Record the requester's grade and return the updated book.

        Raises:
            ValidationError: If grade is not a finite number in [0, 5]
            NotFoundError: If the book does not exist
            ForbiddenError: If the requester already rated this book
        """
        if isinstance(grade, bool) or not isinstance(grade, (int, float)):
            raise ValidationError("Rating must be a number between 0 and 5.")
        if not math.isfinite(grade) or grade < MIN_GRADE or grade > MAX_GRADE:
            raise ValidationError("Rating must be a number between 0 and 5.")

        book = await self.get(book_id)
        if any(r["userId"] == requester_id for r in book.get("ratings", [])):
            raise ForbiddenError("You have already rated this book.")

        updated = await self.book_store.add_rating(book_id, requester_id, grade)
        if updated is None:
            # Lost the race against the same user's concurrent submission,
            # or the book vanished in between
            if await self.book_store.get_book(book_id) is None:
                raise NotFoundError("Book not found!")
            raise ForbiddenError("You have already rated this book.")

        logger.info(
            "Book rated",
            book_id=book_id,
            user_id=requester_id,
            grade=grade,
            average_rating=updated.get("averageRating"),
        )
        return updated
