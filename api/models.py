"""
API models and schemas for the FastAPI application.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Credentials(BaseModel):
    """Signup and login request body."""
    email: str = Field(..., description="User email address, used as login key")
    password: str = Field(..., min_length=1, description="Plain text password")

    @field_validator('email')
    @classmethod
    def validate_email(cls, v):
        """Normalise the email and check its shape."""
        v = v.strip().lower()
        if not EMAIL_PATTERN.match(v):
            raise ValueError('email must be a valid email address')
        return v


class LoginResponse(BaseModel):
    """Successful login response."""
    user_id: str = Field(..., alias="userId", description="Authenticated user identifier")
    token: str = Field(..., description="Signed bearer token")

    model_config = ConfigDict(populate_by_name=True)


class MessageResponse(BaseModel):
    message: str


class RatingEntry(BaseModel):
    """A single user's grade for a book."""
    user_id: str = Field(..., alias="userId")
    grade: float = Field(..., ge=0, le=5)

    model_config = ConfigDict(populate_by_name=True)


class RatingRequest(BaseModel):
    """Rating submission body; numbers only, the range is checked by the book service."""
    rating: float = Field(..., strict=True, allow_inf_nan=False, description="Grade between 0 and 5")


class BookCreate(BaseModel):
    """Book details supplied on creation."""
    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Book author")
    genre: str = Field(..., min_length=1, description="Book genre")
    year: int = Field(..., description="Publication year")

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class BookUpdate(BaseModel):
    """
    Book details supplied on update.

    Only the editable fields survive validation: owner, ratings and the
    derived average are silently dropped.
    """
    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    genre: Optional[str] = Field(None, min_length=1)
    year: Optional[int] = None

    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    def to_fields(self) -> Dict[str, Any]:
        """Fields explicitly supplied by the client."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class BookResponse(BaseModel):
    """Book response model for API."""
    id: str = Field(..., alias="_id", description="Unique book identifier")
    user_id: str = Field(..., alias="userId", description="Owner identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    genre: str = Field("", description="Book genre")
    year: Optional[int] = Field(None, description="Publication year")
    image_url: str = Field("", alias="imageUrl", description="Cover image URL")
    ratings: List[RatingEntry] = Field(default_factory=list, description="Grades given by users")
    average_rating: float = Field(0, alias="averageRating", description="Mean of all grades")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "BookResponse":
        """Build a response from a raw store document."""
        data = dict(doc)
        data["_id"] = str(data["_id"])
        data["userId"] = str(data.get("userId", ""))
        data["ratings"] = [
            {"userId": str(r["userId"]), "grade": r["grade"]}
            for r in data.get("ratings", [])
        ]
        return cls.model_validate(data)

    def to_json(self) -> Dict[str, Any]:
        """Serialise with the wire field names."""
        return self.model_dump(by_alias=True)


class ErrorResponse(BaseModel):
    """Error response model."""
    message: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
