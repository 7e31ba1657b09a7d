"""
FastAPI dependencies: service lookup, bearer authentication and book form parsing.
"""

import json
from typing import Any, Optional, Tuple

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.datastructures import UploadFile

from api.auth import AuthService
from api.books import BookService
from api.config import config
from api.errors import UnauthorizedError, ValidationError
from api.images import ImageUpload

# Missing headers are reported as 401 by get_current_user_id, not 403
security = HTTPBearer(auto_error=False)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_book_service(request: Request) -> BookService:
    return request.app.state.book_service


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    auth_service: AuthService = Depends(get_auth_service),
) -> str:
    """Resolve the bearer token of a protected route to a user id."""
    if credentials is None:
        raise UnauthorizedError()
    return auth_service.verify(credentials.credentials)


def get_base_url(request: Request) -> str:
    """Origin used to build absolute image URLs."""
    return config.public_base_url or str(request.base_url)


def _parse_book_json(raw: str) -> Any:
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError("Book details must be a valid JSON object.")


async def read_book_payload(request: Request) -> Tuple[Any, Optional[ImageUpload]]:
    """
    Extract book details and an optional cover from a create/update request.

    Accepted shapes:
    - multipart with a ``book`` field holding a JSON string and an ``image`` file
    - multipart or urlencoded form with the book fields sent individually
    - a plain JSON body (no image)
    """
    content_type = request.headers.get("content-type", "")

    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        image = None
        upload = form.get("image")
        if isinstance(upload, UploadFile):
            data = await upload.read()
            if data:
                image = ImageUpload(data, upload.filename or "image")

        raw_book = form.get("book")
        if isinstance(raw_book, str):
            details = _parse_book_json(raw_book)
        else:
            details = {
                key: value for key, value in form.items()
                if key not in ("book", "image") and isinstance(value, str)
            }
        return details, image

    body = await request.body()
    if not body:
        return None, None
    return _parse_book_json(body), None
