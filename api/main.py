"""
FastAPI main application for the Grimoire Book Catalog API.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional, Tuple

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pymongo.errors import PyMongoError

from api.auth import AuthService
from api.books import BookService
from api.config import config
from api.database import BookStore, DatabaseManager, UserStore
from api.dependencies import (
    get_auth_service, get_base_url, get_book_service,
    get_current_user_id, read_book_payload
)
from api.errors import NotFoundError, ServiceError, UnauthorizedError
from api.images import IMAGES_ROUTE, ImageProcessor
from api.models import (
    BookResponse, Credentials, ErrorResponse, HealthResponse,
    LoginResponse, MessageResponse, RatingRequest
)
from utilities.logger import setup_logging

logger = structlog.get_logger(__name__)


def build_services(db_manager: DatabaseManager) -> Tuple[AuthService, BookService]:
    """Wire the stores and services around a connected database manager."""
    auth_service = AuthService(
        UserStore(db_manager),
        secret_key=config.secret_key,
        algorithm=config.algorithm,
        token_expire_hours=config.access_token_expire_hours,
        password_min_length=config.password_min_length,
    )
    image_processor = ImageProcessor(
        images_dir=config.images_dir,
        max_width=config.image_max_width,
        quality=config.image_quality,
    )
    book_service = BookService(
        BookStore(db_manager),
        image_processor,
        delete_replaced_images=config.delete_replaced_images,
    )
    return auth_service, book_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug,
    )
    logger.info("Starting Grimoire API")

    config.get_images_path().mkdir(parents=True, exist_ok=True)

    db_manager = DatabaseManager(
        config.mongodb_url,
        config.mongodb_database,
        use_transactions=config.mongodb_transactions,
    )
    try:
        await db_manager.connect()
    except Exception as e:
        logger.error("Failed to connect to database", error=str(e))
        raise

    app.state.db_manager = db_manager
    app.state.auth_service, app.state.book_service = build_services(db_manager)

    yield

    # Shutdown
    logger.info("Shutting down Grimoire API")
    await db_manager.disconnect()


# Create FastAPI application
app = FastAPI(
    title=config.api_title,
    description="""
    REST API for sharing, browsing and rating books.

    ## Features

    * **Accounts**: signup and login returning a bearer token valid 24 hours
    * **Books**: create, update and delete your own books with a cover image
    * **Ratings**: one grade (0 to 5) per user and book, averaged per book

    ## Authentication

    Write endpoints require the token returned by `/api/auth/login`:

    ```
    Authorization: Bearer your_token_here
    ```
    """,
    version=config.api_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=config.cors_allow_credentials,
    allow_methods=config.cors_allow_methods,
    allow_headers=config.cors_allow_headers,
)

app.mount(
    f"/{IMAGES_ROUTE}",
    StaticFiles(directory=config.images_dir, check_dir=False),
    name=IMAGES_ROUTE,
)


def error_response(status_code: int, message: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            message=message,
            detail=detail,
            status_code=status_code
        ).model_dump()
    )


# Exception handlers
@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError):
    """Translate service failures to their status codes."""
    response = error_response(exc.status_code, exc.message, exc.detail)
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors (400)."""
    errors = exc.errors()
    detail = None
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ()))
        detail = f"{location}: {errors[0].get('msg')}"
    return error_response(status.HTTP_400_BAD_REQUEST, "Invalid request", detail)


@app.exception_handler(PyMongoError)
async def store_exception_handler(request: Request, exc: PyMongoError):
    logger.error("Store operation failed", error=str(exc), path=request.url.path)
    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "Database operation failed",
        str(exc) if config.debug else None,
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    response = error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        str(exc) if config.debug else None,
    )


# Health check endpoint (no authentication required)
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    db_status = "unknown"
    db_manager = getattr(request.app.state, "db_manager", None)
    if db_manager:
        health_info = await db_manager.health_check()
        db_status = health_info.get("status", "unknown")

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        timestamp=datetime.utcnow(),
        version=config.api_version,
        database_status=db_status
    )


# Auth endpoints
@app.post(
    "/api/auth/signup",
    status_code=status.HTTP_201_CREATED,
    response_model=MessageResponse,
    tags=["Auth"],
)
async def signup(
    credentials: Credentials,
    auth_service: AuthService = Depends(get_auth_service),
):
    """Create a user account."""
    await auth_service.signup(credentials.email, credentials.password)
    return MessageResponse(message="User created!")


@app.post("/api/auth/login", response_model=LoginResponse, tags=["Auth"])
async def login(
    credentials: Credentials,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Log in and receive a bearer token.

    Unknown emails are reported as 401, like wrong passwords.
    """
    try:
        user_id, token = await auth_service.login(credentials.email, credentials.password)
    except NotFoundError as e:
        raise UnauthorizedError(e.message)
    return JSONResponse(content=LoginResponse(user_id=user_id, token=token).model_dump(by_alias=True))


# Books endpoints
@app.get("/api/books", response_model=List[BookResponse], tags=["Books"])
async def list_books(book_service: BookService = Depends(get_book_service)):
    """Get every book."""
    books = await book_service.list()
    return JSONResponse(content=[BookResponse.from_document(b).to_json() for b in books])


@app.get("/api/books/bestrating", response_model=List[BookResponse], tags=["Books"])
async def best_rated_books(book_service: BookService = Depends(get_book_service)):
    """Get the three books with the best average rating."""
    books = await book_service.top_rated(3)
    return JSONResponse(content=[BookResponse.from_document(b).to_json() for b in books])


@app.post(
    "/api/books",
    status_code=status.HTTP_201_CREATED,
    response_model=MessageResponse,
    tags=["Books"],
)
async def create_book(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    book_service: BookService = Depends(get_book_service),
):
    """
    Create a book.

    - **book**: book details as a JSON string (multipart field)
    - **image**: optional cover image file
    """
    details, image = await read_book_payload(request)
    await book_service.create(user_id, details, image, base_url=get_base_url(request))
    return MessageResponse(message="Book created!")


@app.get("/api/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def get_book(
    book_id: str,
    book_service: BookService = Depends(get_book_service),
):
    """
    Get a single book by ID.

    - **book_id**: MongoDB ObjectId of the book
    """
    book = await book_service.get(book_id)
    return JSONResponse(content=BookResponse.from_document(book).to_json())


@app.put("/api/books/{book_id}", response_model=MessageResponse, tags=["Books"])
async def update_book(
    book_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    book_service: BookService = Depends(get_book_service),
):
    """Update one of your books, optionally replacing its cover."""
    details, image = await read_book_payload(request)
    await book_service.update(user_id, book_id, details, image, base_url=get_base_url(request))
    return MessageResponse(message="Book updated!")


@app.delete("/api/books/{book_id}", response_model=MessageResponse, tags=["Books"])
async def delete_book(
    book_id: str,
    user_id: str = Depends(get_current_user_id),
    book_service: BookService = Depends(get_book_service),
):
    """Delete one of your books and its cover image."""
    await book_service.delete(user_id, book_id)
    return MessageResponse(message="Book deleted!")


@app.post("/api/books/{book_id}/rating", response_model=BookResponse, tags=["Books"])
async def rate_book(
    book_id: str,
    rating: RatingRequest,
    user_id: str = Depends(get_current_user_id),
    book_service: BookService = Depends(get_book_service),
):
    """Rate a book once, between 0 and 5; returns the updated book."""
    book = await book_service.rate(user_id, book_id, rating.rating)
    return JSONResponse(content=BookResponse.from_document(book).to_json())


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="info"
    )
