"""
Authentication for the FastAPI API: password hashing and bearer tokens.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Tuple

import structlog
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from api.database import UserStore
from api.errors import NotFoundError, UnauthorizedError, ValidationError

logger = structlog.get_logger(__name__)

# bcrypt with automatic upgrade of deprecated hashes
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    """Hash a plain text password using bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Constant-time check of a plain password against a stored hash."""
    return pwd_context.verify(plain_password, hashed_password)


class AuthService:
    """Signup, login and token verification."""

    def __init__(
        self,
        user_store: UserStore,
        secret_key: str,
        algorithm: str = "HS256",
        token_expire_hours: int = 24,
        password_min_length: int = 6,
    ):
        self.user_store = user_store
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_expire_hours = token_expire_hours
        self.password_min_length = password_min_length

    async def signup(self, email: str, password: str) -> str:
        """
        Register a new user.

        Args:
            email: Login email, already normalised
            password: Plain text password

        Returns:
            Identifier of the created user

        Raises:
            ValidationError: If the password is too short or the email is taken
        """
        if len(password) < self.password_min_length:
            raise ValidationError(
                f"Password must contain at least {self.password_min_length} characters"
            )

        password_hash = await asyncio.to_thread(hash_password, password)
        try:
            user_id = await self.user_store.create_user(email, password_hash)
        except DuplicateKeyError:
            logger.warning("Signup with registered email", email=email)
            raise ValidationError("Email already registered")

        logger.info("User created", user_id=user_id)
        return user_id

    async def login(self, email: str, password: str) -> Tuple[str, str]:
        """
        Check credentials and issue a token.

        Returns:
            Tuple of (user id, signed token)

        Raises:
            NotFoundError: If no user has this email
            UnauthorizedError: If the password does not match
        """
        user = await self.user_store.get_user_by_email(email)
        if not user:
            raise NotFoundError("User not found!")

        valid = await asyncio.to_thread(verify_password, password, user["password"])
        if not valid:
            logger.warning("Login with incorrect password", user_id=str(user["_id"]))
            raise UnauthorizedError("Incorrect password!")

        user_id = str(user["_id"])
        logger.info("User logged in", user_id=user_id)
        return user_id, self.create_token(user_id)

    def create_token(self, user_id: str) -> str:
        """Sign a token carrying the user id, valid for token_expire_hours."""
        issued_at = datetime.now(timezone.utc)
        payload = {
            "userId": user_id,
            "iat": issued_at,
            "exp": issued_at + timedelta(hours=self.token_expire_hours),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> str:
        """
        Validate a bearer token.

        Returns:
            The user id carried by the token

        Raises:
            UnauthorizedError: If the token is missing, malformed, expired or forged
        """
        if not token:
            raise UnauthorizedError()
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            logger.warning("Rejected bearer token", error=str(e))
            raise UnauthorizedError()

        user_id = payload.get("userId")
        if not user_id:
            raise UnauthorizedError()
        return user_id
