"""
API configuration settings.
"""

from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Grimoire Book Catalog API"
    api_version: str = "1.0.0"
    api_description: str = "REST API for sharing, browsing and rating books"

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 3000
    debug: bool = False

    # Database Settings
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "grimoire"
    mongodb_transactions: bool = True  # Requires a replica set

    # Security Settings
    secret_key: str = "your-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_hours: int = 24
    password_min_length: int = 6

    # Image Settings
    images_dir: str = "images"
    image_max_width: int = 800
    image_quality: int = 80
    public_base_url: Optional[str] = None
    delete_replaced_images: bool = False

    # CORS Settings
    cors_origins: list = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list = ["*"]
    cors_allow_headers: list = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"
    log_file: Optional[str] = None

    model_config = {
        "env_file": ".env",
        "extra": "ignore"  # Ignore extra fields from .env
    }

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    @field_validator('image_quality')
    @classmethod
    def validate_image_quality(cls, v):
        """JPEG quality must be within Pillow's accepted range."""
        if v < 1 or v > 95:
            raise ValueError('image_quality must be between 1 and 95')
        return v

    @field_validator('image_max_width', 'access_token_expire_hours', 'password_min_length')
    @classmethod
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError('value must be a positive integer')
        return v

    def get_images_path(self) -> Path:
        """Get images directory as Path object."""
        return Path(self.images_dir)


# Global config instance
config = APIConfig()
