"""
Unit tests for API configuration.
"""

import pytest
from pydantic import ValidationError

from api.config import APIConfig


class TestAPIConfig:
    """Test cases for APIConfig."""

    def test_defaults(self):
        config = APIConfig(_env_file=None)

        assert config.access_token_expire_hours == 24
        assert config.image_max_width == 800
        assert config.image_quality == 80
        assert config.delete_replaced_images is False
        assert config.get_images_path().name == "images"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("MONGODB_DATABASE", "grimoire_test")
        monkeypatch.setenv("MONGODB_TRANSACTIONS", "false")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = APIConfig(_env_file=None)

        assert config.mongodb_database == "grimoire_test"
        assert config.mongodb_transactions is False
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("field,value", [
        ("log_level", "LOUD"),
        ("log_format", "xml"),
        ("image_quality", 0),
        ("image_max_width", 0),
    ])
    def test_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            APIConfig(_env_file=None, **{field: value})
