"""
Settings tests: environment parsing, defaults, required-setting checks.
"""

import os
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from notebridge.config import DEFAULT_CONVERSATION_URL_TEMPLATE, Settings


class TestFromEnv:

    def test_defaults_with_empty_environment(self):
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings.from_env()

        assert settings.directory_base_url is None
        assert settings.webhook_secret is None
        assert settings.allow_unverified is False
        assert settings.loose_signature_match is False
        assert settings.signature_header == "X-TD-Signature"
        assert settings.request_timeout == 10.0
        assert settings.note_max_length == 60_000
        assert settings.search_page_size == 100
        assert settings.search_max_offset == 1000
        assert settings.conversation_url_template == DEFAULT_CONVERSATION_URL_TEMPLATE
        assert settings.enable_echo_endpoint is False
        assert settings.log_level == "INFO"

    def test_values_are_read_and_converted(self):
        env = {
            "DIRECTORY_BASE_URL": " https://dir.example ",
            "DIRECTORY_API_TOKEN": "api",
            "DIRECTORY_WS_TOKEN": "ws",
            "HELPDESK_WEBHOOK_SECRET": "s3cret",
            "REQUEST_TIMEOUT_SECONDS": "2.5",
            "NOTE_MAX_LENGTH": "5000",
            "CONTACT_SEARCH_PAGE_SIZE": "50",
            "CONTACT_SEARCH_MAX_OFFSET": "200",
            "SIGNATURE_HEADER": "X-Signature",
            "CONVERSATION_URL_TEMPLATE": "https://hd.example/c/{id}",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.directory_base_url == "https://dir.example"
        assert settings.webhook_secret == "s3cret"
        assert settings.request_timeout == 2.5
        assert settings.note_max_length == 5000
        assert settings.search_page_size == 50
        assert settings.search_max_offset == 200
        assert settings.signature_header == "X-Signature"
        assert settings.conversation_url_template == "https://hd.example/c/{id}"
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "raw, expected",
        [("1", True), ("true", True), ("YES", True), ("on", True),
         ("0", False), ("false", False), ("", False), ("maybe", False)],
    )
    def test_boolean_flags(self, raw, expected):
        env = {
            "ALLOW_UNVERIFIED_WEBHOOKS": raw,
            "LOOSE_SIGNATURE_MATCH": raw,
            "REQUIRE_EXACT_EMAIL_MATCH": raw,
            "ENABLE_ECHO_ENDPOINT": raw,
        }
        with patch.dict(os.environ, env, clear=True):
            settings = Settings.from_env()

        assert settings.allow_unverified is expected
        assert settings.loose_signature_match is expected
        assert settings.require_exact_email_match is expected
        assert settings.enable_echo_endpoint is expected

    def test_blank_secret_is_treated_as_unset(self):
        with patch.dict(os.environ, {"HELPDESK_WEBHOOK_SECRET": "   "}, clear=True):
            assert Settings.from_env().webhook_secret is None


class TestMissingDirectorySettings:

    def test_all_missing(self):
        assert Settings().missing_directory_settings() == [
            "DIRECTORY_BASE_URL",
            "DIRECTORY_API_TOKEN",
            "DIRECTORY_WS_TOKEN",
        ]

    def test_none_missing(self):
        settings = Settings(
            directory_base_url="https://dir.example",
            directory_api_token="a",
            directory_ws_token="w",
        )
        assert settings.missing_directory_settings() == []

    @pytest.mark.parametrize("value", [0, -1])
    def test_note_max_length_must_be_positive(self, value):
        with pytest.raises(ValidationError):
            Settings(note_max_length=value)

    def test_zero_note_max_length_in_env_is_rejected(self):
        with patch.dict(os.environ, {"NOTE_MAX_LENGTH": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings.from_env()

    def test_settings_are_immutable(self):
        settings = Settings()
        with pytest.raises(Exception):
            settings.webhook_secret = "changed"
