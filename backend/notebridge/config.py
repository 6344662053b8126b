"""
Runtime configuration.

All settings come from environment variables (a local .env file is loaded
first when present). They are gathered into one Settings object that is
handed to each component, so tests can build their own instance instead of
patching the environment.

Environment variables
---------------------
DIRECTORY_BASE_URL          Root URL of the contact directory API (required).
DIRECTORY_API_TOKEN         Directory "apitoken" header value (required).
DIRECTORY_WS_TOKEN          Directory "wstoken" header value (required).
HELPDESK_WEBHOOK_SECRET     HMAC key shared with the helpdesk. When unset,
                            signature verification is skipped (logged).
ALLOW_UNVERIFIED_WEBHOOKS   Skip verification even with a secret (local testing).
LOOSE_SIGNATURE_MATCH       Debug only: accept a computed signature found
                            anywhere inside the header value.
SIGNATURE_HEADER            Header carrying the signature (default X-TD-Signature).
REQUEST_TIMEOUT_SECONDS     Timeout for every directory call (default 10).
NOTE_MAX_LENGTH             Maximum note length in characters (default 60000).
CONTACT_SEARCH_PAGE_SIZE    Records per search page (default 100).
CONTACT_SEARCH_MAX_OFFSET   Highest search offset requested (default 1000).
REQUIRE_EXACT_EMAIL_MATCH   Disable the single-result lookup heuristic.
CONVERSATION_URL_TEMPLATE   Link written into notes; "{id}" is replaced.
ENABLE_ECHO_ENDPOINT        Expose the diagnostic echo endpoint.
LOG_LEVEL                   Root log level (default INFO).
"""

import os
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_CONVERSATION_URL_TEMPLATE = (
    "https://app.thrivedesk.com/inboxes/conversations/{id}"
)


def _env_str(name: str) -> Optional[str]:
    """Return a stripped env value, or None when unset or blank."""
    value = os.getenv(name, "").strip()
    return value or None


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    value = _env_str(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = _env_str(name)
    return float(value) if value else default


class Settings(BaseModel):
    """Explicit configuration passed to the webhook pipeline."""

    model_config = {"frozen": True}

    directory_base_url: Optional[str] = None
    directory_api_token: Optional[str] = None
    directory_ws_token: Optional[str] = None

    webhook_secret: Optional[str] = None
    allow_unverified: bool = False
    loose_signature_match: bool = False
    signature_header: str = "X-TD-Signature"

    request_timeout: float = 10.0
    note_max_length: int = Field(default=60_000, gt=0)
    search_page_size: int = 100
    search_max_offset: int = 1000
    require_exact_email_match: bool = False
    conversation_url_template: Optional[str] = DEFAULT_CONVERSATION_URL_TEMPLATE

    enable_echo_endpoint: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build Settings from the current process environment."""
        return cls(
            directory_base_url=_env_str("DIRECTORY_BASE_URL"),
            directory_api_token=_env_str("DIRECTORY_API_TOKEN"),
            directory_ws_token=_env_str("DIRECTORY_WS_TOKEN"),
            webhook_secret=_env_str("HELPDESK_WEBHOOK_SECRET"),
            allow_unverified=_env_bool("ALLOW_UNVERIFIED_WEBHOOKS"),
            loose_signature_match=_env_bool("LOOSE_SIGNATURE_MATCH"),
            signature_header=_env_str("SIGNATURE_HEADER") or "X-TD-Signature",
            request_timeout=_env_float("REQUEST_TIMEOUT_SECONDS", 10.0),
            note_max_length=_env_int("NOTE_MAX_LENGTH", 60_000),
            search_page_size=_env_int("CONTACT_SEARCH_PAGE_SIZE", 100),
            search_max_offset=_env_int("CONTACT_SEARCH_MAX_OFFSET", 1000),
            require_exact_email_match=_env_bool("REQUIRE_EXACT_EMAIL_MATCH"),
            conversation_url_template=(
                _env_str("CONVERSATION_URL_TEMPLATE")
                or DEFAULT_CONVERSATION_URL_TEMPLATE
            ),
            enable_echo_endpoint=_env_bool("ENABLE_ECHO_ENDPOINT"),
            log_level=(_env_str("LOG_LEVEL") or "INFO").upper(),
        )

    def missing_directory_settings(self) -> list[str]:
        """Names of the required directory env vars that are not set."""
        missing = []
        if not self.directory_base_url:
            missing.append("DIRECTORY_BASE_URL")
        if not self.directory_api_token:
            missing.append("DIRECTORY_API_TOKEN")
        if not self.directory_ws_token:
            missing.append("DIRECTORY_WS_TOKEN")
        return missing


@lru_cache
def get_settings() -> Settings:
    """FastAPI dependency returning the process-wide Settings."""
    return Settings.from_env()
