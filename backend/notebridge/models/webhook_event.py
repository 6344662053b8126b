"""
Inbound webhook models.

WebhookEnvelope is the raw request as received. CanonicalEventData is the
helpdesk-independent view of an outbound support email after the payload
extractor has run; only the extractor knows about the vendor's JSON shapes.
"""

import base64
import binascii
from typing import Optional, Union

from pydantic import BaseModel, field_validator


class WebhookEnvelope(BaseModel):
    """Raw inbound webhook request: headers plus undecoded body."""

    model_config = {"frozen": True}

    headers: dict[str, str] = {}
    body: Union[bytes, str] = b""
    is_base64_encoded: bool = False

    @field_validator("headers", mode="before")
    @classmethod
    def _lowercase_header_names(cls, value):
        if value is None:
            return {}
        return {str(k).lower(): str(v) for k, v in dict(value).items()}

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower())

    def decoded_body(self) -> str:
        """
        Return the body as UTF-8 text.

        Raises ValueError when the body is flagged as base64 but is not valid
        base64, or when the bytes are not valid UTF-8.
        """
        raw = self.body
        if self.is_base64_encoded:
            try:
                raw = base64.b64decode(raw, validate=True)
            except (binascii.Error, ValueError) as exc:
                raise ValueError(f"Body is not valid base64: {exc}") from exc
        if isinstance(raw, bytes):
            try:
                return raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise ValueError(f"Body is not valid UTF-8: {exc}") from exc
        return raw


class CanonicalEventData(BaseModel):
    """
    Normalized outbound-email event.

    customer_email, when present, is a trimmed non-empty address. Every other
    optional field is cosmetic and only used when rendering the note.
    """

    customer_email: Optional[str] = None
    subject: str = "(no subject)"
    body_text: str = ""
    conversation_id: Optional[str] = None
    agent_name: Optional[str] = None
    inbox_label: Optional[str] = None
    sent_at: Optional[str] = None


class SignatureVerdict(BaseModel):
    """Outcome of webhook signature verification, with diagnostics."""

    valid: bool
    matched: Optional[str] = None   # e.g. "raw_data:base64"
    tried: list[str] = []
    skipped: bool = False           # no secret configured, or bypass enabled
    loose: bool = False             # accepted by substring debug mode
    reason: Optional[str] = None
