"""
Directory-side models.

RemoteContact wraps a contact record fetched from the directory. The record
is never cached or modified locally; `raw` keeps the directory's own payload
for diagnostics.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel


class RemoteContact(BaseModel):
    """A contact record from the directory, with its email-bearing fields."""

    contact_id: str
    email: Optional[str] = None
    alternate_email: Optional[str] = None
    personal_email: Optional[str] = None
    raw: dict[str, Any] = {}

    @classmethod
    def from_record(cls, record: dict) -> Optional["RemoteContact"]:
        """
        Build a RemoteContact from a directory record.

        Returns None when the record carries no CONTACTID; such records
        cannot receive a note.
        """
        if not isinstance(record, dict):
            return None
        contact_id = record.get("CONTACTID")
        if contact_id is None or str(contact_id).strip() == "":
            return None
        return cls(
            contact_id=str(contact_id).strip(),
            email=_as_text(record.get("EMAILADDRESS")),
            alternate_email=_as_text(record.get("EMAILADDRESSALTERNATIVE")),
            personal_email=_as_text(record.get("CUSTOMFIELD_PERSONALEMAIL")),
            raw=record,
        )

    def email_fields(self) -> list[str]:
        return [e for e in (self.email, self.alternate_email, self.personal_email) if e]

    def matches_email(self, email: str) -> bool:
        """Case-insensitive exact match against any of the email fields."""
        target = email.strip().lower()
        return any(e.strip().lower() == target for e in self.email_fields())


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class QueryAttempt(BaseModel):
    """One directory query issued while resolving a contact."""

    stage: str
    url: str
    records: Optional[int] = None   # None when the call failed


class ContactResolution(BaseModel):
    """Result of contact resolution: at most one contact, plus what was tried."""

    contact: Optional[RemoteContact] = None
    tried: list[QueryAttempt] = []
    matched_stage: Optional[str] = None
    heuristic: bool = False


class NoteWriteResult(BaseModel):
    """Classified outcome of a note write."""

    outcome: Literal["success", "rejected", "transport_error"]
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    detail: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == "success"
