"""
Contact resolution against the directory.

The directory's search semantics are inconsistent: the "exact" lookup can
partially match, and free-text search returns loosely related records. The
resolver therefore escalates through progressively broader queries and, at
every step, only accepts a record whose own email fields equal the target
address (case-insensitive):

  1. exact lookup            GET /api/contacts?emailAddress=...
  2. search by email field   GET /api/contacts/search?emailAddress=...  (paged)
  3. free-text search        GET /api/contacts/search?search=...        (paged)

The first exact match in that order wins; duplicate contacts sharing an
address are not disambiguated. Queries run one after another because each
depends on whether the previous one matched.

Single-result heuristic: when the exact lookup returns exactly one record
and none of its email fields match, that record is still accepted (flagged
`heuristic=True` and logged). This can attach a note to the wrong contact if
the lookup endpoint partially matched; set REQUIRE_EXACT_EMAIL_MATCH to turn
it off.
"""

import logging
from typing import Awaitable, Callable, Optional

from notebridge.models.contact import ContactResolution, QueryAttempt, RemoteContact
from notebridge.services.directory_client import DirectoryClient, DirectoryError

logger = logging.getLogger(__name__)

EXACT_STAGE = "exact"
SEARCH_STAGES: list[tuple[str, str]] = [
    ("search:emailAddress", "emailAddress"),
    ("search:search", "search"),
]


class ContactLookupError(Exception):
    """A directory query failed while resolving a contact."""

    def __init__(self, cause: DirectoryError, tried: list[QueryAttempt]):
        super().__init__(str(cause))
        self.cause = cause
        self.tried = tried

    @property
    def status_code(self) -> Optional[int]:
        return getattr(self.cause, "status_code", None)


def _contacts(records: list[dict]) -> list[RemoteContact]:
    contacts = []
    for record in records:
        contact = RemoteContact.from_record(record)
        if contact is not None:
            contacts.append(contact)
    return contacts


def find_exact_match(contacts: list[RemoteContact], email: str) -> Optional[RemoteContact]:
    """First contact with an email field equal to `email`, ignoring case."""
    for contact in contacts:
        if contact.matches_email(email):
            return contact
    return None


async def _query(
    tried: list[QueryAttempt],
    stage: str,
    call: Callable[[], Awaitable[tuple[str, list[dict]]]],
) -> list[dict]:
    try:
        url, records = await call()
    except DirectoryError as exc:
        tried.append(QueryAttempt(stage=stage, url=exc.url))
        raise ContactLookupError(exc, tried) from exc
    tried.append(QueryAttempt(stage=stage, url=url, records=len(records)))
    return records


async def resolve_contact(
    client: DirectoryClient,
    email: str,
    *,
    page_size: int = 100,
    max_offset: int = 1000,
    require_field_match: bool = False,
) -> ContactResolution:
    """
    Find the one directory contact for `email`, if any.

    Args:
        client:              Directory client.
        email:               Address to match.
        page_size:           Records requested per search page.
        max_offset:          Highest offset requested per search stage.
        require_field_match: Disable the single-result heuristic.

    Returns:
        ContactResolution; `contact` is None when nothing matched (this is
        not an error). `tried` lists every query issued, in order.

    Raises:
        ContactLookupError: a directory call failed (non-2xx or transport).
    """
    target = email.strip()
    page_size = max(1, page_size)
    tried: list[QueryAttempt] = []

    # 1. Exact lookup endpoint
    records = await _query(
        tried, EXACT_STAGE, lambda: client.lookup_contacts_by_email(target)
    )
    contacts = _contacts(records)
    match = find_exact_match(contacts, target)
    if match:
        return ContactResolution(contact=match, tried=tried, matched_stage=EXACT_STAGE)

    if len(records) == 1 and len(contacts) == 1 and not require_field_match:
        logger.warning(
            "Exact lookup for %s returned a single contact (%s) without a matching "
            "email field; accepting it by the single-result heuristic",
            target,
            contacts[0].contact_id,
        )
        return ContactResolution(
            contact=contacts[0],
            tried=tried,
            matched_stage=EXACT_STAGE,
            heuristic=True,
        )

    # 2./3. Paged search, email parameter first, then free text
    for stage, param in SEARCH_STAGES:
        offset = 0
        while offset <= max_offset:
            page_offset = offset
            records = await _query(
                tried,
                stage,
                lambda: client.search_contacts(
                    param, target, offset=page_offset, page_size=page_size
                ),
            )
            match = find_exact_match(_contacts(records), target)
            if match:
                return ContactResolution(contact=match, tried=tried, matched_stage=stage)
            if len(records) < page_size:
                break
            offset += page_size

    logger.info("No directory contact matches %s after %d queries", target, len(tried))
    return ContactResolution(contact=None, tried=tried)
