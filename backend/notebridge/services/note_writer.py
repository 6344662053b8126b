"""
Note writer.

Issues exactly one "create note" call and classifies the outcome. There is
no retry here: the helpdesk redelivers webhooks that get a non-2xx answer,
so a local retry would only stack on top of the vendor's. A redelivered
webhook can therefore add the same note twice.
"""

import logging

from notebridge.models.contact import NoteWriteResult
from notebridge.services.directory_client import DirectoryClient, DirectoryTransportError

logger = logging.getLogger(__name__)

_BODY_LIMIT = 500


async def write_note(client: DirectoryClient, contact_id: str, note: str) -> NoteWriteResult:
    """
    Attach `note` to the directory contact `contact_id`.

    Returns:
        NoteWriteResult with outcome
          success          2xx from the directory
          rejected         any other status; the response body is kept
          transport_error  timeout or network failure
    """
    try:
        response = await client.create_note(contact_id, note)
    except DirectoryTransportError as exc:
        logger.error("Note write for contact %s failed in transport: %s", contact_id, exc)
        return NoteWriteResult(outcome="transport_error", detail=str(exc))

    if response.is_success:
        logger.info("Note written to contact %s (%d chars)", contact_id, len(note))
        return NoteWriteResult(outcome="success", status_code=response.status_code)

    body = response.text[:_BODY_LIMIT]
    logger.error(
        "Directory rejected note for contact %s with status %s",
        contact_id,
        response.status_code,
    )
    return NoteWriteResult(
        outcome="rejected",
        status_code=response.status_code,
        response_body=body,
        detail=f"Directory returned {response.status_code}",
    )
