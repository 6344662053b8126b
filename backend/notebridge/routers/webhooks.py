"""
Helpdesk webhook router.

Receives the helpdesk's "outbound email sent" webhook and appends a note to
the matching contact in the directory.

Endpoints:
  POST /contact-note   verify, extract, resolve contact, write note
  POST /echo           diagnostic echo (only when ENABLE_ECHO_ENDPOINT is set)

Response policy for /contact-note
---------------------------------
  405  any method other than POST
  500  directory settings missing
  400  body missing, undecodable or not a JSON object
  401  signature invalid (the payload is not looked at any further)
  200  {"ok": true, "skipped": ...} when there is nothing to do: no customer
       email, or no matching contact. These are normal events, answering
       non-2xx would make the helpdesk count them as delivery failures.
  502  a directory call failed; remote status and tried URLs are echoed
  200  {"ok": true, "contactID": ...} once the note is written
"""

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from notebridge.config import Settings, get_settings
from notebridge.models.webhook_event import WebhookEnvelope
from notebridge.services.contact_resolver import ContactLookupError, resolve_contact
from notebridge.services.directory_client import DirectoryClient
from notebridge.services.note_composer import compose_note
from notebridge.services.note_writer import write_note
from notebridge.services.payload_extractor import extract_event
from notebridge.services.signature import verify_signature

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _directory_client(settings: Settings) -> DirectoryClient:
    """Build the directory client for one request."""
    return DirectoryClient.from_settings(settings)


async def _read_envelope(request: Request) -> WebhookEnvelope:
    raw = await request.body()
    encoding = request.headers.get("content-transfer-encoding", "")
    return WebhookEnvelope(
        headers=dict(request.headers),
        body=raw,
        is_base64_encoded=encoding.strip().lower() == "base64",
    )


def _parse_body(envelope: WebhookEnvelope) -> tuple[str, dict]:
    """
    Decode and parse the webhook body.

    Raises HTTPException 400 when the body is missing, cannot be decoded, is
    not JSON, or is not a JSON object.
    """
    try:
        raw = envelope.decoded_body()
    except ValueError as exc:
        logger.info(f"Webhook body could not be decoded: {exc}")
        raise HTTPException(status_code=400, detail="Body could not be decoded")

    if not raw.strip():
        raise HTTPException(status_code=400, detail="Missing body")

    try:
        payload = json.loads(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="Body is not valid JSON")

    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    return raw, payload


def _payload_shape(payload: dict) -> dict[str, Any]:
    """Key summary logged when a payload has no usable email."""
    data = payload.get("data")
    return {
        "keys": sorted(payload.keys()),
        "dataKeys": sorted(data.keys()) if isinstance(data, dict) else None,
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/contact-note")
async def add_contact_note(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> dict:
    """
    Append a note for an outbound helpdesk email to the matching contact.

    Steps:
    1. Check directory configuration.
    2. Decode and parse the body.
    3. Verify the signature.
    4. Extract the canonical event.
    5. Resolve the directory contact.
    6. Compose the note.
    7. Write the note.
    """
    # 1. Configuration
    missing = settings.missing_directory_settings()
    if missing:
        logger.error(f"Directory configuration missing: {missing}")
        raise HTTPException(
            status_code=500,
            detail={"error": "Server misconfigured", "missing": missing},
        )

    # 2. Parse
    envelope = await _read_envelope(request)
    raw, payload = _parse_body(envelope)

    # 3. Signature
    verdict = verify_signature(
        raw,
        payload,
        settings.webhook_secret,
        envelope.header(settings.signature_header),
        allow_unverified=settings.allow_unverified,
        loose=settings.loose_signature_match,
    )
    if not verdict.valid:
        raise HTTPException(status_code=401, detail="Bad signature")

    # 4. Extract
    event = extract_event(payload)
    if not event.customer_email:
        logger.info(f"No customer email in webhook payload: {_payload_shape(payload)}")
        return {"ok": True, "skipped": "no customer email"}

    email = event.customer_email

    async with _directory_client(settings) as client:
        # 5. Resolve contact
        try:
            resolution = await resolve_contact(
                client,
                email,
                page_size=settings.search_page_size,
                max_offset=settings.search_max_offset,
                require_field_match=settings.require_exact_email_match,
            )
        except ContactLookupError as exc:
            logger.error(f"Contact lookup failed for {email}: {exc}")
            raise HTTPException(
                status_code=502,
                detail={
                    "error": "Contact lookup failed",
                    "status": exc.status_code,
                    "url": exc.cause.url,
                    "tried": [attempt.model_dump() for attempt in exc.tried],
                },
            )

        tried = [attempt.model_dump() for attempt in resolution.tried]
        if resolution.contact is None:
            logger.info(f"No directory contact for {email}")
            return {
                "ok": True,
                "skipped": "contact not found",
                "email": email,
                "tried": tried,
            }

        contact = resolution.contact
        contact_ref: Optional[Any] = contact.raw.get("CONTACTID", contact.contact_id)

        # 6. Compose
        note = compose_note(
            event,
            max_length=settings.note_max_length,
            conversation_url_template=settings.conversation_url_template,
        )

        # 7. Write
        result = await write_note(client, contact.contact_id, note)

    if result.outcome == "rejected":
        raise HTTPException(
            status_code=502,
            detail={
                "error": "Note write failed",
                "status": result.status_code,
                "body": result.response_body,
                "contactID": contact_ref,
            },
        )
    if result.outcome == "transport_error":
        raise HTTPException(
            status_code=502,
            detail={
                "error": "Note write failed",
                "status": None,
                "detail": result.detail,
                "contactID": contact_ref,
            },
        )

    logger.info(f"Note added to contact {contact.contact_id} for {email}")
    return {
        "ok": True,
        "contactID": contact_ref,
        "email": email,
        "matchedStage": resolution.matched_stage,
        "heuristicMatch": resolution.heuristic,
        "noteLength": len(note),
    }


@router.api_route("/contact-note", methods=["GET", "PUT", "PATCH", "DELETE"])
async def contact_note_wrong_method() -> dict:
    raise HTTPException(status_code=405, detail="Use POST with JSON")


@router.post("/echo")
async def echo_webhook(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> dict:
    """
    Diagnostic echo of an inbound webhook.

    Reports the header names, whether a signature was sent and whether it
    verifies against the configured secret, plus the parsed body. Never calls
    the directory. Disabled (404) unless ENABLE_ECHO_ENDPOINT is set.
    """
    if not settings.enable_echo_endpoint:
        raise HTTPException(status_code=404, detail="Not Found")

    envelope = await _read_envelope(request)
    try:
        raw = envelope.decoded_body()
    except ValueError:
        raw = ""

    parsed: Any = None
    if raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None

    signature = envelope.header(settings.signature_header)
    verdict = None
    if signature and settings.webhook_secret:
        verdict = verify_signature(raw, parsed, settings.webhook_secret, signature)

    logger.info(
        f"Echo webhook: hasBody={bool(raw)} sigHeaderPresent={bool(signature)} "
        f"sigOk={verdict.valid if verdict else None}"
    )

    return {
        "received": True,
        "method": request.method,
        "headerKeys": sorted(envelope.headers),
        "signaturePresent": bool(signature),
        "signatureValid": verdict.valid if verdict else None,
        "signatureMatched": verdict.matched if verdict else None,
        "candidatesTried": verdict.tried if verdict else [],
        "query": dict(request.query_params),
        "body": parsed,
    }
