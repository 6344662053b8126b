"""Render an outbound-email event as a plain-text contact note."""

from typing import Optional

from notebridge.models.webhook_event import CanonicalEventData

NOTE_MAX_LENGTH = 60_000
EMPTY_BODY_PLACEHOLDER = "(no body)"


def _conversation_reference(conversation_id: str, url_template: Optional[str]) -> str:
    if url_template and "{id}" in url_template:
        return url_template.replace("{id}", conversation_id)
    return f"#{conversation_id}"


def compose_note(
    event: CanonicalEventData,
    *,
    max_length: int = NOTE_MAX_LENGTH,
    conversation_url_template: Optional[str] = None,
) -> str:
    """
    Build the note text for `event`.

    Header lines come in a fixed order (conversation, recipient, subject,
    then the optional sender, inbox and date lines), followed by a blank
    line and the body. The result is cut to `max_length` characters and
    never comes out empty.
    """
    header: list[str] = []
    if event.conversation_id:
        reference = _conversation_reference(event.conversation_id, conversation_url_template)
        header.append(f"Conversation: {reference}")
    if event.customer_email:
        header.append(f"To: {event.customer_email}")
    header.append(f"Subject: {event.subject}")
    if event.agent_name:
        header.append(f"Sent by: {event.agent_name}")
    if event.inbox_label:
        header.append(f"Inbox: {event.inbox_label}")
    if event.sent_at:
        header.append(f"Date: {event.sent_at}")

    body = event.body_text.strip() or EMPTY_BODY_PLACEHOLDER
    note = "\n".join(header) + "\n\n" + body
    return note[:max(1, max_length)]
