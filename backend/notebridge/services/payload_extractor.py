"""
Helpdesk payload extractor.

Normalizes the helpdesk's webhook JSON into a CanonicalEventData. The vendor
payload has changed shape over time (sometimes wrapped under `data`,
sometimes not; the customer address has lived under several keys), so every
canonical field is resolved by an explicit, ordered list of rules:

  (rule_name, fn)   where fn(scope: dict) -> Optional[value]

Rules are tried in priority order against each scope (the nested `data`
object first, then the top-level object); the first non-empty value wins.
Adding support for a new payload shape means appending a rule here.

Extraction never raises. Anything that cannot be found is left empty and
the webhook handler treats a missing customer email as "nothing to do".
"""

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from bs4 import BeautifulSoup

from notebridge.models.webhook_event import CanonicalEventData

logger = logging.getLogger(__name__)

Rule = tuple[str, Callable[[dict], Optional[str]]]

DEFAULT_SUBJECT = "(no subject)"

_OUTBOUND_DIRECTIONS = {"outbound", "out", "outgoing", "sent"}
_AGENT_ACTOR_TYPES = {"agent", "user", "staff"}
_TIMESTAMP_KEYS = ("createdAt", "created_at", "sentAt", "sent_at", "timestamp", "date")

_PLAIN_BODY_KEYS = ("textBody", "text_body", "plainBody", "plaintext", "text")
_HTML_BODY_KEYS = ("htmlBody", "html_body", "html", "body")

_BLOCK_TAGS = ["p", "div", "li", "tr", "blockquote", "h1", "h2", "h3", "h4", "h5", "h6"]
_HTML_TAG_RE = re.compile(r"<[a-zA-Z/!][^>]*>")
_HTML_ENTITY_RE = re.compile(r"&(?:[a-zA-Z]+|#\d+|#x[0-9a-fA-F]+);")
_ANGLE_ADDRESS_RE = re.compile(r"<([^>]+)>")


# ---------------------------------------------------------------------------
# Small safe accessors
# ---------------------------------------------------------------------------

def _dig(obj: Any, *path: Any) -> Any:
    """Walk dict keys / list indexes; return None as soon as a step fails."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(obj, list) or not -len(obj) <= key < len(obj):
                return None
            obj = obj[key]
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(key)
    return obj


def _text(value: Any) -> Optional[str]:
    """Scalar to trimmed text; None for empty values, containers and booleans."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _first_text(obj: Any, keys: tuple[str, ...]) -> Optional[str]:
    if not isinstance(obj, dict):
        return None
    for key in keys:
        value = _text(obj.get(key))
        if value:
            return value
    return None


def clean_email(value: Any) -> Optional[str]:
    """
    Pull one email address out of a string, a recipient object or a list.

    Handles "Name <addr@host>" wrappers. Returns None unless the result looks
    like an address (contains "@").
    """
    if isinstance(value, list):
        for item in value:
            found = clean_email(item)
            if found:
                return found
        return None
    if isinstance(value, dict):
        for key in ("email", "address", "emailAddress"):
            found = clean_email(value.get(key))
            if found:
                return found
        return None
    text = _text(value)
    if not text:
        return None
    match = _ANGLE_ADDRESS_RE.search(text)
    address = (match.group(1) if match else text).strip()
    if "@" not in address or " " in address:
        return None
    return address


def _person_name(obj: Any) -> Optional[str]:
    if isinstance(obj, str):
        return _text(obj)
    if not isinstance(obj, dict):
        return None
    name = _first_text(obj, ("name", "full_name", "fullName", "display_name", "displayName"))
    if name:
        return name
    parts = [_text(obj.get(k)) for k in ("first_name", "firstName", "last_name", "lastName")]
    joined = " ".join(p for p in parts if p)
    return joined or None


# ---------------------------------------------------------------------------
# HTML to text
# ---------------------------------------------------------------------------

def looks_like_html(text: str) -> bool:
    return bool(_HTML_TAG_RE.search(text) or _HTML_ENTITY_RE.search(text))


def html_to_text(html: str) -> str:
    """
    Convert an HTML email body to plain text.

    <br> and block closings become line breaks, tags are dropped, entities
    are decoded and non-breaking spaces become plain spaces. Runs of blank
    lines collapse to one.
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head", "title"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    for block in soup.find_all(_BLOCK_TAGS):
        block.append("\n")

    text = soup.get_text().replace("\xa0", " ")

    lines: list[str] = []
    for line in text.splitlines():
        line = line.rstrip()
        if not line.strip() and (not lines or not lines[-1]):
            continue
        lines.append(line if line.strip() else "")
    return "\n".join(lines).strip()


def _body_from(obj: Any, plain_keys: tuple[str, ...], html_keys: tuple[str, ...]) -> Optional[str]:
    plain = _first_text(obj, plain_keys)
    if plain:
        return plain
    html = _first_text(obj, html_keys)
    if html:
        converted = html_to_text(html) if looks_like_html(html) else html
        return converted or None
    return None


# ---------------------------------------------------------------------------
# Outbound thread selection
# ---------------------------------------------------------------------------

def _threads(scope: dict) -> list:
    threads = scope.get("threads") if isinstance(scope, dict) else None
    if not isinstance(threads, list):
        threads = _dig(scope, "conversation", "threads")
    return threads if isinstance(threads, list) else []


def _is_outbound_email(thread: Any) -> bool:
    if not isinstance(thread, dict):
        return False
    if str(thread.get("type") or "").strip().lower() != "email":
        return False
    direction = str(thread.get("direction") or "").strip().lower()
    if direction in _OUTBOUND_DIRECTIONS:
        return True
    actor_type = (
        thread.get("actorType")
        or thread.get("actor_type")
        or thread.get("senderType")
        or thread.get("sender_type")
        or _dig(thread, "author", "type")
        or _dig(thread, "actor", "type")
    )
    return str(actor_type or "").strip().lower() in _AGENT_ACTOR_TYPES


def parse_timestamp(value: Any) -> Optional[float]:
    """ISO-8601 string or epoch seconds/milliseconds to epoch seconds."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            value = float(stripped)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
            except ValueError:
                return None
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed.timestamp()
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return None
        # Anything past ~2001 in milliseconds is larger than 1e12.
        return value / 1000.0 if value > 1e12 else float(value)
    return None


def _thread_timestamp(thread: dict) -> Optional[float]:
    for key in _TIMESTAMP_KEYS:
        ts = parse_timestamp(thread.get(key))
        if ts is not None:
            return ts
    return None


def select_outbound_thread(scope: dict) -> Optional[dict]:
    """
    Pick the most recent outbound email thread in scope.

    Threads with a parseable timestamp beat threads without one; otherwise
    the later position in the list wins.
    """
    candidates = [
        (index, thread)
        for index, thread in enumerate(_threads(scope))
        if _is_outbound_email(thread)
    ]
    if not candidates:
        return None

    def sort_key(item: tuple[int, dict]) -> tuple[bool, float, int]:
        index, thread = item
        ts = _thread_timestamp(thread)
        return (ts is not None, ts or 0.0, index)

    return max(candidates, key=sort_key)[1]


def _thread(scope: dict) -> dict:
    return select_outbound_thread(scope) or {}


# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------

EMAIL_RULES: list[Rule] = [
    ("contactInfo.email", lambda s: clean_email(_dig(s, "contactInfo", "email"))),
    ("contact.email", lambda s: clean_email(_dig(s, "contact", "email"))),
    ("customer.email", lambda s: clean_email(_dig(s, "customer", "email"))),
    ("customer.emailAddress", lambda s: clean_email(_dig(s, "customer", "emailAddress"))),
    ("conversation.contactInfo.email", lambda s: clean_email(_dig(s, "conversation", "contactInfo", "email"))),
    ("conversation.contact.email", lambda s: clean_email(_dig(s, "conversation", "contact", "email"))),
    ("conversation.customer.email", lambda s: clean_email(_dig(s, "conversation", "customer", "email"))),
    ("conversation.customer.emailAddress", lambda s: clean_email(_dig(s, "conversation", "customer", "emailAddress"))),
    ("thread.to", lambda s: clean_email(_thread(s).get("to"))),
    ("message.to", lambda s: clean_email(_dig(s, "message", "to"))),
]

SUBJECT_RULES: list[Rule] = [
    ("subject", lambda s: _text(s.get("subject"))),
    ("conversation.subject", lambda s: _text(_dig(s, "conversation", "subject"))),
    ("thread.subject", lambda s: _text(_thread(s).get("subject"))),
    ("message.subject", lambda s: _text(_dig(s, "message", "subject"))),
]

BODY_RULES: list[Rule] = [
    ("thread.body", lambda s: _body_from(_thread(s), _PLAIN_BODY_KEYS, _HTML_BODY_KEYS)),
    ("message.body", lambda s: _body_from(s.get("message"), _PLAIN_BODY_KEYS, _HTML_BODY_KEYS)),
    ("body", lambda s: _body_from(s, ("textBody", "text_body", "plaintext"), ("htmlBody", "html", "body"))),
    ("excerpt", lambda s: _first_text(s, ("excerpt", "snippet", "preview"))),
    ("conversation.excerpt", lambda s: _first_text(s.get("conversation"), ("excerpt", "snippet", "preview"))),
]

CONVERSATION_ID_RULES: list[Rule] = [
    ("conversation.id", lambda s: _text(_dig(s, "conversation", "id"))),
    ("conversationId", lambda s: _first_text(s, ("conversationId", "conversation_id"))),
    ("thread.conversationId", lambda s: _first_text(_thread(s), ("conversationId", "conversation_id"))),
    ("ticket.id", lambda s: _text(_dig(s, "ticket", "id"))),
]

AGENT_NAME_RULES: list[Rule] = [
    ("thread.author", lambda s: _person_name(_thread(s).get("author"))),
    ("thread.user", lambda s: _person_name(_thread(s).get("user"))),
    ("thread.agent", lambda s: _person_name(_thread(s).get("agent"))),
    ("thread.actor", lambda s: _person_name(_thread(s).get("actor"))),
    ("user", lambda s: _person_name(s.get("user"))),
    ("agent", lambda s: _person_name(s.get("agent"))),
    ("actor", lambda s: _person_name(s.get("actor"))),
]

INBOX_LABEL_RULES: list[Rule] = [
    ("inbox", lambda s: _person_name(s.get("inbox"))),
    ("mailbox", lambda s: _person_name(s.get("mailbox"))),
    ("conversation.inbox", lambda s: _person_name(_dig(s, "conversation", "inbox"))),
    ("conversation.mailbox", lambda s: _person_name(_dig(s, "conversation", "mailbox"))),
]

SENT_AT_RULES: list[Rule] = [
    ("thread.timestamp", lambda s: _first_text(_thread(s), _TIMESTAMP_KEYS)),
]


def _scopes(payload: Any) -> list[dict]:
    """Nested `data` object first (when present), then the top level."""
    if not isinstance(payload, dict):
        return []
    scopes: list[dict] = []
    data = payload.get("data")
    if isinstance(data, dict):
        scopes.append(data)
    scopes.append(payload)
    return scopes


def apply_rules(rules: list[Rule], scopes: list[dict]) -> tuple[Optional[str], Optional[str]]:
    """Return (value, rule_name) for the first rule yielding a value."""
    for name, rule in rules:
        for scope in scopes:
            value = rule(scope)
            if value:
                return value, name
    return None, None


def extract_event(payload: Any) -> CanonicalEventData:
    """
    Build CanonicalEventData from a parsed webhook body.

    Accepts either the top-level body or its `data` object; any JSON value is
    allowed and unknown shapes simply yield empty fields.
    """
    scopes = _scopes(payload)
    if not scopes:
        return CanonicalEventData()

    email, email_rule = apply_rules(EMAIL_RULES, scopes)
    if email:
        logger.debug("Customer email resolved via rule %s", email_rule)

    subject, _ = apply_rules(SUBJECT_RULES, scopes)
    body_text, _ = apply_rules(BODY_RULES, scopes)
    conversation_id, _ = apply_rules(CONVERSATION_ID_RULES, scopes)
    agent_name, _ = apply_rules(AGENT_NAME_RULES, scopes)
    inbox_label, _ = apply_rules(INBOX_LABEL_RULES, scopes)
    sent_at, _ = apply_rules(SENT_AT_RULES, scopes)

    return CanonicalEventData(
        customer_email=email,
        subject=subject or DEFAULT_SUBJECT,
        body_text=body_text or "",
        conversation_id=conversation_id,
        agent_name=agent_name,
        inbox_label=inbox_label,
        sent_at=sent_at,
    )
