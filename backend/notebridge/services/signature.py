"""
Webhook signature verification.

The helpdesk signs webhooks with HMAC-SHA1 (base64) computed over the JSON
value of the payload's top-level `data` field. Re-serializing a parsed
payload does not reliably reproduce the bytes the vendor hashed (key order,
whitespace and number formatting can drift), so several candidate signing
inputs are built and the request is accepted when any of them matches:

  raw_data            exact substring of the body holding the `data` value
  reserialized_data   compact JSON re-serialization of the parsed `data`
  raw_body            the whole body, for senders that sign everything

Each candidate's digest is compared in base64 and hex form, with and without
a `sha1=` prefix. Comparisons are constant-time and exact; substring
matching is only available as an explicit, logged debug mode.
"""

import base64
import hashlib
import hmac
import json
import logging
from typing import Any, Optional

from notebridge.models.webhook_event import SignatureVerdict

logger = logging.getLogger(__name__)

_DATA_KEY = '"data"'
_SHA1_PREFIX = "sha1="
_WHITESPACE = " \t\r\n"


def _skip_whitespace(text: str, pos: int) -> int:
    while pos < len(text) and text[pos] in _WHITESPACE:
        pos += 1
    return pos


def _string_end(text: str, pos: int) -> int:
    """Index just past the string literal opening at `pos`, or -1 if unclosed."""
    quote = text[pos]
    index = pos + 1
    while index < len(text):
        ch = text[index]
        if ch == "\\":
            index += 2
            continue
        if ch == quote:
            return index + 1
        index += 1
    return -1


def _find_top_level_value(raw_body: str, key: str) -> int:
    """
    Position of the value of `key` in the root object, or -1.

    Keys inside nested objects and string contents are skipped, so only a
    member of the outermost object can match.
    """
    depth = 0
    index = 0
    while index < len(raw_body):
        ch = raw_body[index]
        if ch in "\"'":
            end = _string_end(raw_body, index)
            if end == -1:
                return -1
            if depth == 1 and raw_body[index:end] == key:
                after = _skip_whitespace(raw_body, end)
                if after < len(raw_body) and raw_body[after] == ":":
                    return _skip_whitespace(raw_body, after + 1)
            index = end
            continue
        if ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
        index += 1
    return -1


def extract_raw_data_value(raw_body: str) -> Optional[str]:
    """
    Return the exact text of the top-level `data` object/array in raw_body.

    Locates the `"data"` member of the root object (nested `data` keys and
    string contents are ignored), then scans from the opening brace or
    bracket with a depth counter, skipping over string literals (single or
    double quoted, backslash escapes honoured), until the matching close.

    Returns None when there is no top-level `data` key, its value is not an
    object or array, or the value is never closed.
    """
    if not raw_body:
        return None

    start = _find_top_level_value(raw_body, _DATA_KEY)
    if start == -1 or start >= len(raw_body) or raw_body[start] not in "{[":
        return None

    depth = 0
    quote: Optional[str] = None
    escaped = False
    for index in range(start, len(raw_body)):
        ch = raw_body[index]
        if quote is not None:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in "\"'":
            quote = ch
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                return raw_body[start:index + 1]
    return None


def build_candidates(raw_body: str, parsed: Any) -> list[tuple[str, bytes]]:
    """
    Build the ordered list of (name, bytes) signing inputs to try.

    Identical byte strings are kept once, under the first name that produced
    them.
    """
    candidates: list[tuple[str, bytes]] = []

    raw_data = extract_raw_data_value(raw_body)
    if raw_data is not None:
        candidates.append(("raw_data", raw_data.encode("utf-8")))

    if isinstance(parsed, dict) and "data" in parsed:
        reserialized = json.dumps(
            parsed["data"], separators=(",", ":"), ensure_ascii=False
        )
        candidates.append(("reserialized_data", reserialized.encode("utf-8")))

    if raw_body:
        candidates.append(("raw_body", raw_body.encode("utf-8")))

    seen: set[bytes] = set()
    unique: list[tuple[str, bytes]] = []
    for name, value in candidates:
        if value in seen:
            continue
        seen.add(value)
        unique.append((name, value))
    return unique


def compute_signature(secret: str, message: bytes) -> dict[str, str]:
    """Return the HMAC-SHA1 of message as {"base64": ..., "hex": ...}."""
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha1).digest()
    return {
        "base64": base64.b64encode(digest).decode("ascii"),
        "hex": digest.hex(),
    }


def _constant_time_equal(provided: str, expected: str) -> bool:
    provided_bytes = provided.encode("utf-8")
    expected_bytes = expected.encode("utf-8")
    if len(provided_bytes) != len(expected_bytes):
        return False
    return hmac.compare_digest(provided_bytes, expected_bytes)


def _header_variants(signature_header: str) -> list[str]:
    """The header as sent, plus the value with any `sha1=` prefix removed."""
    value = signature_header.strip()
    variants = [value]
    if value.lower().startswith(_SHA1_PREFIX):
        variants.append(value[len(_SHA1_PREFIX):])
    return variants


def _expected_forms(signatures: dict[str, str]) -> list[tuple[str, str]]:
    forms: list[tuple[str, str]] = []
    for encoding, value in signatures.items():
        forms.append((encoding, value))
        forms.append((f"{_SHA1_PREFIX}{encoding}", f"{_SHA1_PREFIX}{value}"))
    return forms


def verify_signature(
    raw_body: str,
    parsed: Any,
    secret: Optional[str],
    signature_header: Optional[str],
    *,
    allow_unverified: bool = False,
    loose: bool = False,
) -> SignatureVerdict:
    """
    Decide whether a webhook body was signed with `secret`.

    Args:
        raw_body:         Decoded request body exactly as received.
        parsed:           The parsed JSON body (used for re-serialization).
        secret:           Shared secret. When empty, verification is skipped.
        signature_header: Value of the signature header, if any.
        allow_unverified: Skip verification even though a secret is set.
        loose:            Debug mode: also accept a computed signature that
                          merely appears inside the header value.

    Returns:
        SignatureVerdict describing the decision and which candidate matched.
    """
    if not secret:
        logger.warning(
            "No webhook secret configured (HELPDESK_WEBHOOK_SECRET); "
            "accepting webhook without signature verification"
        )
        return SignatureVerdict(valid=True, skipped=True, reason="no_secret")

    if allow_unverified:
        logger.warning(
            "ALLOW_UNVERIFIED_WEBHOOKS is enabled; "
            "accepting webhook without signature verification"
        )
        return SignatureVerdict(valid=True, skipped=True, reason="bypass")

    if not signature_header or not signature_header.strip():
        logger.info("Webhook rejected: signature header missing")
        return SignatureVerdict(valid=False, reason="missing_header")

    candidates = build_candidates(raw_body, parsed)
    tried = [name for name, _ in candidates]
    variants = _header_variants(signature_header)

    computed: list[tuple[str, dict[str, str]]] = [
        (name, compute_signature(secret, message)) for name, message in candidates
    ]

    for name, signatures in computed:
        for encoding, expected in _expected_forms(signatures):
            for provided in variants:
                if _constant_time_equal(provided, expected):
                    logger.debug("Webhook signature matched %s:%s", name, encoding)
                    return SignatureVerdict(
                        valid=True, matched=f"{name}:{encoding}", tried=tried
                    )

    if loose:
        header_value = signature_header.strip()
        for name, signatures in computed:
            for encoding, expected in _expected_forms(signatures):
                if expected and expected in header_value:
                    logger.warning(
                        "Webhook accepted by LOOSE_SIGNATURE_MATCH (%s:%s); "
                        "substring matching is a debug mode only",
                        name,
                        encoding,
                    )
                    return SignatureVerdict(
                        valid=True,
                        matched=f"{name}:{encoding}",
                        tried=tried,
                        loose=True,
                    )

    logger.warning(
        "Webhook signature mismatch (header length=%d, candidates tried=%s)",
        len(signature_header.strip()),
        tried,
    )
    return SignatureVerdict(valid=False, tried=tried, reason="mismatch")
