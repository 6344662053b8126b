#!/usr/bin/env python3
"""
Dev helper: send a signed helpdesk webhook to the local notebridge backend.

Builds an "agent replied" payload in the helpdesk's shape, signs the `data`
value with HMAC-SHA1 (base64) the way the helpdesk does, and POSTs it to
/api/webhooks/contact-note.

Usage
-----
# Basic: sample payload for customer@example.com against localhost:8000
python scripts/send_test_webhook.py

# A real contact's address, so the note lands on them
python scripts/send_test_webhook.py --email someone@example.com

# HTML body instead of plain text
python scripts/send_test_webhook.py --html "<p>Hello<br>there</p>"

# Send without a signature header (expect 401 when a secret is configured)
python scripts/send_test_webhook.py --unsigned

# Hit the diagnostic echo endpoint instead
python scripts/send_test_webhook.py --echo

Environment / .env
------------------
HELPDESK_WEBHOOK_SECRET  Shared webhook secret. Overridden by --secret.
SIGNATURE_HEADER         Header name to send (default X-TD-Signature).
"""

import argparse
import base64
import hashlib
import hmac
import json
import os
import sys
import textwrap
from datetime import datetime, timezone
from pathlib import Path

import httpx
from dotenv import load_dotenv


# ---------------------------------------------------------------------------
# Payload
# ---------------------------------------------------------------------------

def _build_payload(email: str, subject: str, text: str, html: str | None) -> dict:
    """Build a helpdesk 'conversation reply' webhook payload."""
    thread = {
        "id": 9001,
        "type": "email",
        "direction": "outbound",
        "createdAt": datetime.now(timezone.utc).isoformat(),
        "actor": {"type": "user", "name": "Dev Agent"},
    }
    if html:
        thread["htmlBody"] = html
    else:
        thread["textBody"] = text

    return {
        "event": "conversation.agent_replied",
        "data": {
            "conversation": {"id": 4242, "inbox": {"name": "Support"}},
            "contactInfo": {"email": email},
            "subject": subject,
            "threads": [thread],
        },
    }


def _sign(data_text: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), data_text.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def _encode(payload: dict) -> tuple[str, str]:
    """Return (body, signed data text), keeping the data text byte-identical."""
    data_text = json.dumps(payload["data"])
    rest = {k: v for k, v in payload.items() if k != "data"}
    head = json.dumps(rest)[:-1]
    body = f'{head}, "data": {data_text}}}'
    return body, data_text


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_webhook.py",
        description=textwrap.dedent("""\
            Send a signed helpdesk webhook to the notebridge backend.

            Reads HELPDESK_WEBHOOK_SECRET from the environment or a .env file
            in the project root.
        """),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--url", default="http://localhost:8000",
                        help="Backend base URL (default: http://localhost:8000)")
    parser.add_argument("--email", default="customer@example.com",
                        help="Customer email put in the payload")
    parser.add_argument("--subject", default="Re: Your enrolment",
                        help="Email subject")
    parser.add_argument("--text", default="Hi, thanks for getting in touch.",
                        help="Plain-text reply body")
    parser.add_argument("--html", default=None,
                        help="HTML reply body (used instead of --text)")
    parser.add_argument("--secret", default=None,
                        help="Override HELPDESK_WEBHOOK_SECRET")
    parser.add_argument("--unsigned", action="store_true",
                        help="Do not send a signature header")
    parser.add_argument("--echo", action="store_true",
                        help="POST to the diagnostic echo endpoint instead")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print the body and signature without sending")

    args = parser.parse_args()

    secret = args.secret or os.getenv("HELPDESK_WEBHOOK_SECRET", "")
    header_name = os.getenv("SIGNATURE_HEADER", "X-TD-Signature")
    if not secret and not args.unsigned and not args.dry_run:
        print(
            "ERROR: No webhook secret found.\n"
            "Set HELPDESK_WEBHOOK_SECRET in your environment or .env file, "
            "pass --secret, or use --unsigned.",
            file=sys.stderr,
        )
        return 1

    payload = _build_payload(args.email, args.subject, args.text, args.html)
    body, data_text = _encode(payload)

    headers = {"Content-Type": "application/json"}
    if not args.unsigned and secret:
        headers[header_name] = _sign(data_text, secret)

    path = "/api/webhooks/echo" if args.echo else "/api/webhooks/contact-note"
    endpoint = f"{args.url.rstrip('/')}{path}"

    print(f"Endpoint  : {endpoint}")
    print(f"Email     : {args.email}")
    print(f"Subject   : {args.subject}")
    print(f"Signature : {headers.get(header_name, '<none>')}")

    if args.dry_run:
        print("\n[DRY RUN] Body:")
        print(json.dumps(json.loads(body), indent=2))
        return 0

    try:
        response = httpx.post(endpoint, content=body, headers=headers, timeout=30)
    except httpx.RequestError as exc:
        print(f"\nERROR: Request failed: {exc}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
