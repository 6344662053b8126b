"""
Note writer tests: outcome classification, no retries.
"""

import httpx
import pytest

from notebridge.services.directory_client import DirectoryClient
from notebridge.services.note_writer import write_note


def _client(handler) -> DirectoryClient:
    return DirectoryClient(
        "https://directory.test",
        "api",
        "ws",
        transport=httpx.MockTransport(handler),
    )


class TestWriteNote:

    @pytest.mark.asyncio
    async def test_success(self):
        async with _client(lambda request: httpx.Response(200, json={"ok": True})) as client:
            result = await write_note(client, "123", "note text")

        assert result.outcome == "success"
        assert result.ok is True
        assert result.status_code == 200

    @pytest.mark.asyncio
    async def test_remote_rejection_keeps_body(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="contact locked")

        async with _client(handler) as client:
            result = await write_note(client, "123", "note text")

        assert result.outcome == "rejected"
        assert result.ok is False
        assert result.status_code == 500
        assert result.response_body == "contact locked"
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_rejection_body_is_truncated(self):
        async with _client(lambda request: httpx.Response(400, text="e" * 5000)) as client:
            result = await write_note(client, "123", "note text")

        assert len(result.response_body) == 500

    @pytest.mark.asyncio
    async def test_timeout_is_transport_error(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        async with _client(handler) as client:
            result = await write_note(client, "123", "note text")

        assert result.outcome == "transport_error"
        assert result.status_code is None
        assert "timed out" in result.detail or "ReadTimeout" in result.detail
        assert len(calls) == 1
