"""
Contact resolver tests.

The directory client is replaced by a fake exposing the same two query
coroutines, so every test controls exactly which records each stage and
page returns.

Coverage:
  - exact-match priority over near matches, in any order
  - alternate / personal email fields
  - single-result heuristic (on by default, can be disabled)
  - escalation to paged search stages, offset ceiling
  - empty directory -> no contact, not an error
  - directory failures -> ContactLookupError with the attempts so far
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from notebridge.services.contact_resolver import (
    ContactLookupError,
    find_exact_match,
    resolve_contact,
)
from notebridge.models.contact import RemoteContact
from notebridge.services.directory_client import (
    DirectoryRequestError,
    DirectoryTransportError,
)

BASE = "https://directory.test"


# ---------------------------------------------------------------------------
# Record and client helpers
# ---------------------------------------------------------------------------

def _record(contact_id, email=None, alternate=None, personal=None) -> dict:
    return {
        "CONTACTID": contact_id,
        "GIVENNAME": "Test",
        "EMAILADDRESS": email,
        "EMAILADDRESSALTERNATIVE": alternate,
        "CUSTOMFIELD_PERSONALEMAIL": personal,
    }


def _make_client(
    exact: list | Exception | None = None,
    pages: dict[str, list] | None = None,
    failures: dict[tuple[str, int], Exception] | None = None,
):
    """
    Build a fake directory client.

    exact     records returned by the exact lookup (or an exception to raise)
    pages     {"emailAddress": [page0, page1, ...], "search": [...]}
    failures  {(param, offset): exception} raised by the search endpoint
    """
    pages = pages or {}
    failures = failures or {}
    client = MagicMock()

    async def lookup(email):
        if isinstance(exact, Exception):
            raise exact
        return f"{BASE}/api/contacts?emailAddress={email}", list(exact or [])

    async def search(param, value, *, offset=0, page_size=100):
        if (param, offset) in failures:
            raise failures[(param, offset)]
        stage_pages = pages.get(param, [])
        index = offset // page_size
        records = stage_pages[index] if index < len(stage_pages) else []
        url = f"{BASE}/api/contacts/search?{param}={value}&displayLength={page_size}&offset={offset}"
        return url, list(records)

    client.lookup_contacts_by_email = AsyncMock(side_effect=lookup)
    client.search_contacts = AsyncMock(side_effect=search)
    return client


# ===========================================================================
# Exact lookup stage
# ===========================================================================

class TestExactStage:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reverse", [False, True])
    async def test_exact_match_wins_over_near_matches(self, reverse):
        records = [
            _record(1, "a@x.com.au"),
            _record(2, "A@X.com"),
            _record(3, "aa@x.com"),
        ]
        if reverse:
            records.reverse()
        client = _make_client(exact=records)

        resolution = await resolve_contact(client, "a@x.com")

        assert resolution.contact.contact_id == "2"
        assert resolution.matched_stage == "exact"
        assert resolution.heuristic is False
        client.search_contacts.assert_not_called()

    @pytest.mark.asyncio
    async def test_alternate_email_field(self):
        client = _make_client(exact=[_record(5, "other@x.com", alternate="a@x.com"), _record(6, "z@x.com")])
        resolution = await resolve_contact(client, "a@x.com")
        assert resolution.contact.contact_id == "5"

    @pytest.mark.asyncio
    async def test_personal_email_field(self):
        client = _make_client(exact=[_record(7, None, personal="A@x.com"), _record(8, "q@x.com")])
        resolution = await resolve_contact(client, "a@x.com")
        assert resolution.contact.contact_id == "7"

    @pytest.mark.asyncio
    async def test_single_unmatched_result_accepted_heuristically(self):
        client = _make_client(exact=[_record(9, "different@x.com")])
        resolution = await resolve_contact(client, "a@x.com")
        assert resolution.contact.contact_id == "9"
        assert resolution.heuristic is True
        client.search_contacts.assert_not_called()

    @pytest.mark.asyncio
    async def test_heuristic_disabled_escalates_to_search(self):
        client = _make_client(
            exact=[_record(9, "different@x.com")],
            pages={"emailAddress": [[_record(10, "a@x.com")]]},
        )
        resolution = await resolve_contact(client, "a@x.com", require_field_match=True)
        assert resolution.contact.contact_id == "10"
        assert resolution.matched_stage == "search:emailAddress"
        assert resolution.heuristic is False

    @pytest.mark.asyncio
    async def test_multiple_unmatched_results_are_not_guessed(self):
        client = _make_client(exact=[_record(1, "b@x.com"), _record(2, "c@x.com")])
        resolution = await resolve_contact(client, "a@x.com")
        assert resolution.contact is None

    @pytest.mark.asyncio
    async def test_records_without_contact_id_are_ignored(self):
        client = _make_client(exact=[{"EMAILADDRESS": "a@x.com"}, _record(4, "a@x.com")])
        resolution = await resolve_contact(client, "a@x.com")
        assert resolution.contact.contact_id == "4"

    @pytest.mark.asyncio
    async def test_target_is_trimmed(self):
        client = _make_client(exact=[_record(1, "a@x.com"), _record(2, "b@x.com")])
        resolution = await resolve_contact(client, "  a@x.com ")
        assert resolution.contact.contact_id == "1"
        client.lookup_contacts_by_email.assert_awaited_once_with("a@x.com")


# ===========================================================================
# Search stages
# ===========================================================================

class TestSearchStages:

    @pytest.mark.asyncio
    async def test_email_parameter_searched_before_free_text(self):
        client = _make_client(
            pages={
                "emailAddress": [[_record(20, "a@x.com")]],
                "search": [[_record(21, "a@x.com")]],
            },
        )
        resolution = await resolve_contact(client, "a@x.com")
        assert resolution.contact.contact_id == "20"
        assert [a.stage for a in resolution.tried] == ["exact", "search:emailAddress"]

    @pytest.mark.asyncio
    async def test_free_text_stage(self):
        client = _make_client(pages={"search": [[_record(30, "x@x.com"), _record(31, "A@x.com")]]})
        resolution = await resolve_contact(client, "a@x.com")
        assert resolution.contact.contact_id == "31"
        assert resolution.matched_stage == "search:search"

    @pytest.mark.asyncio
    async def test_match_on_second_page(self):
        client = _make_client(
            pages={"emailAddress": [
                [_record(1, "n1@x.com"), _record(2, "n2@x.com")],
                [_record(3, "n3@x.com"), _record(4, "a@x.com")],
            ]},
        )
        resolution = await resolve_contact(client, "a@x.com", page_size=2)
        assert resolution.contact.contact_id == "4"
        offsets = [c.kwargs["offset"] for c in client.search_contacts.await_args_list]
        assert offsets == [0, 2]

    @pytest.mark.asyncio
    async def test_short_page_ends_stage(self):
        client = _make_client(pages={"emailAddress": [[_record(1, "n1@x.com")]]})
        await resolve_contact(client, "a@x.com", page_size=2)
        calls = [(c.args[0], c.kwargs["offset"]) for c in client.search_contacts.await_args_list]
        assert calls == [("emailAddress", 0), ("search", 0)]

    @pytest.mark.asyncio
    async def test_offset_ceiling_bounds_iteration(self):
        full_page = [_record(1, "n1@x.com"), _record(2, "n2@x.com")]
        client = _make_client(pages={"emailAddress": [full_page] * 50, "search": [full_page] * 50})

        resolution = await resolve_contact(client, "a@x.com", page_size=2, max_offset=4)

        assert resolution.contact is None
        calls = [(c.args[0], c.kwargs["offset"]) for c in client.search_contacts.await_args_list]
        assert calls == [
            ("emailAddress", 0), ("emailAddress", 2), ("emailAddress", 4),
            ("search", 0), ("search", 2), ("search", 4),
        ]
        assert len(resolution.tried) == 7


# ===========================================================================
# Empty directory and failures
# ===========================================================================

class TestNoContact:

    @pytest.mark.asyncio
    async def test_no_candidates_anywhere(self):
        client = _make_client()
        resolution = await resolve_contact(client, "a@x.com")
        assert resolution.contact is None
        assert resolution.matched_stage is None
        assert [a.stage for a in resolution.tried] == ["exact", "search:emailAddress", "search:search"]
        assert all(a.records == 0 for a in resolution.tried)
        assert all(a.url.startswith(BASE) for a in resolution.tried)


class TestLookupFailures:

    @pytest.mark.asyncio
    async def test_exact_lookup_error(self):
        url = f"{BASE}/api/contacts?emailAddress=a%40x.com"
        client = _make_client(exact=DirectoryRequestError(url, 503, "down"))

        with pytest.raises(ContactLookupError) as exc_info:
            await resolve_contact(client, "a@x.com")

        assert exc_info.value.status_code == 503
        assert [a.url for a in exc_info.value.tried] == [url]
        assert exc_info.value.tried[0].records is None

    @pytest.mark.asyncio
    async def test_search_transport_error_keeps_earlier_attempts(self):
        url = f"{BASE}/api/contacts/search?search=a%40x.com"
        client = _make_client(
            failures={("search", 0): DirectoryTransportError(url, TimeoutError("slow"))},
        )

        with pytest.raises(ContactLookupError) as exc_info:
            await resolve_contact(client, "a@x.com")

        assert exc_info.value.status_code is None
        assert [a.stage for a in exc_info.value.tried] == ["exact", "search:emailAddress", "search:search"]


def test_find_exact_match_none_when_only_near_matches():
    contacts = [RemoteContact(contact_id="1", email="a@x.co"), RemoteContact(contact_id="2", email="xa@x.com")]
    assert find_exact_match(contacts, "a@x.com") is None
