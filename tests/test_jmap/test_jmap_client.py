"""Tests for JmapClient — the HTTP transport is mocked."""

import json
from typing import Any
from unittest.mock import MagicMock

import pytest

from conftest import jmap_body, sent_calls
from fastmail_cli.errors import (
    BlobNotFound,
    EmailNotFound,
    IdentityNotFound,
    InvalidToken,
    MailboxNotFound,
    MethodError,
    NotAuthenticated,
    RateLimited,
    ResponseParse,
    ServerError,
)
from fastmail_cli.jmap.client import JmapClient, jmap_client
from fastmail_cli.jmap.search import SearchFilter
from fastmail_cli.jmap.types import MaskedEmailState


def _session_body() -> bytes:
    return json.dumps({
        "apiUrl": "https://api.example.com/jmap/api/",
        "downloadUrl": "https://api.example.com/download/{accountId}/{blobId}/{name}?type={type}",
        "uploadUrl": "https://api.example.com/upload/{accountId}/",
        "username": "me@example.com",
        "accounts": {"u1": {}, "u2": {}},
        "primaryAccounts": {"urn:ietf:params:jmap:mail": "u1"},
        "capabilities": {"urn:ietf:params:jmap:core": {}},
    }).encode()


# ── connect ────────────────────────────────────────────────────────────────────


class TestConnect:
    async def test_builds_session_from_primary_account(self, transport: MagicMock) -> None:
        transport.send_json.return_value = (200, _session_body())
        client = await JmapClient.connect("tok", transport=transport)
        assert client.account_id == "u1"
        assert client.session.api_url == "https://api.example.com/jmap/api/"
        assert client.session.username == "me@example.com"

    @pytest.mark.parametrize(
        "status, error",
        [(401, InvalidToken), (429, RateLimited), (500, ServerError), (503, ServerError)],
    )
    async def test_status_mapping(self, transport: MagicMock, status: int, error: type) -> None:
        transport.send_json.return_value = (status, b"nope")
        with pytest.raises(error):
            await JmapClient.connect("tok", transport=transport)

    async def test_context_manager_requires_token(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("FASTMAIL_API_TOKEN", raising=False)
        with pytest.raises(NotAuthenticated):
            async with jmap_client():
                pass


# ── Mailboxes ──────────────────────────────────────────────────────────────────


class TestMailboxes:
    async def test_list_mailboxes(self, client: JmapClient, transport: MagicMock,
                                  mailboxes_payload: dict[str, Any]) -> None:
        transport.send_json.return_value = jmap_body(["Mailbox/get", mailboxes_payload, "m0"])
        mailboxes = await client.list_mailboxes()
        assert [m.name for m in mailboxes][:2] == ["Inbox", "Drafts"]
        assert mailboxes[0].unread_emails == 2
        assert sent_calls(transport)[0][0] == "Mailbox/get"

    @pytest.mark.parametrize("query", ["INBOX", "inbox", "Inbox"])
    async def test_find_mailbox_case_insensitive(self, client: JmapClient, transport: MagicMock,
                                                 mailboxes_payload: dict[str, Any], query: str) -> None:
        transport.send_json.return_value = jmap_body(["Mailbox/get", mailboxes_payload, "m0"])
        assert (await client.find_mailbox(query)).role == "inbox"

    async def test_find_mailbox_by_role_after_name(self, client: JmapClient, transport: MagicMock,
                                                   mailboxes_payload: dict[str, Any]) -> None:
        transport.send_json.return_value = jmap_body(["Mailbox/get", mailboxes_payload, "m0"])
        assert (await client.find_mailbox("junk")).name == "Spam"

    async def test_find_mailbox_not_found(self, client: JmapClient, transport: MagicMock,
                                          mailboxes_payload: dict[str, Any]) -> None:
        transport.send_json.return_value = jmap_body(["Mailbox/get", mailboxes_payload, "m0"])
        with pytest.raises(MailboxNotFound):
            await client.find_mailbox("doesnotexist")

    async def test_find_mailbox_no_partial_match(self, client: JmapClient, transport: MagicMock,
                                                 mailboxes_payload: dict[str, Any]) -> None:
        transport.send_json.return_value = jmap_body(["Mailbox/get", mailboxes_payload, "m0"])
        with pytest.raises(MailboxNotFound):
            await client.find_mailbox("Rece")


# ── Emails ─────────────────────────────────────────────────────────────────────


class TestEmails:
    async def test_list_emails_uses_back_reference(self, client: JmapClient, transport: MagicMock,
                                                   budget_email: dict[str, Any]) -> None:
        transport.send_json.return_value = jmap_body(
            ["Email/query", {"ids": ["E1"]}, "q0"],
            ["Email/get", {"list": [budget_email], "notFound": []}, "g0"],
        )
        emails = await client.list_emails("mb-inbox", limit=10)
        assert emails[0].subject == "Budget review"
        query, get = sent_calls(transport)
        assert query[1]["filter"] == {"inMailbox": "mb-inbox"}
        assert query[1]["sort"] == [{"property": "receivedAt", "isAscending": False}]
        assert query[1]["limit"] == 10
        assert get[1]["#ids"] == {"resultOf": "q0", "name": "Email/query", "path": "/ids"}

    async def test_search_sends_filter(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(
            ["Email/query", {"ids": []}, "q0"],
            ["Email/get", {"list": []}, "g0"],
        )
        await client.search_emails(SearchFilter(from_="alice", unread=True), "mb-inbox", 5)
        condition = sent_calls(transport)[0][1]["filter"]
        assert condition == {"inMailbox": "mb-inbox", "from": "alice", "notKeyword": "$seen"}

    async def test_get_email_full(self, client: JmapClient, transport: MagicMock,
                                  budget_email: dict[str, Any]) -> None:
        transport.send_json.return_value = jmap_body(["Email/get", {"list": [budget_email]}, "g0"])
        email = await client.get_email("E1")
        assert email.text_content() == "Please review the budget by Friday."
        assert email.message_id == ["m1@x.com"]
        args = sent_calls(transport)[0][1]
        assert args["fetchTextBodyValues"] is True
        assert "bodyValues" in args["properties"]

    async def test_get_email_not_found(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(
            ["Email/get", {"list": [], "notFound": ["nope"]}, "g0"]
        )
        with pytest.raises(EmailNotFound):
            await client.get_email("nope")

    async def test_malformed_address_is_response_parse(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(
            ["Email/get", {"list": [{"id": "E1", "from": ["a@x.com"]}]}, "g0"]
        )
        with pytest.raises(ResponseParse):
            await client.get_email("E1")

    async def test_get_thread_chains_three_calls(self, client: JmapClient, transport: MagicMock,
                                                 budget_email: dict[str, Any]) -> None:
        older = {**budget_email, "id": "E0", "receivedAt": "2026-02-20T09:00:00Z"}
        transport.send_json.return_value = jmap_body(
            ["Email/get", {"list": [{"id": "E1", "threadId": "T1"}]}, "g0"],
            ["Thread/get", {"list": [{"id": "T1", "emailIds": ["E0", "E1"]}]}, "t0"],
            ["Email/get", {"list": [budget_email, older]}, "e0"],
        )
        thread = await client.get_thread("E1")
        assert [e.id for e in thread] == ["E0", "E1"]
        _, thread_call, emails_call = sent_calls(transport)
        assert thread_call[1]["#ids"]["path"] == "/list/*/threadId"
        assert emails_call[1]["#ids"] == {"resultOf": "t0", "name": "Thread/get", "path": "/list/*/emailIds"}

    async def test_move_email(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["Email/set", {"updated": {"E1": None}}, "m0"])
        await client.move_email("E1", "mb-receipts")
        assert sent_calls(transport)[0][1]["update"] == {"E1": {"mailboxIds": {"mb-receipts": True}}}

    async def test_move_email_not_updated(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(
            ["Email/set", {"notUpdated": {"E1": {"type": "forbidden", "description": "no"}}}, "m0"]
        )
        with pytest.raises(MethodError) as exc_info:
            await client.move_email("E1", "mb-receipts")
        assert exc_info.value.error_type == "forbidden"

    async def test_malformed_not_updated_entry(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(
            ["Email/set", {"notUpdated": {"E1": "forbidden"}}, "m0"]
        )
        with pytest.raises(MethodError) as exc_info:
            await client.move_email("E1", "mb-receipts")
        assert exc_info.value.error_type == "unknown"

    async def test_mark_read_patches_seen(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["Email/set", {"updated": {"E1": None}}, "k0"])
        await client.mark_read("E1", read=False)
        assert sent_calls(transport)[0][1]["update"] == {"E1": {"keywords/$seen": None}}

    async def test_set_keywords_replaces_set(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["Email/set", {"updated": {"E1": None}}, "k0"])
        await client.set_keywords("E1", {"$seen": True, "$flagged": True})
        assert sent_calls(transport)[0][1]["update"] == {"E1": {"keywords": {"$seen": True, "$flagged": True}}}

    async def test_mark_spam_moves_to_junk(self, client: JmapClient, transport: MagicMock,
                                           mailboxes_payload: dict[str, Any]) -> None:
        transport.send_json.side_effect = [
            jmap_body(["Mailbox/get", mailboxes_payload, "m0"]),
            jmap_body(["Email/set", {"updated": {"E1": None}}, "m0"]),
        ]
        junk = await client.mark_spam("E1")
        assert junk.id == "mb-junk"
        patch = sent_calls(transport)[0][1]["update"]["E1"]
        assert patch["mailboxIds"] == {"mb-junk": True}
        assert patch["keywords/$junk"] is True

    async def test_download_blob(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send.return_value = (200, b"PDFDATA")
        data = await client.download_blob("B1", "report.pdf", "application/pdf")
        assert data == b"PDFDATA"
        url = transport.send.call_args.args[0]
        assert url == "https://api.example.com/jmap/download/u1/B1/report.pdf?type=application%2Fpdf"

    async def test_download_blob_not_found(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send.return_value = (404, b"")
        with pytest.raises(BlobNotFound):
            await client.download_blob("B1")


# ── Identities ─────────────────────────────────────────────────────────────────


class TestIdentities:
    async def test_default_identity(self, client: JmapClient, transport: MagicMock,
                                    identity_payload: dict[str, Any]) -> None:
        transport.send_json.return_value = jmap_body(["Identity/get", identity_payload, "i0"])
        identity = await client.default_identity()
        assert identity.email == "me@example.com"

    async def test_no_identity(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["Identity/get", {"list": []}, "i0"])
        with pytest.raises(IdentityNotFound):
            await client.default_identity()


# ── Masked email ───────────────────────────────────────────────────────────────


class TestMaskedEmail:
    async def test_list(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["MaskedEmail/get", {"list": [
            {"id": "me1", "email": "abc@fastmail.com", "state": "enabled", "forDomain": "shop.com"},
            {"id": "me2", "email": "xyz@fastmail.com", "state": "weird"},
        ]}, "me0"])
        items = await client.list_masked_emails()
        assert items[0].state is MaskedEmailState.ENABLED
        assert items[0].for_domain == "shop.com"
        assert items[1].state is None
        assert sent_calls(transport)[0][1]["ids"] is None

    async def test_create(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["MaskedEmail/set", {
            "created": {"new": {"id": "me9", "email": "shop.abc@fastmail.com"}},
        }, "me0"])
        created = await client.create_masked_email("https://shop.com", "shopping")
        assert created.email == "shop.abc@fastmail.com"
        assert created.state is MaskedEmailState.ENABLED
        create = sent_calls(transport)[0][1]["create"]["new"]
        assert create == {"state": "enabled", "forDomain": "https://shop.com", "description": "shopping"}

    async def test_create_malformed_not_created(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["MaskedEmail/set", {"notCreated": {"new": "nope"}}, "me0"])
        with pytest.raises(MethodError) as exc_info:
            await client.create_masked_email("https://shop.com")
        assert exc_info.value.method == "MaskedEmail/set"

    async def test_delete_sets_state(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["MaskedEmail/set", {"updated": {"me1": None}}, "me0"])
        await client.delete_masked_email("me1")
        assert sent_calls(transport)[0][1]["update"] == {"me1": {"state": "deleted"}}

    async def test_uses_masked_email_capability(self, client: JmapClient, transport: MagicMock) -> None:
        transport.send_json.return_value = jmap_body(["MaskedEmail/get", {"list": []}, "me0"])
        await client.list_masked_emails()
        body = transport.send_json.call_args.args[2]
        assert "https://www.fastmail.com/dev/maskedemail" in body["using"]


async def test_close_closes_transport(client: JmapClient, transport: MagicMock) -> None:
    await client.close()
    transport.aclose.assert_awaited_once()
