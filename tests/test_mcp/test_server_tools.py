"""Tests for the MCP tool layer — the JMAP client is mocked."""

import io
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.server.fastmcp import Image
from mcp.server.fastmcp.exceptions import ToolError
from PIL import Image as PILImage

from fastmail_cli.carddav.types import Contact, ContactEmail
from fastmail_cli.config import Config
from fastmail_cli.errors import ConfirmationMismatch, InvalidMode, MailboxNotFound, MethodError
from fastmail_cli.jmap.client import JmapClient
from fastmail_cli.jmap.compose import ComposeResult, DraftEmail
from fastmail_cli.jmap.types import Email, EmailAddress, Identity, Mailbox, MaskedEmail, MaskedEmailState
from fastmail_cli.mcp.server import TOOL_NAMES, FastmailTools, _reporting_errors, build_server


# ── Fixtures ───────────────────────────────────────────────────────────────────


@pytest.fixture
def jmap() -> MagicMock:
    """A JmapClient double; its async methods are AsyncMocks."""
    return MagicMock(spec=JmapClient)


@pytest.fixture
def tools(jmap: MagicMock) -> FastmailTools:
    return FastmailTools(jmap, Config(username="me@fastmail.com", app_password="pw"))


@pytest.fixture
def email(budget_email: dict[str, Any]) -> Email:
    return Email.from_dict(budget_email)


@pytest.fixture
def identity() -> Identity:
    return Identity(id="id-1", email="me@example.com", name="Me")


@pytest.fixture
def draft(identity: Identity) -> DraftEmail:
    return DraftEmail(
        from_=identity.address,
        to=[EmailAddress("bob@x.com")],
        subject="Hello",
        body="Hi Bob",
    )


JUNK = Mailbox(id="mb-junk", name="Spam", role="junk")


def _png() -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", (4, 4), "red").save(buffer, format="PNG")
    return buffer.getvalue()


# ── Reading ────────────────────────────────────────────────────────────────────


class TestReadTools:
    async def test_list_mailboxes_role_first(self, tools: FastmailTools, jmap: MagicMock) -> None:
        jmap.list_mailboxes.return_value = [
            Mailbox(id="m2", name="Archive-2024"),
            Mailbox(id="m1", name="Inbox", role="inbox", unread_emails=3, total_emails=9),
        ]
        text = await tools.list_mailboxes()
        lines = text.splitlines()
        assert lines[0].startswith("Inbox [inbox] (id: m1)")
        assert "3 unread / 9 total" in lines[0]
        assert lines[1].startswith("Archive-2024")

    async def test_list_emails_clamps_limit(self, tools: FastmailTools, jmap: MagicMock, email: Email) -> None:
        jmap.find_mailbox.return_value = Mailbox(id="mb-inbox", name="Inbox", role="inbox")
        jmap.list_emails.return_value = [email]
        text = await tools.list_emails("inbox", limit=500)
        jmap.list_emails.assert_awaited_once_with("mb-inbox", 100)
        assert "Subject: Budget review" in text

    async def test_get_email_marks_selected_in_thread(
        self, tools: FastmailTools, jmap: MagicMock, email: Email, budget_email: dict[str, Any]
    ) -> None:
        earlier = Email.from_dict({**budget_email, "id": "E0", "subject": "Budget"})
        jmap.get_thread.return_value = [earlier, email]
        text = await tools.get_email("E1")
        assert "=== Message 1 of 2 ===" in text
        assert "=== Message 2 of 2 ===\n>>> SELECTED EMAIL <<<" in text

    async def test_get_email_single(self, tools: FastmailTools, jmap: MagicMock, email: Email) -> None:
        jmap.get_thread.return_value = [email]
        text = await tools.get_email("E1")
        assert text.startswith("ID: E1")
        assert "Please review the budget by Friday." in text

    async def test_search_resolves_mailbox(self, tools: FastmailTools, jmap: MagicMock) -> None:
        jmap.find_mailbox.return_value = Mailbox(id="mb-receipts", name="Receipts")
        jmap.search_emails.return_value = []
        text = await tools.search_emails(
            query="invoice", mailbox="Receipts", unread=True,
            cc="carol", bcc="dave", min_size="500K", max_size="1.5M",
        )
        assert text == "No emails matched."
        search, mailbox_id, limit = jmap.search_emails.await_args.args
        assert search.text == "invoice"
        assert search.unread is True
        assert (search.cc, search.bcc) == ("carol", "dave")
        assert (search.min_size, search.max_size) == (512000, 1572864)
        assert mailbox_id == "mb-receipts"
        assert limit == 25

    async def test_search_rejects_bad_size(self, tools: FastmailTools, jmap: MagicMock) -> None:
        with pytest.raises(ToolError, match="min_size"):
            await tools.search_emails(min_size="huge")
        jmap.search_emails.assert_not_awaited()

    async def test_get_email_falls_back_when_thread_lookup_fails(
        self, tools: FastmailTools, jmap: MagicMock, email: Email
    ) -> None:
        jmap.get_thread.side_effect = MethodError("serverFail", "Thread/get failed", "Thread/get")
        jmap.get_email.return_value = email
        text = await tools.get_email("E1")
        assert text.startswith("ID: E1")
        jmap.get_email.assert_awaited_once_with("E1")

    async def test_list_masked_enabled_first(self, tools: FastmailTools, jmap: MagicMock) -> None:
        jmap.list_masked_emails.return_value = [
            MaskedEmail(id="1", email="a@fm.com", state=MaskedEmailState.DISABLED),
            MaskedEmail(id="2", email="b@fm.com", state=MaskedEmailState.ENABLED),
        ]
        lines = (await tools.list_masked_emails()).splitlines()
        assert lines[0] == "[ENABLED] b@fm.com (id: 2)"
        assert lines[1] == "[DISABLED] a@fm.com (id: 1)"

    async def test_search_contacts(self, tools: FastmailTools) -> None:
        contacts = MagicMock()
        contacts.search_contacts = AsyncMock(
            return_value=[Contact(id="c1", name="Alice", emails=[ContactEmail("a@x.com", "work")])]
        )

        @asynccontextmanager
        async def fake_client(config: Config):
            yield contacts

        with patch("fastmail_cli.mcp.server.carddav_client", fake_client):
            text = await tools.search_contacts("ali")
        assert text == "Alice\n  Email: a@x.com (work)"


class TestAttachments:
    async def test_image_is_returned_as_image(
        self, tools: FastmailTools, jmap: MagicMock, budget_email: dict[str, Any]
    ) -> None:
        png = _png()
        jmap.get_email.return_value = Email.from_dict({
            **budget_email,
            "attachments": [{"blobId": "B1", "name": "chart.png", "type": "image/png", "size": len(png)}],
        })
        jmap.download_blob.return_value = png

        result = await tools.get_attachment("E1", "B1")
        assert isinstance(result, Image)
        assert result.data == png
        jmap.download_blob.assert_awaited_once_with("B1", "chart.png", "image/png")

    async def test_text_attachment(self, tools: FastmailTools, jmap: MagicMock, budget_email: dict[str, Any]) -> None:
        jmap.get_email.return_value = Email.from_dict({
            **budget_email,
            "attachments": [{"blobId": "B2", "name": "notes.txt", "type": "text/plain", "size": 5}],
        })
        jmap.download_blob.return_value = b"hello"
        assert await tools.get_attachment("E1", "B2") == "Attachment: notes.txt (text/plain)\n\nhello"

    async def test_unknown_blob(self, tools: FastmailTools, jmap: MagicMock, email: Email) -> None:
        jmap.get_email.return_value = email
        with pytest.raises(ToolError, match="not found"):
            await tools.get_attachment("E1", "nope")
        jmap.download_blob.assert_not_awaited()

    async def test_list_attachments_empty(self, tools: FastmailTools, jmap: MagicMock, email: Email) -> None:
        jmap.get_email.return_value = email
        assert await tools.list_attachments("E1") == "This email has no attachments."


# ── Gated tools ────────────────────────────────────────────────────────────────


class TestMarkAsSpam:
    async def test_preview_does_not_mutate(self, tools: FastmailTools, jmap: MagicMock, email: Email) -> None:
        jmap.get_email.return_value = email
        jmap.find_mailbox.return_value = JUNK

        text = await tools.mark_as_spam("E1", "preview")

        assert "SPAM PREVIEW" in text
        assert "Move the email to Spam" in text
        assert "Confirmation token: " in text
        jmap.mark_spam.assert_not_awaited()
        jmap.move_email.assert_not_awaited()

    async def test_confirm_with_preview_token(self, tools: FastmailTools, jmap: MagicMock, email: Email) -> None:
        jmap.get_email.return_value = email
        jmap.find_mailbox.return_value = JUNK
        jmap.mark_spam.return_value = JUNK

        preview = await tools.mark_as_spam("E1", "preview")
        token = preview.split("Confirmation token: ", 1)[1].split("\n", 1)[0]
        text = await tools.mark_as_spam("E1", "confirm", token=token)

        assert text == "Marked email E1 as spam."
        jmap.mark_spam.assert_awaited_once_with("E1")

    async def test_invalid_mode(self, tools: FastmailTools, jmap: MagicMock, email: Email) -> None:
        jmap.get_email.return_value = email
        jmap.find_mailbox.return_value = JUNK
        with pytest.raises(InvalidMode):
            await tools.mark_as_spam("E1", "yes please")
        jmap.mark_spam.assert_not_awaited()


class TestSendEmail:
    async def test_preview_then_confirm(
        self, tools: FastmailTools, jmap: MagicMock, identity: Identity, draft: DraftEmail
    ) -> None:
        jmap.prepare_send.return_value = (identity, draft)
        jmap.submit.return_value = ComposeResult(email_id="M1", submission_id="S1")

        preview = await tools.send_email("preview", "bob@x.com", "Hello", "Hi Bob")
        assert preview.startswith("EMAIL PREVIEW - Review before sending:")
        assert "To: bob@x.com" in preview
        jmap.submit.assert_not_awaited()

        text = await tools.send_email("confirm", "bob@x.com", "Hello", "Hi Bob")
        assert text == "Email sent successfully (email id: M1)."
        jmap.submit.assert_awaited_once_with(identity, draft)

        to = jmap.prepare_send.await_args.args[0]
        assert to == [EmailAddress("bob@x.com")]

    async def test_changed_parameters_rejected(
        self, tools: FastmailTools, jmap: MagicMock, identity: Identity, draft: DraftEmail
    ) -> None:
        jmap.prepare_send.return_value = (identity, draft)
        preview = await tools.send_email("preview", "bob@x.com", "Hello", "Hi Bob")
        token = preview.split("Confirmation token: ", 1)[1].split("\n", 1)[0]

        jmap.prepare_send.return_value = (identity, DraftEmail(
            from_=identity.address, to=[EmailAddress("eve@x.com")], subject="Hello", body="Hi Bob",
        ))
        with pytest.raises(ConfirmationMismatch):
            await tools.send_email("confirm", "eve@x.com", "Hello", "Hi Bob", token=token)
        jmap.submit.assert_not_awaited()

    async def test_reply_passes_reply_all(
        self, tools: FastmailTools, jmap: MagicMock, identity: Identity, draft: DraftEmail
    ) -> None:
        jmap.prepare_reply.return_value = (identity, draft)
        await tools.reply_to_email("preview", "E1", "Thanks", reply_all=True)
        assert jmap.prepare_reply.await_args.kwargs["reply_all"] is True
        jmap.submit.assert_not_awaited()


class TestMaskedEmailState:
    async def test_disable_preview_and_confirm(self, tools: FastmailTools, jmap: MagicMock) -> None:
        masked = MaskedEmail(id="me-1", email="x@fm.com", state=MaskedEmailState.ENABLED)
        jmap.get_masked_email.return_value = masked

        preview = await tools.disable_masked_email("preview", "x@fm.com")
        assert "set the state to disabled" in preview
        jmap.set_masked_email_state.assert_not_awaited()

        text = await tools.disable_masked_email("confirm", "x@fm.com")
        assert text == "Masked email x@fm.com is now disabled."
        jmap.set_masked_email_state.assert_awaited_once_with("me-1", MaskedEmailState.DISABLED)

    async def test_delete_uses_its_own_token(self, tools: FastmailTools, jmap: MagicMock) -> None:
        jmap.get_masked_email.return_value = MaskedEmail(id="me-1", email="x@fm.com")
        disable = await tools.disable_masked_email("preview", "me-1")
        delete = await tools.delete_masked_email("preview", "me-1")
        token = disable.split("Confirmation token: ", 1)[1].split("\n", 1)[0]
        assert token not in delete
        with pytest.raises(ConfirmationMismatch):
            await tools.delete_masked_email("confirm", "me-1", token=token)


# ── Server wiring ──────────────────────────────────────────────────────────────


class TestServer:
    async def test_errors_become_tool_errors(self, tools: FastmailTools, jmap: MagicMock) -> None:
        jmap.find_mailbox.side_effect = MailboxNotFound("Nowhere")
        wrapped = _reporting_errors(tools.move_email)
        with pytest.raises(ToolError, match="^mailbox_not_found: Mailbox not found: Nowhere$"):
            await wrapped("E1", "Nowhere")
        assert wrapped.__name__ == "move_email"

    async def test_registers_every_tool(self, tools: FastmailTools) -> None:
        server = build_server(tools)
        registered = {tool.name for tool in await server.list_tools()}
        assert registered == set(TOOL_NAMES)
        assert len(TOOL_NAMES) == 18
