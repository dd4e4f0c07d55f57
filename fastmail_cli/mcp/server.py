"""MCP stdio server exposing Fastmail operations as tools.

The JMAP session is established once at startup.  Every tool that sends
mail, marks spam or changes a masked email takes an ``action`` argument and
goes through the confirmation gate: ``preview`` first, then ``confirm`` with
the same parameters.
"""

import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.server.fastmcp import FastMCP, Image
from mcp.server.fastmcp.exceptions import ToolError

from fastmail_cli.carddav.client import carddav_client
from fastmail_cli.config import Config
from fastmail_cli.errors import FastmailError, MethodError
from fastmail_cli.gate import ActionKind, PendingAction, run_gated
from fastmail_cli.jmap.client import JmapClient, jmap_client
from fastmail_cli.jmap.compose import ComposeResult, DraftEmail
from fastmail_cli.jmap.search import SearchFilter
from fastmail_cli.jmap.types import Identity, MaskedEmail, MaskedEmailState
from fastmail_cli.mcp.format import (
    format_attachment_line,
    format_contact,
    format_draft_preview,
    format_email_full,
    format_email_summary,
    format_mailbox,
    format_masked_email,
    format_thread,
)
from fastmail_cli.util.addresses import parse_addresses
from fastmail_cli.util.attachments import (
    MCP_IMAGE_MAX_BYTES,
    extract_text,
    infer_image_mime,
    resize_image,
)
from fastmail_cli.util.sizes import parse_size

logger = logging.getLogger(__name__)

SERVER_NAME = "fastmail"
DEFAULT_LIMIT = 25
MAX_LIMIT = 100

INSTRUCTIONS = """Fastmail email, masked email and contacts tools.

Safety rules:
- Tools that send email, mark spam or change masked emails require an
  `action` argument. Always call them with action "preview" first and show
  the preview to the user.
- Only call again with action "confirm" (same parameters, plus the
  confirmation token from the preview) after the user explicitly approves.
- Never confirm an action the user has not seen previewed.
- Moving emails, marking read/unread and creating masked emails are not gated.
"""


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LIMIT))


def _size_arg(name: str, value: str | None) -> int | None:
    if value is None:
        return None
    size = parse_size(value)
    if size is None:
        raise ToolError(f"Invalid {name} {value!r}: use bytes or a K/M/G suffix, e.g. 500K")
    return size


def _compose_done(result: ComposeResult) -> str:
    return f"Email sent successfully (email id: {result.email_id})."


class FastmailTools:
    """Tool implementations bound to one JMAP client."""

    def __init__(self, client: JmapClient, config: Config) -> None:
        self._client = client
        self._config = config

    # ── Reading ────────────────────────────────────────────────────────────────

    async def list_mailboxes(self) -> str:
        """List all mailboxes with unread and total counts."""
        mailboxes = await self._client.list_mailboxes()
        ordered = sorted(mailboxes, key=lambda m: (m.role is None, m.name.lower()))
        return "\n".join(format_mailbox(m) for m in ordered) or "No mailboxes found."

    async def list_emails(self, mailbox: str = "INBOX", limit: int = DEFAULT_LIMIT) -> str:
        """List the most recent emails in a mailbox (name or role), newest first."""
        box = await self._client.find_mailbox(mailbox)
        emails = await self._client.list_emails(box.id, _clamp_limit(limit))
        if not emails:
            return f"No emails in {box.name}."
        return "\n\n".join(format_email_summary(e) for e in emails)

    async def get_email(self, email_id: str) -> str:
        """Get an email with its full thread, oldest first; the requested email is marked."""
        try:
            thread = await self._client.get_thread(email_id)
        except MethodError as exc:
            logger.warning("Thread lookup for %s failed, showing the email alone: %s", email_id, exc)
            return format_email_full(await self._client.get_email(email_id))
        if len(thread) <= 1:
            email = thread[0] if thread else await self._client.get_email(email_id)
            return format_email_full(email)
        return format_thread(thread, email_id)

    async def search_emails(
        self,
        query: str | None = None,
        sender: str | None = None,
        to: str | None = None,
        cc: str | None = None,
        bcc: str | None = None,
        subject: str | None = None,
        body: str | None = None,
        mailbox: str | None = None,
        before: str | None = None,
        after: str | None = None,
        unread: bool = False,
        flagged: bool = False,
        has_attachment: bool = False,
        min_size: str | None = None,
        max_size: str | None = None,
        limit: int = DEFAULT_LIMIT,
    ) -> str:
        """Search emails. Dates are YYYY-MM-DD or full ISO timestamps; sizes like 500K or 1.5M."""
        mailbox_id = (await self._client.find_mailbox(mailbox)).id if mailbox else None
        search = SearchFilter(
            text=query, from_=sender, to=to, cc=cc, bcc=bcc, subject=subject, body=body,
            min_size=_size_arg("min_size", min_size), max_size=_size_arg("max_size", max_size),
            before=before, after=after, unread=unread, flagged=flagged,
            has_attachment=has_attachment,
        )
        emails = await self._client.search_emails(search, mailbox_id, _clamp_limit(limit))
        if not emails:
            return "No emails matched."
        return "\n\n".join(format_email_summary(e) for e in emails)

    async def list_attachments(self, email_id: str) -> str:
        """List the attachments of an email with their blob ids."""
        email = await self._client.get_email(email_id)
        if not email.attachments:
            return "This email has no attachments."
        return "\n".join(
            format_attachment_line(i, a.name, a.type, a.size, a.blob_id)
            for i, a in enumerate(email.attachments, start=1)
        )

    async def get_attachment(self, email_id: str, blob_id: str):
        """Fetch an attachment: images are returned as images, documents as text."""
        email = await self._client.get_email(email_id)
        part = next((a for a in email.attachments if a.blob_id == blob_id), None)
        if part is None:
            raise ToolError(f"Attachment {blob_id} not found on email {email_id}")

        data = await self._client.download_blob(blob_id, part.name or "attachment", part.type)
        image_mime = infer_image_mime(part.type, part.name)
        if image_mime:
            data, image_mime = resize_image(data, image_mime, MCP_IMAGE_MAX_BYTES)
            return Image(data=data, format=image_mime.split("/", 1)[1])

        text = extract_text(data, part.type, part.name)
        if text is not None:
            return f"Attachment: {part.name or '(unnamed)'} ({part.type})\n\n{text}"
        return (
            f"Attachment {part.name or '(unnamed)'} ({part.type}, {len(data)} bytes) "
            "is binary and cannot be displayed."
        )

    async def list_masked_emails(self) -> str:
        """List masked email addresses, enabled ones first."""
        masked = await self._client.list_masked_emails()
        ordered = sorted(
            masked, key=lambda m: (m.state is not MaskedEmailState.ENABLED, m.email.lower())
        )
        return "\n".join(format_masked_email(m) for m in ordered) or "No masked emails."

    async def search_contacts(self, query: str) -> str:
        """Search contacts by name, email address or organization."""
        async with carddav_client(self._config) as contacts:
            found = await contacts.search_contacts(query)
        if not found:
            return f"No contacts matching {query!r}."
        return "\n\n".join(format_contact(c) for c in found)

    # ── Ungated mutations ──────────────────────────────────────────────────────

    async def move_email(self, email_id: str, mailbox: str) -> str:
        """Move an email to another mailbox (name or role)."""
        box = await self._client.find_mailbox(mailbox)
        await self._client.move_email(email_id, box.id)
        return f"Moved email {email_id} to {box.name}."

    async def mark_as_read(self, email_id: str, read: bool = True) -> str:
        """Mark an email as read, or unread with read=false."""
        await self._client.mark_read(email_id, read)
        return f"Marked email {email_id} as {'read' if read else 'unread'}."

    async def create_masked_email(
        self,
        for_domain: str | None = None,
        description: str | None = None,
        email_prefix: str | None = None,
    ) -> str:
        """Create a new enabled masked email address."""
        masked = await self._client.create_masked_email(for_domain, description, email_prefix)
        return f"Created masked email {masked.email} (id: {masked.id})."

    # ── Gated mutations ────────────────────────────────────────────────────────

    async def mark_as_spam(self, email_id: str, action: str, token: str | None = None) -> str:
        """Move an email to Junk and train the spam filter. Requires preview, then confirm."""
        email = await self._client.get_email(email_id)
        junk = await self._client.find_mailbox("junk")

        def render(pending: PendingAction) -> str:
            return (
                "SPAM PREVIEW - Review before marking as spam:\n\n"
                f"{format_email_summary(email)}\n\n"
                "This will:\n"
                f"- Move the email to {junk.name}\n"
                "- Train the spam filter to treat similar messages as spam"
            )

        async def execute(pending: PendingAction) -> Any:
            return await self._client.mark_spam(email_id)

        outcome = await run_gated(
            ActionKind.MARK_SPAM,
            action,
            {"email_id": email_id, "junk_mailbox_id": junk.id},
            render=render,
            execute=execute,
            describe_result=lambda _: f"Marked email {email_id} as spam.",
            token=token,
        )
        return outcome.text

    async def send_email(
        self,
        action: str,
        to: str,
        subject: str,
        body: str,
        cc: str | None = None,
        bcc: str | None = None,
        token: str | None = None,
    ) -> str:
        """Send a new email. Addresses are comma-separated. Requires preview, then confirm."""
        identity, draft = await self._client.prepare_send(
            parse_addresses(to), subject, body,
            cc=parse_addresses(cc), bcc=parse_addresses(bcc),
        )
        return await self._gated_compose(ActionKind.SEND, action, identity, draft, token)

    async def reply_to_email(
        self,
        action: str,
        email_id: str,
        body: str,
        reply_all: bool = False,
        cc: str | None = None,
        bcc: str | None = None,
        token: str | None = None,
    ) -> str:
        """Reply to an email, optionally to all recipients. Requires preview, then confirm."""
        identity, draft = await self._client.prepare_reply(
            email_id, body, reply_all=reply_all,
            cc=parse_addresses(cc), bcc=parse_addresses(bcc),
        )
        return await self._gated_compose(ActionKind.REPLY, action, identity, draft, token)

    async def forward_email(
        self,
        action: str,
        email_id: str,
        to: str,
        body: str = "",
        cc: str | None = None,
        bcc: str | None = None,
        token: str | None = None,
    ) -> str:
        """Forward an email with an optional note. Requires preview, then confirm."""
        identity, draft = await self._client.prepare_forward(
            email_id, parse_addresses(to), body,
            cc=parse_addresses(cc), bcc=parse_addresses(bcc),
        )
        return await self._gated_compose(ActionKind.FORWARD, action, identity, draft, token)

    async def enable_masked_email(self, action: str, masked_id: str, token: str | None = None) -> str:
        """Enable a masked email so it delivers mail again. Requires preview, then confirm."""
        return await self._gated_masked_state(
            action, masked_id, MaskedEmailState.ENABLED, token,
            "start delivering mail sent to it",
        )

    async def disable_masked_email(self, action: str, masked_id: str, token: str | None = None) -> str:
        """Disable a masked email; mail to it goes to trash. Requires preview, then confirm."""
        return await self._gated_masked_state(
            action, masked_id, MaskedEmailState.DISABLED, token,
            "send all mail addressed to it straight to trash",
        )

    async def delete_masked_email(self, action: str, masked_id: str, token: str | None = None) -> str:
        """Delete a masked email permanently. Requires preview, then confirm."""
        return await self._gated_masked_state(
            action, masked_id, MaskedEmailState.DELETED, token,
            "permanently delete the address; mail sent to it will bounce",
        )

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def _gated_compose(
        self,
        kind: ActionKind,
        action: str,
        identity: Identity,
        draft: DraftEmail,
        token: str | None,
    ) -> str:
        async def execute(pending: PendingAction) -> ComposeResult:
            return await self._client.submit(identity, draft)

        outcome = await run_gated(
            kind,
            action,
            {"identity_id": identity.id, **draft.to_payload()},
            render=lambda pending: format_draft_preview(draft),
            execute=execute,
            describe_result=_compose_done,
            token=token,
        )
        return outcome.text

    async def _gated_masked_state(
        self,
        action: str,
        masked_id: str,
        state: MaskedEmailState,
        token: str | None,
        effect: str,
    ) -> str:
        masked: MaskedEmail = await self._client.get_masked_email(masked_id)
        kind = (
            ActionKind.DELETE_MASKED_EMAIL
            if state is MaskedEmailState.DELETED
            else ActionKind.SET_MASKED_EMAIL_STATE
        )

        def render(pending: PendingAction) -> str:
            return (
                "MASKED EMAIL PREVIEW - Review before changing:\n\n"
                f"{format_masked_email(masked)}\n\n"
                f"This will set the state to {state.value} and {effect}."
            )

        async def execute(pending: PendingAction) -> None:
            await self._client.set_masked_email_state(masked.id, state)

        outcome = await run_gated(
            kind,
            action,
            {"masked_id": masked.id, "state": state.value},
            render=render,
            execute=execute,
            describe_result=lambda _: f"Masked email {masked.email} is now {state.value}.",
            token=token,
        )
        return outcome.text


TOOL_NAMES = [
    "list_mailboxes",
    "list_emails",
    "get_email",
    "search_emails",
    "move_email",
    "mark_as_read",
    "mark_as_spam",
    "send_email",
    "reply_to_email",
    "forward_email",
    "list_attachments",
    "get_attachment",
    "list_masked_emails",
    "create_masked_email",
    "enable_masked_email",
    "disable_masked_email",
    "delete_masked_email",
    "search_contacts",
]


def _reporting_errors(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Report client errors to the MCP caller as ``kind: message``."""

    @functools.wraps(method)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await method(*args, **kwargs)
        except FastmailError as exc:
            logger.warning("Tool %s failed: %s", method.__name__, exc)
            raise ToolError(f"{exc.kind}: {exc.message}") from exc

    return wrapper


def build_server(tools: FastmailTools) -> FastMCP:
    server = FastMCP(SERVER_NAME, instructions=INSTRUCTIONS)
    for name in TOOL_NAMES:
        server.add_tool(_reporting_errors(getattr(tools, name)), name=name)
    return server


async def run_server(config: Config) -> None:
    """Connect to Fastmail and serve tools over stdio until the client disconnects."""
    async with jmap_client(config.get_token()) as client:
        server = build_server(FastmailTools(client, config))
        logger.info("MCP server ready (%d tools)", len(TOOL_NAMES))
        await server.run_stdio_async()
