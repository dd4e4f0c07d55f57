"""CLI command implementations — each command opens a JMAP (or CardDAV)
client, runs one operation and prints a JSON envelope."""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import click
from rich import box
from rich.table import Table

from fastmail_cli.carddav.client import carddav_client
from fastmail_cli.cli import output
from fastmail_cli.cli.output import console
from fastmail_cli.config import Config
from fastmail_cli.errors import FastmailError
from fastmail_cli.gate import ActionKind, Mode, PendingAction, run_gated
from fastmail_cli.jmap.client import JmapClient, jmap_client
from fastmail_cli.jmap.compose import DraftEmail
from fastmail_cli.jmap.search import SearchFilter
from fastmail_cli.jmap.types import Email, Identity, Mailbox, MaskedEmailState
from fastmail_cli.mcp.format import format_draft_preview, format_email_summary, format_masked_email
from fastmail_cli.mcp.server import run_server
from fastmail_cli.util.addresses import parse_addresses
from fastmail_cli.util.attachments import extract_text, infer_image_mime, resize_image
from fastmail_cli.util.sizes import parse_size

logger = logging.getLogger(__name__)

_CLI_CONFIRM_HINT = "Re-run with --yes to confirm."
_COMPOSE_DRY_RUN_HINT = "Re-run without --dry-run to send."


def _run(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command coroutine, turning client errors into a failed envelope."""
    try:
        asyncio.run(coro)
    except FastmailError as exc:
        logger.debug("Command failed: %r", exc)
        output.failure(exc.to_dict())


class SizeParam(click.ParamType):
    """Byte size such as ``500K`` or ``1.5M``."""

    name = "size"

    def convert(self, value: Any, param: click.Parameter | None, ctx: click.Context | None) -> int:
        if isinstance(value, int):
            return value
        size = parse_size(str(value))
        if size is None:
            self.fail(f"{value!r} is not a valid size (examples: 2048, 500K, 1.5M)", param, ctx)
        return size


SIZE = SizeParam()


# ── Tables ─────────────────────────────────────────────────────────────────────


def _mailbox_table(mailboxes: list[Mailbox]) -> Table:
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Name", max_width=30)
    table.add_column("Role", width=10)
    table.add_column("Unread", justify="right", width=7)
    table.add_column("Total", justify="right", width=7)
    table.add_column("ID", style="dim")
    for m in mailboxes:
        table.add_row(m.name, m.role or "", str(m.unread_emails), str(m.total_emails), m.id)
    return table


def _email_table(emails: list[Email]) -> Table:
    table = Table(box=box.ROUNDED, show_header=True, header_style="bold cyan")
    table.add_column("Date", width=12)
    table.add_column("From", max_width=30)
    table.add_column("Subject", max_width=60)
    table.add_column("ID", style="dim")
    for e in emails:
        subject = e.subject or "(no subject)"
        if e.is_unread:
            subject = f"[bold]{subject}[/bold]"
        sender = str(e.sender) if e.sender else ""
        table.add_row((e.received_at or "")[:10], sender, subject, e.id)
    return table


# ── auth ───────────────────────────────────────────────────────────────────────


@click.command()
@click.argument("token")
@click.pass_obj
def auth(config: Config, token: str) -> None:
    """Verify an API token and save it to the config file."""
    _run(_auth_async(config, token))


async def _auth_async(config: Config, token: str) -> None:
    async with jmap_client(token) as client:
        username = client.session.username
    config.set_token(token)
    path = config.save()
    output.success(
        {"username": username, "config_path": str(path)},
        message=f"Authenticated as {username}",
    )


# ── list ───────────────────────────────────────────────────────────────────────


@click.group(name="list")
def list_group() -> None:
    """List mailboxes or emails."""


@list_group.command(name="mailboxes")
@click.option("--table", "as_table", is_flag=True, help="Render a table instead of JSON.")
@click.pass_obj
def list_mailboxes(config: Config, as_table: bool) -> None:
    """List all mailboxes."""
    _run(_list_mailboxes_async(config, as_table))


async def _list_mailboxes_async(config: Config, as_table: bool) -> None:
    async with jmap_client(config.get_token()) as client:
        mailboxes = await client.list_mailboxes()
    if as_table:
        console.print(_mailbox_table(mailboxes))
        return
    output.success(mailboxes)


@list_group.command(name="emails")
@click.option("--mailbox", default="INBOX", show_default=True, help="Mailbox name or role.")
@click.option("--limit", default=50, show_default=True, help="Maximum emails to list.")
@click.option("--table", "as_table", is_flag=True, help="Render a table instead of JSON.")
@click.pass_obj
def list_emails(config: Config, mailbox: str, limit: int, as_table: bool) -> None:
    """List the newest emails in a mailbox."""
    _run(_list_emails_async(config, mailbox, limit, as_table))


async def _list_emails_async(config: Config, mailbox: str, limit: int, as_table: bool) -> None:
    async with jmap_client(config.get_token()) as client:
        box_ = await client.find_mailbox(mailbox)
        emails = await client.list_emails(box_.id, limit)
    if as_table:
        console.print(_email_table(emails))
        return
    output.success(emails)


# ── get / thread / search ──────────────────────────────────────────────────────


@click.command()
@click.argument("email_id")
@click.pass_obj
def get(config: Config, email_id: str) -> None:
    """Show one email with its full body."""
    _run(_get_async(config, email_id))


async def _get_async(config: Config, email_id: str) -> None:
    async with jmap_client(config.get_token()) as client:
        email = await client.get_email(email_id)
    output.success(email)


@click.command()
@click.argument("email_id")
@click.pass_obj
def thread(config: Config, email_id: str) -> None:
    """Show every email in the thread containing EMAIL_ID, oldest first."""
    _run(_thread_async(config, email_id))


async def _thread_async(config: Config, email_id: str) -> None:
    async with jmap_client(config.get_token()) as client:
        emails = await client.get_thread(email_id)
    output.success(emails)


@click.command()
@click.option("--text", help="Full-text search across all fields.")
@click.option("--from", "from_", help="Sender contains.")
@click.option("--to", help="To recipient contains.")
@click.option("--cc", help="Cc recipient contains.")
@click.option("--bcc", help="Bcc recipient contains.")
@click.option("--subject", help="Subject contains.")
@click.option("--body", help="Body contains.")
@click.option("--mailbox", help="Restrict to a mailbox (name or role).")
@click.option("--has-attachment", is_flag=True, help="Only emails with attachments.")
@click.option("--min-size", type=SIZE, help="Minimum size, e.g. 100K.")
@click.option("--max-size", type=SIZE, help="Maximum size, e.g. 5M.")
@click.option("--before", help="Received before (YYYY-MM-DD or ISO timestamp).")
@click.option("--after", help="Received after (YYYY-MM-DD or ISO timestamp).")
@click.option("--unread", is_flag=True, help="Only unread emails.")
@click.option("--flagged", is_flag=True, help="Only flagged emails.")
@click.option("--limit", default=50, show_default=True, help="Maximum results.")
@click.option("--table", "as_table", is_flag=True, help="Render a table instead of JSON.")
@click.pass_obj
def search(config: Config, mailbox: str | None, limit: int, as_table: bool, **criteria: Any) -> None:
    """Search emails; all given criteria must match."""
    _run(_search_async(config, SearchFilter(**criteria), mailbox, limit, as_table))


async def _search_async(
    config: Config, search_filter: SearchFilter, mailbox: str | None, limit: int, as_table: bool
) -> None:
    async with jmap_client(config.get_token()) as client:
        mailbox_id = (await client.find_mailbox(mailbox)).id if mailbox else None
        emails = await client.search_emails(search_filter, mailbox_id, limit)
    if as_table:
        console.print(_email_table(emails))
        return
    output.success(emails)


# ── compose ────────────────────────────────────────────────────────────────────


async def _compose(
    client: JmapClient,
    kind: ActionKind,
    identity: Identity,
    draft: DraftEmail,
    dry_run: bool,
) -> None:
    async def execute(pending: PendingAction) -> Any:
        return await client.submit(identity, draft)

    outcome = await run_gated(
        kind,
        Mode.PREVIEW if dry_run else Mode.CONFIRM,
        {"identity_id": identity.id, **draft.to_payload()},
        render=lambda pending: format_draft_preview(draft),
        execute=execute,
        confirm_hint=_COMPOSE_DRY_RUN_HINT,
    )
    if not outcome.executed:
        output.success({"preview": outcome.text, "draft": draft}, message="Dry run: nothing was sent")
        return
    output.success(outcome.result, message="Email sent")


@click.command()
@click.option("--to", required=True, help="Recipients, comma-separated.")
@click.option("--subject", required=True)
@click.option("--body", required=True)
@click.option("--cc", help="Cc recipients, comma-separated.")
@click.option("--bcc", help="Bcc recipients, comma-separated.")
@click.option("--reply-to", "reply_to", help="Message-ID this email replies to.")
@click.option("--dry-run", is_flag=True, help="Preview without sending.")
@click.pass_obj
def send(config: Config, to: str, subject: str, body: str, cc: str | None,
         bcc: str | None, reply_to: str | None, dry_run: bool) -> None:
    """Send a new email."""
    _run(_send_async(config, to, subject, body, cc, bcc, reply_to, dry_run))


async def _send_async(config: Config, to: str, subject: str, body: str, cc: str | None,
                      bcc: str | None, reply_to: str | None, dry_run: bool) -> None:
    async with jmap_client(config.get_token()) as client:
        identity, draft = await client.prepare_send(
            parse_addresses(to), subject, body,
            cc=parse_addresses(cc), bcc=parse_addresses(bcc), in_reply_to=reply_to,
        )
        await _compose(client, ActionKind.SEND, identity, draft, dry_run)


@click.command()
@click.argument("email_id")
@click.option("--body", required=True)
@click.option("--all", "reply_all", is_flag=True, help="Reply to all recipients.")
@click.option("--cc", help="Extra Cc recipients, comma-separated.")
@click.option("--bcc", help="Bcc recipients, comma-separated.")
@click.option("--dry-run", is_flag=True, help="Preview without sending.")
@click.pass_obj
def reply(config: Config, email_id: str, body: str, reply_all: bool, cc: str | None,
          bcc: str | None, dry_run: bool) -> None:
    """Reply to an email."""
    _run(_reply_async(config, email_id, body, reply_all, cc, bcc, dry_run))


async def _reply_async(config: Config, email_id: str, body: str, reply_all: bool,
                       cc: str | None, bcc: str | None, dry_run: bool) -> None:
    async with jmap_client(config.get_token()) as client:
        identity, draft = await client.prepare_reply(
            email_id, body, reply_all=reply_all,
            cc=parse_addresses(cc), bcc=parse_addresses(bcc),
        )
        await _compose(client, ActionKind.REPLY, identity, draft, dry_run)


@click.command()
@click.argument("email_id")
@click.option("--to", required=True, help="Recipients, comma-separated.")
@click.option("--body", default="", help="Note above the forwarded message.")
@click.option("--cc", help="Cc recipients, comma-separated.")
@click.option("--bcc", help="Bcc recipients, comma-separated.")
@click.option("--dry-run", is_flag=True, help="Preview without sending.")
@click.pass_obj
def forward(config: Config, email_id: str, to: str, body: str, cc: str | None,
            bcc: str | None, dry_run: bool) -> None:
    """Forward an email."""
    _run(_forward_async(config, email_id, to, body, cc, bcc, dry_run))


async def _forward_async(config: Config, email_id: str, to: str, body: str,
                         cc: str | None, bcc: str | None, dry_run: bool) -> None:
    async with jmap_client(config.get_token()) as client:
        identity, draft = await client.prepare_forward(
            email_id, parse_addresses(to), body,
            cc=parse_addresses(cc), bcc=parse_addresses(bcc),
        )
        await _compose(client, ActionKind.FORWARD, identity, draft, dry_run)


# ── move / spam / mark-read ────────────────────────────────────────────────────


@click.command()
@click.argument("email_id")
@click.option("--to", "mailbox", required=True, help="Target mailbox name or role.")
@click.pass_obj
def move(config: Config, email_id: str, mailbox: str) -> None:
    """Move an email to another mailbox."""
    _run(_move_async(config, email_id, mailbox))


async def _move_async(config: Config, email_id: str, mailbox: str) -> None:
    async with jmap_client(config.get_token()) as client:
        target = await client.find_mailbox(mailbox)
        await client.move_email(email_id, target.id)
    output.success(message=f"Moved email {email_id} to {target.name}")


@click.command()
@click.argument("email_id")
@click.option("-y", "--yes", is_flag=True, help="Confirm without previewing.")
@click.pass_obj
def spam(config: Config, email_id: str, yes: bool) -> None:
    """Move an email to Junk and train the spam filter."""
    _run(_spam_async(config, email_id, yes))


async def _spam_async(config: Config, email_id: str, yes: bool) -> None:
    async with jmap_client(config.get_token()) as client:
        email = await client.get_email(email_id)

        async def execute(pending: PendingAction) -> Any:
            return await client.mark_spam(email_id)

        outcome = await run_gated(
            ActionKind.MARK_SPAM,
            Mode.CONFIRM if yes else Mode.PREVIEW,
            {"email_id": email_id},
            render=lambda pending: (
                "This will move the following email to Junk and train the spam filter:\n\n"
                + format_email_summary(email)
            ),
            execute=execute,
            confirm_hint=_CLI_CONFIRM_HINT,
        )
    if not outcome.executed:
        output.failure({"kind": "confirmation_required", "message": _CLI_CONFIRM_HINT},
                       message=outcome.text)
    output.success(message=f"Marked email {email_id} as spam")


@click.command(name="mark-read")
@click.argument("email_id")
@click.option("--unread", is_flag=True, help="Mark as unread instead.")
@click.pass_obj
def mark_read(config: Config, email_id: str, unread: bool) -> None:
    """Mark an email as read (or unread)."""
    _run(_mark_read_async(config, email_id, not unread))


async def _mark_read_async(config: Config, email_id: str, read: bool) -> None:
    async with jmap_client(config.get_token()) as client:
        await client.mark_read(email_id, read)
    output.success(message=f"Marked email {email_id} as {'read' if read else 'unread'}")


# ── download ───────────────────────────────────────────────────────────────────


@click.command()
@click.argument("email_id")
@click.option("-o", "--output", "output_dir", type=click.Path(file_okay=False, path_type=Path),
              default=Path("."), show_default=True, help="Directory for raw downloads.")
@click.option("-f", "--format", "fmt", type=click.Choice(["raw", "json"]), default="raw",
              show_default=True, help="raw writes files; json prints text or base64 content.")
@click.option("--max-size", type=SIZE, help="Resize images above this size (json format).")
@click.pass_obj
def download(config: Config, email_id: str, output_dir: Path, fmt: str, max_size: int | None) -> None:
    """Download the attachments of an email."""
    _run(_download_async(config, email_id, output_dir, fmt, max_size))


async def _download_async(config: Config, email_id: str, output_dir: Path, fmt: str,
                          max_size: int | None) -> None:
    results: list[dict[str, Any]] = []
    async with jmap_client(config.get_token()) as client:
        email = await client.get_email(email_id)
        for part in email.attachments:
            if not part.blob_id:
                continue
            name = part.name or f"attachment-{part.blob_id}"
            data = await client.download_blob(part.blob_id, name, part.type)
            if fmt == "raw":
                output_dir.mkdir(parents=True, exist_ok=True)
                path = output_dir / Path(name).name
                path.write_bytes(data)
                results.append({"name": name, "path": str(path), "size": len(data)})
                continue
            results.append(_attachment_json(name, part.type, data, max_size))
    output.success(results, message=f"{len(results)} attachment(s)")


def _attachment_json(name: str, content_type: str, data: bytes, max_size: int | None) -> dict[str, Any]:
    entry: dict[str, Any] = {"name": name, "type": content_type, "size": len(data)}
    image_mime = infer_image_mime(content_type, name)
    if image_mime:
        if max_size:
            try:
                data, image_mime = resize_image(data, image_mime, max_size)
            except ValueError as exc:
                logger.warning("Could not resize %s, returning original: %s", name, exc)
        entry.update(type=image_mime, data_base64=base64.b64encode(data).decode("ascii"))
        return entry
    text = extract_text(data, content_type, name)
    if text is not None:
        entry["text"] = text
    else:
        entry["data_base64"] = base64.b64encode(data).decode("ascii")
    return entry


# ── masked ─────────────────────────────────────────────────────────────────────


@click.group()
def masked() -> None:
    """Manage masked email addresses."""


@masked.command(name="list")
@click.pass_obj
def masked_list(config: Config) -> None:
    """List masked email addresses."""
    _run(_masked_list_async(config))


async def _masked_list_async(config: Config) -> None:
    async with jmap_client(config.get_token()) as client:
        items = await client.list_masked_emails()
    output.success(items)


@masked.command(name="create")
@click.option("--domain", "for_domain", help="Website the address is for.")
@click.option("--description", help="Free-text note.")
@click.option("--prefix", "email_prefix", help="Address prefix (a-z, 0-9, _).")
@click.pass_obj
def masked_create(config: Config, for_domain: str | None, description: str | None,
                  email_prefix: str | None) -> None:
    """Create a new masked email address."""
    _run(_masked_create_async(config, for_domain, description, email_prefix))


async def _masked_create_async(config: Config, for_domain: str | None, description: str | None,
                               email_prefix: str | None) -> None:
    async with jmap_client(config.get_token()) as client:
        created = await client.create_masked_email(for_domain, description, email_prefix)
    output.success(created, message=f"Created {created.email}")


async def _masked_state_async(config: Config, masked_id: str, state: MaskedEmailState,
                              yes: bool) -> None:
    kind = (ActionKind.DELETE_MASKED_EMAIL if state is MaskedEmailState.DELETED
            else ActionKind.SET_MASKED_EMAIL_STATE)
    async with jmap_client(config.get_token()) as client:
        item = await client.get_masked_email(masked_id)

        async def execute(pending: PendingAction) -> Any:
            await client.set_masked_email_state(item.id, state)

        outcome = await run_gated(
            kind,
            Mode.CONFIRM if yes else Mode.PREVIEW,
            {"masked_id": item.id, "state": state.value},
            render=lambda pending: (
                f"This will set the state of\n{format_masked_email(item)}\nto {state.value}."
            ),
            execute=execute,
            confirm_hint=_CLI_CONFIRM_HINT,
        )
    if not outcome.executed:
        output.failure({"kind": "confirmation_required", "message": _CLI_CONFIRM_HINT},
                       message=outcome.text)
    output.success(message=f"{item.email} is now {state.value}")


@masked.command(name="enable")
@click.argument("masked_id")
@click.pass_obj
def masked_enable(config: Config, masked_id: str) -> None:
    """Enable a masked email (by id or address)."""
    _run(_masked_state_async(config, masked_id, MaskedEmailState.ENABLED, yes=True))


@masked.command(name="disable")
@click.argument("masked_id")
@click.pass_obj
def masked_disable(config: Config, masked_id: str) -> None:
    """Disable a masked email; mail to it goes to trash."""
    _run(_masked_state_async(config, masked_id, MaskedEmailState.DISABLED, yes=True))


@masked.command(name="delete")
@click.argument("masked_id")
@click.option("-y", "--yes", is_flag=True, help="Confirm without previewing.")
@click.pass_obj
def masked_delete(config: Config, masked_id: str, yes: bool) -> None:
    """Delete a masked email permanently."""
    _run(_masked_state_async(config, masked_id, MaskedEmailState.DELETED, yes))


# ── contacts ───────────────────────────────────────────────────────────────────


@click.group()
def contacts() -> None:
    """Look up contacts over CardDAV (needs an app password)."""


@contacts.command(name="list")
@click.pass_obj
def contacts_list(config: Config) -> None:
    """List every contact in every address book."""
    _run(_contacts_async(config, None))


@contacts.command(name="search")
@click.argument("query")
@click.pass_obj
def contacts_search(config: Config, query: str) -> None:
    """Search contacts by name, email or organization."""
    _run(_contacts_async(config, query))


async def _contacts_async(config: Config, query: str | None) -> None:
    async with carddav_client(config) as client:
        if query is None:
            found = await client.list_all_contacts()
        else:
            found = await client.search_contacts(query)
    output.success(found)


# ── mcp ────────────────────────────────────────────────────────────────────────


@click.command(name="mcp")
@click.pass_obj
def mcp_server(config: Config) -> None:
    """Run the MCP server over stdio."""
    _run(run_server(config))
