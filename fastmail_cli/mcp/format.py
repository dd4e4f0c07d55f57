"""Plain-text rendering of mail objects for MCP tool results."""

from fastmail_cli.carddav.types import Contact
from fastmail_cli.jmap.compose import DraftEmail
from fastmail_cli.jmap.types import Email, EmailAddress, Mailbox, MaskedEmail, MaskedEmailState
from fastmail_cli.util.sizes import format_size

_STATE_LABELS = {
    MaskedEmailState.ENABLED: "[ENABLED]",
    MaskedEmailState.DISABLED: "[DISABLED]",
    MaskedEmailState.PENDING: "[PENDING]",
    MaskedEmailState.DELETED: "[DELETED]",
}


def format_address(address: EmailAddress) -> str:
    return str(address)


def format_address_list(addresses: list[EmailAddress]) -> str:
    return ", ".join(format_address(a) for a in addresses) if addresses else "(none)"


def format_mailbox(mailbox: Mailbox) -> str:
    role = f" [{mailbox.role}]" if mailbox.role else ""
    return (
        f"{mailbox.name}{role} (id: {mailbox.id}) — "
        f"{mailbox.unread_emails} unread / {mailbox.total_emails} total"
    )


def format_email_summary(email: Email) -> str:
    flags = []
    if email.is_unread:
        flags.append("UNREAD")
    if email.is_flagged:
        flags.append("FLAGGED")
    if email.has_attachment:
        flags.append("ATTACHMENT")
    flag_text = f" [{', '.join(flags)}]" if flags else ""
    return (
        f"ID: {email.id}{flag_text}\n"
        f"From: {format_address_list(email.from_)}\n"
        f"Subject: {email.subject or '(no subject)'}\n"
        f"Date: {email.received_at or 'unknown'}\n"
        f"Preview: {email.preview or ''}"
    )


def format_email_full(email: Email) -> str:
    body = email.text_content() or email.html_content() or email.first_body_value()
    lines = [
        f"ID: {email.id}",
        f"Thread: {email.thread_id}",
        f"From: {format_address_list(email.from_)}",
        f"To: {format_address_list(email.to)}",
    ]
    if email.cc:
        lines.append(f"CC: {format_address_list(email.cc)}")
    lines += [
        f"Subject: {email.subject or '(no subject)'}",
        f"Date: {email.received_at or 'unknown'}",
    ]
    if email.attachments:
        names = ", ".join(a.name or "(unnamed)" for a in email.attachments)
        lines.append(f"Attachments: {names}")
    lines += ["", body or "(no body)"]
    return "\n".join(lines)


def format_thread(emails: list[Email], selected_id: str) -> str:
    """Render a thread oldest-first, marking the selected email."""
    blocks = []
    for position, email in enumerate(emails, start=1):
        header = f"=== Message {position} of {len(emails)} ==="
        if email.id == selected_id:
            header += "\n>>> SELECTED EMAIL <<<"
        blocks.append(f"{header}\n{format_email_full(email)}")
    return "\n\n".join(blocks)


def format_masked_email(masked: MaskedEmail) -> str:
    label = _STATE_LABELS.get(masked.state, "[?]") if masked.state else "[?]"
    parts = [f"{label} {masked.email} (id: {masked.id})"]
    if masked.for_domain:
        parts.append(f"  Domain: {masked.for_domain}")
    if masked.description:
        parts.append(f"  Description: {masked.description}")
    if masked.last_message_at:
        parts.append(f"  Last message: {masked.last_message_at}")
    return "\n".join(parts)


def format_contact(contact: Contact) -> str:
    lines = [contact.name]
    for email in contact.emails:
        lines.append(f"  Email: {email.email}" + (f" ({email.type})" if email.type else ""))
    for phone in contact.phones:
        lines.append(f"  Phone: {phone.number}" + (f" ({phone.type})" if phone.type else ""))
    if contact.organization:
        org = contact.organization + (f", {contact.title}" if contact.title else "")
        lines.append(f"  Organization: {org}")
    return "\n".join(lines)


def format_attachment_line(index: int, name: str | None, content_type: str, size: int,
                           blob_id: str | None) -> str:
    return f"{index}. {name or '(unnamed)'} ({content_type}, {format_size(size)}) blob: {blob_id}"


def format_draft_preview(draft: DraftEmail, heading: str = "EMAIL PREVIEW - Review before sending:") -> str:
    lines = [heading, "", f"To: {format_address_list(draft.to)}"]
    if draft.cc:
        lines.append(f"CC: {format_address_list(draft.cc)}")
    if draft.bcc:
        lines.append(f"BCC: {format_address_list(draft.bcc)}")
    lines += [f"Subject: {draft.subject}", "", "--- Body ---", draft.body]
    return "\n".join(lines)
