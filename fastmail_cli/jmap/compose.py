"""Compose workflow: draft construction for send/reply/forward and the
create-then-submit batch.

One logical send is two chained calls in a single batch: ``Email/set``
creates the draft, ``EmailSubmission/set`` submits it by creation id and, on
success, moves it to Sent and clears ``$draft``.  The two slots are checked
separately so a failed submission is never reported as a sent message.
"""

from dataclasses import dataclass, field
from typing import Any

from fastmail_cli.errors import MethodError, ResponseParse, SubmissionFailed
from fastmail_cli.jmap.batch import BatchRequestBuilder, BatchResponse, CreationReference
from fastmail_cli.jmap.types import Email, EmailAddress, Identity

REPLY_PREFIX = "Re: "
FORWARD_PREFIX = "Fwd: "

DRAFT_CREATION_ID = "draft"
SUBMISSION_CREATION_ID = "submission"
CREATE_CALL_ID = "e0"
SUBMIT_CALL_ID = "s0"

_BODY_PART_ID = "body"


# ── Subject & threading helpers ────────────────────────────────────────────────


def _add_prefix(subject: str | None, prefix: str) -> str:
    subject = subject or ""
    if subject.lower().startswith(prefix.strip().lower()):
        return subject
    return f"{prefix}{subject}"


def add_reply_prefix(subject: str | None) -> str:
    return _add_prefix(subject, REPLY_PREFIX)


def add_forward_prefix(subject: str | None) -> str:
    return _add_prefix(subject, FORWARD_PREFIX)


def append_references(references: list[str], message_ids: list[str]) -> list[str]:
    """Append message ids to a References list, skipping ones already present."""
    result = list(references)
    for message_id in message_ids:
        if message_id not in result:
            result.append(message_id)
    return result


def _dedupe(addresses: list[EmailAddress], exclude: set[str]) -> list[EmailAddress]:
    seen = set(exclude)
    result = []
    for address in addresses:
        key = address.email.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(address)
    return result


def reply_recipients(
    original: Email,
    self_email: str,
    *,
    reply_all: bool = False,
    cc: list[EmailAddress] | None = None,
) -> tuple[list[EmailAddress], list[EmailAddress]]:
    """Return ``(to, cc)`` for a reply to ``original``.

    With ``reply_all`` the original To recipients join ``to`` and the original
    Cc recipients follow the caller's ``cc``; the sender's own address is
    excluded from both (case-insensitive).
    """
    me = self_email.lower()
    to = list(original.from_)
    cc_list = list(cc or [])
    if reply_all:
        to = _dedupe(to + [a for a in original.to if a.email.lower() != me], set())
        caller_cc = {a.email.lower() for a in cc_list}
        cc_list += _dedupe(original.cc, {me} | caller_cc | {a.email.lower() for a in to})
    return to, cc_list


def forward_body(body: str, original: Email) -> str:
    sender = str(original.sender) if original.sender else "unknown"
    return (
        f"{body}\n\n"
        "---------- Forwarded message ---------\n"
        f"From: {sender}\n"
        f"Date: {original.received_at or 'unknown date'}\n"
        f"Subject: {original.subject or ''}\n\n"
        f"{original.first_body_value()}"
    )


# ── Draft & submission ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DraftEmail:
    from_: EmailAddress
    to: list[EmailAddress]
    subject: str
    body: str
    cc: list[EmailAddress] = field(default_factory=list)
    bcc: list[EmailAddress] = field(default_factory=list)
    in_reply_to: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)

    def to_create(self, drafts_mailbox_id: str) -> dict[str, Any]:
        """The Email/set create object for this draft."""
        data: dict[str, Any] = {
            "mailboxIds": {drafts_mailbox_id: True},
            "keywords": {"$draft": True},
            "from": [self.from_.to_dict()],
            "to": [a.to_dict() for a in self.to],
            "subject": self.subject,
            "bodyValues": {_BODY_PART_ID: {"value": self.body, "charset": "utf-8"}},
            "textBody": [{"partId": _BODY_PART_ID, "type": "text/plain"}],
        }
        if self.cc:
            data["cc"] = [a.to_dict() for a in self.cc]
        if self.bcc:
            data["bcc"] = [a.to_dict() for a in self.bcc]
        if self.in_reply_to:
            data["inReplyTo"] = list(self.in_reply_to)
        if self.references:
            data["references"] = list(self.references)
        return data

    def to_payload(self) -> dict[str, Any]:
        """Plain-data form used for previews and confirmation tokens."""
        return {
            "from": self.from_.to_dict(),
            "to": [a.to_dict() for a in self.to],
            "cc": [a.to_dict() for a in self.cc],
            "bcc": [a.to_dict() for a in self.bcc],
            "subject": self.subject,
            "body": self.body,
            "in_reply_to": list(self.in_reply_to),
            "references": list(self.references),
        }


@dataclass(frozen=True)
class SubmissionIntent:
    identity_id: str
    sent_mailbox_id: str
    email: CreationReference = CreationReference(DRAFT_CREATION_ID)

    def to_create(self) -> dict[str, Any]:
        return {"identityId": self.identity_id, "emailId": self.email}

    def on_success_update(self) -> dict[Any, Any]:
        return {
            CreationReference(SUBMISSION_CREATION_ID): {
                "mailboxIds": {self.sent_mailbox_id: True},
                "keywords/$draft": None,
                "keywords/$seen": True,
            }
        }


@dataclass(frozen=True)
class ComposeResult:
    email_id: str
    submission_id: str | None = None


def new_draft(
    identity: Identity,
    to: list[EmailAddress],
    subject: str,
    body: str,
    *,
    cc: list[EmailAddress] | None = None,
    bcc: list[EmailAddress] | None = None,
    in_reply_to: str | None = None,
) -> DraftEmail:
    threading = [in_reply_to] if in_reply_to else []
    return DraftEmail(
        from_=identity.address,
        to=list(to),
        subject=subject,
        body=body,
        cc=list(cc or []),
        bcc=list(bcc or []),
        in_reply_to=threading,
        references=list(threading),
    )


def reply_draft(
    original: Email,
    identity: Identity,
    body: str,
    *,
    reply_all: bool = False,
    cc: list[EmailAddress] | None = None,
    bcc: list[EmailAddress] | None = None,
) -> DraftEmail:
    to, cc_list = reply_recipients(original, identity.email, reply_all=reply_all, cc=cc)
    return DraftEmail(
        from_=identity.address,
        to=to,
        subject=add_reply_prefix(original.subject),
        body=body,
        cc=cc_list,
        bcc=list(bcc or []),
        in_reply_to=list(original.message_id),
        references=append_references(original.references, original.message_id),
    )


def forward_draft(
    original: Email,
    identity: Identity,
    to: list[EmailAddress],
    body: str,
    *,
    cc: list[EmailAddress] | None = None,
    bcc: list[EmailAddress] | None = None,
) -> DraftEmail:
    return DraftEmail(
        from_=identity.address,
        to=list(to),
        subject=add_forward_prefix(original.subject),
        body=forward_body(body, original),
        cc=list(cc or []),
        bcc=list(bcc or []),
    )


# ── Batch assembly & result checks ─────────────────────────────────────────────


def compose_batch(
    account_id: str,
    draft: DraftEmail,
    submission: SubmissionIntent,
    drafts_mailbox_id: str,
) -> BatchRequestBuilder:
    builder = BatchRequestBuilder()
    builder.add(
        "Email/set",
        {"accountId": account_id,
         "create": {DRAFT_CREATION_ID: draft.to_create(drafts_mailbox_id)}},
        CREATE_CALL_ID,
    )
    builder.add(
        "EmailSubmission/set",
        {
            "accountId": account_id,
            "create": {SUBMISSION_CREATION_ID: submission.to_create()},
            "onSuccessUpdateEmail": submission.on_success_update(),
        },
        SUBMIT_CALL_ID,
    )
    return builder


def creation_error(payload: dict[str, Any], creation_id: str) -> tuple[str, str] | None:
    not_created = payload.get("notCreated")
    failure = not_created.get(creation_id) if isinstance(not_created, dict) else None
    if failure is None:
        return None
    if not isinstance(failure, dict):
        return "unknown", "No description"
    return (
        str(failure.get("type", "unknown")),
        str(failure.get("description", "No description")),
    )


def created_object(payload: dict[str, Any], creation_id: str) -> dict[str, Any] | None:
    created = payload.get("created")
    obj = created.get(creation_id) if isinstance(created, dict) else None
    return obj if isinstance(obj, dict) else None


def resolve_compose(response: BatchResponse) -> ComposeResult:
    """Check both slots of a compose batch.

    Raises MethodError when the draft was not created and SubmissionFailed
    when the draft exists but could not be submitted.
    """
    created = response.resolve(CREATE_CALL_ID, "Email/set")
    failure = creation_error(created, DRAFT_CREATION_ID)
    if failure:
        raise MethodError(failure[0], failure[1], "Email/set")
    draft = created_object(created, DRAFT_CREATION_ID)
    if not draft or "id" not in draft:
        raise MethodError("unknown", "Draft was not created", "Email/set")
    draft_id = str(draft["id"])

    try:
        submitted = response.resolve(SUBMIT_CALL_ID, "EmailSubmission/set")
    except MethodError as exc:
        raise SubmissionFailed(exc.error_type, exc.description, draft_id) from exc
    except ResponseParse as exc:
        raise SubmissionFailed("unknown", exc.message, draft_id) from exc
    failure = creation_error(submitted, SUBMISSION_CREATION_ID)
    if failure:
        raise SubmissionFailed(failure[0], failure[1], draft_id)
    submission = created_object(submitted, SUBMISSION_CREATION_ID) or {}
    return ComposeResult(email_id=draft_id, submission_id=submission.get("id"))
