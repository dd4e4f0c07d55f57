"""Fastmail JMAP client — mailbox, email, thread, identity and masked-email
operations behind a typed async API."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastmail_cli.errors import (
    BlobNotFound,
    EmailNotFound,
    IdentityNotFound,
    MailboxNotFound,
    MethodError,
    NotAuthenticated,
    ResponseParse,
)
from fastmail_cli.jmap.batch import BatchRequestBuilder, BatchResponse
from fastmail_cli.jmap.compose import (
    ComposeResult,
    DraftEmail,
    SubmissionIntent,
    compose_batch,
    created_object,
    creation_error,
    forward_draft,
    new_draft,
    reply_draft,
    resolve_compose,
)
from fastmail_cli.jmap.search import SearchFilter, to_filter_condition
from fastmail_cli.jmap.types import (
    Email,
    EmailAddress,
    Identity,
    Mailbox,
    MaskedEmail,
    MaskedEmailState,
    Session,
    Thread,
)
from fastmail_cli.transport import BearerAuth, HttpTransport, check_status, decode_json

logger = logging.getLogger(__name__)

SESSION_URL = "https://api.fastmail.com/jmap/session"

MAILBOX_PROPERTIES = [
    "id", "name", "parentId", "role", "totalEmails", "unreadEmails",
    "totalThreads", "unreadThreads", "sortOrder",
]
EMAIL_SUMMARY_PROPERTIES = [
    "id", "threadId", "mailboxIds", "keywords", "size", "receivedAt",
    "from", "to", "cc", "subject", "preview", "hasAttachment",
]
EMAIL_FULL_PROPERTIES = [
    "id", "blobId", "threadId", "mailboxIds", "keywords", "size", "receivedAt",
    "messageId", "inReplyTo", "references", "from", "to", "cc", "bcc",
    "replyTo", "subject", "sentAt", "preview", "hasAttachment",
    "textBody", "htmlBody", "attachments", "bodyValues",
]


def _decode_list(decoder: Any) -> Any:
    def decode(payload: dict[str, Any]) -> list[Any]:
        return [decoder(item) for item in payload["list"]]
    return decode


class JmapClient:
    """Async client bound to one authenticated session.

    The session is immutable; every operation is one fresh batch round trip.
    Use ``JmapClient.connect`` or the ``jmap_client()`` context manager.
    """

    def __init__(self, session: Session, transport: HttpTransport) -> None:
        self._session = session
        self._transport = transport

    @classmethod
    async def connect(
        cls,
        token: str,
        *,
        session_url: str = SESSION_URL,
        transport: HttpTransport | None = None,
    ) -> "JmapClient":
        """Fetch the session resource and return a ready client."""
        transport = transport or HttpTransport(BearerAuth(token))
        status, body = await transport.send_json(session_url, "GET")
        check_status(status, body)
        try:
            session = Session.from_dict(decode_json(body))
        except (KeyError, TypeError, AttributeError) as exc:
            raise ResponseParse(f"Invalid session response: {exc!r}") from exc
        logger.info("JMAP session established for account %s", session.primary_account_id)
        return cls(session, transport)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def account_id(self) -> str:
        return self._session.primary_account_id

    async def close(self) -> None:
        await self._transport.aclose()

    # ── Mailboxes ──────────────────────────────────────────────────────────────

    async def list_mailboxes(self) -> list[Mailbox]:
        builder = BatchRequestBuilder()
        builder.add(
            "Mailbox/get",
            {"accountId": self.account_id, "properties": MAILBOX_PROPERTIES},
            "m0",
        )
        response = await self.request(builder)
        return response.resolve("m0", "Mailbox/get", _decode_list(Mailbox.from_dict))

    async def find_mailbox(self, name_or_role: str) -> Mailbox:
        """Find a mailbox by exact name, then by role, case-insensitively."""
        return self._match_mailbox(await self.list_mailboxes(), name_or_role)

    @staticmethod
    def _match_mailbox(mailboxes: list[Mailbox], name_or_role: str) -> Mailbox:
        wanted = name_or_role.lower()
        for mailbox in mailboxes:
            if mailbox.name.lower() == wanted:
                return mailbox
        for mailbox in mailboxes:
            if mailbox.role and mailbox.role.lower() == wanted:
                return mailbox
        raise MailboxNotFound(name_or_role)

    # ── Emails ─────────────────────────────────────────────────────────────────

    async def list_emails(self, mailbox_id: str, limit: int = 50) -> list[Email]:
        return await self._query_emails({"inMailbox": mailbox_id}, limit)

    async def search_emails(
        self, search: SearchFilter, mailbox_id: str | None = None, limit: int = 50
    ) -> list[Email]:
        return await self._query_emails(to_filter_condition(search, mailbox_id), limit)

    async def get_email(self, email_id: str) -> Email:
        builder = BatchRequestBuilder()
        builder.add(
            "Email/get",
            {
                "accountId": self.account_id,
                "ids": [email_id],
                "properties": EMAIL_FULL_PROPERTIES,
                "fetchTextBodyValues": True,
                "fetchHTMLBodyValues": True,
            },
            "g0",
        )
        response = await self.request(builder)
        payload = response.resolve("g0", "Email/get")
        if payload.get("notFound") or not payload.get("list"):
            raise EmailNotFound(email_id)
        return response.resolve("g0", "Email/get", _decode_list(Email.from_dict))[0]

    async def get_thread(self, email_id: str) -> list[Email]:
        """Return every email in the thread containing ``email_id``, oldest first."""
        builder = BatchRequestBuilder()
        lookup = builder.add(
            "Email/get",
            {"accountId": self.account_id, "ids": [email_id], "properties": ["threadId"]},
            "g0",
        )
        thread = builder.add(
            "Thread/get",
            {"accountId": self.account_id, "ids": lookup.ref("/list/*/threadId")},
            "t0",
        )
        builder.add(
            "Email/get",
            {
                "accountId": self.account_id,
                "ids": thread.ref("/list/*/emailIds"),
                "properties": EMAIL_FULL_PROPERTIES,
                "fetchTextBodyValues": True,
            },
            "e0",
        )
        response = await self.request(builder)

        found = response.resolve("g0", "Email/get")
        if found.get("notFound") or not found.get("list"):
            raise EmailNotFound(email_id)
        threads = response.resolve("t0", "Thread/get", _decode_list(Thread.from_dict))
        emails = response.resolve("e0", "Email/get", _decode_list(Email.from_dict))
        logger.debug("Thread %s has %d emails", threads[0].id if threads else "?", len(emails))
        return sorted(emails, key=lambda e: e.received_at or "")

    async def move_email(self, email_id: str, mailbox_id: str) -> None:
        await self._update_email(email_id, {"mailboxIds": {mailbox_id: True}}, "m0")
        logger.info("Moved email %s to mailbox %s", email_id, mailbox_id)

    async def set_keywords(self, email_id: str, keywords: dict[str, bool]) -> None:
        await self._update_email(email_id, {"keywords": keywords}, "k0")

    async def mark_read(self, email_id: str, read: bool = True) -> None:
        await self._update_email(email_id, {"keywords/$seen": True if read else None}, "k0")
        logger.info("Marked email %s as %s", email_id, "read" if read else "unread")

    async def mark_spam(self, email_id: str) -> Mailbox:
        """Move an email to Junk and flag it as junk for the spam filter."""
        junk = await self.find_mailbox("junk")
        await self._update_email(
            email_id,
            {
                "mailboxIds": {junk.id: True},
                "keywords/$junk": True,
                "keywords/$notjunk": None,
            },
            "m0",
        )
        logger.info("Marked email %s as spam", email_id)
        return junk

    async def download_blob(
        self,
        blob_id: str,
        name: str = "attachment",
        content_type: str = "application/octet-stream",
    ) -> bytes:
        url = self._session.blob_url(blob_id, name, content_type)
        status, body = await self._transport.send(url, "GET")
        if status == 404:
            raise BlobNotFound(blob_id)
        check_status(status, body)
        return body

    # ── Identities & compose ───────────────────────────────────────────────────

    async def list_identities(self) -> list[Identity]:
        builder = BatchRequestBuilder()
        builder.add("Identity/get", {"accountId": self.account_id}, "i0")
        response = await self.request(builder)
        return response.resolve("i0", "Identity/get", _decode_list(Identity.from_dict))

    async def default_identity(self) -> Identity:
        identities = await self.list_identities()
        if not identities:
            raise IdentityNotFound()
        return identities[0]

    async def prepare_send(
        self,
        to: list[EmailAddress],
        subject: str,
        body: str,
        *,
        cc: list[EmailAddress] | None = None,
        bcc: list[EmailAddress] | None = None,
        in_reply_to: str | None = None,
    ) -> tuple[Identity, DraftEmail]:
        identity = await self.default_identity()
        return identity, new_draft(
            identity, to, subject, body, cc=cc, bcc=bcc, in_reply_to=in_reply_to
        )

    async def prepare_reply(
        self,
        email_id: str,
        body: str,
        *,
        reply_all: bool = False,
        cc: list[EmailAddress] | None = None,
        bcc: list[EmailAddress] | None = None,
    ) -> tuple[Identity, DraftEmail]:
        identity = await self.default_identity()
        original = await self.get_email(email_id)
        return identity, reply_draft(
            original, identity, body, reply_all=reply_all, cc=cc, bcc=bcc
        )

    async def prepare_forward(
        self,
        email_id: str,
        to: list[EmailAddress],
        body: str,
        *,
        cc: list[EmailAddress] | None = None,
        bcc: list[EmailAddress] | None = None,
    ) -> tuple[Identity, DraftEmail]:
        identity = await self.default_identity()
        original = await self.get_email(email_id)
        return identity, forward_draft(original, identity, to, body, cc=cc, bcc=bcc)

    async def submit(self, identity: Identity, draft: DraftEmail) -> ComposeResult:
        """Create ``draft`` and submit it in one batch."""
        mailboxes = await self.list_mailboxes()
        drafts = self._match_mailbox(mailboxes, "drafts")
        sent = self._match_mailbox(mailboxes, "sent")
        builder = compose_batch(
            self.account_id,
            draft,
            SubmissionIntent(identity_id=identity.id, sent_mailbox_id=sent.id),
            drafts.id,
        )
        result = resolve_compose(await self.request(builder))
        logger.info(
            "Sent email %s to %s: %r",
            result.email_id, ", ".join(a.email for a in draft.to), draft.subject,
        )
        return result

    async def send_email(self, to: list[EmailAddress], subject: str, body: str,
                         **kwargs: Any) -> ComposeResult:
        identity, draft = await self.prepare_send(to, subject, body, **kwargs)
        return await self.submit(identity, draft)

    async def reply_email(self, email_id: str, body: str, **kwargs: Any) -> ComposeResult:
        identity, draft = await self.prepare_reply(email_id, body, **kwargs)
        return await self.submit(identity, draft)

    async def forward_email(self, email_id: str, to: list[EmailAddress], body: str,
                            **kwargs: Any) -> ComposeResult:
        identity, draft = await self.prepare_forward(email_id, to, body, **kwargs)
        return await self.submit(identity, draft)

    # ── Masked email ───────────────────────────────────────────────────────────

    async def list_masked_emails(self) -> list[MaskedEmail]:
        builder = BatchRequestBuilder()
        builder.add("MaskedEmail/get", {"accountId": self.account_id, "ids": None}, "me0")
        response = await self.request(builder)
        return response.resolve("me0", "MaskedEmail/get", _decode_list(MaskedEmail.from_dict))

    async def get_masked_email(self, masked_id: str) -> MaskedEmail:
        for masked in await self.list_masked_emails():
            if masked.id == masked_id or masked.email.lower() == masked_id.lower():
                return masked
        raise MethodError("notFound", f"Masked email {masked_id} not found", "MaskedEmail/get")

    async def create_masked_email(
        self,
        for_domain: str | None = None,
        description: str | None = None,
        email_prefix: str | None = None,
    ) -> MaskedEmail:
        create: dict[str, Any] = {"state": MaskedEmailState.ENABLED.value}
        if for_domain:
            create["forDomain"] = for_domain
        if description:
            create["description"] = description
        if email_prefix:
            create["emailPrefix"] = email_prefix

        builder = BatchRequestBuilder()
        builder.add(
            "MaskedEmail/set",
            {"accountId": self.account_id, "create": {"new": create}},
            "me0",
        )
        payload = (await self.request(builder)).resolve("me0", "MaskedEmail/set")
        failure = creation_error(payload, "new")
        if failure:
            raise MethodError(failure[0], failure[1], "MaskedEmail/set")
        created = created_object(payload, "new")
        if not created:
            raise ResponseParse("MaskedEmail/set returned no created object")
        masked = MaskedEmail.from_dict({**create, **created})
        logger.info("Created masked email %s", masked.email)
        return masked

    async def update_masked_email(
        self,
        masked_id: str,
        *,
        state: MaskedEmailState | None = None,
        for_domain: str | None = None,
        description: str | None = None,
    ) -> None:
        update: dict[str, Any] = {}
        if state is not None:
            update["state"] = state.value
        if for_domain is not None:
            update["forDomain"] = for_domain
        if description is not None:
            update["description"] = description

        builder = BatchRequestBuilder()
        builder.add(
            "MaskedEmail/set",
            {"accountId": self.account_id, "update": {masked_id: update}},
            "me0",
        )
        payload = (await self.request(builder)).resolve("me0", "MaskedEmail/set")
        self._check_not_updated(payload, masked_id, "MaskedEmail/set")
        logger.info("Updated masked email %s: %s", masked_id, update)

    async def set_masked_email_state(self, masked_id: str, state: MaskedEmailState) -> None:
        await self.update_masked_email(masked_id, state=state)

    async def delete_masked_email(self, masked_id: str) -> None:
        await self.update_masked_email(masked_id, state=MaskedEmailState.DELETED)

    # ── Internal helpers ───────────────────────────────────────────────────────

    async def request(self, builder: BatchRequestBuilder) -> BatchResponse:
        """Send one batch and return its resolvable response."""
        body = builder.build()
        logger.debug("JMAP → %s", [call[0] for call in body["methodCalls"]])
        status, raw = await self._transport.send_json(self._session.api_url, "POST", body)
        check_status(status, raw)
        return BatchResponse.from_wire(builder.calls, decode_json(raw))

    async def _query_emails(self, condition: dict[str, Any], limit: int) -> list[Email]:
        builder = BatchRequestBuilder()
        query = builder.add(
            "Email/query",
            {
                "accountId": self.account_id,
                "filter": condition,
                "sort": [{"property": "receivedAt", "isAscending": False}],
                "limit": limit,
            },
            "q0",
        )
        builder.add(
            "Email/get",
            {
                "accountId": self.account_id,
                "ids": query.ref("/ids"),
                "properties": EMAIL_SUMMARY_PROPERTIES,
            },
            "g0",
        )
        response = await self.request(builder)
        response.resolve("q0", "Email/query")
        return response.resolve("g0", "Email/get", _decode_list(Email.from_dict))

    async def _update_email(self, email_id: str, patch: dict[str, Any], call_id: str) -> None:
        builder = BatchRequestBuilder()
        builder.add(
            "Email/set",
            {"accountId": self.account_id, "update": {email_id: patch}},
            call_id,
        )
        payload = (await self.request(builder)).resolve(call_id, "Email/set")
        self._check_not_updated(payload, email_id, "Email/set")

    @staticmethod
    def _check_not_updated(payload: dict[str, Any], object_id: str, method: str) -> None:
        not_updated = payload.get("notUpdated")
        failure = not_updated.get(object_id) if isinstance(not_updated, dict) else None
        if failure is None:
            return
        if not isinstance(failure, dict):
            raise MethodError("unknown", "No description", method)
        error_type = str(failure.get("type", "unknown"))
        if method == "Email/set" and error_type == "notFound":
            raise EmailNotFound(object_id)
        raise MethodError(
            error_type, str(failure.get("description", "No description")), method
        )


@asynccontextmanager
async def jmap_client(
    token: str | None = None,
    *,
    session_url: str = SESSION_URL,
) -> AsyncIterator[JmapClient]:
    """Async context manager that yields an authenticated JmapClient.

    Args:
        token: Fastmail API token. Falls back to the FASTMAIL_API_TOKEN env var.
        session_url: JMAP session endpoint.

    Example::

        async with jmap_client() as client:
            mailboxes = await client.list_mailboxes()
    """
    token = token or os.environ.get("FASTMAIL_API_TOKEN", "")
    if not token:
        raise NotAuthenticated()

    transport = HttpTransport(BearerAuth(token))
    try:
        client = await JmapClient.connect(token, session_url=session_url, transport=transport)
        yield client
    finally:
        await transport.aclose()
