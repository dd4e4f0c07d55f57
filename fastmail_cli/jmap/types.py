"""Data types decoded from JMAP responses.

All records are frozen; ``from_dict`` accepts the camelCase dicts the server
returns and raises KeyError/TypeError on a missing required key, which the
batch resolver reports as a ResponseParse error.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import quote

MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"


@dataclass(frozen=True)
class Session:
    """Routing information returned by the session endpoint.

    Created once per client by authentication and never mutated afterwards.
    """

    api_url: str
    download_url: str
    upload_url: str
    username: str
    primary_account_id: str
    capabilities: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        primary = data.get("primaryAccounts") or {}
        account_id = primary.get(MAIL_CAPABILITY)
        if not account_id:
            accounts = data.get("accounts") or {}
            if not accounts:
                raise KeyError("primaryAccounts")
            account_id = next(iter(accounts))
        return cls(
            api_url=data["apiUrl"],
            download_url=data["downloadUrl"],
            upload_url=data.get("uploadUrl", ""),
            username=data.get("username", ""),
            primary_account_id=str(account_id),
            capabilities=list(data.get("capabilities") or {}),
        )

    def blob_url(self, blob_id: str, name: str = "attachment",
                 content_type: str = "application/octet-stream") -> str:
        """Expand the download URL template for one blob."""
        return (
            self.download_url
            .replace("{accountId}", quote(self.primary_account_id, safe=""))
            .replace("{blobId}", quote(blob_id, safe=""))
            .replace("{name}", quote(name, safe=""))
            .replace("{type}", quote(content_type, safe=""))
        )


@dataclass(frozen=True)
class EmailAddress:
    email: str
    name: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmailAddress":
        return cls(email=data.get("email") or "", name=data.get("name") or None)

    @classmethod
    def from_list(cls, items: list[dict[str, Any]] | None) -> list["EmailAddress"]:
        return [cls.from_dict(item) for item in items or []]

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"email": self.email}
        if self.name:
            data["name"] = self.name
        return data

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>" if self.name else self.email


@dataclass(frozen=True)
class Mailbox:
    id: str
    name: str
    role: str | None = None
    parent_id: str | None = None
    total_emails: int = 0
    unread_emails: int = 0
    total_threads: int = 0
    unread_threads: int = 0
    sort_order: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Mailbox":
        return cls(
            id=data["id"],
            name=data["name"],
            role=data.get("role"),
            parent_id=data.get("parentId"),
            total_emails=data.get("totalEmails", 0),
            unread_emails=data.get("unreadEmails", 0),
            total_threads=data.get("totalThreads", 0),
            unread_threads=data.get("unreadThreads", 0),
            sort_order=data.get("sortOrder", 0),
        )


@dataclass(frozen=True)
class EmailBodyPart:
    part_id: str | None = None
    blob_id: str | None = None
    size: int = 0
    name: str | None = None
    type: str = "application/octet-stream"
    charset: str | None = None
    disposition: str | None = None
    cid: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmailBodyPart":
        return cls(
            part_id=data.get("partId"),
            blob_id=data.get("blobId"),
            size=data.get("size") or 0,
            name=data.get("name"),
            type=data.get("type") or "application/octet-stream",
            charset=data.get("charset"),
            disposition=data.get("disposition"),
            cid=data.get("cid"),
        )


@dataclass(frozen=True)
class EmailBodyValue:
    value: str
    is_encoding_problem: bool = False
    is_truncated: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmailBodyValue":
        return cls(
            value=data.get("value", ""),
            is_encoding_problem=data.get("isEncodingProblem", False),
            is_truncated=data.get("isTruncated", False),
        )


@dataclass(frozen=True)
class Email:
    """An email as returned by Email/get.

    Summary fetches leave the body, header and attachment fields at their
    defaults; full fetches populate everything.
    """

    id: str
    thread_id: str = ""
    blob_id: str | None = None
    mailbox_ids: dict[str, bool] = field(default_factory=dict)
    keywords: dict[str, bool] = field(default_factory=dict)
    size: int = 0
    received_at: str | None = None
    sent_at: str | None = None
    message_id: list[str] = field(default_factory=list)
    in_reply_to: list[str] = field(default_factory=list)
    references: list[str] = field(default_factory=list)
    from_: list[EmailAddress] = field(default_factory=list)
    to: list[EmailAddress] = field(default_factory=list)
    cc: list[EmailAddress] = field(default_factory=list)
    bcc: list[EmailAddress] = field(default_factory=list)
    reply_to: list[EmailAddress] = field(default_factory=list)
    subject: str | None = None
    preview: str | None = None
    has_attachment: bool = False
    text_body: list[EmailBodyPart] = field(default_factory=list)
    html_body: list[EmailBodyPart] = field(default_factory=list)
    attachments: list[EmailBodyPart] = field(default_factory=list)
    body_values: dict[str, EmailBodyValue] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Email":
        return cls(
            id=data["id"],
            thread_id=data.get("threadId") or "",
            blob_id=data.get("blobId"),
            mailbox_ids=dict(data.get("mailboxIds") or {}),
            keywords=dict(data.get("keywords") or {}),
            size=data.get("size") or 0,
            received_at=data.get("receivedAt"),
            sent_at=data.get("sentAt"),
            message_id=list(data.get("messageId") or []),
            in_reply_to=list(data.get("inReplyTo") or []),
            references=list(data.get("references") or []),
            from_=EmailAddress.from_list(data.get("from")),
            to=EmailAddress.from_list(data.get("to")),
            cc=EmailAddress.from_list(data.get("cc")),
            bcc=EmailAddress.from_list(data.get("bcc")),
            reply_to=EmailAddress.from_list(data.get("replyTo")),
            subject=data.get("subject"),
            preview=data.get("preview"),
            has_attachment=data.get("hasAttachment", False),
            text_body=[EmailBodyPart.from_dict(p) for p in data.get("textBody") or []],
            html_body=[EmailBodyPart.from_dict(p) for p in data.get("htmlBody") or []],
            attachments=[EmailBodyPart.from_dict(p) for p in data.get("attachments") or []],
            body_values={
                part_id: EmailBodyValue.from_dict(value)
                for part_id, value in (data.get("bodyValues") or {}).items()
            },
        )

    @property
    def is_unread(self) -> bool:
        return not self.keywords.get("$seen", False)

    @property
    def is_flagged(self) -> bool:
        return self.keywords.get("$flagged", False)

    @property
    def is_draft(self) -> bool:
        return self.keywords.get("$draft", False)

    @property
    def sender(self) -> EmailAddress | None:
        return self.from_[0] if self.from_ else None

    def text_content(self) -> str:
        """Concatenated text/plain body values, in part order."""
        return "".join(
            self.body_values[p.part_id].value
            for p in self.text_body
            if p.part_id in self.body_values
        )

    def html_content(self) -> str:
        return "".join(
            self.body_values[p.part_id].value
            for p in self.html_body
            if p.part_id in self.body_values
        )

    def first_body_value(self) -> str:
        for value in self.body_values.values():
            return value.value
        return ""


@dataclass(frozen=True)
class Thread:
    id: str
    email_ids: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Thread":
        return cls(id=data["id"], email_ids=list(data.get("emailIds") or []))


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    name: str = ""
    reply_to: list[EmailAddress] = field(default_factory=list)
    bcc: list[EmailAddress] = field(default_factory=list)
    text_signature: str = ""
    may_delete: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Identity":
        return cls(
            id=data["id"],
            email=data["email"],
            name=data.get("name") or "",
            reply_to=EmailAddress.from_list(data.get("replyTo")),
            bcc=EmailAddress.from_list(data.get("bcc")),
            text_signature=data.get("textSignature") or "",
            may_delete=data.get("mayDelete", False),
        )

    @property
    def address(self) -> EmailAddress:
        return EmailAddress(email=self.email, name=self.name or None)


class MaskedEmailState(str, Enum):
    PENDING = "pending"
    ENABLED = "enabled"
    DISABLED = "disabled"
    DELETED = "deleted"


@dataclass(frozen=True)
class MaskedEmail:
    id: str
    email: str
    state: MaskedEmailState | None = None
    for_domain: str | None = None
    description: str | None = None
    created_by: str | None = None
    url: str | None = None
    email_prefix: str | None = None
    last_message_at: str | None = None
    created_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MaskedEmail":
        state = data.get("state")
        return cls(
            id=data["id"],
            email=data.get("email") or "",
            state=MaskedEmailState(state) if state in _MASKED_STATES else None,
            for_domain=data.get("forDomain") or None,
            description=data.get("description") or None,
            created_by=data.get("createdBy"),
            url=data.get("url"),
            email_prefix=data.get("emailPrefix"),
            last_message_at=data.get("lastMessageAt"),
            created_at=data.get("createdAt"),
        )


_MASKED_STATES = {s.value for s in MaskedEmailState}
