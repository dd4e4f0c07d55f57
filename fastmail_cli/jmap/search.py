"""Search criteria and their translation into a JMAP FilterCondition."""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class SearchFilter:
    """Search criteria; every field set narrows the result (logical AND)."""

    text: str | None = None
    from_: str | None = None
    to: str | None = None
    cc: str | None = None
    bcc: str | None = None
    subject: str | None = None
    body: str | None = None
    has_attachment: bool = False
    min_size: int | None = None
    max_size: int | None = None
    before: str | None = None
    after: str | None = None
    unread: bool = False
    flagged: bool = False


def normalize_date(value: str) -> str:
    """Expand a bare ``YYYY-MM-DD`` date to midnight UTC."""
    return value if "T" in value else f"{value}T00:00:00Z"


def to_filter_condition(search: SearchFilter, mailbox_id: str | None = None) -> dict[str, Any]:
    """Build one flat FilterCondition; the server ANDs its properties."""
    condition: dict[str, Any] = {}
    if mailbox_id:
        condition["inMailbox"] = mailbox_id

    for key, value in (
        ("text", search.text),
        ("from", search.from_),
        ("to", search.to),
        ("cc", search.cc),
        ("bcc", search.bcc),
        ("subject", search.subject),
        ("body", search.body),
    ):
        if value:
            condition[key] = value

    if search.has_attachment:
        condition["hasAttachment"] = True
    if search.min_size is not None:
        condition["minSize"] = search.min_size
    if search.max_size is not None:
        condition["maxSize"] = search.max_size
    if search.before:
        condition["before"] = normalize_date(search.before)
    if search.after:
        condition["after"] = normalize_date(search.after)
    if search.unread:
        condition["notKeyword"] = "$seen"
    if search.flagged:
        condition["hasKeyword"] = "$flagged"
    return condition
