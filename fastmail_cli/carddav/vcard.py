"""Minimal vCard (RFC 6350) reader for the properties the client displays."""

import hashlib
import logging

from fastmail_cli.carddav.types import Contact, ContactEmail, ContactPhone

logger = logging.getLogger(__name__)


def unfold(text: str) -> list[str]:
    """Join folded continuation lines (leading space or tab) onto their parent."""
    lines: list[str] = []
    for raw in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        if raw[:1] in (" ", "\t") and lines:
            lines[-1] += raw[1:]
        elif raw:
            lines.append(raw)
    return lines


def unescape(value: str) -> str:
    out = []
    chars = iter(value)
    for ch in chars:
        if ch == "\\":
            nxt = next(chars, "")
            out.append("\n" if nxt in ("n", "N") else nxt)
        else:
            out.append(ch)
    return "".join(out)


def _split_line(line: str) -> tuple[str, dict[str, list[str]], str]:
    head, _, value = line.partition(":")
    name, *params = head.split(";")
    # Drop the group prefix: "item1.EMAIL" → "EMAIL"
    name = name.rsplit(".", 1)[-1].upper()
    parsed: dict[str, list[str]] = {}
    for param in params:
        key, sep, val = param.partition("=")
        if not sep:
            # vCard 2.1 bare type: "EMAIL;INTERNET;HOME:..."
            key, val = "TYPE", key
        parsed.setdefault(key.upper(), []).extend(
            v.strip('"').lower() for v in val.split(",") if v
        )
    return name, parsed, value


def _type_label(params: dict[str, list[str]]) -> str | None:
    types = [t for t in params.get("TYPE", []) if t not in ("pref", "internet", "voice")]
    return types[0] if types else None


def parse_vcard(text: str) -> Contact | None:
    """Parse one vCard; returns None when it has no formatted name (FN)."""
    uid = name = organization = title = notes = None
    emails: list[ContactEmail] = []
    phones: list[ContactPhone] = []

    for line in unfold(text):
        if ":" not in line:
            continue
        prop, params, value = _split_line(line)
        if prop == "UID":
            uid = value.strip() or None
        elif prop == "FN":
            name = unescape(value).strip() or None
        elif prop == "EMAIL" and value.strip():
            emails.append(ContactEmail(email=value.strip(), type=_type_label(params)))
        elif prop == "TEL" and value.strip():
            phones.append(ContactPhone(number=value.strip(), type=_type_label(params)))
        elif prop == "ORG":
            parts = [unescape(p).strip() for p in value.split(";")]
            organization = next((p for p in parts if p), None)
        elif prop == "TITLE":
            title = unescape(value).strip() or None
        elif prop == "NOTE":
            notes = unescape(value).strip() or None

    if not name:
        logger.debug("Skipping vCard without FN")
        return None
    if not uid:
        uid = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
    return Contact(
        id=uid,
        name=name,
        emails=emails,
        phones=phones,
        organization=organization,
        title=title,
        notes=notes,
    )


def split_vcards(text: str) -> list[str]:
    """Split a stream holding several BEGIN:VCARD ... END:VCARD blocks."""
    cards: list[str] = []
    current: list[str] | None = None
    for line in text.replace("\r\n", "\n").split("\n"):
        upper = line.strip().upper()
        if upper == "BEGIN:VCARD":
            current = [line]
        elif upper == "END:VCARD" and current is not None:
            current.append(line)
            cards.append("\n".join(current))
            current = None
        elif current is not None:
            current.append(line)
    return cards
