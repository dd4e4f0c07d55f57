"""Parsing of comma-separated address lists given on the command line."""

from fastmail_cli.jmap.types import EmailAddress


def parse_address(value: str) -> EmailAddress:
    """Parse ``Name <email>``, ``<email>`` or a bare address."""
    value = value.strip()
    if value.endswith(">") and "<" in value:
        name, _, rest = value.rpartition("<")
        name = name.strip().strip('"').strip()
        return EmailAddress(email=rest[:-1].strip(), name=name or None)
    return EmailAddress(email=value)


def parse_addresses(value: str | None) -> list[EmailAddress]:
    if not value:
        return []
    return [parse_address(part) for part in value.split(",") if part.strip()]
