"""Data types for address books and contacts."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class AddressBook:
    href: str
    name: str


@dataclass(frozen=True)
class ContactEmail:
    email: str
    type: str | None = None


@dataclass(frozen=True)
class ContactPhone:
    number: str
    type: str | None = None


@dataclass(frozen=True)
class Contact:
    id: str
    name: str
    emails: list[ContactEmail] = field(default_factory=list)
    phones: list[ContactPhone] = field(default_factory=list)
    organization: str | None = None
    title: str | None = None
    notes: str | None = None

    def matches(self, query: str) -> bool:
        """Case-insensitive substring match on name, emails or organization."""
        q = query.lower()
        if q in self.name.lower():
            return True
        if any(q in e.email.lower() for e in self.emails):
            return True
        return bool(self.organization and q in self.organization.lower())
