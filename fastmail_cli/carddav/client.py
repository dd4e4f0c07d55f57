"""Fastmail CardDAV client — address book discovery and contact lookup."""

import logging
import xml.etree.ElementTree as ET
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import quote, urljoin, urlparse

import httpx

from fastmail_cli.carddav.types import AddressBook, Contact
from fastmail_cli.carddav.vcard import parse_vcard, split_vcards
from fastmail_cli.config import Config
from fastmail_cli.errors import ResponseParse
from fastmail_cli.transport import HttpTransport, check_status

logger = logging.getLogger(__name__)

CARDDAV_BASE_URL = "https://carddav.fastmail.com"

_DAV = "{DAV:}"
_CARDDAV = "{urn:ietf:params:xml:ns:carddav}"

_PROPFIND_BODY = """<?xml version="1.0" encoding="utf-8"?>
<d:propfind xmlns:d="DAV:" xmlns:card="urn:ietf:params:xml:ns:carddav">
  <d:prop>
    <d:displayname/>
    <d:resourcetype/>
  </d:prop>
</d:propfind>"""

_REPORT_BODY = """<?xml version="1.0" encoding="utf-8"?>
<card:addressbook-query xmlns:d="DAV:" xmlns:card="urn:ietf:params:xml:ns:carddav">
  <d:prop>
    <d:getetag/>
    <card:address-data/>
  </d:prop>
</card:addressbook-query>"""

_XML_HEADERS = {"Content-Type": "application/xml; charset=utf-8", "Depth": "1"}


def _parse_multistatus(body: bytes) -> list[ET.Element]:
    try:
        root = ET.fromstring(body)
    except ET.ParseError as exc:
        raise ResponseParse(f"Invalid CardDAV XML response: {exc}") from exc
    return root.findall(f"{_DAV}response")


def _normalize_path(href: str) -> str:
    return urlparse(href).path.rstrip("/") + "/"


class CardDavClient:
    """Async CardDAV client using HTTP basic auth with an app password.

    Each call is a single request; searching fans out over address books
    one at a time.
    """

    def __init__(
        self,
        username: str,
        app_password: str,
        *,
        base_url: str = CARDDAV_BASE_URL,
        transport: HttpTransport | None = None,
    ) -> None:
        self._username = username
        self._base_url = base_url.rstrip("/")
        self._transport = transport or HttpTransport(httpx.BasicAuth(username, app_password))

    @property
    def home_path(self) -> str:
        return f"/dav/addressbooks/user/{quote(self._username, safe='@')}/"

    async def close(self) -> None:
        await self._transport.aclose()

    async def list_addressbooks(self) -> list[AddressBook]:
        url = f"{self._base_url}{self.home_path}"
        status, body = await self._transport.send(
            url, "PROPFIND", content=_PROPFIND_BODY, headers=_XML_HEADERS
        )
        check_status(status, body)

        home = _normalize_path(self.home_path)
        books: list[AddressBook] = []
        for response in _parse_multistatus(body):
            href = (response.findtext(f"{_DAV}href") or "").strip()
            if not href or _normalize_path(href) == home:
                continue
            resource_type = response.find(f".//{_DAV}resourcetype")
            if resource_type is None or resource_type.find(f"{_CARDDAV}addressbook") is None:
                continue
            name = (response.findtext(f".//{_DAV}displayname") or "").strip()
            books.append(AddressBook(href=href, name=name or href.rstrip("/").rsplit("/", 1)[-1]))
        logger.debug("Found %d address books", len(books))
        return books

    async def list_contacts(self, addressbook_href: str) -> list[Contact]:
        url = urljoin(f"{self._base_url}/", addressbook_href)
        status, body = await self._transport.send(
            url, "REPORT", content=_REPORT_BODY, headers=_XML_HEADERS
        )
        check_status(status, body)

        contacts: list[Contact] = []
        for response in _parse_multistatus(body):
            data = response.findtext(f".//{_CARDDAV}address-data")
            if not data:
                continue
            for card in split_vcards(data) or [data]:
                contact = parse_vcard(card)
                if contact is not None:
                    contacts.append(contact)
        return sorted(contacts, key=lambda c: c.name.lower())

    async def list_all_contacts(self) -> list[Contact]:
        contacts: list[Contact] = []
        for book in await self.list_addressbooks():
            contacts.extend(await self.list_contacts(book.href))
        return sorted(contacts, key=lambda c: c.name.lower())

    async def search_contacts(self, query: str) -> list[Contact]:
        return [c for c in await self.list_all_contacts() if c.matches(query)]


@asynccontextmanager
async def carddav_client(config: Config) -> AsyncIterator[CardDavClient]:
    """Yield a CardDavClient built from the contacts credentials in ``config``."""
    client = CardDavClient(config.get_username(), config.get_app_password())
    try:
        yield client
    finally:
        await client.close()
