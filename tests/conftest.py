"""Shared pytest fixtures."""

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from fastmail_cli.jmap.client import JmapClient
from fastmail_cli.jmap.types import Session


def jmap_body(*responses: list[Any]) -> tuple[int, bytes]:
    """Build a 200 transport result carrying the given methodResponses."""
    return 200, json.dumps({"methodResponses": list(responses), "sessionState": "s1"}).encode()


def sent_calls(transport: MagicMock, index: int = -1) -> list[list[Any]]:
    """Return the methodCalls of one request made through the mocked transport."""
    return transport.send_json.call_args_list[index].args[2]["methodCalls"]


@pytest.fixture
def session() -> Session:
    return Session(
        api_url="https://api.example.com/jmap/api/",
        download_url="https://api.example.com/jmap/download/{accountId}/{blobId}/{name}?type={type}",
        upload_url="https://api.example.com/jmap/upload/{accountId}/",
        username="me@example.com",
        primary_account_id="u1",
    )


@pytest.fixture
def transport() -> MagicMock:
    t = MagicMock()
    t.send_json = AsyncMock()
    t.send = AsyncMock()
    t.aclose = AsyncMock()
    return t


@pytest.fixture
def client(session: Session, transport: MagicMock) -> JmapClient:
    return JmapClient(session, transport)


@pytest.fixture
def mailboxes_payload() -> dict[str, Any]:
    return {
        "accountId": "u1",
        "list": [
            {"id": "mb-inbox", "name": "Inbox", "role": "inbox", "totalEmails": 10, "unreadEmails": 2},
            {"id": "mb-drafts", "name": "Drafts", "role": "drafts"},
            {"id": "mb-sent", "name": "Sent", "role": "sent"},
            {"id": "mb-junk", "name": "Spam", "role": "junk"},
            {"id": "mb-receipts", "name": "Receipts", "role": None},
        ],
        "notFound": [],
    }


@pytest.fixture
def identity_payload() -> dict[str, Any]:
    return {
        "accountId": "u1",
        "list": [{"id": "id-1", "name": "Me", "email": "me@example.com"}],
    }


@pytest.fixture
def budget_email() -> dict[str, Any]:
    """An email sent by a@x.com to me and b@x.com."""
    return {
        "id": "E1",
        "threadId": "T1",
        "blobId": "B-E1",
        "mailboxIds": {"mb-inbox": True},
        "keywords": {},
        "receivedAt": "2026-02-27T09:00:00Z",
        "messageId": ["m1@x.com"],
        "references": ["m0@x.com"],
        "from": [{"name": "Alice", "email": "a@x.com"}],
        "to": [{"email": "me@example.com"}, {"email": "b@x.com"}],
        "cc": [],
        "subject": "Budget review",
        "preview": "Please review the budget",
        "textBody": [{"partId": "1", "type": "text/plain"}],
        "bodyValues": {"1": {"value": "Please review the budget by Friday."}},
        "attachments": [],
    }
