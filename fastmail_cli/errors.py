"""Error taxonomy shared by the JMAP client, CardDAV client, CLI and MCP server.

Every error carries a stable ``kind`` string so the CLI and the MCP server can
report failures in a structured way without matching on messages.
"""


class FastmailError(Exception):
    """Base class for all client errors."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


# ── Authentication & transport ─────────────────────────────────────────────────


class NotAuthenticated(FastmailError):
    kind = "not_authenticated"

    def __init__(self, message: str = "Authentication required. Run `fastmail-cli auth <token>` first.") -> None:
        super().__init__(message)


class InvalidToken(FastmailError):
    kind = "invalid_token"

    def __init__(self, message: str = "Invalid or expired API token") -> None:
        super().__init__(message)


class RateLimited(FastmailError):
    kind = "rate_limited"

    def __init__(self, message: str = "Rate limited. Try again later.") -> None:
        super().__init__(message)


class ServerError(FastmailError):
    kind = "server_error"

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TransportFailure(FastmailError):
    """The request never produced an HTTP response (DNS, connect, timeout)."""

    kind = "transport"


# ── Protocol ───────────────────────────────────────────────────────────────────


class MethodError(FastmailError):
    """A single method call in a batch failed; other calls may have succeeded."""

    kind = "method_error"

    def __init__(self, error_type: str, description: str, method: str) -> None:
        super().__init__(f"{method} failed: {error_type}: {description}")
        self.error_type = error_type
        self.description = description
        self.method = method

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": self.kind,
            "message": self.message,
            "method": self.method,
            "error_type": self.error_type,
        }


class SubmissionFailed(MethodError):
    """The draft was created but its submission failed.

    ``draft_id`` names the draft left behind in the Drafts mailbox.
    """

    kind = "submission_failed"

    def __init__(self, error_type: str, description: str, draft_id: str) -> None:
        super().__init__(error_type, description, "EmailSubmission/set")
        self.message = (
            f"Draft {draft_id} was created but submission failed: "
            f"{error_type}: {description}"
        )
        self.args = (self.message,)
        self.draft_id = draft_id

    def to_dict(self) -> dict[str, str]:
        data = super().to_dict()
        data["draft_id"] = self.draft_id
        return data


class ResponseParse(FastmailError):
    kind = "response_parse"


class DuplicateCallId(FastmailError):
    kind = "duplicate_call_id"

    def __init__(self, call_id: str) -> None:
        super().__init__(f"Duplicate call id in batch: {call_id!r}")
        self.call_id = call_id


# ── Lookups ────────────────────────────────────────────────────────────────────


class MailboxNotFound(FastmailError):
    kind = "mailbox_not_found"

    def __init__(self, name: str) -> None:
        super().__init__(f"Mailbox not found: {name}")
        self.name = name


class EmailNotFound(FastmailError):
    kind = "email_not_found"

    def __init__(self, email_id: str) -> None:
        super().__init__(f"Email not found: {email_id}")
        self.email_id = email_id


class IdentityNotFound(FastmailError):
    kind = "identity_not_found"

    def __init__(self, message: str = "Identity not found for sending") -> None:
        super().__init__(message)


class BlobNotFound(FastmailError):
    kind = "blob_not_found"

    def __init__(self, blob_id: str) -> None:
        super().__init__(f"Blob not found: {blob_id}")
        self.blob_id = blob_id


# ── Configuration & confirmation ───────────────────────────────────────────────


class ConfigError(FastmailError):
    kind = "config"


class InvalidMode(FastmailError):
    kind = "invalid_mode"

    def __init__(self, value: str) -> None:
        super().__init__(f"Invalid action {value!r}: expected 'preview' or 'confirm'")
        self.value = value


class ConfirmationMismatch(FastmailError):
    kind = "confirmation_mismatch"

    def __init__(self) -> None:
        super().__init__(
            "Confirmation token does not match the previewed action; "
            "preview again before confirming"
        )
