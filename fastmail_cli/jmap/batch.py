"""Batched JMAP method calls: the request builder and the response resolver.

A batch is an ordered list of ``[name, arguments, callId]`` triples sent in a
single HTTP request.  Later calls can consume earlier results through a
``BackReference``, serialized as ``{"#ids": {"resultOf": ..., "name": ...,
"path": ...}}``; the server resolves it.  Creation ids (``#draft``) are a
separate marker, ``CreationReference``, usable as a value or a mapping key.
"""

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from fastmail_cli.errors import DuplicateCallId, MethodError, ResponseParse

logger = logging.getLogger(__name__)

T = TypeVar("T")

CORE_CAPABILITY = "urn:ietf:params:jmap:core"
MAIL_CAPABILITY = "urn:ietf:params:jmap:mail"
SUBMISSION_CAPABILITY = "urn:ietf:params:jmap:submission"
MASKED_EMAIL_CAPABILITY = "https://www.fastmail.com/dev/maskedemail"

CAPABILITIES: tuple[str, ...] = (
    CORE_CAPABILITY,
    MAIL_CAPABILITY,
    SUBMISSION_CAPABILITY,
    MASKED_EMAIL_CAPABILITY,
)

ERROR_METHOD = "error"


@dataclass(frozen=True)
class BackReference:
    """Points at a value inside the result of an earlier call in the batch."""

    call_id: str
    name: str
    path: str

    def to_wire(self) -> dict[str, str]:
        return {"resultOf": self.call_id, "name": self.name, "path": self.path}


@dataclass(frozen=True)
class CreationReference:
    """Refers to an object created earlier in the same batch (``#draft``)."""

    creation_id: str

    def to_wire(self) -> str:
        return f"#{self.creation_id}"


@dataclass(frozen=True)
class MethodCall:
    name: str
    arguments: dict[str, Any]
    call_id: str

    def to_wire(self) -> list[Any]:
        return [self.name, _encode(self.arguments), self.call_id]


@dataclass(frozen=True)
class CallHandle:
    """Returned by ``BatchRequestBuilder.add``; makes back-references to the call."""

    call_id: str
    method: str

    def ref(self, path: str) -> BackReference:
        return BackReference(call_id=self.call_id, name=self.method, path=path)


def _encode(value: Any) -> Any:
    """Serialize reference markers into their wire form, recursively."""
    if isinstance(value, dict):
        encoded: dict[str, Any] = {}
        for key, item in value.items():
            if isinstance(key, CreationReference):
                key = key.to_wire()
            if isinstance(item, BackReference):
                encoded[f"#{key}"] = item.to_wire()
            else:
                encoded[key] = _encode(item)
        return encoded
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    if isinstance(value, CreationReference):
        return value.to_wire()
    if isinstance(value, BackReference):
        # Only valid as a dict value, where the key carries the "#" prefix
        raise TypeError("BackReference must be used as an argument value")
    return value


class BatchRequestBuilder:
    """Accumulates method calls for one request.

    Call ids must be unique within the batch; ``build`` is pure and may be
    called any number of times.
    """

    def __init__(self, using: Sequence[str] = CAPABILITIES) -> None:
        self._using = list(using)
        self._calls: list[MethodCall] = []
        self._ids: set[str] = set()

    def add(self, method: str, arguments: dict[str, Any], call_id: str) -> CallHandle:
        if call_id in self._ids:
            raise DuplicateCallId(call_id)
        self._ids.add(call_id)
        self._calls.append(MethodCall(name=method, arguments=arguments, call_id=call_id))
        return CallHandle(call_id=call_id, method=method)

    @property
    def calls(self) -> list[MethodCall]:
        return list(self._calls)

    def build(self) -> dict[str, Any]:
        return {
            "using": list(self._using),
            "methodCalls": [call.to_wire() for call in self._calls],
        }

    def __len__(self) -> int:
        return len(self._calls)


@dataclass(frozen=True)
class MethodResponse:
    name: str
    payload: dict[str, Any]
    call_id: str

    @property
    def is_error(self) -> bool:
        return self.name == ERROR_METHOD


class BatchResponse:
    """The method responses of one batch, resolvable per call.

    Entries are matched to calls by position first.  Servers may append
    implicit responses (``onSuccessUpdateEmail`` adds an ``Email/set``), so
    extra trailing entries are ignored and a call id echoed at the wrong
    position falls back to a lookup by id.
    """

    def __init__(self, calls: Sequence[MethodCall], responses: Sequence[MethodResponse]) -> None:
        self._calls = list(calls)
        self._responses = list(responses)

    @classmethod
    def from_wire(cls, calls: Sequence[MethodCall], body: Any) -> "BatchResponse":
        if not isinstance(body, dict):
            raise ResponseParse("Response is not a JSON object")
        raw = body.get("methodResponses")
        if not isinstance(raw, list):
            raise ResponseParse("Response has no methodResponses array")

        responses: list[MethodResponse] = []
        for entry in raw:
            if not isinstance(entry, list) or len(entry) != 3:
                raise ResponseParse(f"Malformed method response: {entry!r}")
            name, payload, call_id = entry
            if not isinstance(name, str) or not isinstance(payload, dict):
                raise ResponseParse(f"Malformed method response: {entry!r}")
            responses.append(MethodResponse(name=name, payload=payload, call_id=str(call_id)))
        return cls(calls, responses)

    @property
    def responses(self) -> list[MethodResponse]:
        return list(self._responses)

    def resolve(
        self,
        call_id: str,
        expected_method: str,
        decode: Callable[[dict[str, Any]], T] | None = None,
    ) -> Any:
        """Return the decoded result of one call.

        Raises MethodError when the server reported an error for this call and
        ResponseParse when the entry is missing or has an unexpected shape.
        """
        entry = self._locate(call_id)
        if entry is None:
            raise ResponseParse(f"Missing response data for call {call_id!r} ({expected_method})")

        if entry.is_error:
            raise MethodError(
                error_type=str(entry.payload.get("type", "unknown")),
                description=str(entry.payload.get("description", "No description")),
                method=expected_method,
            )
        if entry.name != expected_method:
            raise ResponseParse(
                f"Expected {expected_method} response for call {call_id!r}, got {entry.name}"
            )
        if decode is None:
            return entry.payload
        try:
            return decode(entry.payload)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ResponseParse(
                f"Could not decode {expected_method} response: {exc!r}"
            ) from exc

    def _locate(self, call_id: str) -> MethodResponse | None:
        index = next(
            (i for i, call in enumerate(self._calls) if call.call_id == call_id), None
        )
        positional: MethodResponse | None = None
        if index is not None and index < len(self._responses):
            positional = self._responses[index]
            if positional.call_id == call_id:
                return positional
            logger.debug(
                "Call id mismatch at position %d (expected %s, got %s)",
                index, call_id, positional.call_id,
            )
        by_id = next((r for r in self._responses if r.call_id == call_id), None)
        return by_id or positional
