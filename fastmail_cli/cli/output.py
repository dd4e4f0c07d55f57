"""JSON result envelope printed by every CLI command."""

import dataclasses
import json
from enum import Enum
from typing import Any

import click
from rich.console import Console

console = Console(width=200)


def to_jsonable(value: Any) -> Any:
    """Convert dataclasses (and containers of them) into JSON-ready data.

    Dataclass fields named with a trailing underscore (``from_``) are emitted
    without it.
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name.rstrip("_"): to_jsonable(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


def emit(envelope: dict[str, Any]) -> None:
    console.print_json(json.dumps(envelope, default=str), indent=2)


def success(data: Any = None, message: str | None = None) -> None:
    envelope: dict[str, Any] = {"success": True}
    if data is not None:
        envelope["data"] = to_jsonable(data)
    if message:
        envelope["message"] = message
    emit(envelope)


def failure(error: dict[str, Any], message: str | None = None) -> None:
    """Print a failed envelope and exit with status 1."""
    envelope: dict[str, Any] = {"success": False, "error": error}
    if message:
        envelope["message"] = message
    emit(envelope)
    raise click.exceptions.Exit(1)
