"""CLI entry point for fastmail-cli."""

import logging
import os

import click
from dotenv import load_dotenv

from fastmail_cli.cli import output
from fastmail_cli.config import Config
from fastmail_cli.errors import ConfigError

logger = logging.getLogger(__name__)

LOG_LEVEL_ENV = "FASTMAIL_LOG_LEVEL"


def _log_level() -> int:
    """Level named by FASTMAIL_LOG_LEVEL; unknown names fall back to WARNING."""
    level = logging.getLevelName(os.environ.get(LOG_LEVEL_ENV, "WARNING").strip().upper())
    return level if isinstance(level, int) else logging.WARNING


@click.group()
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Fastmail from the command line — mail, masked email and contacts."""
    load_dotenv()
    logging.basicConfig(
        level=_log_level(),  # stderr; stdout carries JSON
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    try:
        ctx.obj = Config.load()
    except ConfigError as exc:
        output.failure(exc.to_dict())


# Import and register commands after cli is defined to avoid circular imports.
from fastmail_cli.cli.commands import (  # noqa: E402
    auth,
    contacts,
    download,
    forward,
    get,
    list_group,
    mark_read,
    masked,
    mcp_server,
    move,
    reply,
    search,
    send,
    spam,
    thread,
)

for _command in (auth, list_group, get, thread, search, send, reply, forward, move,
                 spam, mark_read, download, masked, contacts, mcp_server):
    cli.add_command(_command)
