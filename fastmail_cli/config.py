"""Credential configuration: environment variables first, then the TOML file.

The file lives at ``~/.config/fastmail-cli/config.toml``::

    [core]
    api_token = "fmu1-..."

    [contacts]
    username = "me@fastmail.com"
    app_password = "..."
"""

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path

import tomli_w

from fastmail_cli.errors import ConfigError, NotAuthenticated

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "FASTMAIL_CLI_CONFIG"
TOKEN_ENV = "FASTMAIL_API_TOKEN"
USERNAME_ENV = "FASTMAIL_USERNAME"
APP_PASSWORD_ENV = "FASTMAIL_APP_PASSWORD"


def default_config_path() -> Path:
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".config" / "fastmail-cli" / "config.toml"


@dataclass
class Config:
    api_token: str | None = None
    username: str | None = None
    app_password: str | None = None
    path: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Read the config file; a missing file yields an empty config."""
        path = path or default_config_path()
        if not path.exists():
            return cls(path=path)
        try:
            with path.open("rb") as f:
                data = tomllib.load(f)
        except (tomllib.TOMLDecodeError, OSError) as exc:
            raise ConfigError(f"Could not read config file {path}: {exc}") from exc

        core = data.get("core") or {}
        contacts = data.get("contacts") or {}
        return cls(
            api_token=core.get("api_token"),
            username=contacts.get("username"),
            app_password=contacts.get("app_password"),
            path=path,
        )

    def save(self) -> Path:
        """Write the config file with owner-only permissions."""
        path = self.path or default_config_path()
        if not path.parent.exists():
            path.parent.mkdir(parents=True, mode=0o700)

        data: dict[str, dict[str, str]] = {}
        if self.api_token:
            data["core"] = {"api_token": self.api_token}
        contacts = {
            key: value
            for key, value in (("username", self.username), ("app_password", self.app_password))
            if value
        }
        if contacts:
            data["contacts"] = contacts

        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            tomli_w.dump(data, f)
        os.chmod(path, 0o600)
        logger.info("Saved config to %s", path)
        return path

    def set_token(self, token: str) -> None:
        self.api_token = token

    # ── Lookups (environment wins) ─────────────────────────────────────────────

    def get_token(self) -> str:
        token = os.environ.get(TOKEN_ENV) or self.api_token
        if not token:
            raise NotAuthenticated()
        return token

    def get_username(self) -> str:
        username = os.environ.get(USERNAME_ENV) or self.username
        if not username:
            raise ConfigError(
                f"Username not set in [contacts] config. Set {USERNAME_ENV} or add it to the config file."
            )
        return username

    def get_app_password(self) -> str:
        password = os.environ.get(APP_PASSWORD_ENV) or self.app_password
        if not password:
            raise ConfigError(
                f"App password not set in [contacts] config. Set {APP_PASSWORD_ENV} or add it to the config file."
            )
        return password
