"""Settings, user configuration and logging setup.

Three layers of configuration exist:

1. ``Settings``: process environment (``MACHINERY_DIR``, ``MACHINERY_LOG_FILE``),
   read through pydantic-settings every time it is requested so that a
   changed environment takes effect immediately.
2. ``UserConfig``: the operator's persistent preferences, stored as YAML in
   ``<machinery dir>/machinery_config.yml`` and edited with
   ``machinery config``.
3. Command line flags (``--debug``, ``--verbose``) which are passed
   explicitly to the objects that need them.

Example:
-------
    >>> from machinery._config import Settings, UserConfig
    >>>
    >>> settings = Settings()
    >>> config = UserConfig.load(settings.dir)
    >>> config.get("remote-user")
    'root'

"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console
from rich.logging import RichHandler

from machinery.errors import InvalidConfigValue, UnknownConfigKey

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class Settings(BaseSettings):
    """Environment driven settings."""

    model_config = SettingsConfigDict(env_prefix="MACHINERY_", extra="ignore")

    dir: Path = Field(default_factory=lambda: Path.home() / ".machinery")
    log_file: str = "machinery.log"

    @field_validator("dir", mode="before")
    @classmethod
    def expand_dir(cls, v):
        return Path(v).expanduser() if v else v

    @property
    def log_path(self) -> Path:
        return self.dir / self.log_file


# ── User configuration ─────────────────────────────────────────────────────

CONFIG_FILE = "machinery_config.yml"

DEFAULTS: dict[str, tuple[Any, str]] = {
    "hints": (True, "Show hints about usage of Machinery in the context of the commands ran by the user."),
    "remote-user": ("root", "Defines the user which is used to access the inspected system via SSH."),
    "http-server-port": (5000, "The port the 'serve' command listens on by default."),
    "show-pager": (True, "Page the output of commands like 'show' and 'man' when printing to a terminal."),
}

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


class UserConfig:
    """Persistent key/value preferences backed by a YAML file."""

    def __init__(self, path: Path, values: dict[str, Any] | None = None):
        self.path = path
        self._values = dict(values or {})

    @classmethod
    def load(cls, machinery_dir: Path) -> UserConfig:
        path = Path(machinery_dir) / CONFIG_FILE
        values: dict[str, Any] = {}
        if path.exists():
            data = yaml.safe_load(path.read_text())
            if isinstance(data, dict):
                values = {k: v for k, v in data.items() if k in DEFAULTS}
        return cls(path, values)

    @staticmethod
    def keys() -> list[str]:
        return sorted(DEFAULTS)

    @staticmethod
    def description(key: str) -> str:
        if key not in DEFAULTS:
            raise UnknownConfigKey(key)
        return DEFAULTS[key][1]

    def get(self, key: str) -> Any:
        if key not in DEFAULTS:
            raise UnknownConfigKey(key)
        return self._values.get(key, DEFAULTS[key][0])

    def set(self, key: str, value: Any) -> None:
        """Set ``key`` to ``value`` converted to the default's type and save."""
        if key not in DEFAULTS:
            raise UnknownConfigKey(key)
        self._values[key] = _coerce(key, value, DEFAULTS[key][0])
        self.save()

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(yaml.safe_dump(self._values, default_flow_style=False, sort_keys=True))

    def items(self) -> list[tuple[str, Any]]:
        return [(key, self.get(key)) for key in self.keys()]


def _coerce(key: str, value: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise InvalidConfigValue(key, str(value), "a boolean")
    if isinstance(default, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise InvalidConfigValue(key, str(value), "an integer") from None
    return str(value)


# ── Logging ────────────────────────────────────────────────────────────────


def configure_logging(*, debug: bool = False, log_path: Path | None = None) -> logging.Logger:
    """Configure the ``machinery`` logger for one invocation.

    Records go to ``log_path`` when given. In debug mode they are also shown
    on stderr through rich.
    """
    logger = logging.getLogger("machinery")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False

    if log_path is not None:
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError:
            file_handler = None
        if file_handler is not None:
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            logger.addHandler(file_handler)

    if debug:
        logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False, markup=False))

    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    return logger
