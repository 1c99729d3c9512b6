"""Store maintenance commands: list, remove, copy, move and config."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Iterable

from rich.table import Table

from machinery.errors import DescriptionError, DescriptionFormatTooOld, InvalidCommandLine
from machinery.scopes import cli_name

if TYPE_CHECKING:
    from machinery._config import UserConfig
    from machinery.store import SystemDescriptionStore
    from machinery.ui import Ui

logger = logging.getLogger(__name__)


def _format_date(value: str | None) -> str:
    if not value:
        return "unknown"
    try:
        return datetime.fromisoformat(value).astimezone().strftime("%Y-%m-%d %H:%M:%S")
    except ValueError:
        return value


def list_descriptions(
    ui: Ui,
    store: SystemDescriptionStore,
    names: Iterable[str] = (),
    *,
    short: bool = False,
    verbose: bool = False,
) -> None:
    """Print the stored descriptions as a table, or names only with ``short``."""
    names = list(names) or store.list()
    if not names:
        ui.puts(f"There are no system descriptions in {store.base_path}.")
        return

    if short:
        for name in names:
            ui.puts(name)
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Host")
    table.add_column("Scopes")
    table.add_column("Last inspected")

    for name in names:
        try:
            description = store.load(name)
        except DescriptionFormatTooOld:
            table.add_row(name, "", "[yellow]needs upgrade-format[/yellow]", "")
            continue
        except DescriptionError as exc:
            logger.warning("Could not load '%s': %s", name, exc)
            table.add_row(name, "", f"[red]{exc.message.splitlines()[0]}[/red]", "")
            continue

        meta = description.meta
        hosts = sorted({m.get("hostname", "") for m in meta.values() if m.get("hostname")})
        if verbose:
            scopes = "\n".join(
                f"{cli_name(s)} ({_format_date(meta.get(s, {}).get('modified'))})" for s in description.scope_names()
            )
        else:
            scopes = ", ".join(cli_name(s) for s in description.scope_names())
        latest = max((m.get("modified", "") for m in meta.values()), default="")
        table.add_row(name, ", ".join(hosts), scopes, _format_date(latest))

    ui.print(table)


def remove_descriptions(
    ui: Ui,
    store: SystemDescriptionStore,
    names: Iterable[str] = (),
    *,
    remove_all: bool = False,
    verbose: bool = False,
) -> None:
    names = list(names)
    if remove_all:
        names = store.list()
    elif not names:
        raise InvalidCommandLine("You need to specify at least one system description name or use --all.")

    for name in names:
        store.delete(name)
        if verbose:
            ui.puts(f"Removed system description '{name}'.")


def configure(ui: Ui, config: UserConfig, key: str | None = None, value: str | None = None) -> None:
    """Show or change user configuration.

    ``key`` may also be given as ``key=value``.
    """
    if key and value is None and "=" in key:
        key, value = key.split("=", 1)

    if key is None:
        for k, v in config.items():
            ui.puts(f"{k}={_display(v)} ({config.description(k)})")
        return

    if value is not None:
        config.set(key, value)
    ui.puts(f"{key}={_display(config.get(key))}")


def _display(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
