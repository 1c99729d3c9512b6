"""Plain text rendering of system descriptions.

Every scope has a renderer producing a block like::

    # Operating System [web01] (2026-10-19 10:12:01)

      Name: openSUSE Leap
      Version: 15.5
      Architecture: x86_64

``show_description`` prints the blocks for the requested scopes, after
removing the elements excluded by the show filter.
"""

from __future__ import annotations

import copy
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

from machinery.description import SystemDescription
from machinery.scopes import cli_name

if TYPE_CHECKING:
    from machinery.filter import Filter
    from machinery.ui import Ui

DIFFS_DIR = Path("analyze") / "changed_config_files_diffs"


class Renderer:
    """Base class; subclasses set ``scope`` and ``display_name`` and implement ``content``."""

    scope = ""
    display_name = ""

    def render(self, description: SystemDescription, *, diffs_dir: Path | None = None) -> str:
        payload = description.scopes.get(self.scope)
        if payload is None:
            return ""
        lines = self.content(payload, diffs_dir=diffs_dir)
        out = [f"# {self.display_name}{self.heading_suffix(description)}", ""]
        out.extend(f"  {line}" if line else "" for line in lines)
        out.append("")
        return "\n".join(out) + "\n"

    def heading_suffix(self, description: SystemDescription) -> str:
        meta = description.meta.get(self.scope)
        if not meta:
            return ""
        suffix = f" [{meta.get('hostname', '')}]"
        modified = meta.get("modified")
        if modified:
            try:
                stamp = datetime.fromisoformat(modified).astimezone()
            except ValueError:
                return suffix
            suffix += f" ({stamp.strftime('%Y-%m-%d %H:%M:%S')})"
        return suffix

    def content(self, payload: dict, *, diffs_dir: Path | None = None) -> list[str]:
        raise NotImplementedError


class OsRenderer(Renderer):
    scope = "os"
    display_name = "Operating System"

    def content(self, payload, *, diffs_dir=None):
        return [
            f"Name: {payload.get('name')}",
            f"Version: {payload.get('version')}",
            f"Architecture: {payload.get('architecture')}",
        ]


class PackagesRenderer(Renderer):
    scope = "packages"
    display_name = "Packages"

    def content(self, payload, *, diffs_dir=None):
        packages = payload.get("packages", [])
        if not packages:
            return ["There are no packages."]
        lines = []
        for p in packages:
            label = f"{p['name']}-{p['version']}"
            if p.get("release"):
                label += f"-{p['release']}"
            if p.get("arch"):
                label += f" ({p['arch']})"
            lines.append(f"* {label}")
        return lines


class PatternsRenderer(Renderer):
    scope = "patterns"
    display_name = "Patterns"

    def content(self, payload, *, diffs_dir=None):
        if payload.get("patterns_system") is None:
            return ["Patterns are not supported on this system."]
        patterns = payload.get("patterns", [])
        if not patterns:
            return ["There are no patterns or tasks."]
        return [f"* {p['name']}" for p in patterns]


class RepositoriesRenderer(Renderer):
    scope = "repositories"
    display_name = "Repositories"

    def content(self, payload, *, diffs_dir=None):
        repositories = payload.get("repositories", [])
        if not repositories:
            return ["There are no repositories."]
        lines = []
        for r in repositories:
            lines.append(f"* {r.get('name') or r['alias']}")
            lines.append(f"  URI: {r.get('url')}")
            lines.append(f"  Alias: {r['alias']}")
            lines.append(f"  Enabled: {'Yes' if r.get('enabled', True) else 'No'}")
            if r.get("priority") is not None:
                lines.append(f"  Priority: {r['priority']}")
            lines.append("")
        return lines[:-1]


class UsersRenderer(Renderer):
    scope = "users"
    display_name = "Users"

    def content(self, payload, *, diffs_dir=None):
        users = payload.get("users", [])
        if not users:
            return ["There are no users."]
        lines = []
        for u in users:
            details = ", ".join(
                f"{k}: {u[k]}" for k in ("uid", "gid", "shell") if u.get(k) is not None and u.get(k) != ""
            )
            comment = f"{u['comment']}, " if u.get("comment") else ""
            lines.append(f"* {u['name']} ({comment}{details})")
        return lines


class GroupsRenderer(Renderer):
    scope = "groups"
    display_name = "Groups"

    def content(self, payload, *, diffs_dir=None):
        groups = payload.get("groups", [])
        if not groups:
            return ["There are no groups."]
        lines = []
        for g in groups:
            members = f", users: {','.join(g['users'])}" if g.get("users") else ""
            lines.append(f"* {g['name']} (gid: {g.get('gid')}{members})")
        return lines


class ServicesRenderer(Renderer):
    scope = "services"
    display_name = "Services"

    def content(self, payload, *, diffs_dir=None):
        services = payload.get("services", [])
        if not services:
            return ["There are no services."]
        return [f"* {s['name']}: {s['state']}" for s in services]


class FilesRenderer(Renderer):
    def content(self, payload, *, diffs_dir=None):
        files = payload.get("files", [])
        lines = [f"Files extracted: {'yes' if payload.get('extracted') else 'no'}", ""]
        if not files:
            return lines + ["There are no files."]
        for f in files:
            lines.append(f"* {f['name']}{self.details(f)}")
            if diffs_dir is not None:
                diff = diffs_dir / (f["name"].lstrip("/") + ".diff")
                if diff.is_file():
                    lines.append("")
                    lines.extend(f"    {line}" for line in diff.read_text(encoding="utf-8").splitlines())
                    lines.append("")
        return lines

    def details(self, f: dict) -> str:
        parts = []
        if f.get("package_name"):
            parts.append(f"{f['package_name']}-{f.get('package_version') or ''}".rstrip("-"))
        if f.get("changes"):
            parts.append(", ".join(f["changes"]))
        return f" ({': '.join(parts)})" if parts else ""


class ChangedConfigFilesRenderer(FilesRenderer):
    scope = "changed_config_files"
    display_name = "Changed Configuration Files"


class ChangedManagedFilesRenderer(FilesRenderer):
    scope = "changed_managed_files"
    display_name = "Changed Managed Files"


class UnmanagedFilesRenderer(FilesRenderer):
    scope = "unmanaged_files"
    display_name = "Unmanaged Files"

    def details(self, f: dict) -> str:
        return f" ({f.get('type', 'file')})"


RENDERERS: dict[str, Renderer] = {
    r.scope: r
    for r in (
        ChangedConfigFilesRenderer(),
        ChangedManagedFilesRenderer(),
        GroupsRenderer(),
        OsRenderer(),
        PackagesRenderer(),
        PatternsRenderer(),
        RepositoriesRenderer(),
        ServicesRenderer(),
        UnmanagedFilesRenderer(),
        UsersRenderer(),
    )
}


# ── Show task ─────────────────────────────────────────────────────────────


def apply_show_filter(description: SystemDescription, filter: Filter) -> SystemDescription:
    """Return a copy of ``description`` without the elements ``filter`` excludes.

    Every list of dicts inside a scope payload is checked: an element is
    dropped if ``/<scope>/<list key>/<attribute>=<value>`` matches for any of
    its attributes.
    """
    filtered = SystemDescription(
        description.name,
        scopes=copy.deepcopy(description.scopes),
        meta=copy.deepcopy(description.meta),
        filters=description.filters,
        format_version=description.format_version,
    )
    if filter.is_empty():
        return filtered
    for scope, payload in filtered.scopes.items():
        if not isinstance(payload, dict):
            continue
        for key, value in payload.items():
            if isinstance(value, list):
                payload[key] = [
                    e
                    for e in value
                    if not (
                        isinstance(e, dict)
                        and any(filter.matches(f"/{scope}/{key}/{attr}", str(v)) for attr, v in e.items())
                    )
                ]
    filtered.set_filter_definitions("show", filter.criteria())
    return filtered


def filter_listing(description: SystemDescription) -> list[str]:
    """Lines describing the inspection and show filters of ``description``."""
    lines = []
    for phase, heading in (
        ("inspect", "The following filters were applied during inspection:"),
        ("show", "The following filters were applied before showing the description:"),
    ):
        criteria = description.filter_definitions(phase)
        if criteria:
            lines.append(f"  {heading}")
            lines.extend(f"    * {c}" for c in criteria)
            lines.append("")
    containers = {m.get("type") for m in description.meta.values() if m.get("type") == "container"}
    if containers:
        lines.append("  Type of inspected container: docker")
        lines.append("")
    return lines


def show_description(
    ui: Ui,
    description: SystemDescription,
    scopes: Iterable[str],
    filter: Filter,
    *,
    verbose: bool = False,
    diffs_dir: Path | None = None,
) -> None:
    """Print the requested scopes of ``description``."""
    description = apply_show_filter(description, filter)
    scopes = list(scopes)

    with ui.pager():
        if verbose:
            for line in filter_listing(description):
                ui.puts(line)

        for scope in scopes:
            if not description.has_scope(scope):
                continue
            renderer = RENDERERS.get(scope)
            if renderer is None:
                ui.warn(f"Scope '{cli_name(scope)}' is not known to this version of Machinery and is not shown.")
                continue
            ui.puts(renderer.render(description, diffs_dir=diffs_dir))

        missing = [s for s in scopes if not description.has_scope(s)]
        if missing:
            ui.puts("# The following requested scopes were not inspected:")
            ui.puts("")
            for scope in missing:
                ui.puts(f"  * {cli_name(scope)}")
            ui.puts("")
