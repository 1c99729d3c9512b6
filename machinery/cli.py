"""Machinery CLI: inspect systems and work with their stored descriptions."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path

import click

from machinery import __version__
from machinery._config import Settings, UserConfig, configure_logging
from machinery._types import CurrentUser, ExtractionOptions, InspectionRequest
from machinery.analyze import analyze as run_analyze
from machinery.docker import DockerSystem
from machinery.error_handler import ErrorClassifier
from machinery.export import ExportTask
from machinery.export.autoyast import Autoyast
from machinery.export.build import BuildTask
from machinery.export.kiwi import KiwiConfig
from machinery.filter import Filter, skip_files_criteria, split_criteria
from machinery.inspect_task import InspectionCoordinator
from machinery.scopes import ScopeRegistry
from machinery.serve import serve as run_server
from machinery.show import DIFFS_DIR, show_description
from machinery.ssh import RemoteSystem
from machinery.store import SystemDescriptionStore
from machinery.tasks import configure, list_descriptions, remove_descriptions
from machinery.ui import Ui
from machinery.validate import upgrade_format, validate_description

# ── Invocation state ────────────────────────────────────────────────────────


@dataclass
class Invocation:
    """Per-process state handed to every command through ``ctx.obj``."""

    debug: bool = False
    settings: Settings | None = None
    config: UserConfig | None = None
    store: SystemDescriptionStore | None = None
    ui: Ui | None = None

    def make_ui(self, *, verbose: bool = False, pager: bool = True) -> Ui:
        self.ui = Ui(
            verbose=verbose,
            hints=bool(self.config.get("hints")),
            use_pager=pager and bool(self.config.get("show-pager")),
        )
        return self.ui


# ── Shared options ──────────────────────────────────────────────────────────


def scope_options(f):
    """Scope selection options."""
    f = click.option("--scope", "-s", default=None, help="Comma separated list of scopes to use")(f)
    f = click.option("--ignore-scope", "-e", default=None, help="Comma separated list of scopes to skip")(f)
    return f


def inspect_options(f):
    """Options shared by inspect and inspect-container."""
    f = click.option("--name", "-n", default=None, help="Name of the stored system description")(f)
    f = click.option(
        "--exclude",
        default=None,
        metavar="FILTER",
        help="Exclude elements matching the filter criteria, e.g. /unmanaged_files/files/name=/opt",
    )(f)
    f = click.option(
        "--skip-files",
        default=None,
        metavar="PATHS",
        help="Comma separated files or directories to skip in unmanaged-files. @FILE reads one path per line",
    )(f)
    f = click.option("--verbose", is_flag=True, help="Show the applied filters")(f)
    f = click.option("--extract-files", "-x", is_flag=True, help="Extract the contents of all file scopes")(f)
    f = click.option(
        "--extract-changed-config-files",
        is_flag=True,
        help="Extract changed configuration files",
    )(f)
    f = click.option("--extract-changed-managed-files", is_flag=True, help="Extract changed managed files")(f)
    f = click.option("--extract-unmanaged-files", is_flag=True, help="Extract unmanaged files")(f)
    return f


def export_options(f):
    f = click.option("--force", is_flag=True, help="Overwrite an existing export directory")(f)
    return f


# ── CLI group ───────────────────────────────────────────────────────────────

MAIN_HELP_EPILOG = """
\b
Examples:
  machinery inspect myhost -x
  machinery inspect myhost --scope=packages,os --name=base
  machinery inspect-container opensuse/leap:15.6 --name=leap
  machinery show myhost --scope=unmanaged-files
  machinery export-kiwi myhost --kiwi-dir=/tmp/export
"""


@click.group(epilog=MAIN_HELP_EPILOG, context_settings={"max_content_width": 120})
@click.version_option(version=__version__, prog_name="machinery")
@click.option("--debug", is_flag=True, help="Show debug logs and backtraces")
@click.pass_context
def main(ctx, debug):
    """Machinery - A systems management toolkit for Linux."""
    invocation = ctx.ensure_object(Invocation)
    invocation.debug = debug
    invocation.settings = Settings()
    invocation.config = UserConfig.load(invocation.settings.dir)
    invocation.store = SystemDescriptionStore(invocation.settings.dir)
    configure_logging(debug=debug, log_path=invocation.settings.log_path)


# ── Inspection ─────────────────────────────────────────────────────────────


def _inspection_filter(exclude: str | None, skip_files: str | None) -> Filter:
    inspection_filter = Filter.from_default_definition("inspect")
    for criterion in split_criteria(exclude) + skip_files_criteria(skip_files):
        inspection_filter.add_criterion(criterion)
    return inspection_filter


def _extraction_options(options: dict) -> ExtractionOptions:
    if options["extract_files"]:
        return ExtractionOptions.all()
    return ExtractionOptions(
        extract_unmanaged_files=options["extract_unmanaged_files"],
        extract_changed_managed_files=options["extract_changed_managed_files"],
        extract_changed_changed_config_files=options["extract_changed_config_files"],
    )


def _run_inspection(invocation: Invocation, target, options: dict) -> None:
    ui = invocation.make_ui(verbose=options["verbose"])
    registry = ScopeRegistry(warn=ui.warn)
    scopes = registry.process_scope_option(options["scope"], options["ignore_scope"])
    inspection_filter = _inspection_filter(options["exclude"], options["skip_files"])

    if options["verbose"]:
        criteria = inspection_filter.criteria_for_scopes(scopes)
        if criteria:
            ui.puts("The following filters are applied during inspection:")
            for criterion in criteria:
                ui.puts(f"  * {criterion}")
            ui.puts("")

    request = InspectionRequest(
        store=invocation.store,
        target=target,
        description_name=options["name"],
        user=CurrentUser.capture(),
        scopes=scopes,
        filter=inspection_filter,
        options=_extraction_options(options),
    )
    description = InspectionCoordinator(ui, verbose=options["verbose"]).inspect_system(request)
    ui.hint(f"To show the description run: machinery show {description.name}")


@main.command()
@click.argument("host")
@click.option("--remote-user", "-r", default=None, help="User used to access the host via SSH")
@click.option("--ssh-port", default=22, type=click.IntRange(1, 65535), help="SSH port (default: 22)")
@click.option("--ssh-identity-file", "-i", default=None, help="SSH private key path")
@scope_options
@inspect_options
@click.pass_obj
def inspect(invocation, host, remote_user, ssh_port, ssh_identity_file, **options):
    """Inspect a running system over SSH and store its description."""
    target = RemoteSystem(
        host,
        remote_user=remote_user or invocation.config.get("remote-user"),
        port=ssh_port,
        key_path=ssh_identity_file,
    )
    _run_inspection(invocation, target, options)


@main.command("inspect-container")
@click.argument("image")
@scope_options
@inspect_options
@click.pass_obj
def inspect_container(invocation, image, **options):
    """Inspect a container started from IMAGE and store its description."""
    _run_inspection(invocation, DockerSystem(image), options)


# ── Viewing ─────────────────────────────────────────────────────────────────


@main.command()
@click.argument("name")
@scope_options
@click.option("--exclude", default=None, metavar="FILTER", help="Hide elements matching the filter criteria")
@click.option("--verbose", is_flag=True, help="Show the filters that were applied")
@click.option("--no-pager", is_flag=True, help="Do not page the output")
@click.option("--show-diffs", is_flag=True, help="Show diffs of changed configuration files")
@click.pass_obj
def show(invocation, name, scope, ignore_scope, exclude, verbose, no_pager, show_diffs):
    """Show a stored system description."""
    ui = invocation.make_ui(verbose=verbose, pager=not no_pager)
    store = invocation.store
    description = store.load(name)

    if scope or ignore_scope:
        scopes = ScopeRegistry(warn=ui.warn).process_scope_option(scope, ignore_scope)
        if ignore_scope:
            scopes = [s for s in scopes if description.has_scope(s)]
    else:
        scopes = description.scope_names()

    show_filter = Filter.from_default_definition("show")
    for criterion in split_criteria(exclude):
        show_filter.add_criterion(criterion)

    diffs_dir = store.description_path(name) / DIFFS_DIR if show_diffs else None
    show_description(ui, description, scopes, show_filter, verbose=verbose, diffs_dir=diffs_dir)
    if diffs_dir is not None and not diffs_dir.is_dir():
        ui.hint(f"Generate the diffs with: machinery analyze {name} --operation=changed-config-files-diffs")


@main.command("list")
@click.argument("names", nargs=-1)
@click.option("--short", is_flag=True, help="List only the description names")
@click.option("--verbose", is_flag=True, help="Show the inspection date of every scope")
@click.pass_obj
def list_command(invocation, names, short, verbose):
    """List stored system descriptions."""
    ui = invocation.make_ui(verbose=verbose)
    list_descriptions(ui, invocation.store, names, short=short, verbose=verbose)


@main.command()
@click.option("--port", "-p", default=None, type=int, help="Port to listen on (default from config)")
@click.option("--public", is_flag=True, help="Listen on all interfaces instead of localhost")
@click.pass_obj
def serve(invocation, port, public):
    """Serve the stored descriptions over HTTP."""
    invocation.make_ui()
    if port is None:
        port = invocation.config.get("http-server-port")
    run_server(invocation.store, port=port, public=public)


# ── Store maintenance ──────────────────────────────────────────────────────


@main.command()
@click.argument("names", nargs=-1)
@click.option("--all", "remove_all", is_flag=True, help="Remove all system descriptions")
@click.option("--verbose", is_flag=True, help="Report every removed description")
@click.pass_obj
def remove(invocation, names, remove_all, verbose):
    """Remove stored system descriptions."""
    ui = invocation.make_ui(verbose=verbose)
    remove_descriptions(ui, invocation.store, names, remove_all=remove_all, verbose=verbose)


@main.command()
@click.argument("source")
@click.argument("destination")
@click.pass_obj
def copy(invocation, source, destination):
    """Copy a system description."""
    invocation.make_ui()
    invocation.store.copy(source, destination)


@main.command()
@click.argument("source")
@click.argument("destination")
@click.pass_obj
def move(invocation, source, destination):
    """Rename a system description."""
    invocation.make_ui()
    invocation.store.move(source, destination)


@main.command()
@click.argument("name")
@click.pass_obj
def validate(invocation, name):
    """Validate a stored system description."""
    validate_description(invocation.make_ui(), invocation.store, name)


@main.command("upgrade-format")
@click.argument("names", nargs=-1)
@click.option("--all", "upgrade_all", is_flag=True, help="Upgrade all system descriptions")
@click.option("--force", is_flag=True, help="Write upgraded descriptions even if they do not validate")
@click.pass_obj
def upgrade_format_command(invocation, names, upgrade_all, force):
    """Upgrade system descriptions to the current format."""
    upgrade_format(invocation.make_ui(), invocation.store, names, upgrade_all=upgrade_all, force=force)


@main.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.pass_obj
def config(invocation, key, value):
    """Show or change configuration (KEY VALUE or KEY=VALUE)."""
    configure(invocation.make_ui(), invocation.config, key, value)


# ── Exports and analysis ──────────────────────────────────────────────────


@main.command("export-kiwi")
@click.argument("name")
@click.option("--kiwi-dir", "-k", required=True, type=click.Path(file_okay=False), help="Output directory")
@export_options
@click.pass_obj
def export_kiwi(invocation, name, kiwi_dir, force):
    """Export a description as KIWI NG image description."""
    store = invocation.store
    exporter = KiwiConfig(store.load(name), store.description_path(name))
    ExportTask(invocation.make_ui(), exporter).export(Path(kiwi_dir), force=force)


@main.command("export-autoyast")
@click.argument("name")
@click.option("--autoyast-dir", "-a", required=True, type=click.Path(file_okay=False), help="Output directory")
@export_options
@click.pass_obj
def export_autoyast(invocation, name, autoyast_dir, force):
    """Export a description as AutoYaST profile."""
    store = invocation.store
    exporter = Autoyast(store.load(name), store.description_path(name))
    ExportTask(invocation.make_ui(), exporter).export(Path(autoyast_dir), force=force)


@main.command()
@click.argument("name")
@click.option("--image-dir", "-i", required=True, type=click.Path(file_okay=False), help="Image output directory")
@click.option("--enable-dhcp", is_flag=True, help="Configure DHCP on the first network interface")
@click.option("--enable-ssh", is_flag=True, help="Enable the SSH daemon in the image")
@click.pass_obj
def build(invocation, name, image_dir, enable_dhcp, enable_ssh):
    """Build an image from a description with kiwi-ng."""
    store = invocation.store
    BuildTask(invocation.make_ui()).build(
        store.load(name),
        Path(image_dir),
        description_dir=store.description_path(name),
        enable_dhcp=enable_dhcp,
        enable_ssh=enable_ssh,
    )


@main.command()
@click.argument("name")
@click.option("--operation", "-o", default="changed-config-files-diffs", help="Analysis to run")
@click.option("--package-dir", default=None, type=click.Path(file_okay=False), help="Directory with rpm/deb packages")
@click.pass_obj
def analyze(invocation, name, operation, package_dir):
    """Analyze a stored description."""
    run_analyze(
        invocation.make_ui(),
        invocation.store,
        name,
        operation,
        package_dir=Path(package_dir) if package_dir else None,
    )


@main.command()
@click.pass_context
def man(ctx):
    """Show the reference of every command."""
    ui = ctx.obj.make_ui()
    root = ctx.find_root()
    with ui.pager():
        ui.puts(root.command.get_help(root))
        for name in sorted(main.commands):
            command = main.commands[name]
            sub = click.Context(command, info_name=name, parent=root)
            ui.puts("")
            ui.puts(f"# machinery {name}")
            ui.puts("")
            ui.puts(command.get_help(sub))


# ── Entry points ──────────────────────────────────────────────────────────


def run(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit status."""
    invocation = Invocation()
    try:
        result = main.main(args=argv, prog_name="machinery", standalone_mode=False, obj=invocation)
    except Exception as exc:
        ui = invocation.ui or Ui()
        return ErrorClassifier(ui, debug=invocation.debug).handle(exc)
    return result if isinstance(result, int) else 0


def cli_entry() -> None:
    sys.exit(run())
