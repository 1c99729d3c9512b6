"""
Unit tests for the command line.

The CLI is driven through machinery.cli.run(), which returns the exit
status instead of exiting. Stores live below a temporary MACHINERY_DIR;
remote targets are replaced with FakeSystem.
"""

import json

import pytest
from conftest import LEAP_OS_RELEASE, FakeSystem, make_description

from machinery import __version__, cli
from machinery.error_handler import HELP_HINT
from machinery.store import SystemDescriptionStore


@pytest.fixture
def store(machinery_dir):
    """Store the CLI will use."""
    return SystemDescriptionStore(machinery_dir)


@pytest.fixture
def remote(monkeypatch):
    """Replace RemoteSystem with a FakeSystem running openSUSE Leap."""
    target = FakeSystem("web01", files={"/etc/os-release": LEAP_OS_RELEASE}, responses={"uname -m": "x86_64"})
    created = []

    def factory(host, **kwargs):
        created.append((host, kwargs))
        return target

    monkeypatch.setattr(cli, "RemoteSystem", factory)
    target.created = created
    return target


# =============================================================================
# Global options
# =============================================================================


class TestGlobalOptions:
    """Tests for --version, --help and unknown commands."""

    def test_version(self, machinery_dir, capsys):
        assert cli.run(["--version"]) == 0
        assert capsys.readouterr().out == f"machinery, version {__version__}\n"

    def test_help(self, machinery_dir, capsys):
        assert cli.run(["--help"]) == 0
        out = capsys.readouterr().out
        assert "inspect-container" in out
        assert "upgrade-format" in out

    def test_unknown_command(self, machinery_dir, capsys):
        assert cli.run(["frobnicate"]) == 1
        err = capsys.readouterr().err
        assert "Error: No such command 'frobnicate'." in err
        assert HELP_HINT in err

    def test_missing_argument(self, machinery_dir, capsys):
        assert cli.run(["show"]) == 1
        assert "Missing argument 'NAME'" in capsys.readouterr().err

    def test_debug_writes_log_file(self, machinery_dir, capsys):
        assert cli.run(["--debug", "list"]) == 0
        assert (machinery_dir / "machinery.log").exists()


# =============================================================================
# inspect / inspect-container
# =============================================================================


class TestInspect:
    """Tests for the inspection commands."""

    def test_inspect_os(self, store, remote, capsys):
        """An inspection stores the description and hints at show."""
        status = cli.run(["inspect", "web01", "--scope", "os"])

        out = capsys.readouterr().out
        assert status == 0
        assert "Inspecting os..." in out
        assert "Hint: To show the description run: machinery show web01" in out
        description = store.load("web01")
        assert description.scopes["os"]["name"] == "openSUSE Leap"
        assert description.scopes["os"]["architecture"] == "x86_64"
        assert description.meta["os"]["type"] == "host"
        assert remote.connect_calls == 1
        assert remote.disconnect_calls == 1

    def test_remote_user_from_config(self, store, remote, machinery_dir):
        """The remote user defaults to the configured one."""
        (machinery_dir / "machinery_config.yml").write_text("remote-user: admin\n")

        cli.run(["inspect", "web01", "--scope", "os", "--ssh-port", "2222"])

        host, kwargs = remote.created[0]
        assert host == "web01"
        assert kwargs["remote_user"] == "admin"
        assert kwargs["port"] == 2222

    def test_explicit_remote_user(self, store, remote):
        cli.run(["inspect", "web01", "--scope", "os", "--remote-user", "machinery"])

        assert remote.created[0][1]["remote_user"] == "machinery"

    def test_name_option(self, store, remote):
        assert cli.run(["inspect", "web01", "--scope", "os", "--name", "base"]) == 0
        assert store.list() == ["base"]

    def test_hints_can_be_disabled(self, store, remote, machinery_dir, capsys):
        (machinery_dir / "machinery_config.yml").write_text("hints: false\n")

        cli.run(["inspect", "web01", "--scope", "os"])

        assert "Hint:" not in capsys.readouterr().out

    def test_unknown_scope(self, store, remote, capsys):
        """Invalid scopes fail before connecting."""
        status = cli.run(["inspect", "web01", "--scope", "os,foo"])

        err = capsys.readouterr().err
        assert status == 1
        assert "Error: The following scope is not supported: foo." in err
        assert HELP_HINT in err
        assert remote.connect_calls == 0

    def test_scope_and_ignore_scope(self, store, remote, capsys):
        status = cli.run(["inspect", "web01", "--scope", "os", "--ignore-scope", "users"])

        assert status == 1
        assert "You cannot provide the --scope and --ignore-scope option at the same time." in capsys.readouterr().err

    def test_deprecated_scope_name(self, store, remote, capsys):
        """config-files is accepted with a warning."""
        remote.commands.add("rpm")
        remote.responses["rpm -Va"] = ""

        status = cli.run(["inspect", "web01", "--scope", "config-files,config-files,os"])

        err = capsys.readouterr().err
        assert status == 0
        assert err.count("The scope name `config-files` is deprecated.") == 1
        assert store.load("web01").scope_names() == ["changed_config_files", "os"]

    def test_verbose_lists_filters(self, store, remote, capsys):
        """--verbose prints the filters applied to the selected scopes."""
        remote.commands.add("rpm")
        remote.responses["rpm -qa --queryformat '[%{FILENAMES}"] = "/usr/bin/ls"
        remote.responses["find / -xdev"] = "f\t/opt/app.conf"

        status = cli.run(
            [
                "inspect", "web01", "--scope", "unmanaged-files", "--verbose",
                "--exclude", "/unmanaged_files/files/name=/srv",
            ]
        )

        out = capsys.readouterr().out
        assert status == 0
        assert "The following filters are applied during inspection:" in out
        assert "  * /unmanaged_files/files/name=/tmp" in out
        assert "  * /unmanaged_files/files/name=/srv" in out
        assert "There are filters being applied during inspection." not in out
        stored = store.load("web01")
        assert "/unmanaged_files/files/name=/srv" in stored.filter_definitions("inspect")
        assert stored.scopes["unmanaged_files"]["files"] == [{"name": "/opt/app.conf", "type": "file"}]

    def test_skip_files(self, store, remote, capsys):
        """--skip-files adds unmanaged files criteria."""
        remote.commands.add("rpm")
        remote.responses["rpm -qa --queryformat '[%{FILENAMES}"] = ""
        remote.responses["find / -xdev"] = ""

        cli.run(["inspect", "web01", "--scope", "unmanaged-files", "--skip-files", "/data"])

        assert "/unmanaged_files/files/name=/data" in store.load("web01").filter_definitions("inspect")
        assert "There are filters being applied during inspection." in capsys.readouterr().out

    def test_container_image_with_slash(self, store, monkeypatch, capsys):
        """Images with a slash need --name; the container is never started."""
        started = []
        monkeypatch.setattr(cli.DockerSystem, "start", lambda self: started.append(self))

        status = cli.run(["inspect-container", "opensuse/leap:15.6", "--scope", "os"])

        err = capsys.readouterr().err
        assert status == 1
        assert "If the image name contains a slash the `--name=NAME` parameter is mandatory." in err
        assert started == []
        assert store.list() == []


# =============================================================================
# show
# =============================================================================


class TestShow:
    """Tests for the show command."""

    def test_show_scope(self, store, capsys):
        store.save(make_description("web01"))

        status = cli.run(["show", "web01", "--scope", "os", "--no-pager"])

        out = capsys.readouterr().out
        assert status == 0
        assert "# Operating System [web01] (" in out
        assert "  Name: SUSE Linux Enterprise Server\n  Version: 15 SP5\n  Architecture: x86_64\n" in out

    def test_show_all_inspected_scopes(self, store, capsys):
        """Without --scope every stored scope is shown and none reported missing."""
        store.save(make_description("web01", {"os": {"name": "SLES"}, "services": {"init_system": "systemd",
                                                                                   "services": []}}))

        cli.run(["show", "web01"])

        out = capsys.readouterr().out
        assert "# Operating System" in out
        assert "# Services" in out
        assert "not inspected" not in out

    def test_unknown_scope_in_manifest(self, store, capsys):
        """Scopes written by other Machinery versions are skipped with a warning."""
        store.save(make_description("web01"))
        data = store.load_raw("web01")
        data["docker_environment"] = {"containers": []}
        store.write_manifest("web01", data)

        status = cli.run(["show", "web01", "--no-pager"])

        captured = capsys.readouterr()
        assert status == 0
        assert "# Operating System" in captured.out
        assert "Scope 'docker-environment' is not known to this version of Machinery" in captured.err
        assert "Traceback" not in captured.err

    def test_missing_scope(self, store, capsys):
        store.save(make_description("web01"))

        cli.run(["show", "web01", "--scope", "os,packages"])

        out = capsys.readouterr().out
        assert "# The following requested scopes were not inspected:\n\n  * packages\n" in out

    def test_verbose_shows_filters(self, store, capsys):
        description = make_description("web01")
        description.set_filter_definitions("inspect", ["/unmanaged_files/files/name=/tmp"])
        store.save(description)

        cli.run(["show", "web01", "--verbose"])

        out = capsys.readouterr().out
        assert (
            "  The following filters were applied during inspection:\n    * /unmanaged_files/files/name=/tmp\n" in out
        )

    def test_exclude(self, store, capsys):
        store.save(
            make_description(
                "web01",
                {"packages": {"package_system": "rpm", "packages": [
                    {"name": "vim", "version": "9.0"},
                    {"name": "zsh", "version": "5.9"},
                ]}},
            )
        )

        cli.run(["show", "web01", "--exclude", "/packages/packages/name=vim", "--verbose"])

        out = capsys.readouterr().out
        assert "* zsh-5.9" in out
        assert "vim-9.0" not in out
        assert "  The following filters were applied before showing the description:" in out

    def test_unknown_description(self, store, capsys):
        assert cli.run(["show", "nope"]) == 1
        assert "Error: Couldn't find a system description with the name 'nope'." in capsys.readouterr().err

    def test_show_diffs_hint(self, store, capsys):
        """Without generated diffs the operator is told how to create them."""
        store.save(make_description("web01"))

        cli.run(["show", "web01", "--show-diffs"])

        assert "machinery analyze web01 --operation=changed-config-files-diffs" in capsys.readouterr().out


# =============================================================================
# Store maintenance
# =============================================================================


class TestStoreCommands:
    """Tests for list, remove, copy, move, validate and upgrade-format."""

    def test_list_short(self, store, capsys):
        store.save(make_description("web02"))
        store.save(make_description("db01"))

        assert cli.run(["list", "--short"]) == 0
        assert capsys.readouterr().out == "db01\nweb02\n"

    def test_list_empty(self, store, machinery_dir, capsys):
        cli.run(["list"])

        assert capsys.readouterr().out == f"There are no system descriptions in {machinery_dir}.\n"

    def test_list_table(self, store, capsys):
        store.save(make_description("web01"))

        cli.run(["list"])

        out = capsys.readouterr().out
        assert "web01" in out
        assert "os" in out

    def test_remove(self, store, capsys):
        store.save(make_description("web01"))

        assert cli.run(["remove", "web01", "--verbose"]) == 0
        assert capsys.readouterr().out == "Removed system description 'web01'.\n"
        assert store.list() == []

    def test_remove_all(self, store):
        store.save(make_description("web01"))
        store.save(make_description("web02"))

        cli.run(["remove", "--all"])

        assert store.list() == []

    def test_remove_without_names(self, store, capsys):
        assert cli.run(["remove"]) == 1
        assert "You need to specify at least one system description name or use --all." in capsys.readouterr().err

    def test_copy_and_move(self, store):
        store.save(make_description("web01"))

        assert cli.run(["copy", "web01", "web02"]) == 0
        assert cli.run(["move", "web02", "web03"]) == 0

        assert store.list() == ["web01", "web03"]

    def test_copy_to_existing(self, store, capsys):
        store.save(make_description("web01"))
        store.save(make_description("web02"))

        assert cli.run(["copy", "web01", "web02"]) == 1
        assert "already exists" in capsys.readouterr().err

    def test_validate(self, store, capsys):
        store.save(make_description("web01"))

        assert cli.run(["validate", "web01"]) == 0
        assert "Validation of system description 'web01' succeeded." in capsys.readouterr().out

    def test_upgrade_format(self, store, machinery_dir, capsys):
        (machinery_dir / "old").mkdir()
        (machinery_dir / "old" / "manifest.json").write_text(
            json.dumps({"os": {"name": "SLES"}, "meta": {"filters": {"inspect": ["/os/x=1"]}}})
        )

        assert cli.run(["upgrade-format", "old"]) == 0
        assert "Upgraded system description 'old' to format version 2." in capsys.readouterr().out
        assert store.load("old").filter_definitions("inspect") == ["/os/x=1"]

    def test_config(self, store, machinery_dir, capsys):
        assert cli.run(["config", "hints", "false"]) == 0
        assert cli.run(["config", "hints"]) == 0

        assert capsys.readouterr().out == "hints=false\nhints=false\n"

    def test_config_unknown_key(self, store, capsys):
        assert cli.run(["config", "colour=red"]) == 1
        assert "Error: Unknown configuration key: colour" in capsys.readouterr().err


# =============================================================================
# Exports, analysis and server
# =============================================================================


class TestOtherCommands:
    """Tests for export-kiwi, export-autoyast, analyze, serve and man."""

    @pytest.fixture
    def exportable(self, store):
        description = make_description(
            "web01",
            {
                "os": {"name": "SUSE Linux Enterprise Server", "version": "15 SP5", "family": "sle"},
                "packages": {"package_system": "rpm", "packages": [{"name": "vim", "version": "9.0"}]},
            },
        )
        store.save(description)
        return description

    def test_export_kiwi(self, exportable, tmp_path, capsys):
        out_dir = tmp_path / "export"

        assert cli.run(["export-kiwi", "web01", "--kiwi-dir", str(out_dir)]) == 0
        assert (out_dir / "web01-kiwi" / "config.xml").is_file()
        assert f"Exported to '{out_dir / 'web01-kiwi'}'." in capsys.readouterr().out

        assert cli.run(["export-kiwi", "web01", "--kiwi-dir", str(out_dir)]) == 1
        assert "You can force overwriting it with the '--force' option." in capsys.readouterr().err

        assert cli.run(["export-kiwi", "web01", "--kiwi-dir", str(out_dir), "--force"]) == 0

    def test_export_autoyast(self, exportable, tmp_path):
        out_dir = tmp_path / "export"

        assert cli.run(["export-autoyast", "web01", "--autoyast-dir", str(out_dir)]) == 0
        assert (out_dir / "web01-autoyast" / "autoinst.xml").is_file()

    def test_analyze_unsupported_operation(self, exportable, capsys):
        assert cli.run(["analyze", "web01", "--operation", "foo"]) == 1
        assert (
            "The operation 'foo' is not supported. Valid operations are: changed-config-files-diffs."
            in capsys.readouterr().err
        )

    @pytest.mark.parametrize("port", ["1", "65536"])
    def test_serve_invalid_port(self, store, port, capsys):
        assert cli.run(["serve", "--port", port]) == 1
        assert "Error: Please specify a valid port between 2 and 65535." in capsys.readouterr().err

    def test_serve_uses_configured_port(self, store, machinery_dir, monkeypatch):
        calls = []
        monkeypatch.setattr(cli, "run_server", lambda store, **kwargs: calls.append(kwargs))
        (machinery_dir / "machinery_config.yml").write_text("http-server-port: 7000\n")

        assert cli.run(["serve"]) == 0
        assert calls == [{"port": 7000, "public": False}]

    def test_man(self, store, capsys):
        assert cli.run(["man"]) == 0
        out = capsys.readouterr().out
        assert "# machinery inspect\n" in out
        assert "# machinery upgrade-format\n" in out
        assert "--extract-unmanaged-files" in out
