"""
Unit tests for ScopeRegistry.

Tests the following behavior:
- The fixed, sorted scope list
- Translation between command line and internal names
- The deprecated config-files alias warning once per registry
- Error variants and pluralization of UnknownScope
- --scope / --ignore-scope resolution
"""

import pytest

from machinery.errors import InvalidCommandLine, UnknownScope
from machinery.scopes import ALL_SCOPES, ScopeRegistry, cli_name


@pytest.fixture
def warnings():
    return []


@pytest.fixture
def registry(warnings):
    return ScopeRegistry(warn=warnings.append)


class TestAllScopes:
    """Tests for the registry contents."""

    def test_sorted_and_complete(self, registry):
        """all_scopes() is sorted and holds every known scope."""
        scopes = registry.all_scopes()

        assert scopes == sorted(scopes)
        assert set(scopes) == set(ALL_SCOPES)
        assert len(scopes) == 10

    def test_cli_name(self):
        """Internal ids use underscores, command line names hyphens."""
        assert cli_name("changed_config_files") == "changed-config-files"
        assert cli_name("os") == "os"


class TestParse:
    """Tests for parse() and parse_scopes()."""

    def test_hyphenated_name(self, registry):
        """Command line names map to internal ids."""
        assert registry.parse("changed-managed-files") == "changed_managed_files"
        assert registry.parse("os") == "os"

    def test_underscore_name_is_accepted(self, registry):
        """Internal ids are valid input too."""
        assert registry.parse("unmanaged_files") == "unmanaged_files"

    def test_legacy_alias_warns_once(self, registry, warnings):
        """config-files resolves to changed_config_files with one warning."""
        assert registry.parse("config-files") == "changed_config_files"
        assert registry.parse_scopes("config-files,config-files") == ["changed_config_files"] * 2

        assert warnings == ["The scope name `config-files` is deprecated. The new name is `changed-config-files`."]

    def test_new_registry_warns_again(self, warnings):
        """The deprecation state belongs to one registry."""
        ScopeRegistry(warn=warnings.append).parse("config-files")
        ScopeRegistry(warn=warnings.append).parse("config-files")

        assert len(warnings) == 2

    def test_malformed_token(self, registry):
        """Tokens with other characters are not valid."""
        with pytest.raises(UnknownScope) as exc_info:
            registry.parse("foo$")

        assert exc_info.value.kind == UnknownScope.NOT_VALID
        assert str(exc_info.value) == "The following scope is not valid: 'foo$'."

    def test_unknown_tokens_pluralize(self, registry):
        """Several unknown scopes use the plural form."""
        with pytest.raises(UnknownScope) as exc_info:
            registry.parse_scopes("os,foo,bar")

        assert exc_info.value.scopes == ["foo", "bar"]
        assert str(exc_info.value) == "The following scopes are not supported: foo, bar."

    def test_single_unknown_token(self, registry):
        """One unknown scope uses the singular form."""
        with pytest.raises(UnknownScope, match=r"^The following scope is not supported: foo\.$"):
            registry.parse("foo")

    def test_malformed_reported_before_unknown(self, registry):
        """Malformed tokens win over unknown ones."""
        with pytest.raises(UnknownScope) as exc_info:
            registry.parse_scopes("foo,b@r")

        assert exc_info.value.kind == UnknownScope.NOT_VALID
        assert exc_info.value.scopes == ["b@r"]

    def test_unknown_scope_is_a_usage_error(self):
        """UnknownScope points the operator to --help."""
        assert UnknownScope(["foo"], UnknownScope.NOT_SUPPORTED).show_help_hint


class TestProcessScopeOption:
    """Tests for process_scope_option()."""

    def test_neither_given(self, registry):
        """No option selects every scope."""
        assert registry.process_scope_option(None, None) == registry.all_scopes()

    def test_included_deduplicated_and_sorted(self, registry):
        """--scope results are unique and sorted regardless of input order."""
        assert registry.process_scope_option("users,os,packages,os", None) == ["os", "packages", "users"]

    def test_excluded(self, registry):
        """--ignore-scope removes the named scopes."""
        scopes = registry.process_scope_option(None, "unmanaged-files,changed-config-files")

        assert "unmanaged_files" not in scopes
        assert "changed_config_files" not in scopes
        assert scopes == sorted(scopes)
        assert len(scopes) == 8

    def test_both_given(self, registry):
        """--scope and --ignore-scope are mutually exclusive."""
        with pytest.raises(InvalidCommandLine) as exc_info:
            registry.process_scope_option("os", "packages")

        assert str(exc_info.value) == "You cannot provide the --scope and --ignore-scope option at the same time."

    def test_excluded_unknown_scope(self, registry):
        """Unknown scopes are rejected in --ignore-scope too."""
        with pytest.raises(UnknownScope):
            registry.process_scope_option(None, "nope")
