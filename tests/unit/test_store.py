"""
Unit tests for description persistence.

Tests the following behavior:
- Save and load through manifest.json
- Atomic replacement and cleanup of temporary directories
- Format version checks on load
- copy, move, delete and their conflicts
- Staging areas for extracted files
- The in-memory store
"""

import json

import pytest
from conftest import make_description

from machinery.description import FORMAT_VERSION, SystemDescription
from machinery.errors import (
    DescriptionAlreadyExists,
    DescriptionError,
    DescriptionFormatTooNew,
    DescriptionFormatTooOld,
    DescriptionNotFound,
    InvalidCommandLine,
)
from machinery.store import MANIFEST, SystemDescriptionStore


def write_manifest(store, name, data):
    path = store.description_path(name)
    path.mkdir(parents=True)
    (path / MANIFEST).write_text(json.dumps(data))


# =============================================================================
# Save and load
# =============================================================================


class TestSaveLoad:
    """Tests for save() and load()."""

    def test_round_trip(self, store):
        """A saved description loads with scopes, meta and filters."""
        description = make_description("web01")
        description.set_filter_definitions("inspect", ["/unmanaged_files/files/name=/tmp"])

        path = store.save(description)
        loaded = store.load("web01")

        assert path == store.description_path("web01")
        assert loaded.scopes == description.scopes
        assert loaded.meta == description.meta
        assert loaded.filter_definitions("inspect") == ["/unmanaged_files/files/name=/tmp"]
        assert loaded.format_version == FORMAT_VERSION

    def test_manifest_layout(self, store):
        """The manifest carries the format version below meta."""
        store.save(make_description("web01"))

        data = json.loads(store.manifest_path("web01").read_text())

        assert data["meta"]["format_version"] == FORMAT_VERSION
        assert data["filters"] == {"inspect": [], "show": []}
        assert "os" in data

    def test_overwrite_replaces_directory(self, store):
        """Saving again replaces the whole description directory."""
        store.save(make_description("web01"))
        (store.description_path("web01") / "stale").write_text("old")

        store.save(make_description("web01", {"users": {"users": []}}))

        assert store.load("web01").scope_names() == ["users"]
        assert not (store.description_path("web01") / "stale").exists()
        assert sorted(p.name for p in store.base_path.iterdir()) == ["web01"]

    def test_failed_save_keeps_previous(self, store):
        """A failing save leaves the old description and no temporary directories."""
        store.save(make_description("web01"))
        broken = make_description("web01", {"os": {"name": object()}})

        with pytest.raises(TypeError):
            store.save(broken)

        assert store.load("web01").scopes["os"]["name"] == "SUSE Linux Enterprise Server"
        assert sorted(p.name for p in store.base_path.iterdir()) == ["web01"]

    def test_save_with_staging(self, store):
        """The staging directory becomes the description directory."""
        staging = store.create_staging_area("web01")
        (staging / "unmanaged_files").mkdir()
        (staging / "unmanaged_files" / "data").write_text("payload")

        store.save(make_description("web01"), staging)

        assert (store.description_path("web01") / "unmanaged_files" / "data").read_text() == "payload"
        assert not staging.exists()

    def test_save_invalid_name(self, store):
        """Names with a slash cannot be saved."""
        with pytest.raises(InvalidCommandLine):
            store.save(SystemDescription("a/b"))

    def test_load_missing(self, store):
        """Unknown names raise DescriptionNotFound."""
        with pytest.raises(DescriptionNotFound) as exc_info:
            store.load("nope")

        assert str(exc_info.value) == "Couldn't find a system description with the name 'nope'."

    def test_load_invalid_json(self, store):
        """Broken manifests raise DescriptionError."""
        store.description_path("web01").mkdir(parents=True)
        store.manifest_path("web01").write_text("{broken")

        with pytest.raises(DescriptionError, match="invalid JSON"):
            store.load("web01")

    def test_load_old_format(self, store):
        """Unversioned manifests need an upgrade."""
        write_manifest(store, "web01", {"os": {"name": "SLES"}})

        with pytest.raises(DescriptionFormatTooOld) as exc_info:
            store.load("web01")

        assert exc_info.value.format_version == 1
        assert "machinery upgrade-format web01" in str(exc_info.value)

    def test_load_newer_format(self, store):
        """Manifests from a newer version are refused."""
        write_manifest(store, "web01", {"meta": {"format_version": FORMAT_VERSION + 1}})

        with pytest.raises(DescriptionFormatTooNew):
            store.load("web01")


# =============================================================================
# Queries
# =============================================================================


class TestQueries:
    """Tests for list(), exists() and the base path."""

    def test_list_sorted_and_skips_other_entries(self, store):
        """Only directories with a manifest count; hidden ones never do."""
        store.save(make_description("web02"))
        store.save(make_description("db01"))
        (store.base_path / "empty").mkdir()
        (store.base_path / ".web03.tmp-1234").mkdir()
        (store.base_path / "machinery.log").write_text("")

        assert store.list() == ["db01", "web02"]
        assert store.exists("db01")
        assert not store.exists("empty")

    def test_list_without_base_path(self, tmp_path):
        """A missing base directory means no descriptions."""
        assert SystemDescriptionStore(tmp_path / "missing").list() == []

    def test_default_path_from_environment(self, tmp_path, monkeypatch):
        """MACHINERY_DIR is read each time the path is needed."""
        monkeypatch.setenv("MACHINERY_DIR", str(tmp_path / "one"))
        store = SystemDescriptionStore()
        assert store.base_path == tmp_path / "one"

        monkeypatch.setenv("MACHINERY_DIR", str(tmp_path / "two"))
        assert store.base_path == tmp_path / "two"


# =============================================================================
# Mutations
# =============================================================================


class TestMutations:
    """Tests for delete(), copy() and move()."""

    def test_delete(self, store):
        store.save(make_description("web01"))

        store.delete("web01")

        assert store.list() == []

    def test_delete_missing(self, store):
        with pytest.raises(DescriptionNotFound):
            store.delete("web01")

    def test_copy(self, store):
        """Copies are independent descriptions."""
        store.save(make_description("web01"))

        store.copy("web01", "web01-copy")

        assert store.list() == ["web01", "web01-copy"]
        assert store.load("web01-copy").scopes == store.load("web01").scopes

    def test_move(self, store):
        store.save(make_description("web01"))

        store.move("web01", "web02")

        assert store.list() == ["web02"]

    def test_transfer_to_existing_name(self, store):
        """Existing targets are never overwritten."""
        store.save(make_description("web01"))
        store.save(make_description("web02"))

        with pytest.raises(DescriptionAlreadyExists) as exc_info:
            store.copy("web01", "web02")

        assert str(exc_info.value) == "A system description with the name 'web02' already exists."

    def test_transfer_from_missing(self, store):
        with pytest.raises(DescriptionNotFound):
            store.move("web01", "web02")

    def test_transfer_to_invalid_name(self, store):
        store.save(make_description("web01"))

        with pytest.raises(InvalidCommandLine):
            store.move("web01", ".hidden")

    def test_names_outside_base_path(self, store, tmp_path):
        """Source names are validated before anything is touched."""
        sibling = tmp_path / "other"
        sibling.mkdir()
        (sibling / MANIFEST).write_text("{}")

        with pytest.raises(InvalidCommandLine):
            store.delete("../other")
        with pytest.raises(InvalidCommandLine):
            store.copy("../other", "web01")
        with pytest.raises(InvalidCommandLine):
            store.move("../other", "web01")

        assert (sibling / MANIFEST).exists()
        assert store.list() == []

    def test_write_manifest(self, store):
        """write_manifest replaces the manifest in place."""
        store.save(make_description("web01"))
        data = store.load_raw("web01")
        data["os"]["name"] = "Changed"

        store.write_manifest("web01", data)

        assert store.load("web01").scopes["os"]["name"] == "Changed"
        assert sorted(p.name for p in store.description_path("web01").iterdir()) == [MANIFEST]


# =============================================================================
# Staging
# =============================================================================


class TestStaging:
    """Tests for staging areas."""

    def test_staging_is_hidden(self, store):
        """Staging areas never show up as descriptions."""
        staging = store.create_staging_area("web01")

        assert staging.is_dir()
        assert staging.name.startswith(".web01.staging-")
        assert store.list() == []

    def test_discard(self, store):
        staging = store.create_staging_area("web01")

        store.discard_staging_area(staging)
        store.discard_staging_area(staging)
        store.discard_staging_area(None)

        assert not staging.exists()


# =============================================================================
# Memory store
# =============================================================================


class TestMemoryStore:
    """Tests for SystemDescriptionMemoryStore."""

    def test_round_trip(self, memory_store):
        memory_store.save(make_description("web01"))

        assert memory_store.list() == ["web01"]
        assert memory_store.load("web01").scope_names() == ["os"]

    def test_load_returns_copies(self, memory_store):
        """Changing a loaded manifest does not change the store."""
        memory_store.save(make_description("web01"))

        memory_store.load_raw("web01")["os"]["name"] = "Changed"

        assert memory_store.load("web01").scopes["os"]["name"] == "SUSE Linux Enterprise Server"

    def test_transfers(self, memory_store):
        memory_store.save(make_description("web01"))

        memory_store.copy("web01", "web02")
        memory_store.move("web02", "web03")

        assert memory_store.list() == ["web01", "web03"]
        with pytest.raises(DescriptionAlreadyExists):
            memory_store.copy("web01", "web03")

    def test_delete(self, memory_store):
        memory_store.save(make_description("web01"))

        memory_store.delete("web01")

        with pytest.raises(DescriptionNotFound):
            memory_store.load("web01")

    def test_staging_is_discarded_on_save(self, memory_store):
        """Extracted files are dropped by the memory store."""
        staging = memory_store.create_staging_area("web01")

        memory_store.save(make_description("web01"), staging)

        assert not staging.exists()
