"""
Unit tests for the HTTP description viewer.

Tests the following behavior:
- Port validation for root and non-root users
- The description index, full manifests and single scopes
- 404 and 422 responses
- serve() binding to localhost or all interfaces
"""

from unittest.mock import patch

import pytest
from conftest import make_description
from fastapi.testclient import TestClient

from machinery._types import CurrentUser
from machinery.errors import ServerPortError
from machinery.serve import check_port_validity, create_app, serve

ROOT = CurrentUser(name="root", uid=0)
OPERATOR = CurrentUser(name="operator", uid=1000)


@pytest.fixture
def client(store):
    store.save(make_description("web01", {"os": {"name": "SLES"}, "unmanaged_files": {"files": []}}))
    store.save(make_description("db01"))
    return TestClient(create_app(store))


# =============================================================================
# Port validation
# =============================================================================


class TestCheckPortValidity:
    """Tests for check_port_validity()."""

    @pytest.mark.parametrize("port", [0, 1, 65536])
    def test_out_of_range(self, port):
        with pytest.raises(ServerPortError) as exc_info:
            check_port_validity(port, ROOT)

        assert str(exc_info.value) == "Please specify a valid port between 2 and 65535."
        assert exc_info.value.port == port

    @pytest.mark.parametrize("port", [80, 1000])
    def test_privileged_port_needs_root(self, port):
        with pytest.raises(ServerPortError, match=f"The specified port '{port}' requires root privileges."):
            check_port_validity(port, OPERATOR)

    @pytest.mark.parametrize(
        "port, user", [(80, ROOT), (1024, OPERATOR), (5000, OPERATOR), (2, ROOT), (65535, OPERATOR)]
    )
    def test_valid(self, port, user):
        check_port_validity(port, user)


# =============================================================================
# Endpoints
# =============================================================================


class TestEndpoints:
    """Tests for the viewer endpoints."""

    def test_index(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json() == {"descriptions": ["db01", "web01"]}

    def test_description(self, client):
        data = client.get("/descriptions/web01").json()

        assert data["os"] == {"name": "SLES"}
        assert data["meta"]["format_version"] == 2

    def test_scope_with_cli_name(self, client):
        """Scopes may be requested with hyphens."""
        response = client.get("/descriptions/web01/unmanaged-files")

        assert response.status_code == 200
        assert response.json() == {"files": []}

    def test_unknown_description(self, client):
        response = client.get("/descriptions/nope")

        assert response.status_code == 404
        assert response.json()["detail"] == "Couldn't find a system description with the name 'nope'."

    @pytest.mark.parametrize("scope", ["packages", "meta", "filters"])
    def test_unknown_scope(self, client, scope):
        assert client.get(f"/descriptions/web01/{scope}").status_code == 404

    def test_old_format(self, client, store):
        """Descriptions needing an upgrade are unprocessable."""
        path = store.description_path("old")
        path.mkdir()
        (path / "manifest.json").write_text('{"os": {"name": "SLES"}}')

        response = client.get("/descriptions/old")

        assert response.status_code == 422
        assert "machinery upgrade-format old" in response.json()["detail"]


# =============================================================================
# serve()
# =============================================================================


class TestServe:
    """Tests for serve()."""

    @pytest.mark.parametrize("public, host", [(False, "127.0.0.1"), (True, "0.0.0.0")])
    def test_binds(self, store, public, host):
        with patch("machinery.serve.uvicorn.run") as run, patch("machinery.serve.check_port_validity") as check:
            serve(store, port=5000, public=public)

        check.assert_called_once_with(5000)
        assert run.call_args.kwargs["host"] == host
        assert run.call_args.kwargs["port"] == 5000

    def test_invalid_port_does_not_start(self, store):
        with patch("machinery.serve.uvicorn.run") as run:
            with pytest.raises(ServerPortError):
                serve(store, port=70000)

        run.assert_not_called()
