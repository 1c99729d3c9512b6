"""AutoYaST profile export."""

from __future__ import annotations

import shutil
from pathlib import Path

from lxml import etree

from machinery.export import Exporter, require_scopes

YAST_NS = "http://www.suse.com/1.0/yast2ns"
CONFIG_NS = "http://www.suse.com/1.0/configns"
CONFIG_TYPE = f"{{{CONFIG_NS}}}type"

# System accounts below this uid are created by the packages themselves
MIN_USER_ID = 1000


def _sub(parent, tag: str, attrib: dict | None = None):
    return etree.SubElement(parent, f"{{{YAST_NS}}}{tag}", attrib or {})


def _list(parent, tag: str):
    return _sub(parent, tag, {CONFIG_TYPE: "list"})


def _text(parent, tag: str, value, type_: str | None = None):
    node = _sub(parent, tag, {CONFIG_TYPE: type_} if type_ else {})
    node.text = str(value).lower() if isinstance(value, bool) else str(value)
    return node


class Autoyast(Exporter):
    """Builds autoinst.xml and copies the extracted files next to it."""

    suffix = "autoyast"

    def __init__(self, description, description_dir=None):
        super().__init__(description, description_dir)
        require_scopes(description, ("packages",))

    def profile(self) -> bytes:
        scopes = self.description.scopes
        profile = etree.Element(f"{{{YAST_NS}}}profile", nsmap={None: YAST_NS, "config": CONFIG_NS})

        general = _sub(profile, "general")
        mode = _sub(general, "mode")
        _text(mode, "confirm", False, "boolean")

        repositories = [
            r
            for r in (scopes.get("repositories") or {}).get("repositories", [])
            if r.get("enabled", True) and r.get("url")
        ]
        if repositories:
            add_on = _sub(profile, "add-on")
            products = _list(add_on, "add_on_products")
            for repo in repositories:
                entry = _sub(products, "listentry")
                _text(entry, "media_url", repo["url"])
                _text(entry, "name", repo.get("name") or repo["alias"])
                _text(entry, "alias", repo["alias"])
                if repo.get("priority") is not None:
                    _text(entry, "priority", repo["priority"], "integer")

        software = _sub(profile, "software")
        packages = _list(software, "packages")
        for package in scopes["packages"].get("packages", []):
            _text(packages, "package", package["name"])
        patterns = (scopes.get("patterns") or {}).get("patterns", [])
        if patterns:
            node = _list(software, "patterns")
            for pattern in patterns:
                _text(node, "pattern", pattern["name"])

        self._accounts(profile)
        self._services(profile)
        return etree.tostring(profile, pretty_print=True, xml_declaration=True, encoding="utf-8")

    def _accounts(self, profile) -> None:
        scopes = self.description.scopes
        users = [u for u in (scopes.get("users") or {}).get("users", []) if (u.get("uid") or 0) >= MIN_USER_ID]
        if users:
            node = _list(profile, "users")
            for u in users:
                user = _sub(node, "user")
                _text(user, "username", u["name"])
                _text(user, "uid", u["uid"])
                if u.get("gid") is not None:
                    _text(user, "gid", u["gid"])
                _text(user, "home", u.get("home") or "")
                _text(user, "shell", u.get("shell") or "")
                _text(user, "fullname", u.get("comment") or "")
                if u.get("encrypted_password"):
                    _text(user, "encrypted", True, "boolean")
                    _text(user, "user_password", u["encrypted_password"])

        groups = [g for g in (scopes.get("groups") or {}).get("groups", []) if (g.get("gid") or 0) >= MIN_USER_ID]
        if groups:
            node = _list(profile, "groups")
            for g in groups:
                group = _sub(node, "group")
                _text(group, "groupname", g["name"])
                _text(group, "gid", g["gid"])
                _text(group, "userlist", ",".join(g.get("users", [])))

    def _services(self, profile) -> None:
        services = (self.description.scopes.get("services") or {}).get("services", [])
        enabled = [s["name"] for s in services if s["state"] in ("enabled", "on")]
        disabled = [s["name"] for s in services if s["state"] in ("disabled", "off")]
        if not (enabled or disabled):
            return
        manager = _sub(profile, "services-manager")
        node = _sub(manager, "services")
        for tag, names in (("enable", enabled), ("disable", disabled)):
            if names:
                listing = _list(node, tag)
                for name in names:
                    _text(listing, "service", name.removesuffix(".service"))

    def write(self, output_dir: Path) -> None:
        (output_dir / "autoinst.xml").write_bytes(self.profile())
        for scope in ("changed_config_files", "changed_managed_files", "unmanaged_files"):
            source = self.extracted_dir(scope)
            if source is not None:
                shutil.copytree(source, output_dir / scope, symlinks=True)
