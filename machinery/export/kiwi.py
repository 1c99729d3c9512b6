"""KIWI NG image description export."""

from __future__ import annotations

import shlex
import shutil
from pathlib import Path

from lxml import etree

from machinery.errors import ExportFailed
from machinery.export import Exporter, require_scopes

SCHEMA_VERSION = "7.4"

PACKAGE_MANAGERS = {"sle": "zypper", "opensuse": "zypper", "rhel": "dnf", "debian": "apt", "ubuntu": "apt"}

REPOSITORY_TYPES = {"zypp": "rpm-md", "yum": "rpm-md", "apt": "apt-deb"}

CONFIG_SH_HEADER = """#!/bin/bash
test -f /.kconfig && . /.kconfig
test -f /.profile && . /.profile
"""

DHCP_CONFIG = """cat > /etc/sysconfig/network/ifcfg-eth0 <<EOF
BOOTPROTO='dhcp'
STARTMODE='auto'
EOF
"""


class KiwiConfig(Exporter):
    """Builds config.xml, config.sh and the root overlay from a description."""

    suffix = "kiwi"

    def __init__(self, description, description_dir=None, *, enable_dhcp: bool = False, enable_ssh: bool = False):
        super().__init__(description, description_dir)
        require_scopes(description, ("os", "packages"))
        self.enable_dhcp = enable_dhcp
        self.enable_ssh = enable_ssh

        os_payload = description.scopes["os"]
        family = os_payload.get("family")
        if family not in PACKAGE_MANAGERS:
            raise ExportFailed(
                f"Export is not possible because the operating system '{os_payload.get('name')}' is not supported."
            )
        self.package_manager = PACKAGE_MANAGERS[family]

    # ── config.xml ──

    def config_xml(self) -> bytes:
        d = self.description
        image = etree.Element("image", schemaversion=SCHEMA_VERSION, name=d.name)

        desc = etree.SubElement(image, "description", type="system")
        etree.SubElement(desc, "author").text = "Machinery"
        etree.SubElement(desc, "contact").text = "-"
        etree.SubElement(desc, "specification").text = f"Description of system '{d.name}' exported by Machinery"

        prefs = etree.SubElement(image, "preferences")
        etree.SubElement(prefs, "version").text = "1.0.0"
        etree.SubElement(prefs, "packagemanager").text = self.package_manager
        etree.SubElement(prefs, "locale").text = "en_US"
        etree.SubElement(prefs, "keytable").text = "us"
        etree.SubElement(prefs, "timezone").text = "UTC"
        etree.SubElement(prefs, "rpm-check-signatures").text = "false"
        etree.SubElement(prefs, "type", image="oem", filesystem="ext4", firmware="efi")

        self._users(image)
        self._repositories(image)

        bootstrap = etree.SubElement(image, "packages", type="bootstrap")
        for name in ("filesystem", "glibc-locale", "ca-certificates"):
            etree.SubElement(bootstrap, "package", name=name)

        packages = etree.SubElement(image, "packages", type="image")
        for package in d.scopes["packages"].get("packages", []):
            etree.SubElement(packages, "package", name=package["name"])
        for pattern in (d.scopes.get("patterns") or {}).get("patterns", []):
            etree.SubElement(packages, "namedCollection", name=pattern["name"])

        return etree.tostring(image, pretty_print=True, xml_declaration=True, encoding="utf-8")

    def _users(self, image) -> None:
        users = (self.description.scopes.get("users") or {}).get("users", [])
        groups = {g.get("gid"): g["name"] for g in (self.description.scopes.get("groups") or {}).get("groups", [])}
        if not users:
            return
        node = etree.SubElement(image, "users")
        for user in users:
            attrs = {
                "name": user["name"],
                "home": user.get("home") or "/",
                "shell": user.get("shell") or "/bin/false",
            }
            if user.get("uid") is not None:
                attrs["id"] = str(user["uid"])
            if user.get("gid") in groups:
                attrs["groups"] = groups[user["gid"]]
            if user.get("encrypted_password") and user["encrypted_password"] not in ("*", "!", "!!", "x"):
                attrs["password"] = user["encrypted_password"]
                attrs["pwdformat"] = "encrypted"
            if user.get("comment"):
                attrs["realname"] = user["comment"]
            etree.SubElement(node, "user", **attrs)

    def _repositories(self, image) -> None:
        payload = self.description.scopes.get("repositories") or {}
        repo_type = REPOSITORY_TYPES.get(payload.get("repository_system"), "rpm-md")
        for repo in payload.get("repositories", []):
            if not repo.get("enabled", True) or not repo.get("url"):
                continue
            attrs = {"type": repo_type, "alias": repo["alias"]}
            if repo.get("priority") is not None:
                attrs["priority"] = str(repo["priority"])
            node = etree.SubElement(image, "repository", **attrs)
            etree.SubElement(node, "source", path=repo["url"])

    # ── config.sh ──

    def config_sh(self) -> str:
        lines = [CONFIG_SH_HEADER]
        services = (self.description.scopes.get("services") or {}).get("services", [])
        for service in services:
            if service["state"] in ("enabled", "on"):
                lines.append(f"systemctl enable {shlex.quote(service['name'])} || true")
            elif service["state"] in ("disabled", "off"):
                lines.append(f"systemctl disable {shlex.quote(service['name'])} || true")

        for scope in ("changed_config_files", "changed_managed_files"):
            for f in (self.description.scopes.get(scope) or {}).get("files", []):
                if f.get("status") == "deleted":
                    lines.append(f"rm -rf {shlex.quote(f['name'])}")
                    continue
                if f.get("mode"):
                    lines.append(f"chmod {f['mode']} {shlex.quote(f['name'])}")
                if f.get("user") and f.get("group"):
                    lines.append(f"chown {f['user']}:{f['group']} {shlex.quote(f['name'])}")

        if self.enable_dhcp:
            lines.append(DHCP_CONFIG)
        if self.enable_ssh:
            lines.append("systemctl enable sshd")
        return "\n".join(lines) + "\n"

    # ── output ──

    def write(self, output_dir: Path) -> None:
        (output_dir / "config.xml").write_bytes(self.config_xml())
        config_sh = output_dir / "config.sh"
        config_sh.write_text(self.config_sh())
        config_sh.chmod(0o755)

        root = output_dir / "root"
        root.mkdir()
        for scope in ("changed_config_files", "changed_managed_files", "unmanaged_files"):
            source = self.extracted_dir(scope)
            if source is not None:
                shutil.copytree(source, root, symlinks=True, dirs_exist_ok=True)
