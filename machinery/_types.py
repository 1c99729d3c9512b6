"""Value types shared by the inspection request and the inspectors."""

from __future__ import annotations

import getpass
import os
import pwd
from dataclasses import dataclass, field, fields
from typing import TYPE_CHECKING

from machinery.filter import Filter

if TYPE_CHECKING:
    from machinery.store import SystemDescriptionStore
    from machinery.system import TargetSystem


@dataclass(frozen=True)
class CurrentUser:
    """The operator running Machinery, recorded in description metadata."""

    name: str
    uid: int

    @classmethod
    def capture(cls) -> CurrentUser:
        uid = os.geteuid()
        try:
            name = pwd.getpwuid(uid).pw_name
        except KeyError:
            name = getpass.getuser()
        return cls(name=name, uid=uid)

    @property
    def is_root(self) -> bool:
        return self.uid == 0


@dataclass(frozen=True)
class ExtractionOptions:
    """Which scopes should capture file contents, not just metadata."""

    extract_unmanaged_files: bool = False
    extract_changed_managed_files: bool = False
    extract_changed_changed_config_files: bool = False

    @classmethod
    def all(cls) -> ExtractionOptions:
        return cls(
            extract_unmanaged_files=True,
            extract_changed_managed_files=True,
            extract_changed_changed_config_files=True,
        )

    def enabled(self, flag: str) -> bool:
        return bool(getattr(self, flag, False))

    def any(self) -> bool:
        return any(self.as_dict().values())

    def as_dict(self) -> dict[str, bool]:
        """Return only the enabled flags."""
        return {f.name: True for f in fields(self) if getattr(self, f.name)}


@dataclass(frozen=True)
class InspectionRequest:
    """Everything one inspection run needs, fixed at construction."""

    store: SystemDescriptionStore
    target: TargetSystem
    description_name: str | None
    user: CurrentUser
    scopes: tuple[str, ...]
    filter: Filter = field(default_factory=Filter)
    options: ExtractionOptions = field(default_factory=ExtractionOptions)

    def __post_init__(self) -> None:
        # Private copies so the caller cannot change the run underneath us
        object.__setattr__(self, "scopes", tuple(self.scopes))
        object.__setattr__(self, "filter", self.filter.copy())
