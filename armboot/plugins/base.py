"""Abstract base class for OS category plugins.

Each plugin owns one :class:`OSCategory` and answers three questions:

* does a directory carry this category's signature?
* does a standalone image's file name mention this category?
* how is a boot of this category prepared?

The plugin manager turns the set of plugins into the classification order
and the category → boot handler table, so adding a category means adding
a plugin package.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from armboot.models.device import DeviceProfile
from armboot.models.os_entry import OSCategory, OSEntry


@dataclass
class BootPlan:
    """Preparatory steps and environment handed to the OS bootstrap."""

    category: OSCategory
    tag: str
    """``gaming`` / ``standard`` / ``generic``: the dispatch family."""

    steps: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "tag": self.tag,
            "steps": list(self.steps),
            "env": dict(self.env),
        }


class OSCategoryPlugin(ABC):
    """Base class that every OS category plugin must implement."""

    signatures: tuple[tuple[str, ...], ...] = ()
    """Alternative signatures; a signature matches when all of its paths exist."""

    keywords: tuple[str, ...] = ()
    """Lower-case substrings looked for in image file names."""

    @property
    @abstractmethod
    def category(self) -> OSCategory:
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Name used for entries discovered on boot partitions."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        ...

    @abstractmethod
    def prepare_boot(self, entry: OSEntry, profile: DeviceProfile) -> BootPlan:
        """Build the category-specific boot sequence for *entry*."""
        ...

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def matches_directory(self, path: Path) -> bool:
        return any(
            all((path / rel).exists() for rel in signature)
            for signature in self.signatures
        )

    def matches_filename(self, filename: str) -> bool:
        lowered = filename.lower()
        return any(k in lowered for k in self.keywords)

    # ------------------------------------------------------------------
    # Shared boot helpers
    # ------------------------------------------------------------------

    @staticmethod
    def base_env(entry: OSEntry) -> dict[str, str]:
        return {
            "ARMBOOT_OS": entry.name,
            "ARMBOOT_PATH": str(entry.path),
            "ARMBOOT_CATEGORY": entry.category.value,
        }


class RetroGamingPlugin(OSCategoryPlugin):
    """Shared boot sequence for the retro gaming distributions."""

    def prepare_boot(self, entry: OSEntry, profile: DeviceProfile) -> BootPlan:
        env = self.base_env(entry)
        gaming = profile.gaming
        env["ARMBOOT_INPUT_PROFILE"] = "handheld" if gaming.is_handheld else "gamepad"
        steps = [f"configure {env['ARMBOOT_INPUT_PROFILE']} controls"]
        if gaming.native_resolution:
            width, height = gaming.native_resolution
            env["ARMBOOT_RESOLUTION"] = f"{width}x{height}"
            steps.append(f"set display mode {width}x{height}")
        steps.append(f"load {entry.name}")
        return BootPlan(category=self.category, tag="gaming", steps=steps, env=env)


class StandardOSPlugin(OSCategoryPlugin):
    """Shared boot sequence for desktop / vendor Linux systems."""

    def prepare_boot(self, entry: OSEntry, profile: DeviceProfile) -> BootPlan:
        env = self.base_env(entry)
        env["ARMBOOT_DISPLAY"] = profile.display_type.value
        steps = [f"apply {profile.display_type.value} display defaults", f"load {entry.name}"]
        return BootPlan(category=self.category, tag="standard", steps=steps, env=env)


class UnknownOSPlugin(OSCategoryPlugin):
    """Fallback for payloads no plugin recognises.  Never used to classify."""

    @property
    def category(self) -> OSCategory:
        return OSCategory.UNKNOWN

    @property
    def display_name(self) -> str:
        return "Unknown System"

    @property
    def description(self) -> str:
        return "Unknown OS Image"

    def matches_directory(self, path: Path) -> bool:
        return False

    def matches_filename(self, filename: str) -> bool:
        return False

    def prepare_boot(self, entry: OSEntry, profile: DeviceProfile) -> BootPlan:
        return BootPlan(
            category=self.category,
            tag="generic",
            steps=[f"load system from {entry.path}"],
            env=self.base_env(entry),
        )
