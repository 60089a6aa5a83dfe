"""RetroPie: EmulationStation based retro gaming distribution."""

from __future__ import annotations

from armboot.models.os_entry import OSCategory
from armboot.plugins.base import RetroGamingPlugin


class RetroPiePlugin(RetroGamingPlugin):
    """Plugin for RetroPie boot partitions, installs and images."""

    signatures = (("retropie",), ("RetroPie",))
    keywords = ("retropie",)

    @property
    def category(self) -> OSCategory:
        return OSCategory.RETROPIE

    @property
    def display_name(self) -> str:
        return "RetroPie"

    @property
    def description(self) -> str:
        return "Retro Gaming System"
