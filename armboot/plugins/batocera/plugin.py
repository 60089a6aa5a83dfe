"""Batocera retro gaming distribution."""

from __future__ import annotations

from armboot.models.os_entry import OSCategory
from armboot.plugins.base import RetroGamingPlugin


class BatoceraPlugin(RetroGamingPlugin):
    signatures = (("batocera",), ("BATOCERA",))
    keywords = ("batocera",)

    @property
    def category(self) -> OSCategory:
        return OSCategory.BATOCERA

    @property
    def display_name(self) -> str:
        return "Batocera"

    @property
    def description(self) -> str:
        return "Retro Gaming Distribution"
