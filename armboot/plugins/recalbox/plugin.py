"""Recalbox retro gaming OS."""

from __future__ import annotations

from armboot.models.os_entry import OSCategory
from armboot.plugins.base import RetroGamingPlugin


class RecalboxPlugin(RetroGamingPlugin):
    signatures = (("recalbox",),)
    keywords = ("recalbox",)

    @property
    def category(self) -> OSCategory:
        return OSCategory.RECALBOX

    @property
    def display_name(self) -> str:
        return "Recalbox"

    @property
    def description(self) -> str:
        return "Retro Gaming OS"
