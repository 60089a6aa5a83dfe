"""General purpose Linux distributions (Ubuntu, Debian, Armbian, ...)."""

from __future__ import annotations

from armboot.models.os_entry import OSCategory
from armboot.plugins.base import StandardOSPlugin


class LinuxPlugin(StandardOSPlugin):
    # vmlinuz overlaps with the vendor OS; precedence decides which one wins.
    signatures = (("ubuntu",), ("vmlinuz",), ("etc/lsb-release",))
    keywords = ("ubuntu", "debian", "armbian")

    @property
    def category(self) -> OSCategory:
        return OSCategory.LINUX

    @property
    def display_name(self) -> str:
        return "Linux System"

    @property
    def description(self) -> str:
        return "General Linux Distribution"
