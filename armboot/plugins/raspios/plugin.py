"""Raspberry Pi OS: the vendor's stock system.

Recognised by the firmware boot pair ``config.txt`` + ``cmdline.txt``.
"""

from __future__ import annotations

from armboot.models.device import DeviceProfile
from armboot.models.os_entry import OSCategory, OSEntry
from armboot.plugins.base import BootPlan, StandardOSPlugin


class RaspberryPiOSPlugin(StandardOSPlugin):
    signatures = (("config.txt", "cmdline.txt"),)
    keywords = ("raspios", "raspberry")

    @property
    def category(self) -> OSCategory:
        return OSCategory.RASPBERRY_PI_OS

    @property
    def display_name(self) -> str:
        return "Raspberry Pi OS"

    @property
    def description(self) -> str:
        return "Official Raspberry Pi Operating System"

    def prepare_boot(self, entry: OSEntry, profile: DeviceProfile) -> BootPlan:
        plan = super().prepare_boot(entry, profile)
        if profile.has_camera:
            plan.env["ARMBOOT_CAMERA"] = "1"
        if profile.has_gpio:
            plan.env["ARMBOOT_GPIO"] = "1"
        return plan
