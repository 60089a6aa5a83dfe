"""Text rendering of the boot menu screens."""

from __future__ import annotations

from armboot.i18n import t
from armboot.models.boot_config import BootConfiguration
from armboot.models.device import DeviceProfile
from armboot.models.os_entry import OSCategory, OSEntry

RULE = "=" * 39

CATEGORY_ICONS = {
    OSCategory.RETROPIE: "[RP]",
    OSCategory.BATOCERA: "[BT]",
    OSCategory.RECALBOX: "[RB]",
    OSCategory.RASPBERRY_PI_OS: "[PI]",
    OSCategory.LINUX: "[LX]",
    OSCategory.UNKNOWN: "[??]",
}


def render_menu_item(index: int, entry: OSEntry) -> list[str]:
    icon = CATEGORY_ICONS.get(entry.category, CATEGORY_ICONS[OSCategory.UNKNOWN])
    lines = [f"  {index}. {icon} {entry.name} - {entry.description}"]
    if entry.last_used is not None:
        lines.append("     " + t("menu.last_used", time=entry.last_used.strftime("%Y-%m-%d %H:%M")))
    return lines


def render_boot_menu(profile: DeviceProfile, entries: list[OSEntry], *, gaming_mode: bool = False) -> str:
    lines = ["", t("menu.title"), t("menu.device", model=profile.model)]
    if profile.gaming.has_built_in_screen:
        lines.append(t("menu.screen", size=profile.gaming.screen_size_inches or 3.5))
    lines.append(RULE)
    for i, entry in enumerate(entries, start=1):
        lines.extend(render_menu_item(i, entry))
    lines += [
        RULE,
        "  " + t("menu.advanced"),
        "  " + t("menu.remote"),
        "  " + t("menu.restart_tests"),
        "  " + t("menu.shutdown"),
        RULE,
    ]
    if gaming_mode and profile.gaming.is_handheld:
        lines.append(t("menu.gaming_hint"))
    lines.append(t("menu.prompt", count=len(entries)))
    return "\n".join(lines)


def render_no_systems(web_url: str) -> str:
    return "\n".join([
        "",
        t("no_systems.title"),
        RULE,
        "  " + t("no_systems.rescan"),
        "  " + t("no_systems.remote"),
        "  " + t("no_systems.shutdown"),
        RULE,
        t("no_systems.hint", url=web_url),
    ])


def render_advanced(config: BootConfiguration, web_url: str) -> str:
    state = "on" if config.recovery_mode else "off"
    return "\n".join([
        "",
        t("advanced.title"),
        RULE,
        t("advanced.default", name=config.default_os or "-"),
        t("advanced.recovery", state=state),
        t("advanced.install", url=web_url),
        t("advanced.remove", url=web_url),
        RULE,
    ])
