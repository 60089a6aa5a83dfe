"""Per-device tweaks applied to a freshly installed OS.

The handler table maps a :class:`DeviceClass` to the function that adjusts
an install directory for it.  Device classes without an entry get nothing.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

from loguru import logger

from armboot.models.device import DeviceClass, DeviceProfile

RPI_GPU_SETTINGS = ("gpu_mem=128", "gpu_freq=500", "over_voltage=2")
DISPLAY_CONFIG = "display_config.txt"
_DEFAULT_HANDHELD_RESOLUTION = (480, 320)


def optimize_raspberry_pi(install_path: Path, profile: DeviceProfile) -> None:
    """Append the GPU memory split to ``config.txt`` unless one is set."""
    boot_config = install_path / "config.txt"
    if not boot_config.is_file():
        return
    content = boot_config.read_text(encoding="utf-8", errors="replace")
    if "gpu_mem" in content:
        logger.debug("GPU memory already configured in {}", boot_config)
        return
    if content and not content.endswith("\n"):
        content += "\n"
    content += "\n# armboot GPU optimizations\n" + "\n".join(RPI_GPU_SETTINGS) + "\n"
    boot_config.write_text(content, encoding="utf-8")
    logger.info("Applied Raspberry Pi GPU settings to {}", boot_config)


def optimize_handheld(install_path: Path, profile: DeviceProfile) -> None:
    """Write display settings matching the handheld's built-in screen."""
    width, height = profile.gaming.native_resolution or _DEFAULT_HANDHELD_RESOLUTION
    settings = "\n".join([
        "# Gaming Handheld Display Settings",
        "hdmi_force_hotplug=1",
        "hdmi_group=2",
        "hdmi_mode=87",
        f"hdmi_cvt={width} {height} 60 6 0 0 0",
        "display_rotate=0",
    ]) + "\n"
    (install_path / DISPLAY_CONFIG).write_text(settings, encoding="utf-8")
    logger.info("Wrote handheld display settings ({}x{}) to {}", width, height, install_path)


OPTIMIZATIONS: dict[DeviceClass, Callable[[Path, DeviceProfile], None]] = {
    DeviceClass.RASPBERRY_PI: optimize_raspberry_pi,
    DeviceClass.HANDHELD_GAMING: optimize_handheld,
}


def apply_optimizations(install_path: Path, profile: DeviceProfile) -> bool:
    """Run the optimization registered for the profile's device class.

    Returns ``True`` if one was applied.
    """
    handler = OPTIMIZATIONS.get(profile.device_class)
    if handler is None:
        logger.debug("No optimizations for {}", profile.device_class.value)
        return False
    handler(install_path, profile)
    return True
