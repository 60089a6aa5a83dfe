"""Device profiler: identifies the host board and its capabilities.

Classification probes identity sources in a fixed order and the first
positive match wins:

1. Vendor handheld signature (device-tree model or vendor directories)
2. Board signatures (Raspberry Pi, Orange Pi, Banana Pi, Rock Pi, Odroid)
3. Generic ARM fallback

Capability flags (GPIO, camera, display) are probed independently of the
class.  Gaming features come from a fixed table keyed by class.

Every path is resolved below *root* so a fake filesystem can stand in for
``/`` in tests.
"""

from __future__ import annotations

import platform
from pathlib import Path
from typing import Callable

from loguru import logger

from armboot.models.device import (
    CpuInfo,
    DeviceClass,
    DeviceProfile,
    DisplayType,
    GamingFeatures,
)

_HANDHELD_MODELS: dict[str, str] = {
    "rg351": "Anbernic RG351",
    "rg552": "Anbernic RG552",
    "rg35xx": "Anbernic RG35XX",
}
_HANDHELD_DIRS = ("opt/anbernic", "boot/anbernic")

_BOARD_MARKERS: list[tuple[DeviceClass, str]] = [
    (DeviceClass.RASPBERRY_PI, "raspberry pi"),
    (DeviceClass.ORANGE_PI, "orange pi"),
    (DeviceClass.BANANA_PI, "banana pi"),
    (DeviceClass.ROCK_PI, "rock pi"),
    (DeviceClass.ODROID, "odroid"),
]

GAMING_FEATURES: dict[DeviceClass, GamingFeatures] = {
    DeviceClass.HANDHELD_GAMING: GamingFeatures(
        has_dpad=True,
        has_analog_sticks=True,
        has_shoulder_buttons=True,
        has_built_in_screen=True,
        has_battery=True,
        screen_size_inches=3.5,
        native_resolution=(480, 320),
    ),
}

_DEFAULT_MEMORY_MB = 1024


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="ignore").replace("\0", "").strip()
    except OSError:
        return ""


class DeviceProfiler:
    """Builds the :class:`DeviceProfile` for the running host."""

    def __init__(self, root: Path = Path("/")) -> None:
        self._root = root

    def profile(self) -> DeviceProfile:
        """Probe the host.  Never raises: degrades to a Generic profile."""
        logger.info("Starting device detection…")
        try:
            profile = self._probe()
        except Exception as e:
            logger.warning("Device detection failed, using generic profile: {}", e)
            profile = DeviceProfile(
                device_class=DeviceClass.GENERIC,
                model=f"{DeviceClass.GENERIC.display_name} Device",
                architecture=platform.machine() or "unknown",
                memory_mb=_DEFAULT_MEMORY_MB,
            )
        logger.info(
            "Device: {} ({}, {}, {} MB)",
            profile.model, profile.device_class.value, profile.architecture, profile.memory_mb,
        )
        return profile

    # ------------------------------------------------------------------
    # Probing
    # ------------------------------------------------------------------

    def _probe(self) -> DeviceProfile:
        dt_model = self._device_tree_model()
        cpuinfo = _read_text(self._path("proc/cpuinfo"))

        device_class = self.classify(dt_model, cpuinfo)
        gaming = GAMING_FEATURES.get(device_class, GamingFeatures())

        return DeviceProfile(
            device_class=device_class,
            model=self._model_name(device_class, dt_model),
            architecture=platform.machine() or "unknown",
            memory_mb=self._memory_mb(),
            cpu=self._cpu_info(cpuinfo),
            has_gpio=self._has_gpio(),
            has_camera=self._has_camera(),
            display_type=self._display_type(gaming),
            gaming=gaming,
        )

    def classify(self, dt_model: str, cpuinfo: str = "") -> DeviceClass:
        """Apply the probe order; first positive match wins."""
        model = dt_model.lower()
        cpu = cpuinfo.lower()
        probes: list[tuple[DeviceClass, Callable[[], bool]]] = [
            (DeviceClass.HANDHELD_GAMING, lambda: self._is_handheld(model)),
        ]
        for cls, marker in _BOARD_MARKERS:
            if cls is DeviceClass.RASPBERRY_PI:
                # Pi kernels without a device tree still name the board in cpuinfo.
                probes.append((cls, lambda m=marker: m in model or m in cpu))
            else:
                probes.append((cls, lambda m=marker: m in model))

        for cls, probe in probes:
            if probe():
                logger.debug("Device class matched: {}", cls.value)
                return cls
        return DeviceClass.GENERIC

    def _is_handheld(self, model: str) -> bool:
        if "anbernic" in model or any(m in model for m in _HANDHELD_MODELS):
            return True
        return any(self._path(d).is_dir() for d in _HANDHELD_DIRS)

    def _model_name(self, device_class: DeviceClass, dt_model: str) -> str:
        if device_class is DeviceClass.HANDHELD_GAMING:
            lowered = dt_model.lower()
            for marker, name in _HANDHELD_MODELS.items():
                if marker in lowered:
                    return name
            return "Anbernic Gaming Handheld"
        return dt_model or f"{device_class.display_name} Device"

    def _device_tree_model(self) -> str:
        for rel in ("proc/device-tree/model", "sys/firmware/devicetree/base/model"):
            text = _read_text(self._path(rel))
            if text:
                return text
        return ""

    def _memory_mb(self) -> int:
        for line in _read_text(self._path("proc/meminfo")).splitlines():
            if line.startswith("MemTotal:"):
                parts = line.split()
                if len(parts) >= 2 and parts[1].isdigit():
                    return int(parts[1]) // 1024
        return _DEFAULT_MEMORY_MB

    @staticmethod
    def _cpu_info(cpuinfo: str) -> CpuInfo:
        model = "Unknown"
        cores = 0
        freq: int | None = None
        for line in cpuinfo.splitlines():
            key, _, value = line.partition(":")
            key = key.strip()
            value = value.strip()
            if key in ("model name", "Model", "Hardware") and value and model == "Unknown":
                model = value
            elif key == "processor":
                cores += 1
            elif key == "cpu MHz":
                try:
                    freq = int(float(value))
                except ValueError:
                    pass
        return CpuInfo(model=model, cores=max(cores, 1), frequency_mhz=freq)

    def _has_gpio(self) -> bool:
        return self._path("dev/gpiochip0").exists() or self._path("sys/class/gpio").exists()

    def _has_camera(self) -> bool:
        return any(
            self._path(p).exists()
            for p in (
                "dev/video0",
                "proc/device-tree/soc/i2c@7e804000/imx219@10",
                "proc/device-tree/soc/csi1",
            )
        )

    def _display_type(self, gaming: GamingFeatures) -> DisplayType:
        drm = self._path("sys/class/drm")
        connectors = [p.name for p in drm.glob("card*-*")] if drm.is_dir() else []
        if any("-DSI-" in c for c in connectors) or self._path("proc/device-tree/soc/dsi@7e209000").exists():
            return DisplayType.DSI
        if any("-HDMI-" in c for c in connectors):
            return DisplayType.HDMI
        if gaming.has_built_in_screen:
            return DisplayType.LCD
        return DisplayType.UNKNOWN

    def _path(self, rel: str) -> Path:
        return self._root / rel
