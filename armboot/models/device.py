"""Data model for the detected device profile."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum


class DeviceClass(str, Enum):
    """Hardware family of the running host."""

    RASPBERRY_PI = "raspberry_pi"
    HANDHELD_GAMING = "handheld_gaming"
    ORANGE_PI = "orange_pi"
    BANANA_PI = "banana_pi"
    ROCK_PI = "rock_pi"
    ODROID = "odroid"
    GENERIC = "generic"

    @property
    def display_name(self) -> str:
        return _CLASS_NAMES[self]


_CLASS_NAMES = {
    DeviceClass.RASPBERRY_PI: "Raspberry Pi",
    DeviceClass.HANDHELD_GAMING: "Gaming Handheld",
    DeviceClass.ORANGE_PI: "Orange Pi",
    DeviceClass.BANANA_PI: "Banana Pi",
    DeviceClass.ROCK_PI: "Rock Pi",
    DeviceClass.ODROID: "Odroid",
    DeviceClass.GENERIC: "Generic ARM",
}


class DisplayType(str, Enum):
    HDMI = "hdmi"
    DSI = "dsi"
    LCD = "lcd"
    OLED = "oled"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CpuInfo:
    model: str = "Unknown"
    cores: int = 1
    frequency_mhz: int | None = None

    @property
    def summary(self) -> str:
        freq = f" @ {self.frequency_mhz} MHz" if self.frequency_mhz else ""
        return f"{self.model} ({self.cores} cores{freq})"


@dataclass(frozen=True)
class GamingFeatures:
    """Built-in gaming controls and screen of the device."""

    has_dpad: bool = False
    has_analog_sticks: bool = False
    has_shoulder_buttons: bool = False
    has_built_in_screen: bool = False
    has_battery: bool = False
    screen_size_inches: float | None = None
    native_resolution: tuple[int, int] | None = None

    @property
    def is_handheld(self) -> bool:
        return self.has_built_in_screen and self.has_dpad


@dataclass(frozen=True)
class DeviceProfile:
    """Immutable snapshot of the host hardware, built once at startup."""

    device_class: DeviceClass
    model: str
    architecture: str
    memory_mb: int
    cpu: CpuInfo = field(default_factory=CpuInfo)
    has_gpio: bool = False
    has_camera: bool = False
    display_type: DisplayType = DisplayType.UNKNOWN
    gaming: GamingFeatures = field(default_factory=GamingFeatures)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["device_class"] = self.device_class.value
        data["display_type"] = self.display_type.value
        return data
