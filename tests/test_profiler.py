"""Tests for device classification and capability probing."""

from pathlib import Path
from unittest.mock import patch

import pytest

from armboot.core.profiler import DeviceProfiler
from armboot.models.device import DeviceClass, DisplayType


def _write(root: Path, rel: str, text: str = "") -> None:
    p = root / rel
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text)


class TestClassify:
    """Probe order: handheld first, then boards, then generic."""

    def test_raspberry_pi_from_device_tree(self, tmp_path):
        assert DeviceProfiler(tmp_path).classify("Raspberry Pi 4 Model B Rev 1.4") is DeviceClass.RASPBERRY_PI

    def test_raspberry_pi_from_cpuinfo_only(self, tmp_path):
        cpuinfo = "processor : 0\nModel : Raspberry Pi 3 Model B Plus Rev 1.3\n"
        assert DeviceProfiler(tmp_path).classify("", cpuinfo) is DeviceClass.RASPBERRY_PI

    @pytest.mark.parametrize("model, expected", [
        ("Xunlong Orange Pi 5", DeviceClass.ORANGE_PI),
        ("Banana Pi BPI-M5", DeviceClass.BANANA_PI),
        ("Radxa ROCK Pi 4B", DeviceClass.ROCK_PI),
        ("Hardkernel ODROID-N2Plus", DeviceClass.ODROID),
        ("Some Vendor Board", DeviceClass.GENERIC),
    ])
    def test_board_markers(self, tmp_path, model, expected):
        assert DeviceProfiler(tmp_path).classify(model) is expected

    def test_handheld_wins_over_board_marker(self, tmp_path):
        (tmp_path / "opt" / "anbernic").mkdir(parents=True)
        assert DeviceProfiler(tmp_path).classify("Raspberry Pi Compute Module 4") is DeviceClass.HANDHELD_GAMING

    def test_handheld_from_model_name(self, tmp_path):
        assert DeviceProfiler(tmp_path).classify("Anbernic RG351P") is DeviceClass.HANDHELD_GAMING


class TestProfile:
    """Full probe against a fake root filesystem."""

    def test_raspberry_pi_profile(self, tmp_path):
        _write(tmp_path, "proc/device-tree/model", "Raspberry Pi 4 Model B Rev 1.4\0")
        _write(tmp_path, "proc/meminfo", "MemTotal:        3884328 kB\nMemFree: 1 kB\n")
        _write(tmp_path, "proc/cpuinfo", "processor\t: 0\nprocessor\t: 1\nprocessor\t: 2\nprocessor\t: 3\n"
                                          "Model\t: Raspberry Pi 4 Model B Rev 1.4\n")
        _write(tmp_path, "dev/gpiochip0")
        (tmp_path / "sys" / "class" / "drm" / "card1-HDMI-A-1").mkdir(parents=True)

        profile = DeviceProfiler(tmp_path).profile()

        assert profile.device_class is DeviceClass.RASPBERRY_PI
        assert profile.model == "Raspberry Pi 4 Model B Rev 1.4"
        assert profile.memory_mb == 3793
        assert profile.cpu.cores == 4
        assert profile.has_gpio is True
        assert profile.has_camera is False
        assert profile.display_type is DisplayType.HDMI
        assert profile.gaming.is_handheld is False

    def test_handheld_profile_has_gaming_features(self, tmp_path):
        _write(tmp_path, "proc/device-tree/model", "Anbernic RG552\0")

        profile = DeviceProfiler(tmp_path).profile()

        assert profile.device_class is DeviceClass.HANDHELD_GAMING
        assert profile.model == "Anbernic RG552"
        assert profile.gaming.has_dpad
        assert profile.gaming.native_resolution == (480, 320)
        assert profile.display_type is DisplayType.LCD

    def test_dsi_connector_detected(self, tmp_path):
        (tmp_path / "sys" / "class" / "drm" / "card0-DSI-1").mkdir(parents=True)
        assert DeviceProfiler(tmp_path).profile().display_type is DisplayType.DSI

    def test_empty_root_is_generic_with_default_memory(self, tmp_path):
        profile = DeviceProfiler(tmp_path).profile()

        assert profile.device_class is DeviceClass.GENERIC
        assert profile.model == "Generic ARM Device"
        assert profile.memory_mb == 1024

    def test_probe_failure_degrades_to_generic(self, tmp_path):
        profiler = DeviceProfiler(tmp_path)
        with patch.object(profiler, "_probe", side_effect=RuntimeError("boom")):
            profile = profiler.profile()

        assert profile.device_class is DeviceClass.GENERIC
        assert profile.memory_mb == 1024
