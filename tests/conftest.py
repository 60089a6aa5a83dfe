"""
Shared fixtures: a throwaway filesystem root with the systems, backup,
boot-partition, image and removable-media directories, and the services
wired on top of it.
"""

import io
import tarfile
import zipfile
from pathlib import Path

import pytest

from armboot.config import Config
from armboot.core.boot_config import BootConfigStore
from armboot.core.catalog import OSCatalog
from armboot.core.lifecycle import OSLifecycleManager
from armboot.core.registry import Registry
from armboot.i18n import init as i18n_init
from armboot.models.device import CpuInfo, DeviceClass, DeviceProfile, DisplayType
from armboot.core.profiler import GAMING_FEATURES
from armboot.plugins.plugin_manager import PluginManager


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path, monkeypatch):
    """Every test gets a fresh Config singleton pointed at its tmp dir."""
    Config.reset()
    monkeypatch.setenv("ARMBOOT_CONFIG", str(tmp_path / "data" / "config.json"))
    i18n_init("en_US")
    yield
    Config.reset()


@pytest.fixture
def root(tmp_path) -> Path:
    for d in ("systems", "backups", "boot", "images", "media", "data"):
        (tmp_path / d).mkdir()
    return tmp_path


@pytest.fixture
def plugins() -> PluginManager:
    pm = PluginManager()
    pm.discover()
    return pm


@pytest.fixture
def registry(root) -> Registry:
    return Registry(root / "data" / "registry.json")


@pytest.fixture
def catalog(root, registry, plugins) -> OSCatalog:
    return OSCatalog(
        registry,
        plugins,
        systems_root=root / "systems",
        boot_partitions=[root / "boot"],
        image_dirs=[root / "images"],
        removable_media_roots=[root / "media"],
    )


@pytest.fixture
def generic_profile() -> DeviceProfile:
    return DeviceProfile(
        device_class=DeviceClass.GENERIC,
        model="Generic ARM Device",
        architecture="aarch64",
        memory_mb=2048,
        cpu=CpuInfo(model="Cortex-A72", cores=4),
    )


@pytest.fixture
def pi_profile() -> DeviceProfile:
    return DeviceProfile(
        device_class=DeviceClass.RASPBERRY_PI,
        model="Raspberry Pi 4 Model B Rev 1.4",
        architecture="aarch64",
        memory_mb=4096,
        has_gpio=True,
        has_camera=True,
        display_type=DisplayType.HDMI,
    )


@pytest.fixture
def handheld_profile() -> DeviceProfile:
    return DeviceProfile(
        device_class=DeviceClass.HANDHELD_GAMING,
        model="Anbernic RG351",
        architecture="aarch64",
        memory_mb=1024,
        display_type=DisplayType.LCD,
        gaming=GAMING_FEATURES[DeviceClass.HANDHELD_GAMING],
    )


@pytest.fixture
def boot_store(root) -> BootConfigStore:
    return BootConfigStore(root / "data" / "boot.json", default_timeout=0)


@pytest.fixture
def lifecycle(root, catalog, plugins, generic_profile, boot_store) -> OSLifecycleManager:
    return OSLifecycleManager(
        catalog,
        plugins,
        generic_profile,
        boot_store,
        backup_root=root / "backups",
        boot_request_path=root / "data" / "boot_request.json",
    )


# ------------------------------------------------------------------
# Source builders
# ------------------------------------------------------------------

RETROPIE_FILES = {
    "kernel.img": b"\x7fELF-kernel",
    "retropie/emulators.cfg": b"snes=snes9x\n",
    "config.txt": b"arm_64bit=1\n",
}


def make_zip(path: Path, files: dict) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return path


def make_tar(path: Path, files: dict) -> Path:
    with tarfile.open(path, "w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
    return path


def tree_snapshot(path: Path) -> dict:
    """Relative path -> file bytes for every file below *path*."""
    return {
        p.relative_to(path).as_posix(): p.read_bytes()
        for p in sorted(path.rglob("*"))
        if p.is_file()
    }
