"""Application configuration management."""

import json
import os
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from armboot.models.os_entry import DEFAULT_CATEGORY_PRECEDENCE, OSCategory

_DEFAULT_DATA_DIR = "/boot/armboot"

_DEFAULT_CONFIG: dict[str, Any] = {
    "data_dir": "",
    "systems_path": "",
    "backup_path": "",
    "boot_partitions": ["/boot", "/mnt/boot", "/media/boot"],
    "image_dirs": ["/boot/os_images", "/home/armboot/images", "/opt/armboot/images"],
    "removable_media_roots": ["/media", "/mnt", "/run/media"],
    "category_precedence": [c.value for c in DEFAULT_CATEGORY_PRECEDENCE],
    "menu_timeout_seconds": 3,
    "network_timeout_seconds": 3,
    "web_host": "0.0.0.0",
    "web_port": 8080,
    "language": "en_US",
    "log_level": "INFO",
    "gaming_mode": True,
    "host_root": "/",
}


class Config:
    """Singleton application configuration."""

    _instance: Optional["Config"] = None
    _data: dict[str, Any]
    _path: Path

    def __new__(cls, config_path: Optional[Path] = None) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None) -> None:
        if self._initialized:  # type: ignore[has-type]
            return
        self._initialized = True
        env_path = os.environ.get("ARMBOOT_CONFIG")
        self._path = config_path or Path(env_path or f"{_DEFAULT_DATA_DIR}/config.json")
        self._data = dict(_DEFAULT_CONFIG)
        self._load()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._path

    @property
    def data_dir(self) -> Path:
        p = self._data.get("data_dir", "")
        return Path(p) if p else self._path.parent

    @property
    def systems_path(self) -> Path:
        """Root of installed systems: one subdirectory per OS name."""
        p = self._data.get("systems_path", "")
        return Path(p) if p else self.data_dir / "systems"

    @property
    def backup_path(self) -> Path:
        p = self._data.get("backup_path", "")
        return Path(p) if p else self.data_dir / "backups"

    @property
    def registry_path(self) -> Path:
        return self.data_dir / "registry.json"

    @property
    def boot_config_path(self) -> Path:
        return self.data_dir / "boot.json"

    @property
    def boot_request_path(self) -> Path:
        return self.data_dir / "boot_request.json"

    @property
    def host_root(self) -> Path:
        return Path(self._data.get("host_root") or "/")

    @property
    def boot_partitions(self) -> list[Path]:
        return [Path(p) for p in self._data.get("boot_partitions", []) if p]

    @property
    def image_dirs(self) -> list[Path]:
        return [Path(p) for p in self._data.get("image_dirs", []) if p]

    @property
    def removable_media_roots(self) -> list[Path]:
        return [Path(p) for p in self._data.get("removable_media_roots", []) if p]

    @property
    def category_precedence(self) -> list[OSCategory]:
        """Classification order; unknown names are ignored with a warning."""
        order: list[OSCategory] = []
        for value in self._data.get("category_precedence") or []:
            try:
                cat = OSCategory(value)
            except ValueError:
                logger.warning("Ignoring unknown category in precedence: {}", value)
                continue
            if cat is not OSCategory.UNKNOWN and cat not in order:
                order.append(cat)
        return order or list(DEFAULT_CATEGORY_PRECEDENCE)

    @property
    def menu_timeout_seconds(self) -> int:
        return int(self._data.get("menu_timeout_seconds", 3))

    @property
    def network_timeout_seconds(self) -> float:
        return float(self._data.get("network_timeout_seconds", 3))

    @property
    def web_url(self) -> str:
        host = self._data.get("web_host", "0.0.0.0")
        port = int(self._data.get("web_port", 8080))
        if host == "0.0.0.0":
            host = "localhost"
        return f"http://{host}:{port}"

    @property
    def language(self) -> str:
        return self._data.get("language", "en_US")

    @property
    def log_level(self) -> str:
        return str(self._data.get("log_level", "INFO")).upper()

    @property
    def gaming_mode(self) -> bool:
        return bool(self._data.get("gaming_mode", True))

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._save()

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if self._path.exists():
            try:
                with open(self._path, "r", encoding="utf-8") as f:
                    saved = json.load(f)
                self._data.update(saved)
                logger.info("Configuration loaded from {}", self._path)
            except Exception as e:
                logger.warning("Failed to load config, using defaults: {}", e)
        else:
            logger.info("No configuration at {}, using defaults", self._path)

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump(self._data, f, indent=4, ensure_ascii=False)
        except Exception as e:
            logger.error("Failed to save config: {}", e)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None
