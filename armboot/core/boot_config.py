"""Persistence for the boot configuration (``boot.json``)."""

from __future__ import annotations

import threading
from pathlib import Path

from loguru import logger

from armboot.core.jsonstore import read_json, write_json_atomic
from armboot.errors import ConfigurationMissing
from armboot.models.boot_config import BootConfiguration


class BootConfigStore:
    """Loads and saves :class:`BootConfiguration`.

    A missing or unreadable file is never fatal: defaults are substituted,
    with the timeout taken from *default_timeout*.
    """

    def __init__(self, path: Path, default_timeout: int = 10) -> None:
        self._path = path
        self._default_timeout = default_timeout
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> BootConfiguration:
        with self._lock:
            try:
                return self._read()
            except ConfigurationMissing as e:
                logger.info("{}; using defaults", e)
                return BootConfiguration(timeout_seconds=self._default_timeout)

    def save(self, config: BootConfiguration) -> None:
        with self._lock:
            write_json_atomic(self._path, config.to_dict())
        logger.info(
            "Boot configuration saved: default={}, timeout={}s, recovery={}",
            config.default_os, config.timeout_seconds, config.recovery_mode,
        )

    def _read(self) -> BootConfiguration:
        if not self._path.exists():
            raise ConfigurationMissing(f"no boot configuration at {self._path}")
        try:
            data = read_json(self._path)
        except (OSError, ValueError) as e:
            raise ConfigurationMissing(f"unreadable boot configuration {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationMissing(f"boot configuration {self._path} is not a JSON object")
        try:
            return BootConfiguration.from_dict(data, default_timeout=self._default_timeout)
        except (TypeError, ValueError) as e:
            raise ConfigurationMissing(f"malformed boot configuration {self._path}: {e}") from e
