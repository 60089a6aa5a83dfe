"""Registry service: sole owner of the persisted install history.

The registry file is a JSON object keyed by OS name::

    {
        "RetroPie": {
            "name": "RetroPie",
            "path": "/boot/armboot/systems/RetroPie",
            "install_date": "2024-05-01T10:00:00+00:00",
            "last_used": null,
            "bootable": true,
            "size_mb": 2048
        }
    }

Every mutation is a locked read-modify-write followed by an atomic file
replace.  An unreadable file reads as an empty registry.
"""

from __future__ import annotations

import threading
from pathlib import Path

from loguru import logger

from armboot.core.jsonstore import read_json, write_json_atomic
from armboot.errors import RegistryCorruption
from armboot.models.os_entry import RegistryRecord


class Registry:
    """Thread-safe access to ``registry.json``."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def load(self) -> dict[str, RegistryRecord]:
        """Return all records.  Corruption is logged and reads as empty."""
        with self._lock:
            try:
                return self._read()
            except RegistryCorruption as e:
                logger.warning("{}; treating registry as empty", e)
                return {}

    def get(self, name: str) -> RegistryRecord | None:
        return self.load().get(name)

    def names(self) -> list[str]:
        return sorted(self.load())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def put(self, record: RegistryRecord) -> None:
        """Insert or overwrite the record for ``record.name``."""
        with self._lock:
            records = self.load()
            records[record.name] = record
            self._write(records)
        logger.debug("Registry: stored {}", record.name)

    def remove(self, name: str) -> bool:
        """Drop *name*; returns ``False`` if it was not registered."""
        with self._lock:
            records = self.load()
            if name not in records:
                return False
            del records[name]
            self._write(records)
        logger.debug("Registry: removed {}", name)
        return True

    def remove_many(self, names: list[str]) -> None:
        with self._lock:
            records = self.load()
            for name in names:
                records.pop(name, None)
            self._write(records)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _read(self) -> dict[str, RegistryRecord]:
        if not self._path.exists():
            return {}
        try:
            raw = read_json(self._path)
        except (OSError, ValueError) as e:
            raise RegistryCorruption(f"cannot read registry {self._path}: {e}") from e
        if not isinstance(raw, dict):
            raise RegistryCorruption(f"registry {self._path} is not a JSON object")

        records: dict[str, RegistryRecord] = {}
        for name, data in raw.items():
            if not isinstance(data, dict):
                logger.warning("Skipping malformed registry entry {!r}", name)
                continue
            try:
                records[name] = RegistryRecord.from_dict(name, data)
            except (TypeError, ValueError) as e:
                logger.warning("Skipping malformed registry entry {!r}: {}", name, e)
        return records

    def _write(self, records: dict[str, RegistryRecord]) -> None:
        write_json_atomic(self._path, {name: r.to_dict() for name, r in records.items()})
