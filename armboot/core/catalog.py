"""OS catalog: discovers, classifies and orders the bootable systems.

Sources, in the order they are scanned (first report of a name wins):

1. Installed systems root: one subdirectory per OS, always listed
2. Boot partitions: listed only when a category signature matches
3. Image directories: ``.img`` / ``.iso`` files, classified by file name
4. Removable media roots: each mounted directory, signature match only

Registry records whose path still exists are merged in afterwards.  The
filesystem decides what is listed; the registry supplies last-used times.
Records whose path has vanished are stale and simply skipped; only
:meth:`OSCatalog.prune_stale` deletes them.
"""

from __future__ import annotations

import os
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Sequence

from loguru import logger

from armboot.core.jsonstore import read_json
from armboot.core.registry import Registry
from armboot.models.os_entry import (
    DEFAULT_CATEGORY_PRECEDENCE,
    OSCategory,
    OSEntry,
    RegistryRecord,
    utcnow,
)
from armboot.plugins.base import OSCategoryPlugin
from armboot.plugins.plugin_manager import PluginManager

INSTALL_METADATA = "armboot_install.json"
BOOT_SCRIPT = "boot.sh"
BOOT_FILES = (BOOT_SCRIPT, "kernel.img", "config.txt", "system.img")
IMAGE_SUFFIXES = (".img", ".iso")


def directory_size_mb(path: Path) -> int:
    """Total size of regular files below *path*, in whole megabytes."""
    if path.is_file():
        return path.stat().st_size // (1024 * 1024)
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for fn in filenames:
            fp = os.path.join(dirpath, fn)
            try:
                if not os.path.islink(fp):
                    total += os.path.getsize(fp)
            except OSError:
                continue
    return total // (1024 * 1024)


def sort_entries(entries: Iterable[OSEntry]) -> list[OSEntry]:
    """Last-used descending, timestamped before untimestamped, then by name."""
    return sorted(entries, key=lambda e: e.sort_key())


class OSCatalog:
    """Ordered, deduplicated view of every discoverable OS."""

    def __init__(
        self,
        registry: Registry,
        plugins: PluginManager,
        *,
        systems_root: Path,
        boot_partitions: Sequence[Path] = (),
        image_dirs: Sequence[Path] = (),
        removable_media_roots: Sequence[Path] = (),
        precedence: Sequence[OSCategory] = DEFAULT_CATEGORY_PRECEDENCE,
    ) -> None:
        self._registry = registry
        self._plugins = plugins
        self._systems_root = systems_root
        self._boot_partitions = list(boot_partitions)
        self._image_dirs = list(image_dirs)
        self._removable_roots = list(removable_media_roots)
        self._precedence = list(precedence)

    @classmethod
    def from_config(cls, config, registry: Registry, plugins: PluginManager) -> "OSCatalog":  # noqa: ANN001
        return cls(
            registry,
            plugins,
            systems_root=config.systems_path,
            boot_partitions=config.boot_partitions,
            image_dirs=config.image_dirs,
            removable_media_roots=config.removable_media_roots,
            precedence=config.category_precedence,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def systems_root(self) -> Path:
        return self._systems_root

    def install_path(self, name: str) -> Path:
        return self._systems_root / name

    def scan(self) -> list[OSEntry]:
        """Build a fresh, ordered snapshot.  Never mutates the registry."""
        records = self._registry.load()
        entries: dict[str, OSEntry] = {}
        seen_paths: set[Path] = set()

        def add(entry: OSEntry) -> None:
            key = _norm(entry.path)
            if entry.name in entries or key in seen_paths:
                logger.debug("Duplicate entry skipped: {} ({})", entry.name, entry.path)
                return
            entries[entry.name] = entry
            seen_paths.add(key)

        for source, scanner in (
            ("installed systems", self._scan_installed),
            ("boot partitions", self._scan_boot_partitions),
            ("image directories", self._scan_images),
            ("removable media", self._scan_removable),
        ):
            try:
                for entry in scanner():
                    add(entry)
            except OSError as e:
                logger.warning("Skipping {}: {}", source, e)

        for name, record in records.items():
            if name in entries:
                continue
            if not record.path.exists():
                logger.debug("Stale registry record skipped: {} ({})", name, record.path)
                continue
            add(self._entry_for_record(record))

        for entry in entries.values():
            record = records.get(entry.name)
            if record is not None:
                entry.last_used = record.last_used

        result = sort_entries(entries.values())
        logger.info("Catalog: {} operating systems", len(result))
        return result

    def register(self, name: str, path: Path, size_mb: int | None = None, *, bootable: bool = True) -> RegistryRecord:
        """Record a fresh install of *name*, replacing any earlier record."""
        if size_mb is None:
            size_mb = directory_size_mb(path) if path.exists() else 0
        record = RegistryRecord(
            name=name,
            path=path,
            install_date=utcnow(),
            last_used=None,
            bootable=bootable,
            size_mb=size_mb,
        )
        self._registry.put(record)
        logger.info("Registered {} at {} ({} MB)", name, path, size_mb)
        return record

    def unregister(self, name: str) -> bool:
        removed = self._registry.remove(name)
        if removed:
            logger.info("Unregistered {}", name)
        return removed

    def find_default(self, name: str | None) -> OSEntry | None:
        """The catalog entry called *name*, if it is currently present."""
        if not name:
            return None
        return self.get(name)

    def get(self, name: str, entries: Sequence[OSEntry] | None = None) -> OSEntry | None:
        for entry in entries if entries is not None else self.scan():
            if entry.name == name:
                return entry
        return None

    def get_record(self, name: str) -> RegistryRecord | None:
        return self._registry.get(name)

    def put_record(self, record: RegistryRecord) -> None:
        """Write back a previously captured record verbatim."""
        self._registry.put(record)

    def mark_used(self, entry: OSEntry, when: datetime | None = None) -> None:
        """Record a boot dispatch of *entry* as its last use."""
        record = self._registry.get(entry.name) or RegistryRecord(
            name=entry.name,
            path=entry.path,
            bootable=entry.bootable,
        )
        record.last_used = when or utcnow()
        self._registry.put(record)
        logger.info("Last used: {} at {}", entry.name, record.last_used.isoformat())

    def prune_stale(self) -> list[str]:
        """Delete registry records whose path no longer exists."""
        stale = [n for n, r in self._registry.load().items() if not r.path.exists()]
        if stale:
            self._registry.remove_many(stale)
            logger.info("Pruned stale registry records: {}", ", ".join(stale))
        return stale

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def classify_directory(self, path: Path) -> OSCategoryPlugin | None:
        """First plugin, in precedence order, whose signature is present."""
        for plugin in self._plugins.ordered(self._precedence):
            if plugin.matches_directory(path):
                return plugin
        return None

    def classify_image(self, filename: str) -> OSCategoryPlugin:
        """First plugin whose keyword appears in *filename*, else Unknown."""
        for plugin in self._plugins.ordered(self._precedence):
            if plugin.matches_filename(filename):
                return plugin
        return self._plugins.get_plugin(OSCategory.UNKNOWN)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _scan_installed(self) -> Iterator[OSEntry]:
        for child in _sorted_children(self._systems_root):
            if child.is_dir() and not child.name.startswith("."):
                yield self._entry_for_install(child)

    def _scan_boot_partitions(self) -> Iterator[OSEntry]:
        for part in self._boot_partitions:
            if not part.is_dir():
                continue
            plugin = self.classify_directory(part)
            if plugin is None:
                continue
            yield OSEntry(
                name=plugin.display_name,
                path=part,
                category=plugin.category,
                description=plugin.description,
            )

    def _scan_images(self) -> Iterator[OSEntry]:
        for image_dir in self._image_dirs:
            for child in _sorted_children(image_dir):
                if child.is_file() and child.suffix.lower() in IMAGE_SUFFIXES:
                    plugin = self.classify_image(child.name)
                    yield OSEntry(
                        name=child.stem,
                        path=child,
                        category=plugin.category,
                        description=plugin.description,
                    )

    def _scan_removable(self) -> Iterator[OSEntry]:
        for root in self._removable_roots:
            for child in _sorted_children(root):
                if not child.is_dir():
                    continue
                plugin = self.classify_directory(child)
                if plugin is None:
                    continue
                yield OSEntry(
                    name=f"{plugin.display_name} ({child.name})",
                    path=child,
                    category=plugin.category,
                    description=plugin.description,
                )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _entry_for_install(self, path: Path) -> OSEntry:
        plugin = self.classify_directory(path) or self._plugins.get_plugin(OSCategory.UNKNOWN)
        return OSEntry(
            name=path.name,
            path=path,
            category=plugin.category,
            description=_installed_description(path) or plugin.description,
            bootable=any((path / f).exists() for f in BOOT_FILES),
        )

    def _entry_for_record(self, record: RegistryRecord) -> OSEntry:
        if record.path.is_dir():
            entry = self._entry_for_install(record.path)
            entry.name = record.name
            return entry
        plugin = self.classify_image(record.path.name)
        return OSEntry(
            name=record.name,
            path=record.path,
            category=plugin.category,
            description=plugin.description,
            bootable=record.bootable,
        )


def _sorted_children(root: Path) -> list[Path]:
    """Children of *root*, sorted; a missing root yields nothing."""
    if not root.is_dir():
        return []
    return sorted(root.iterdir(), key=lambda p: p.name)


def _installed_description(path: Path) -> str:
    meta = path / INSTALL_METADATA
    if not meta.is_file():
        return ""
    try:
        data = read_json(meta)
    except (OSError, ValueError) as e:
        logger.debug("Unreadable install metadata {}: {}", meta, e)
        return ""
    return str(data.get("description") or "") if isinstance(data, dict) else ""


def _norm(path: Path) -> Path:
    try:
        return path.resolve()
    except OSError:
        return path
