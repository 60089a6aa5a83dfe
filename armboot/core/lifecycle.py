"""OS lifecycle manager: install, backup, restore, remove and update.

This is the API surface consumed by the remote management interface.
Every mutating operation is serialized by one re-entrant lock so a
remote-triggered install cannot interleave with a local update.

Installed systems live at ``{systems_root}/{name}``; backups are flat
archives ``{backup_root}/{name}_{YYYYMMDD_HHMMSS}.tar.gz`` whose single
top-level member is the ``{name}`` directory.
"""

from __future__ import annotations

import os
import shutil
import tarfile
import tempfile
import threading
import urllib.error
import urllib.request
from contextlib import contextmanager
from pathlib import Path, PurePosixPath
from typing import Iterator
from urllib.parse import urlparse

from loguru import logger

from armboot import __version__
from armboot.core.boot_config import BootConfigStore
from armboot.core.catalog import BOOT_FILES, BOOT_SCRIPT, INSTALL_METADATA, OSCatalog
from armboot.core.extract import container_suffix, extract
from armboot.core.jsonstore import write_json_atomic
from armboot.core.optimizer import DISPLAY_CONFIG, apply_optimizations
from armboot.errors import (
    BootManagerError,
    NotFound,
    SourceUnavailable,
    RollbackFailure,
    ValidationFailure,
)
from armboot.models.backup_record import BACKUP_SUFFIX, BackupRecord
from armboot.models.boot_config import BootConfiguration
from armboot.models.device import DeviceProfile
from armboot.models.os_entry import OSEntry, RegistryRecord, format_timestamp, utcnow
from armboot.plugins.base import BootPlan
from armboot.plugins.plugin_manager import PluginManager

_URL_SCHEMES = ("http", "https", "ftp")
_FETCH_TIMEOUT = 60
_GENERATED_FILES = {BOOT_SCRIPT, INSTALL_METADATA, DISPLAY_CONFIG}

_BOOT_SCRIPT_TEMPLATE = """#!/bin/sh
# armboot boot script for {name}
echo "Starting {name} via armboot..."

export ARMBOOT_OS="{name}"
export ARMBOOT_PATH="{path}"

if [ -f "{path}/{metadata}" ]; then
    echo "Loading armboot install metadata..."
fi

echo "Launching {name}..."
exec /sbin/init
"""


def is_url(source: str | Path) -> bool:
    return isinstance(source, str) and urlparse(source).scheme in _URL_SCHEMES


class OSLifecycleManager:
    """Install, back up, restore, remove and update OS payloads."""

    def __init__(
        self,
        catalog: OSCatalog,
        plugins: PluginManager,
        profile: DeviceProfile,
        boot_store: BootConfigStore,
        *,
        backup_root: Path,
        boot_request_path: Path,
    ) -> None:
        self._catalog = catalog
        self._plugins = plugins
        self._profile = profile
        self._boot_store = boot_store
        self._backup_root = backup_root
        self._boot_request_path = boot_request_path
        self._lock = threading.RLock()

    @classmethod
    def from_config(
        cls,
        config,  # noqa: ANN001
        catalog: OSCatalog,
        plugins: PluginManager,
        profile: DeviceProfile,
        boot_store: BootConfigStore,
    ) -> "OSLifecycleManager":
        return cls(
            catalog,
            plugins,
            profile,
            boot_store,
            backup_root=config.backup_path,
            boot_request_path=config.boot_request_path,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def backup_root(self) -> Path:
        return self._backup_root

    def list_systems(self) -> list[OSEntry]:
        return self._catalog.scan()

    def list_backups(self, name: str | None = None) -> list[BackupRecord]:
        """All backup archives (optionally for one OS), newest first."""
        if not self._backup_root.is_dir():
            return []
        records: list[BackupRecord] = []
        for archive in self._backup_root.glob(f"*{BACKUP_SUFFIX}"):
            record = BackupRecord.from_archive(archive)
            if record is None:
                logger.debug("Ignoring unrecognised file in backup root: {}", archive.name)
                continue
            if name is None or record.os_name == name:
                records.append(record)
        records.sort(key=lambda r: (-r.created_at.timestamp(), r.os_name))
        return records

    def install(self, source: str | Path, name: str) -> RegistryRecord:
        """Install *name* from a local path or an http(s)/ftp URL.

        The source is checked before anything on disk is touched.  On
        failure the partial install directory is removed and the registry
        is left as it was.
        """
        self._check_name(name, "install")
        with self._lock:
            if is_url(source):
                with self._fetched(str(source), name) as local:
                    return self._install_from_path(local, name)
            path = Path(source)
            self._check_source(path, name)
            return self._install_from_path(path, name)

    def backup(self, name: str) -> BackupRecord:
        """Archive the install directory of *name*.  The source is untouched."""
        install_path = self._catalog.install_path(name)
        with self._lock:
            if not install_path.is_dir():
                raise NotFound(f"{name} is not installed", operation="backup", target=name)

            entry = self._catalog.get(name)
            known = self._catalog.get_record(name)
            bootable = entry.bootable if entry is not None else known is None or known.bootable

            when = utcnow().replace(microsecond=0)
            self._backup_root.mkdir(parents=True, exist_ok=True)
            archive = self._backup_root / BackupRecord.archive_name(name, when)
            if archive.exists():
                logger.warning("Overwriting backup created in the same second: {}", archive)

            try:
                with tarfile.open(archive, "w:gz") as tf:
                    tf.add(install_path, arcname=name)
            except (OSError, tarfile.TarError) as e:
                archive.unlink(missing_ok=True)
                raise BootManagerError(f"cannot write {archive}: {e}", operation="backup", target=name) from e

            record = BackupRecord(
                os_name=name,
                created_at=when,
                size_mb=archive.stat().st_size // (1024 * 1024),
                archive_path=archive,
                bootable=bootable,
            )
        logger.info("Backup of {} created: {} ({} MB)", name, archive, record.size_mb)
        return record

    def restore(self, record: BackupRecord) -> RegistryRecord:
        """Replace the install directory of ``record.os_name`` with the archive."""
        name = record.os_name
        if not record.archive_path.is_file():
            raise NotFound(f"backup archive {record.archive_path} does not exist", operation="restore", target=name)

        install_path = self._catalog.install_path(name)
        with self._lock:
            install_path.parent.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=f".{name}.restore.", dir=install_path.parent))
            try:
                try:
                    with tarfile.open(record.archive_path, "r:*") as tf:
                        tf.extractall(staging, filter="tar")
                except (OSError, tarfile.TarError) as e:
                    raise BootManagerError(
                        f"cannot extract {record.archive_path}: {e}", operation="restore", target=name
                    ) from e

                restored = _archive_root(staging, name)
                if install_path.exists():
                    shutil.rmtree(install_path)
                restored.rename(install_path)
            finally:
                _remove_tree(staging)

            registered = self._catalog.register(name, install_path, bootable=_has_boot_files(install_path))
        logger.info("Restored {} from {}", name, record.archive_path.name)
        return registered

    def remove(self, name: str, make_backup: bool = False) -> BackupRecord | None:
        """Delete *name*.  A requested backup must succeed before deletion."""
        install_path = self._catalog.install_path(name)
        with self._lock:
            if not install_path.is_dir():
                raise NotFound(f"{name} is not installed", operation="remove", target=name)

            record = self.backup(name) if make_backup else None
            shutil.rmtree(install_path)
            self._catalog.unregister(name)

            boot_config = self._boot_store.load()
            if boot_config.default_os == name:
                boot_config.default_os = None
                self._boot_store.save(boot_config)
                logger.info("Cleared default OS {} after removal", name)
        logger.info("Removed {}", name)
        return record

    def update(self, name: str, source: str | Path) -> RegistryRecord:
        """Reinstall *name* from *source*, rolling back on any failure.

        A backup is taken first; failing to take it aborts the update.  On
        failure the backup and the previous registry record are restored and
        the original error re-raised.  The backup is kept on success.
        """
        install_path = self._catalog.install_path(name)
        with self._lock:
            if not install_path.is_dir():
                raise NotFound(f"{name} is not installed", operation="update", target=name)

            previous = self._catalog.get_record(name)
            backup = self.backup(name)
            try:
                registered = self.install(source, name)
                self._validate(install_path, name)
            except Exception as e:
                logger.error("Update of {} failed, rolling back: {}", name, e)
                try:
                    self._rollback(backup, previous)
                except Exception as rollback_error:
                    logger.error("Rollback of {} failed: {}", name, rollback_error)
                    raise RollbackFailure(e, rollback_error, target=name) from rollback_error
                raise
        logger.info("Updated {} (backup kept at {})", name, backup.archive_path.name)
        return registered

    def set_default(self, name: str) -> BootConfiguration:
        with self._lock:
            entries = self._catalog.scan()
            if self._catalog.get(name, entries) is None:
                raise NotFound(f"{name} is not installed", operation="set_default", target=name)
            config = self._boot_store.load()
            config.default_os = name
            config.available_systems = entries
            config.boot_order = [e.name for e in entries]
            self._boot_store.save(config)
        logger.info("Default OS set to {}", name)
        return config

    def optimize(self, name: str) -> bool:
        """Re-apply the device-class optimizations to an installed system."""
        install_path = self._catalog.install_path(name)
        with self._lock:
            if not install_path.is_dir():
                raise NotFound(f"{name} is not installed", operation="optimize", target=name)
            try:
                applied = apply_optimizations(install_path, self._profile)
            except OSError as e:
                raise BootManagerError(str(e), operation="optimize", target=name) from e
        logger.info("Optimizations for {}: {}", name, "applied" if applied else "none for this device")
        return applied

    def get_boot_config(self) -> BootConfiguration:
        return self._boot_store.load()

    def set_boot_config(self, config: BootConfiguration) -> None:
        if config.timeout_seconds < 0:
            raise ValueError("timeout_seconds must not be negative")
        with self._lock:
            self._boot_store.save(config)

    def dispatch_boot(self, entry: OSEntry) -> BootPlan:
        """Hand *entry* to its OS bootstrap via ``boot_request.json``.

        The entry is recorded as last used whether or not the hand-off
        succeeds; success of the external bootstrap is not observable here.
        """
        plugin = self._plugins.get_plugin(entry.category)
        try:
            plan = plugin.prepare_boot(entry, self._profile)
            write_json_atomic(self._boot_request_path, {
                "os": entry.to_dict(),
                "plan": plan.to_dict(),
                "device": self._profile.device_class.value,
                "requested_at": format_timestamp(utcnow()),
            })
            logger.info("Boot requested: {} ({}, {})", entry.name, entry.category.value, plan.tag)
        finally:
            self._catalog.mark_used(entry)
        return plan

    # ------------------------------------------------------------------
    # Install pipeline
    # ------------------------------------------------------------------

    def _install_from_path(self, source: Path, name: str) -> RegistryRecord:
        install_path = self._catalog.install_path(name)
        if install_path.exists():
            logger.info("Replacing existing install of {}", name)
            shutil.rmtree(install_path)
        install_path.mkdir(parents=True)

        try:
            image_type = extract(source, install_path)
            self._write_metadata(install_path, name, source, image_type.value)
            apply_optimizations(install_path, self._profile)
            self._write_boot_script(install_path, name)
        except Exception as e:
            logger.error("Install of {} failed, removing partial directory: {}", name, e)
            _remove_tree(install_path)
            if isinstance(e, OSError):
                raise BootManagerError(str(e), operation="install", target=name) from e
            raise

        record = self._catalog.register(name, install_path, bootable=_has_boot_files(install_path))
        logger.info("Installed {} from {} ({})", name, source.name, image_type.value)
        return record

    def _write_metadata(self, install_path: Path, name: str, source: Path, image_type: str) -> None:
        plugin = self._catalog.classify_directory(install_path) or self._catalog.classify_image(source.name)
        write_json_atomic(install_path / INSTALL_METADATA, {
            "name": name,
            "description": plugin.description,
            "category": plugin.category.value,
            "install_date": format_timestamp(utcnow()),
            "source": source.name,
            "image_type": image_type,
            "armboot_version": __version__,
            "bootable": True,
        })

    @staticmethod
    def _write_boot_script(install_path: Path, name: str) -> None:
        script = install_path / BOOT_SCRIPT
        script.write_text(
            _BOOT_SCRIPT_TEMPLATE.format(name=name, path=install_path, metadata=INSTALL_METADATA),
            encoding="utf-8",
        )
        os.chmod(script, 0o755)

    @contextmanager
    def _fetched(self, url: str, name: str) -> Iterator[Path]:
        """Download *url* to a transient file, removed on every exit path."""
        filename = PurePosixPath(urlparse(url).path).name or name
        fd, tmp_name = tempfile.mkstemp(prefix="armboot_dl_", suffix=container_suffix(filename))
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as out:
                try:
                    req = urllib.request.Request(url, headers={"User-Agent": f"armboot/{__version__}"})
                    with urllib.request.urlopen(req, timeout=_FETCH_TIMEOUT) as resp:
                        shutil.copyfileobj(resp, out)
                except (urllib.error.URLError, OSError, ValueError) as e:
                    raise SourceUnavailable(f"cannot fetch {url}: {e}", operation="install", target=name) from e
            logger.info("Fetched {} ({} bytes)", url, tmp_path.stat().st_size)
            yield tmp_path
        finally:
            try:
                tmp_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Failed to remove downloaded file {}: {}", tmp_path, e)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _check_name(name: str, operation: str) -> None:
        if not name or name.startswith(".") or "/" in name or "\\" in name:
            raise ValidationFailure(f"invalid OS name {name!r}", operation=operation, target=name)

    @staticmethod
    def _check_source(path: Path, name: str) -> None:
        """Fail with SourceUnavailable unless *path* is a readable file."""
        if not path.is_file():
            raise SourceUnavailable(f"source {path} does not exist", operation="install", target=name)
        try:
            with open(path, "rb") as f:
                f.read(1)
        except OSError as e:
            raise SourceUnavailable(f"source {path} is not readable: {e}", operation="install", target=name) from e

    @staticmethod
    def _validate(install_path: Path, name: str) -> None:
        """An updated system must carry a payload and a boot entry point."""
        payload = [p for p in install_path.iterdir() if p.name not in _GENERATED_FILES]
        if not payload:
            raise ValidationFailure("update produced an empty system", operation="update", target=name)
        if not _has_boot_files(install_path):
            raise ValidationFailure("update produced no boot files", operation="update", target=name)

    def _rollback(self, backup: BackupRecord, previous: RegistryRecord | None) -> None:
        self.restore(backup)
        if previous is not None:
            self._catalog.put_record(previous)
        logger.info("Rolled back {} to {}", backup.os_name, backup.archive_path.name)


def _has_boot_files(path: Path) -> bool:
    return any((path / f).exists() for f in BOOT_FILES)


def _archive_root(staging: Path, name: str) -> Path:
    """The top-level directory of an extracted backup."""
    candidate = staging / name
    if candidate.is_dir():
        return candidate
    children = [p for p in staging.iterdir() if p.is_dir()]
    if len(children) == 1:
        return children[0]
    raise BootManagerError(f"backup archive has no {name}/ directory", operation="restore", target=name)


def _remove_tree(path: Path) -> None:
    if not path.exists():
        return
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning("Failed to remove {}: {}", path, e)
