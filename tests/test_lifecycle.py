"""Tests for install, backup, restore, remove, update and boot dispatch."""

import io
import json
import re
import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from armboot.core.lifecycle import OSLifecycleManager
from armboot.errors import (
    BootManagerError,
    NotFound,
    RollbackFailure,
    SourceUnavailable,
    ValidationFailure,
)
from armboot.models.backup_record import BackupRecord
from armboot.models.boot_config import BootConfiguration
from armboot.models.os_entry import OSCategory, OSEntry

from conftest import RETROPIE_FILES, make_tar, make_zip, tree_snapshot


@pytest.fixture
def retropie_zip(tmp_path):
    return make_zip(tmp_path / "retropie-4.8.zip", RETROPIE_FILES)


@pytest.fixture
def installed(lifecycle, retropie_zip):
    lifecycle.install(retropie_zip, "RetroPie")
    return lifecycle


class TestInstall:
    """Install pipeline from local paths and URLs."""

    def test_install_then_scan_shows_bootable_entry(self, root, lifecycle, retropie_zip):
        record = lifecycle.install(retropie_zip, "RetroPie")

        entries = lifecycle.list_systems()
        assert [e.name for e in entries] == ["RetroPie"]
        assert entries[0].bootable is True
        assert entries[0].category is OSCategory.RETROPIE
        assert record.install_date is not None
        assert record.last_used is None

    def test_install_writes_metadata_and_boot_script(self, root, lifecycle, retropie_zip):
        lifecycle.install(retropie_zip, "RetroPie")
        path = root / "systems" / "RetroPie"

        meta = json.loads((path / "armboot_install.json").read_text())
        assert meta["name"] == "RetroPie"
        assert meta["category"] == "retropie"
        assert meta["image_type"] == "zip"

        script = path / "boot.sh"
        assert 'export ARMBOOT_OS="RetroPie"' in script.read_text()
        assert script.stat().st_mode & 0o111

    def test_install_from_tar(self, root, lifecycle, tmp_path):
        src = make_tar(tmp_path / "ubuntu.tar.gz", {"vmlinuz": b"v", "etc/lsb-release": b"DISTRIB_ID=Ubuntu\n"})
        lifecycle.install(src, "Ubuntu")

        entry = lifecycle.list_systems()[0]
        assert entry.category is OSCategory.LINUX

    def test_reinstall_replaces_directory(self, root, lifecycle, retropie_zip, tmp_path):
        lifecycle.install(retropie_zip, "RetroPie")
        (root / "systems" / "RetroPie" / "leftover.txt").write_text("old")

        lifecycle.install(retropie_zip, "RetroPie")
        assert not (root / "systems" / "RetroPie" / "leftover.txt").exists()

    def test_unreadable_zip_source(self, root, lifecycle, registry, tmp_path):
        with pytest.raises(SourceUnavailable) as exc:
            lifecycle.install(tmp_path / "missing" / "os.zip", "Broken")

        assert exc.value.operation == "install"
        assert exc.value.target == "Broken"
        assert registry.load() == {}
        assert not (root / "systems" / "Broken").exists()

    def test_corrupt_archive_leaves_nothing_behind(self, root, lifecycle, registry, tmp_path):
        src = tmp_path / "bad.zip"
        src.write_bytes(b"garbage")

        with pytest.raises(SourceUnavailable):
            lifecycle.install(src, "Bad")

        assert registry.load() == {}
        assert not (root / "systems" / "Bad").exists()

    @pytest.mark.parametrize("name", ["", ".hidden", "a/b", "..", "x\\y"])
    def test_invalid_names_rejected(self, lifecycle, retropie_zip, name):
        with pytest.raises(ValidationFailure):
            lifecycle.install(retropie_zip, name)

    def test_install_from_url_removes_download(self, root, lifecycle, retropie_zip):
        payload = retropie_zip.read_bytes()
        downloads = []

        def fake_urlopen(req, timeout=None):
            assert req.full_url == "https://example.org/images/retropie-4.8.zip"
            return _Response(payload)

        real_install = OSLifecycleManager._install_from_path

        def spy(self, source, name):
            downloads.append(source)
            assert source.name.endswith(".zip")
            return real_install(self, source, name)

        with patch("armboot.core.lifecycle.urllib.request.urlopen", side_effect=fake_urlopen), \
                patch.object(OSLifecycleManager, "_install_from_path", spy):
            lifecycle.install("https://example.org/images/retropie-4.8.zip", "RetroPie")

        assert lifecycle.list_systems()[0].name == "RetroPie"
        assert downloads and not downloads[0].exists()

    def test_unreachable_url(self, root, lifecycle, registry):
        import urllib.error

        with patch("armboot.core.lifecycle.urllib.request.urlopen",
                   side_effect=urllib.error.URLError("no route to host")):
            with pytest.raises(SourceUnavailable):
                lifecycle.install("http://10.0.0.1/os.img", "Remote")

        assert registry.load() == {}
        assert not (root / "systems" / "Remote").exists()

    def test_raspberry_pi_gpu_settings(self, root, catalog, plugins, pi_profile, boot_store, retropie_zip):
        manager = OSLifecycleManager(
            catalog, plugins, pi_profile, boot_store,
            backup_root=root / "backups", boot_request_path=root / "data" / "boot_request.json",
        )
        manager.install(retropie_zip, "RetroPie")

        config_txt = (root / "systems" / "RetroPie" / "config.txt").read_text()
        assert "gpu_mem=128" in config_txt
        assert config_txt.startswith("arm_64bit=1\n")

    def test_handheld_display_config(self, root, catalog, plugins, handheld_profile, boot_store, retropie_zip):
        manager = OSLifecycleManager(
            catalog, plugins, handheld_profile, boot_store,
            backup_root=root / "backups", boot_request_path=root / "data" / "boot_request.json",
        )
        manager.install(retropie_zip, "RetroPie")

        display = (root / "systems" / "RetroPie" / "display_config.txt").read_text()
        assert "hdmi_cvt=480 320 60 6 0 0 0" in display


class _Response(io.BytesIO):
    """Minimal stand-in for an ``urlopen`` response."""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class TestBackupRestore:
    """Backups are flat, timestamped archives that restore in place."""

    def test_backup_name_and_source_untouched(self, root, installed):
        before = tree_snapshot(root / "systems" / "RetroPie")
        record = installed.backup("RetroPie")

        assert re.fullmatch(r"RetroPie_\d{8}_\d{6}\.tar\.gz", record.archive_path.name)
        assert record.archive_path.parent == root / "backups"
        assert record.bootable is True
        assert tree_snapshot(root / "systems" / "RetroPie") == before

    def test_backup_unknown_os(self, installed):
        with pytest.raises(NotFound):
            installed.backup("Nope")

    def test_list_backups_newest_first(self, root, installed):
        backups = root / "backups"
        for stamp in ("20240101_100000", "20240301_100000", "20240201_100000"):
            (backups / f"RetroPie_{stamp}.tar.gz").write_bytes(b"x")
        (backups / "junk.txt").write_text("x")

        records = installed.list_backups("RetroPie")
        assert [r.created_at.month for r in records] == [3, 2, 1]
        assert all(r.created_at.tzinfo is timezone.utc for r in records)

    def test_backup_name_with_underscores_parses(self, root):
        path = root / "backups" / "Raspberry_Pi_OS_20240501_093000.tar.gz"
        path.write_bytes(b"x")

        record = BackupRecord.from_archive(path)
        assert record.os_name == "Raspberry_Pi_OS"
        assert record.created_at == datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)

    def test_remove_with_backup_then_restore(self, root, installed):
        before = tree_snapshot(root / "systems" / "RetroPie")

        record = installed.remove("RetroPie", make_backup=True)
        assert installed.list_systems() == []
        assert record.archive_path.is_file()

        installed.restore(record)
        entries = installed.list_systems()
        assert [e.name for e in entries] == ["RetroPie"]
        assert tree_snapshot(root / "systems" / "RetroPie") == before

    def test_remove_without_backup(self, root, installed, registry):
        assert installed.remove("RetroPie") is None
        assert registry.load() == {}
        assert list((root / "backups").iterdir()) == []

    def test_remove_aborts_when_backup_fails(self, root, installed):
        with patch.object(installed, "backup", side_effect=BootManagerError("disk full")):
            with pytest.raises(BootManagerError):
                installed.remove("RetroPie", make_backup=True)

        assert (root / "systems" / "RetroPie").is_dir()

    def test_remove_clears_default(self, installed):
        installed.set_default("RetroPie")
        installed.remove("RetroPie")
        assert installed.get_boot_config().default_os is None

    def test_remove_unknown(self, installed):
        with pytest.raises(NotFound):
            installed.remove("Nope")

    def test_restore_missing_archive(self, root, installed):
        record = BackupRecord("RetroPie", datetime.now(timezone.utc), 0, root / "backups" / "gone.tar.gz")
        with pytest.raises(NotFound):
            installed.restore(record)


class TestUpdate:
    """Update backs up first and rolls back on any failure."""

    def test_successful_update_keeps_backup(self, root, installed, tmp_path):
        new = make_zip(tmp_path / "retropie-4.9.zip", {**RETROPIE_FILES, "VERSION": b"4.9"})

        installed.update("RetroPie", new)

        assert (root / "systems" / "RetroPie" / "VERSION").read_bytes() == b"4.9"
        assert len(installed.list_backups("RetroPie")) == 1

    def test_failed_update_restores_directory(self, root, installed, tmp_path):
        before = tree_snapshot(root / "systems" / "RetroPie")
        bad = tmp_path / "retropie-broken.zip"
        bad.write_bytes(b"not a zip at all")

        with pytest.raises(SourceUnavailable):
            installed.update("RetroPie", bad)

        assert tree_snapshot(root / "systems" / "RetroPie") == before

    def test_failed_update_restores_registry_record(self, installed, catalog, registry, tmp_path):
        used = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
        catalog.mark_used(catalog.get("RetroPie"), when=used)
        previous = registry.get("RetroPie")

        with pytest.raises(SourceUnavailable):
            installed.update("RetroPie", tmp_path / "missing.zip")

        assert registry.get("RetroPie") == previous

    def test_empty_payload_fails_validation(self, root, installed, tmp_path):
        before = tree_snapshot(root / "systems" / "RetroPie")
        empty = make_zip(tmp_path / "empty.zip", {})

        with pytest.raises(ValidationFailure):
            installed.update("RetroPie", empty)

        assert tree_snapshot(root / "systems" / "RetroPie") == before

    def test_rollback_failure_carries_both_errors(self, installed, tmp_path):
        with patch.object(installed, "restore", side_effect=BootManagerError("archive unreadable")):
            with pytest.raises(RollbackFailure) as exc:
                installed.update("RetroPie", tmp_path / "missing.zip")

        assert isinstance(exc.value.original, SourceUnavailable)
        assert "archive unreadable" in str(exc.value.rollback)

    def test_backup_failure_aborts_update(self, root, installed, retropie_zip):
        install = MagicMock()
        with patch.object(installed, "backup", side_effect=BootManagerError("disk full")), \
                patch.object(installed, "install", install):
            with pytest.raises(BootManagerError):
                installed.update("RetroPie", retropie_zip)

        install.assert_not_called()

    def test_update_unknown(self, lifecycle, retropie_zip):
        with pytest.raises(NotFound):
            lifecycle.update("Nope", retropie_zip)


class TestBootConfig:
    """Default OS and boot configuration persistence."""

    def test_set_default(self, installed):
        config = installed.set_default("RetroPie")

        assert config.default_os == "RetroPie"
        assert installed.get_boot_config().default_os == "RetroPie"
        assert installed.get_boot_config().boot_order == ["RetroPie"]

    def test_set_default_unknown(self, installed):
        with pytest.raises(NotFound):
            installed.set_default("Foo")

    def test_missing_file_gives_defaults(self, lifecycle):
        config = lifecycle.get_boot_config()
        assert config.default_os is None
        assert config.timeout_seconds == 0
        assert config.recovery_mode is False

    def test_set_boot_config_roundtrip(self, lifecycle):
        lifecycle.set_boot_config(BootConfiguration(default_os="X", timeout_seconds=5, recovery_mode=True))

        config = lifecycle.get_boot_config()
        assert (config.default_os, config.timeout_seconds, config.recovery_mode) == ("X", 5, True)

    def test_negative_timeout_rejected(self, lifecycle):
        with pytest.raises(ValueError):
            lifecycle.set_boot_config(BootConfiguration(timeout_seconds=-1))


class TestDispatch:
    """Boot dispatch writes the request and always records last use."""

    def test_request_written_and_last_used_recorded(self, root, installed, registry):
        entry = installed.list_systems()[0]

        plan = installed.dispatch_boot(entry)

        request = json.loads((root / "data" / "boot_request.json").read_text())
        assert request["os"]["name"] == "RetroPie"
        assert request["plan"]["tag"] == "gaming"
        assert plan.env["ARMBOOT_OS"] == "RetroPie"
        assert registry.get("RetroPie").last_used is not None

    def test_last_used_recorded_when_dispatch_fails(self, root, installed, registry):
        entry = installed.list_systems()[0]

        with patch("armboot.core.lifecycle.write_json_atomic", side_effect=OSError("read-only")):
            with pytest.raises(OSError):
                installed.dispatch_boot(entry)

        assert registry.get("RetroPie").last_used is not None

    @pytest.mark.parametrize("category, tag", [
        (OSCategory.BATOCERA, "gaming"),
        (OSCategory.RASPBERRY_PI_OS, "standard"),
        (OSCategory.LINUX, "standard"),
        (OSCategory.UNKNOWN, "generic"),
    ])
    def test_handler_table(self, root, lifecycle, category, tag):
        entry = OSEntry("X", root / "images" / "x.img", category)
        assert lifecycle.dispatch_boot(entry).tag == tag


class TestOptimize:
    """Device-class optimizations can be re-applied after install."""

    def test_reapply_on_raspberry_pi(self, root, installed, catalog, plugins, pi_profile, boot_store):
        config_txt = root / "systems" / "RetroPie" / "config.txt"
        assert "gpu_mem" not in config_txt.read_text()

        manager = OSLifecycleManager(
            catalog, plugins, pi_profile, boot_store,
            backup_root=root / "backups", boot_request_path=root / "data" / "boot_request.json",
        )
        assert manager.optimize("RetroPie") is True
        assert manager.optimize("RetroPie") is True
        assert config_txt.read_text().count("gpu_mem=128") == 1

    def test_nothing_for_generic_device(self, installed):
        assert installed.optimize("RetroPie") is False

    def test_unknown(self, installed):
        with pytest.raises(NotFound) as exc:
            installed.optimize("Nope")
        assert exc.value.operation == "optimize"


class TestBackupBootable:
    """A backup records the bootable flag of the catalog entry."""

    def test_flag_taken_from_catalog_entry(self, root, installed, catalog):
        entry = OSEntry("RetroPie", root / "systems" / "RetroPie", OSCategory.RETROPIE, bootable=False)

        with patch.object(catalog, "get", return_value=entry):
            record = installed.backup("RetroPie")

        assert record.bootable is False

    def test_unbootable_install_backs_up_unbootable(self, root, lifecycle):
        (root / "systems" / "Scratch" / "data").mkdir(parents=True)

        assert lifecycle.backup("Scratch").bootable is False


class TestConcurrency:
    """Lifecycle work in one thread does not lose registry writes from another."""

    def test_install_alongside_scan_and_mark_used(self, root, lifecycle, catalog, registry, retropie_zip):
        (root / "images" / "batocera-35.img").write_bytes(b"img")
        image_entry = catalog.get("batocera-35")
        errors = []

        def run(fn) -> None:
            try:
                fn()
            except Exception as e:  # surfaced by the assertion below
                errors.append(e)

        def boot_loop() -> None:
            for _ in range(20):
                catalog.mark_used(image_entry)

        def scan_loop() -> None:
            for _ in range(20):
                catalog.scan()

        threads = [
            threading.Thread(target=run, args=(lambda: lifecycle.install(retropie_zip, "RetroPie"),)),
            threading.Thread(target=run, args=(boot_loop,)),
            threading.Thread(target=run, args=(scan_loop,)),
        ]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        assert errors == []
        records = registry.load()
        assert records["RetroPie"].install_date is not None
        assert records["batocera-35"].last_used is not None
        assert {e.name for e in lifecycle.list_systems()} == {"RetroPie", "batocera-35"}
