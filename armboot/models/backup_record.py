"""Data model for OS backup archives."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from armboot.models.os_entry import format_timestamp, parse_timestamp

BACKUP_SUFFIX = ".tar.gz"
BACKUP_TIME_FORMAT = "%Y%m%d_%H%M%S"


@dataclass(frozen=True)
class BackupRecord:
    """A compressed archive of one installed OS.  Never mutated."""

    os_name: str
    created_at: datetime
    size_mb: int
    archive_path: Path
    bootable: bool = True
    """Carried forward from the OS entry at backup time, not re-verified."""

    @property
    def display_time(self) -> str:
        return self.created_at.strftime("%Y/%m/%d %H:%M")

    @staticmethod
    def archive_name(os_name: str, when: datetime) -> str:
        """``{os_name}_{YYYYMMDD_HHMMSS}.tar.gz``"""
        return f"{os_name}_{when.strftime(BACKUP_TIME_FORMAT)}{BACKUP_SUFFIX}"

    @classmethod
    def from_archive(cls, path: Path) -> BackupRecord | None:
        """Rebuild a record from an archive's file name and size.

        Returns ``None`` for files that do not follow the naming scheme.
        """
        if not path.name.endswith(BACKUP_SUFFIX):
            return None
        stem = path.name[: -len(BACKUP_SUFFIX)]
        parts = stem.rsplit("_", 2)
        if len(parts) != 3 or not parts[0]:
            return None
        try:
            created = datetime.strptime(f"{parts[1]}_{parts[2]}", BACKUP_TIME_FORMAT)
        except ValueError:
            return None
        return cls(
            os_name=parts[0],
            created_at=created.replace(tzinfo=timezone.utc),
            size_mb=path.stat().st_size // (1024 * 1024),
            archive_path=path,
        )

    def to_dict(self) -> dict:
        return {
            "os_name": self.os_name,
            "created_at": format_timestamp(self.created_at),
            "size_mb": self.size_mb,
            "archive_path": str(self.archive_path),
            "bootable": self.bootable,
        }

    @classmethod
    def from_dict(cls, data: dict) -> BackupRecord:
        return cls(
            os_name=data.get("os_name", ""),
            created_at=parse_timestamp(data.get("created_at")) or datetime.now(timezone.utc),
            size_mb=int(data.get("size_mb") or 0),
            archive_path=Path(data.get("archive_path", "")),
            bootable=bool(data.get("bootable", True)),
        )
