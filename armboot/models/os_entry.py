"""Data model for catalog entries and their persisted registry records."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path


class OSCategory(str, Enum):
    """Kind of OS payload.  Drives classification and boot dispatch."""

    RETROPIE = "retropie"
    BATOCERA = "batocera"
    RECALBOX = "recalbox"
    RASPBERRY_PI_OS = "raspios"
    LINUX = "linux"
    UNKNOWN = "unknown"

    @property
    def is_gaming(self) -> bool:
        return self in (OSCategory.RETROPIE, OSCategory.BATOCERA, OSCategory.RECALBOX)


DEFAULT_CATEGORY_PRECEDENCE: tuple[OSCategory, ...] = (
    OSCategory.RETROPIE,
    OSCategory.BATOCERA,
    OSCategory.RECALBOX,
    OSCategory.RASPBERRY_PI_OS,
    OSCategory.LINUX,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class OSEntry:
    """One bootable OS payload as seen by a catalog snapshot."""

    name: str
    """Unique key within a snapshot."""

    path: Path
    """Install directory, boot partition, or standalone image file."""

    category: OSCategory
    description: str = ""
    bootable: bool = True
    last_used: datetime | None = None

    @property
    def is_stale(self) -> bool:
        return not self.path.exists()

    def sort_key(self) -> tuple:
        """Most recently used first; never-used entries after, by name."""
        if self.last_used is not None:
            return (0, -self.last_used.timestamp(), self.name)
        return (1, 0.0, self.name)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "category": self.category.value,
            "description": self.description,
            "bootable": self.bootable,
            "last_used": format_timestamp(self.last_used),
        }

    @classmethod
    def from_dict(cls, data: dict) -> OSEntry:
        try:
            category = OSCategory(data.get("category", "unknown"))
        except ValueError:
            category = OSCategory.UNKNOWN
        return cls(
            name=data.get("name", ""),
            path=Path(data.get("path", "")),
            category=category,
            description=data.get("description", ""),
            bootable=bool(data.get("bootable", True)),
            last_used=parse_timestamp(data.get("last_used")),
        )


@dataclass
class RegistryRecord:
    """Persisted install history for one OS, keyed by name in the registry file."""

    name: str
    path: Path
    install_date: datetime | None = None
    last_used: datetime | None = None
    bootable: bool = True
    size_mb: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "path": str(self.path),
            "install_date": format_timestamp(self.install_date),
            "last_used": format_timestamp(self.last_used),
            "bootable": self.bootable,
            "size_mb": self.size_mb,
        }

    @classmethod
    def from_dict(cls, name: str, data: dict) -> RegistryRecord:
        return cls(
            name=data.get("name") or name,
            path=Path(data.get("path", "")),
            install_date=parse_timestamp(data.get("install_date")),
            last_used=parse_timestamp(data.get("last_used")),
            bootable=bool(data.get("bootable", True)),
            size_mb=int(data.get("size_mb") or 0),
        )
