"""Data model for the persisted boot configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

from armboot.models.os_entry import OSEntry


@dataclass
class BootConfiguration:
    """Boot policy inputs stored in ``boot.json``."""

    default_os: str | None = None
    timeout_seconds: int = 10
    available_systems: list[OSEntry] = field(default_factory=list)
    """Snapshot of the catalog at the last configuration write."""

    boot_order: list[str] = field(default_factory=list)
    recovery_mode: bool = False

    def to_dict(self) -> dict:
        return {
            "default_os": self.default_os,
            "timeout_seconds": self.timeout_seconds,
            "available_systems": [e.to_dict() for e in self.available_systems],
            "boot_order": list(self.boot_order),
            "recovery_mode": self.recovery_mode,
        }

    @classmethod
    def from_dict(cls, data: dict, default_timeout: int = 10) -> BootConfiguration:
        timeout = data.get("timeout_seconds")
        return cls(
            default_os=data.get("default_os") or None,
            timeout_seconds=int(timeout) if timeout is not None else default_timeout,
            available_systems=[
                OSEntry.from_dict(d) for d in data.get("available_systems") or []
                if isinstance(d, dict)
            ],
            boot_order=[str(n) for n in data.get("boot_order") or []],
            recovery_mode=bool(data.get("recovery_mode", False)),
        )
