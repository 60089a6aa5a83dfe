"""armboot: multi-OS boot manager for ARM single-board and handheld devices."""

__version__ = "0.1.0"
