"""armboot boot manager: entry point."""

import asyncio
import sys

from loguru import logger

from armboot.config import Config
from armboot.logger import setup_logger
from armboot.i18n import init as i18n_init
from armboot.plugins.plugin_manager import PluginManager
from armboot.models.device import DeviceProfile
from armboot.core.profiler import DeviceProfiler
from armboot.core.registry import Registry
from armboot.core.catalog import OSCatalog
from armboot.core.boot_config import BootConfigStore
from armboot.core.lifecycle import OSLifecycleManager
from armboot.core.network import NetworkConnector
from armboot.core.boot_policy import BootPolicyEngine, BootState
from armboot.ui.console_input import ConsoleInput


def build_services(config: Config) -> tuple[DeviceProfile, OSLifecycleManager]:
    """Plugins, device profile and the lifecycle service on top of the catalog.

    Stale registry records are left alone here: the scan hides them, and
    pruning them would lose the history of systems on unplugged media.
    """
    # ---- Plugin discovery ----
    pm = PluginManager()
    pm.discover()
    logger.info("Plugins loaded: {}", [p.category.value for p in pm.get_all_plugins()])

    # ---- Device ----
    profile = DeviceProfiler(config.host_root).profile()
    logger.info("Detected device: {} ({}, {} MB)", profile.model, profile.architecture, profile.memory_mb)

    # ---- Core services ----
    registry = Registry(config.registry_path)
    catalog = OSCatalog.from_config(config, registry, pm)
    boot_store = BootConfigStore(config.boot_config_path, default_timeout=config.menu_timeout_seconds)
    return profile, OSLifecycleManager.from_config(config, catalog, pm, profile, boot_store)


def main() -> int:
    # ---- 1. Config ----
    config = Config()

    # ---- 2. Logger ----
    setup_logger(level=config.log_level)
    logger.info("armboot starting, config: {}", config.path)

    # ---- 3. i18n ----
    i18n_init(config.language)
    logger.info("Language: {}", config.language)

    # ---- 4. Plugins, device and core services ----
    profile, lifecycle = build_services(config)

    # ---- 5. Boot policy ----
    engine = BootPolicyEngine(
        lifecycle,
        profile,
        NetworkConnector(config.host_root),
        ConsoleInput(),
        display=print,
        network_timeout=config.network_timeout_seconds,
        web_port=int(config.get("web_port", 8080)),
        web_url=config.web_url,
        gaming_mode=config.gaming_mode,
    )
    outcome = asyncio.run(engine.run())
    logger.info("Boot outcome: {} ({})", outcome.state.value, " -> ".join(s.value for s in outcome.history))

    if outcome.state is BootState.TERMINAL and outcome.error is not None:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
