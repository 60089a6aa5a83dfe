"""Plugin discovery and the category handler table."""

from __future__ import annotations

import importlib
import pkgutil
from pathlib import Path
from typing import Sequence

from loguru import logger

from armboot.models.os_entry import DEFAULT_CATEGORY_PRECEDENCE, OSCategory
from armboot.plugins.base import OSCategoryPlugin, UnknownOSPlugin


class PluginManager:
    """Discovers and manages OS category plugins."""

    def __init__(self) -> None:
        self._plugins: dict[OSCategory, OSCategoryPlugin] = {}
        self._fallback = UnknownOSPlugin()

    def discover(self) -> None:
        """Auto-discover all plugins in the ``armboot.plugins`` package.

        Scans sub-packages for classes that inherit from ``OSCategoryPlugin``
        and registers them.
        """
        plugins_dir = Path(__file__).parent
        for finder, module_name, is_pkg in pkgutil.iter_modules([str(plugins_dir)]):
            if module_name in ("base", "plugin_manager", "__init__"):
                continue
            if not is_pkg:
                continue
            full_module = f"armboot.plugins.{module_name}.plugin"
            try:
                mod = importlib.import_module(full_module)
                for attr_name in dir(mod):
                    attr = getattr(mod, attr_name)
                    if (
                        isinstance(attr, type)
                        and issubclass(attr, OSCategoryPlugin)
                        and not getattr(attr, "__abstractmethods__", None)
                        and attr.__module__ == mod.__name__
                    ):
                        instance = attr()
                        self.register(instance)
                        logger.info(
                            "Discovered plugin: {} ({})", instance.category.value, full_module
                        )
            except Exception as e:
                logger.warning("Failed to load plugin {}: {}", full_module, e)

    def register(self, plugin: OSCategoryPlugin) -> None:
        """Manually register a plugin instance."""
        self._plugins[plugin.category] = plugin

    def get_plugin(self, category: OSCategory) -> OSCategoryPlugin:
        """Boot handler for *category*; unknown categories get the fallback."""
        return self._plugins.get(category, self._fallback)

    def get_all_plugins(self) -> list[OSCategoryPlugin]:
        return list(self._plugins.values())

    def ordered(self, precedence: Sequence[OSCategory] = DEFAULT_CATEGORY_PRECEDENCE) -> list[OSCategoryPlugin]:
        """Plugins in classification order.

        Categories listed in *precedence* come first, in that order; any
        other registered category follows in default order, then by name.
        """
        default_rank = {c: i for i, c in enumerate(DEFAULT_CATEGORY_PRECEDENCE)}
        result = [self._plugins[c] for c in precedence if c in self._plugins]
        rest = sorted(
            (p for c, p in self._plugins.items() if c not in precedence),
            key=lambda p: (default_rank.get(p.category, len(default_rank)), p.category.value),
        )
        return result + rest
