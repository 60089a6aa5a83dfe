"""Boot policy engine: decides between auto-boot, the menu and remote fallback.

State flow::

    AWAITING_INPUT ──menu requested──────────────▶ INTERACTIVE_MENU
          │ timeout
          ├─ empty catalog ──────────────────────▶ NO_SYSTEMS
          ├─ recovery mode / default missing ────▶ INTERACTIVE_MENU
          ├─ default present ────────────────────▶ AUTO_BOOTING ──▶ TERMINAL
          └─ no default ─────────────────────────▶ REMOTE_FALLBACK
                                                    ├─ connected: hand off, hold
                                                    └─ failed ───▶ INTERACTIVE_MENU

The input/timeout race is the only cancellation point: whichever finishes
first decides, and the other task is cancelled before anything else runs.
Blocking work (scans, dispatch, network) runs in worker threads.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Sequence

from loguru import logger

from armboot.core.lifecycle import OSLifecycleManager
from armboot.core.network import NetworkConnection, NetworkConnector
from armboot.errors import BootManagerError
from armboot.i18n import t
from armboot.models.boot_config import BootConfiguration
from armboot.models.device import DeviceProfile
from armboot.models.os_entry import OSEntry
from armboot.plugins.base import BootPlan
from armboot.ui.menu import render_advanced, render_boot_menu, render_no_systems


class BootState(str, Enum):
    AWAITING_INPUT = "awaiting_input"
    AUTO_BOOTING = "auto_booting"
    INTERACTIVE_MENU = "interactive_menu"
    REMOTE_FALLBACK = "remote_fallback"
    NO_SYSTEMS = "no_systems"
    TERMINAL = "terminal"


class MenuAction(str, Enum):
    BOOT = "boot"
    ADVANCED = "advanced"
    REMOTE = "remote"
    RESTART_TESTS = "restart_tests"
    SHUTDOWN = "shutdown"
    RESCAN = "rescan"


MAIN_MENU_ACTIONS = (MenuAction.ADVANCED, MenuAction.REMOTE, MenuAction.RESTART_TESTS, MenuAction.SHUTDOWN)
NO_SYSTEMS_ACTIONS = (MenuAction.RESCAN, MenuAction.REMOTE, MenuAction.SHUTDOWN)


@dataclass(frozen=True)
class MenuChoice:
    action: MenuAction
    entry: OSEntry | None = None


class InputSource(Protocol):
    """Local input device driving the menu."""

    async def wait_for_menu_request(self) -> None:
        """Return once the user asks for the boot menu."""
        ...

    async def choose(self, entries: Sequence[OSEntry], actions: Sequence[MenuAction]) -> MenuChoice | None:
        """Let the user pick an entry or an action; ``None`` re-shows the screen."""
        ...


@dataclass
class BootOutcome:
    """Where a run of the engine ended and how it got there."""

    state: BootState
    entry: OSEntry | None = None
    plan: BootPlan | None = None
    remote_url: str | None = None
    error: BaseException | None = None
    history: list[BootState] = field(default_factory=list)


class BootPolicyEngine:
    """Runs the boot decision once per process."""

    def __init__(
        self,
        lifecycle: OSLifecycleManager,
        profile: DeviceProfile,
        network: NetworkConnector,
        input_source: Optional[InputSource] = None,
        *,
        display: Callable[[str], None] | None = None,
        network_timeout: float = 3.0,
        web_port: int = 8080,
        web_url: str = "http://localhost:8080",
        gaming_mode: bool = False,
        remote_handoff: Callable[[NetworkConnection], Awaitable[None]] | None = None,
        restart_tests: Callable[[], None] | None = None,
        shutdown: Callable[[], None] | None = None,
    ) -> None:
        self._lifecycle = lifecycle
        self._profile = profile
        self._network = network
        self._input = input_source
        self._display = display or (lambda text: logger.info(text))
        self._network_timeout = network_timeout
        self._web_port = web_port
        self._web_url = web_url
        self._gaming_mode = gaming_mode
        self._remote_handoff = remote_handoff
        self._restart_tests = restart_tests
        self._shutdown = shutdown

        self._state = BootState.AWAITING_INPUT
        self._started = False
        self._boot_config = BootConfiguration()
        self._outcome = BootOutcome(state=BootState.AWAITING_INPUT)

        self._handlers: dict[BootState, Callable[[], Awaitable[BootState | None]]] = {
            BootState.AWAITING_INPUT: self._awaiting_input,
            BootState.AUTO_BOOTING: self._auto_booting,
            BootState.INTERACTIVE_MENU: self._interactive_menu,
            BootState.REMOTE_FALLBACK: self._remote_fallback,
            BootState.NO_SYSTEMS: self._no_systems,
        }

    @property
    def state(self) -> BootState:
        return self._state

    async def run(self) -> BootOutcome:
        """Drive the state machine until it boots, holds or shuts down.

        Never raises for policy failures; they degrade to the menu or the
        no-systems screen.  A second call raises ``RuntimeError``.
        """
        if self._started:
            raise RuntimeError(f"boot policy engine already finished in state {self._state.value}")
        self._started = True

        while True:
            self._outcome.history.append(self._state)
            if self._state is BootState.TERMINAL:
                break
            logger.debug("Boot state: {}", self._state.value)
            try:
                next_state = await self._handlers[self._state]()
            except Exception as e:
                logger.exception("Boot policy failure in {}: {}", self._state.value, e)
                self._outcome.error = e
                next_state = await self._degrade(self._state)
            if next_state is None:
                break
            self._state = next_state

        self._outcome.state = self._state
        logger.info("Boot policy finished in state {}", self._state.value)
        return self._outcome

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    async def _awaiting_input(self) -> BootState:
        self._boot_config = await asyncio.to_thread(self._lifecycle.get_boot_config)
        timeout = max(0, self._boot_config.timeout_seconds)

        if self._input is not None:
            self._display(t("menu.press_for_menu", seconds=timeout))
        requested = await self._race_menu_request(timeout)

        entries = await self._scan()
        if not entries:
            return BootState.NO_SYSTEMS
        if requested:
            logger.info("Boot menu requested")
            return BootState.INTERACTIVE_MENU
        if self._boot_config.recovery_mode:
            logger.info("Recovery mode set, auto-boot suppressed")
            return BootState.INTERACTIVE_MENU

        default_name = self._boot_config.default_os
        if default_name:
            entry = _find(entries, default_name)
            if entry is not None:
                self._outcome.entry = entry
                return BootState.AUTO_BOOTING
            logger.warning("Default OS {} not found, showing menu", default_name)
            return BootState.INTERACTIVE_MENU

        logger.info("No default OS configured, trying remote management")
        return BootState.REMOTE_FALLBACK

    async def _auto_booting(self) -> BootState:
        entry = self._outcome.entry
        if entry is None:
            logger.warning("Auto-boot without a selected entry, showing menu")
            return BootState.INTERACTIVE_MENU

        self._display(t("boot.starting", name=entry.name))
        try:
            self._outcome.plan = await asyncio.to_thread(self._lifecycle.dispatch_boot, entry)
        except Exception as e:
            logger.error("Boot dispatch for {} failed: {}", entry.name, e)
            self._display(t("boot.failed", name=entry.name, error=e))
            self._outcome.error = e
        return BootState.TERMINAL

    async def _interactive_menu(self) -> BootState | None:
        entries = await self._scan()
        if not entries:
            return BootState.NO_SYSTEMS
        self._display(render_boot_menu(self._profile, entries, gaming_mode=self._gaming_mode))
        if self._input is None:
            return None

        choice = await self._input.choose(entries, MAIN_MENU_ACTIONS)
        if choice is None:
            return BootState.INTERACTIVE_MENU
        if choice.action is MenuAction.BOOT and choice.entry is not None:
            self._outcome.entry = choice.entry
            return BootState.AUTO_BOOTING
        if choice.action is MenuAction.ADVANCED:
            self._display(render_advanced(self._boot_config, self._web_url))
        elif choice.action is MenuAction.REMOTE:
            conn = await self._connect()
            if conn is not None:
                self._display(t("remote.available", url=conn.url(self._web_port)))
            else:
                self._display(t("remote.unavailable"))
        elif choice.action is MenuAction.RESTART_TESTS:
            self._display(t("system.restart_tests"))
            if self._restart_tests is not None:
                await asyncio.to_thread(self._restart_tests)
        elif choice.action is MenuAction.SHUTDOWN:
            return await self._do_shutdown()
        return BootState.INTERACTIVE_MENU

    async def _no_systems(self) -> BootState | None:
        self._display(render_no_systems(self._web_url))
        if self._input is None:
            return None

        choice = await self._input.choose([], NO_SYSTEMS_ACTIONS)
        if choice is None:
            return BootState.NO_SYSTEMS
        if choice.action is MenuAction.RESCAN:
            entries = await self._scan()
            return BootState.INTERACTIVE_MENU if entries else BootState.NO_SYSTEMS
        if choice.action is MenuAction.REMOTE:
            return BootState.REMOTE_FALLBACK
        if choice.action is MenuAction.SHUTDOWN:
            return await self._do_shutdown()
        return BootState.NO_SYSTEMS

    async def _remote_fallback(self) -> BootState | None:
        conn = await self._connect()
        if conn is None:
            self._display(t("remote.unavailable"))
            return BootState.INTERACTIVE_MENU

        url = conn.url(self._web_port)
        self._outcome.remote_url = url
        self._display(t("remote.available", url=url))
        if self._remote_handoff is not None:
            await self._remote_handoff(conn)
        return None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _race_menu_request(self, timeout: float) -> bool:
        """``True`` if the menu was requested before *timeout* elapsed."""
        if self._input is None:
            await asyncio.sleep(timeout)
            return False

        request = asyncio.ensure_future(self._input.wait_for_menu_request())
        timer = asyncio.ensure_future(asyncio.sleep(timeout))
        done, pending = await asyncio.wait({request, timer}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        if request not in done:
            logger.info("No input within {}s", timeout)
            return False
        if request.exception() is not None:
            logger.warning("Input source failed: {}", request.exception())
            return False
        return True

    async def _scan(self) -> list[OSEntry]:
        try:
            return await asyncio.to_thread(self._lifecycle.list_systems)
        except Exception as e:
            logger.error("Catalog scan failed: {}", e)
            return []

    async def _connect(self) -> NetworkConnection | None:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._network.connect), timeout=self._network_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Network connection timeout ({}s)", self._network_timeout)
        except BootManagerError as e:
            logger.warning("Network connection failed: {}", e)
        return None

    async def _do_shutdown(self) -> BootState:
        self._display(t("system.shutdown"))
        if self._shutdown is not None:
            await asyncio.to_thread(self._shutdown)
        return BootState.TERMINAL

    async def _degrade(self, failed: BootState) -> BootState | None:
        """Fallback after an unexpected failure in state *failed*."""
        if failed in (BootState.INTERACTIVE_MENU, BootState.NO_SYSTEMS):
            self._display(render_no_systems(self._web_url))
            self._state = BootState.NO_SYSTEMS
            return None
        entries = await self._scan()
        return BootState.INTERACTIVE_MENU if entries else BootState.NO_SYSTEMS


def _find(entries: Sequence[OSEntry], name: str) -> OSEntry | None:
    for entry in entries:
        if entry.name == name:
            return entry
    return None
