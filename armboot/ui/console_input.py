"""Line-based console input for the boot menu.

One daemon thread reads the stream and feeds an asyncio queue, so a
cancelled wait never leaves a stray reader that would swallow the next
line typed at the menu.
"""

from __future__ import annotations

import asyncio
import sys
import threading
from typing import IO, Optional, Sequence

from loguru import logger

from armboot.core.boot_policy import MenuAction, MenuChoice
from armboot.models.os_entry import OSEntry

ACTION_KEYS = {
    "a": MenuAction.ADVANCED,
    "w": MenuAction.REMOTE,
    "r": MenuAction.RESTART_TESTS,
    "s": MenuAction.SHUTDOWN,
}


class ConsoleInput:
    """Enter opens the menu; menu choices are typed as a number or letter."""

    def __init__(self, stream: Optional[IO[str]] = None) -> None:
        self._stream = stream or sys.stdin
        self._lines: Optional[asyncio.Queue] = None

    async def wait_for_menu_request(self) -> None:
        line = await self._next_line()
        if line is None:
            # Input closed: the request can never come, let the timer win.
            await asyncio.Event().wait()

    async def choose(self, entries: Sequence[OSEntry], actions: Sequence[MenuAction]) -> MenuChoice | None:
        line = await self._next_line()
        if line is None:
            raise EOFError("console input closed")
        return parse_choice(line, entries, actions)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _next_line(self) -> str | None:
        if self._lines is None:
            self._lines = asyncio.Queue()
            loop = asyncio.get_running_loop()
            threading.Thread(target=self._pump, args=(loop, self._lines), daemon=True).start()
        return await self._lines.get()

    def _pump(self, loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
        try:
            for line in self._stream:
                loop.call_soon_threadsafe(queue.put_nowait, line.rstrip("\r\n"))
            loop.call_soon_threadsafe(queue.put_nowait, None)
        except RuntimeError:
            logger.debug("Event loop closed, console reader stopped")


def parse_choice(line: str, entries: Sequence[OSEntry], actions: Sequence[MenuAction]) -> MenuChoice | None:
    """Map typed text to a menu choice, ``None`` if it means nothing here.

    With entries on screen, numbers pick an entry and letters pick an
    action.  Without entries the actions themselves are numbered.
    """
    text = line.strip().lower()
    if not text:
        return None
    if text.isdigit():
        index = int(text) - 1
        if entries:
            if 0 <= index < len(entries):
                return MenuChoice(MenuAction.BOOT, entries[index])
        elif 0 <= index < len(actions):
            return MenuChoice(actions[index])
        return None
    action = ACTION_KEYS.get(text[0])
    if action is not None and action in actions:
        return MenuChoice(action)
    return None
