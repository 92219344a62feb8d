# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Poll-based change detection for devices without push events.

A PollWatcher owns one asyncio task that reads a single property every
``interval`` seconds (fixed delay, so polls of one watcher never overlap) and
calls ``on_change(value)`` whenever the value differs from the last one seen.
"""

import asyncio
import logging

logger = logging.getLogger("sonolink.watcher")


class PollWatcher:
    """Watch one property through an async getter.

    getter     – ``async () -> value``
    on_change  – ``async (value) -> None``, awaited before last_value moves on
    interval   – seconds between polls
    """

    def __init__(self, name: str, getter, on_change, interval: float, initial=None):
        self.name = name
        self._getter = getter
        self._on_change = on_change
        self.interval = interval
        self.last_value = initial
        self._task: asyncio.Task | None = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self):
        if self._task is not None:
            return
        self._stopped = False
        self._task = asyncio.get_running_loop().create_task(
            self._loop(), name=f"watch-{self.name}")

    def stop(self):
        """Cancel the poll loop.  A poll already awaiting the device is
        abandoned and never reaches the change handler."""
        self._stopped = True
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self):
        while not self._stopped:
            await asyncio.sleep(self.interval)
            await self.poll()

    async def poll(self):
        """Run one read/compare cycle."""
        try:
            value = await self._getter()
        except Exception as e:
            logger.warning("Could not read %s: %s", self.name, e)
            return

        if self._stopped:
            return
        if value == self.last_value:
            return

        logger.debug("%s changed: %r -> %r", self.name, self.last_value, value)
        try:
            await self._on_change(value)
        except Exception as e:
            logger.error("Error handling %s change: %s", self.name, e)
        self.last_value = value
