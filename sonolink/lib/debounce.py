# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Leading-edge debounce for async device writes.

One DebouncedCall wraps one (device, property) write, e.g. "Sonos volume".
The first call in an idle period runs the action straight away; every call
made while the quiet period is running is dropped and restarts the quiet
period.

Note this is NOT the usual trailing debounce: suppressed calls are discarded
together with their arguments, there is no final "latest value wins" call
when the quiet period ends.  A fast run of volume changes therefore lands on
the first value of the burst, and the next change after the burst is what
brings the devices back in line.
"""

import asyncio
import logging

logger = logging.getLogger("sonolink.debounce")


class DebouncedCall:
    """Run ``action(*args)`` at most once per quiet period, on the leading edge."""

    def __init__(self, action, quiet: float, name: str = ""):
        self._action = action
        self._quiet = quiet
        self.name = name or getattr(action, "__name__", "action")
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """True while a quiet period is running (calls are being dropped)."""
        return self._handle is not None

    def __call__(self, *args) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is None:
            task = loop.create_task(self._run(args))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            logger.debug("%s: dropped %r (quiet period)", self.name, args)
            self._handle.cancel()
        self._handle = loop.call_later(self._quiet, self._expire)

    def cancel(self) -> None:
        """End the quiet period and abort any write still in flight."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        for task in list(self._tasks):
            task.cancel()

    def _expire(self) -> None:
        self._handle = None

    async def _run(self, args) -> None:
        try:
            await self._action(*args)
        except Exception as e:
            logger.warning("%s failed: %s", self.name, e)
