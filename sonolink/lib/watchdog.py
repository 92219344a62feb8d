# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""systemd notify support for the link service.

READY=1 once the link is started, WATCHDOG=1 on a timer, STOPPING=1 on the
way out.  Everything is a no-op when NOTIFY_SOCKET is unset (dev mode).

Usage:
    from .lib.watchdog import sd_notify, watchdog_loop
    task = asyncio.create_task(watchdog_loop(link))
"""

import asyncio
import logging
import os
import socket

logger = logging.getLogger("sonolink.watchdog")


def sd_notify(msg: str) -> bool:
    """Send *msg* to the systemd notify socket.  Returns False when there is none."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto(msg.encode(), addr)
    except OSError as e:
        logger.debug("sd_notify(%s) failed: %s", msg.split("\n")[0], e)
        return False
    finally:
        sock.close()
    return True


def watchdog_interval(default: float = 20) -> float:
    """Half of WATCHDOG_USEC when systemd sets it, else *default* seconds."""
    usec = os.environ.get("WATCHDOG_USEC")
    if usec and usec.isdigit() and int(usec) > 0:
        return int(usec) / 2_000_000
    return default


async def watchdog_loop(link, interval: float | None = None):
    """Heartbeat while *link* is running.  Call as asyncio.create_task()."""
    interval = interval or watchdog_interval()
    sd_notify("READY=1\nSTATUS=Linked")
    logger.info("Watchdog started (interval=%.1fs)", interval)
    while link.running:
        sd_notify("WATCHDOG=1")
        await asyncio.sleep(interval)
