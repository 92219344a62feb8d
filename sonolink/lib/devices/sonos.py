# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Sonos adapter — async accessors over the SoCo library.

SoCo is blocking (UPnP/SOAP over HTTP), so every call runs in a small thread
pool.  Sonos has no push channel we use here; the link polls these getters.
"""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor

import soco
from soco import SoCo

from ..config import SonosConfig
from .base import Speaker

logger = logging.getLogger("sonolink.sonos")

RETRY_DELAY = 0.1

# Thread pool for blocking SoCo calls (three watchers + writes)
executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="soco")


def playback_state(transport_state: str) -> str:
    """Map a UPnP transport state to "playing", "paused" or "stopped"."""
    state = (transport_state or "STOPPED").lower()
    if state in ("playing", "transitioning"):
        return "playing"
    if state == "paused_playback":
        return "paused"
    return "stopped"


class SonosSpeaker(Speaker):
    """Volume, mute and transport state of one Sonos speaker."""

    def __init__(self, speaker: SoCo):
        self._speaker = speaker
        self.host = speaker.ip_address

    async def _call(self, fn):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, fn)

    async def get_volume(self) -> int:
        return await self._call(lambda: self._speaker.volume)

    async def set_volume(self, level: float) -> None:
        vol = int(round(level))
        await self._call(lambda: setattr(self._speaker, "volume", vol))
        logger.info("-> Sonos volume: %d", vol)

    async def get_muted(self) -> bool:
        return await self._call(lambda: self._speaker.mute)

    async def set_muted(self, mute: bool) -> None:
        await self._call(lambda: setattr(self._speaker, "mute", mute))
        logger.info("-> Sonos mute: %s", mute)

    async def get_playback_state(self) -> str:
        info = await self._call(self._speaker.get_current_transport_info)
        return playback_state(info.get("current_transport_state"))


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def _find_sync(config: SonosConfig) -> SoCo | None:
    """Blocking discovery — run in executor."""
    devices = soco.discover(timeout=max(1, int(config.search_timeout))) or set()
    names = {}
    for device in devices:
        try:
            names[device] = device.player_name
        except Exception as e:
            logger.debug("Could not read name of %s: %s", device.ip_address, e)
    logger.debug("Found %d Sonos devices: %s", len(devices), ", ".join(names.values()))

    for device, name in names.items():
        if (config.ip and device.ip_address == config.ip) or (config.name and name == config.name):
            logger.info("Found device: %s (%s)", name, device.ip_address)
            return device
    return None


async def get_sonos_device(config: SonosConfig) -> SoCo | None:
    loop = asyncio.get_running_loop()
    try:
        return await loop.run_in_executor(executor, _find_sync, config)
    except OSError as e:
        logger.warning("Sonos discovery failed: %s", e)
        return None


async def wait_for_sonos_device(config: SonosConfig) -> SonosSpeaker:
    """Retry discovery until the configured speaker shows up."""
    logger.info("Looking for Sonos device with name: %s (ip: %s)", config.name, config.ip)
    while True:
        device = await get_sonos_device(config)
        if device is not None:
            return SonosSpeaker(device)
        logger.warning("Sonos device not found, retrying...")
        await asyncio.sleep(RETRY_DELAY)
