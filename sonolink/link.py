#!/usr/bin/env python3
# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
sonolink service entry point.

Finds the configured Denon AVR and Sonos speaker (retrying until both show
up), starts the LinkManager and runs until SIGINT/SIGTERM.

Configuration comes from config.json and/or the environment, e.g.:

    DENON_NAME="Living Room" SONOS_NAME="Port" LOG_LEVEL=debug sonolink
"""

import asyncio
import logging
import signal

import aiohttp

from .lib.config import LinkConfig
from .lib.devices import DenonReceiver, wait_for_denon_device, wait_for_sonos_device
from .lib.link_manager import LinkManager
from .lib.watchdog import sd_notify, watchdog_loop

logger = logging.getLogger("sonolink")


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # SoCo is chatty at debug
    logging.getLogger("soco").setLevel(logging.WARNING)


async def _discover(config: LinkConfig, session: aiohttp.ClientSession):
    denon_device = await wait_for_denon_device(config.denon, session)
    speaker = await wait_for_sonos_device(config.sonos)
    return DenonReceiver(denon_device, session), speaker


async def run(config: LinkConfig) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop_event.set)

    async with aiohttp.ClientSession() as session:
        discovery = asyncio.create_task(_discover(config, session))
        stopper = asyncio.create_task(stop_event.wait())
        done, _ = await asyncio.wait({discovery, stopper},
                                     return_when=asyncio.FIRST_COMPLETED)
        if discovery not in done:
            logger.info("Stopped during discovery")
            discovery.cancel()
            return
        stopper.cancel()

        receiver, speaker = discovery.result()
        link = LinkManager(receiver, speaker, config)
        await link.start()
        logger.info("Link manager started")
        heartbeat = asyncio.create_task(watchdog_loop(link))

        try:
            await stop_event.wait()
        finally:
            logger.info("Signal received — shutting down")
            sd_notify("STOPPING=1")
            await link.stop()
            heartbeat.cancel()


def main():
    config = LinkConfig.from_cfg()
    setup_logging(config.log_level)
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        pass
    logger.info("Done.")


if __name__ == "__main__":
    main()
