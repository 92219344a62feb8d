# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Denon AVR adapter.

Two channels to the same box:
  - HEOS CLI (port 1255) for change events and the player list, see heos.py
  - the "iPhone app" HTTP endpoint for commands:
        GET http://{ip}:8080/goform/formiPhoneAppDirect.xml?{CMD}{ARG}
    MV = volume (see format_volume), MU = mute ON/OFF,
    SI = input source, PW = power ON/STANDBY

Discovery is plain SSDP for the ACT-Denon device type followed by a fetch of
the UPnP description to learn the friendly name.
"""

import asyncio
import logging
import math
import socket
import time
from dataclasses import dataclass
from xml.etree import ElementTree

import aiohttp

from ..config import DenonConfig
from .base import Receiver
from .heos import HeosConnection

logger = logging.getLogger("sonolink.denon")

DENON_URI = "http://{ip}:8080/goform/formiPhoneAppDirect.xml"
MAX_VOLUME = 98

SSDP_ADDR = ("239.255.255.250", 1900)
SSDP_SEARCH_TARGET = "urn:schemas-denon-com:device:ACT-Denon:1"
SSDP_LISTEN = 2.0      # seconds per M-SEARCH round
RETRY_DELAY = 0.1      # between discovery attempts

_UPNP_NS = {"d": "urn:schemas-upnp-org:device-1-0"}


class PlayerNotFoundError(LookupError):
    """No HEOS player matches the receiver's friendly name."""


def format_volume(level: float) -> str:
    """Encode a volume for the MV command.

    Capped at 98, integer part padded to two digits, a trailing "5" marks a
    half step: 40 → "40", 5.5 → "055", 99 → "98".
    """
    capped = max(0, min(level, MAX_VOLUME))
    base = math.floor(capped)
    result = f"{base:02d}"
    if capped - base > 0:
        result += "5"
    return result


async def _send_command(session: aiohttp.ClientSession, ip: str, command: str) -> None:
    """Fire one HTTP command.  Failures are logged, never raised."""
    try:
        async with session.get(
            f"{DENON_URI.format(ip=ip)}?{command}",
            timeout=aiohttp.ClientTimeout(total=5),
        ) as resp:
            resp.raise_for_status()
            logger.debug("-> Denon %s", command)
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning("Denon @ %s command %s failed: %s", ip, command, e)


async def write_denon_volume(session: aiohttp.ClientSession, ip: str, level: float) -> None:
    await _send_command(session, ip, f"MV{format_volume(level)}")


async def write_denon_mute(session: aiohttp.ClientSession, ip: str, mute: bool) -> None:
    await _send_command(session, ip, f"MU{'ON' if mute else 'OFF'}")


async def write_denon_source(session: aiohttp.ClientSession, ip: str, source: str) -> None:
    await _send_command(session, ip, f"SI{source}")


async def write_denon_power(session: aiohttp.ClientSession, ip: str, power: bool) -> None:
    await _send_command(session, ip, f"PW{'ON' if power else 'STANDBY'}")


@dataclass(frozen=True)
class DenonDevice:
    address: str
    friendly_name: str
    model_name: str = ""
    udn: str = ""


class DenonReceiver(Receiver):
    """A discovered Denon AVR: HEOS connection plus HTTP command writer."""

    def __init__(self, device: DenonDevice, session: aiohttp.ClientSession,
                 connection: HeosConnection | None = None):
        self.device = device
        self.address = device.address
        self.friendly_name = device.friendly_name
        self._session = session
        self.connection = connection or HeosConnection(device.address)

    def on(self, event, callback):
        self.connection.on(event, callback)

    def off(self, event, callback):
        self.connection.off(event, callback)

    async def connect(self):
        await self.connection.connect()

    async def disconnect(self):
        await self.connection.disconnect()

    async def get_player_id(self) -> int:
        players = await self.connection.get_players()
        for player in players:
            if player.get("name") == self.friendly_name:
                return int(player["pid"])
        raise PlayerNotFoundError(
            f"Player not found: {self.friendly_name} ({self.address})")

    async def set_volume(self, level: float) -> None:
        await write_denon_volume(self._session, self.address, level)

    async def set_mute(self, mute: bool) -> None:
        await write_denon_mute(self._session, self.address, mute)

    async def set_power(self, on: bool) -> None:
        await write_denon_power(self._session, self.address, on)

    async def set_source(self, source: str) -> None:
        await write_denon_source(self._session, self.address, source)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def _ssdp_search_sync(listen: float) -> dict[str, str]:
    """Blocking M-SEARCH round — run in executor.  Returns {address: location}."""
    request = "\r\n".join([
        "M-SEARCH * HTTP/1.1",
        f"HOST: {SSDP_ADDR[0]}:{SSDP_ADDR[1]}",
        'MAN: "ssdp:discover"',
        f"MX: {max(1, int(listen))}",
        f"ST: {SSDP_SEARCH_TARGET}",
        "", "",
    ])
    found: dict[str, str] = {}
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
    try:
        sock.sendto(request.encode(), SSDP_ADDR)
        deadline = time.monotonic() + listen
        while (remaining := deadline - time.monotonic()) > 0:
            sock.settimeout(remaining)
            try:
                data, (addr, _) = sock.recvfrom(4096)
            except socket.timeout:
                break
            location = parse_ssdp_location(data.decode(errors="replace"))
            if location:
                found.setdefault(addr, location)
    finally:
        sock.close()
    return found


def parse_ssdp_location(response: str) -> str | None:
    """Pull the LOCATION header out of an SSDP response."""
    for line in response.split("\r\n")[1:]:
        name, _, value = line.partition(":")
        if name.strip().lower() == "location":
            return value.strip()
    return None


def parse_description(address: str, xml_text: str) -> DenonDevice | None:
    """Build a DenonDevice from a UPnP device description."""
    try:
        root = ElementTree.fromstring(xml_text)
    except ElementTree.ParseError as e:
        logger.debug("Bad description from %s: %s", address, e)
        return None
    device = root.find("d:device", _UPNP_NS)
    if device is None:
        return None
    return DenonDevice(
        address=address,
        friendly_name=device.findtext("d:friendlyName", "", _UPNP_NS),
        model_name=device.findtext("d:modelName", "", _UPNP_NS),
        udn=device.findtext("d:UDN", "", _UPNP_NS),
    )


async def _describe(session: aiohttp.ClientSession, address: str, location: str) -> DenonDevice | None:
    try:
        async with session.get(location, timeout=aiohttp.ClientTimeout(total=5)) as resp:
            resp.raise_for_status()
            return parse_description(address, await resp.text())
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug("Could not read description at %s: %s", location, e)
        return None


def _matches(device: DenonDevice, config: DenonConfig) -> bool:
    return bool((config.ip and device.address == config.ip)
                or (config.name and device.friendly_name == config.name))


async def get_denon_device(config: DenonConfig, session: aiohttp.ClientSession) -> DenonDevice | None:
    """Search for up to ``config.search_timeout`` seconds; None if nothing matched."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + config.search_timeout
    seen: set[str] = set()
    while (remaining := deadline - loop.time()) > 0:
        try:
            responses = await loop.run_in_executor(
                None, _ssdp_search_sync, min(SSDP_LISTEN, remaining))
        except OSError as e:
            logger.warning("SSDP search failed: %s", e)
            return None
        for address, location in responses.items():
            if address in seen:
                continue
            device = await _describe(session, address, location)
            if device is None:
                continue
            seen.add(address)
            logger.debug("Saw Denon device: %s (%s)", device.friendly_name, address)
            if _matches(device, config):
                logger.info("Found device: %s (%s)", device.friendly_name, device.address)
                return device
    return None


async def wait_for_denon_device(config: DenonConfig, session: aiohttp.ClientSession) -> DenonDevice:
    """Retry discovery until the configured receiver shows up."""
    logger.info("Looking for Denon device with name: %s (ip: %s)", config.name, config.ip)
    while True:
        device = await get_denon_device(config, session)
        if device is not None:
            return device
        logger.warning("Denon device not found, retrying...")
        await asyncio.sleep(RETRY_DELAY)
