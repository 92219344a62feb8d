"""
Device adapters for the two ends of the link.

  - ``denon``  – Denon AVR: HEOS events in, HTTP commands out
  - ``sonos``  – Sonos speaker via SoCo, polled

The link itself only sees the ``Receiver`` and ``Speaker`` interfaces.
"""

from .base import Receiver, Speaker
from .denon import (
    DenonDevice,
    DenonReceiver,
    PlayerNotFoundError,
    format_volume,
    wait_for_denon_device,
)
from .heos import HeosConnection, HeosError, HeosEvent
from .sonos import SonosSpeaker, wait_for_sonos_device

__all__ = [
    "Receiver",
    "Speaker",
    "DenonDevice",
    "DenonReceiver",
    "PlayerNotFoundError",
    "format_volume",
    "wait_for_denon_device",
    "HeosConnection",
    "HeosError",
    "HeosEvent",
    "SonosSpeaker",
    "wait_for_sonos_device",
]
