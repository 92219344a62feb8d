# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Abstract device contracts the link is written against.

The receiver pushes events and takes fire-and-forget commands; the speaker
only answers requests and has to be polled.  Concrete adapters live next to
this module (denon.py, sonos.py); tests use in-memory fakes.
"""

from abc import ABC, abstractmethod


class Receiver(ABC):
    """Push-style AV receiver."""

    address: str
    friendly_name: str

    # -- control channel lifecycle --

    @abstractmethod
    def on(self, event: str, callback) -> None:
        """Register *callback* for ``connecting``/``connected``/``disconnected``/``event``."""

    @abstractmethod
    def off(self, event: str, callback) -> None: ...

    @abstractmethod
    async def connect(self) -> None:
        """Open the control channel.  Returns without waiting for ``connected``."""

    @abstractmethod
    async def disconnect(self) -> None: ...

    @abstractmethod
    async def get_player_id(self) -> int:
        """Look up the player id matching this receiver's friendly name."""

    # -- commands (best effort, errors are logged not raised) --

    @abstractmethod
    async def set_volume(self, level: float) -> None: ...

    @abstractmethod
    async def set_mute(self, mute: bool) -> None: ...

    @abstractmethod
    async def set_power(self, on: bool) -> None: ...

    @abstractmethod
    async def set_source(self, source: str) -> None: ...


class Speaker(ABC):
    """Pull-only speaker."""

    @abstractmethod
    async def get_volume(self) -> int: ...

    @abstractmethod
    async def set_volume(self, level: float) -> None: ...

    @abstractmethod
    async def get_muted(self) -> bool: ...

    @abstractmethod
    async def set_muted(self, mute: bool) -> None: ...

    @abstractmethod
    async def get_playback_state(self) -> str:
        """Return "playing", "paused", or "stopped"."""
