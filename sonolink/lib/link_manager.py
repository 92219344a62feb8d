# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
LinkManager — keeps a Denon AVR and a Sonos speaker in step.

  - Denon volume/mute events        → debounced Sonos volume/mute writes
  - Sonos volume/mute (polled)      → debounced Denon volume/mute writes
  - Sonos starts playing (polled)   → Denon power on + switch to the Sonos input

Nothing flows in either direction until the receiver's HEOS player id is
known; it is looked up on every ``connected`` event.  While it is missing the
watchers keep polling and tracking values, so resolving the id never replays
old changes.
"""

import logging
import threading

from .config import LinkConfig
from .debounce import DebouncedCall
from .devices.base import Receiver, Speaker
from .devices.heos import HeosEvent
from .watcher import PollWatcher

logger = logging.getLogger("sonolink.link")

VOLUME_EVENT = "player_volume_changed"


class PlayerIdCell:
    """Single-slot holder for the receiver's player id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value: int | None = None

    def get(self) -> int | None:
        with self._lock:
            return self._value

    def set(self, value: int | None) -> None:
        with self._lock:
            self._value = value


class LinkManager:
    """Owns both devices, the watchers and the receiver event wiring."""

    def __init__(self, receiver: Receiver, speaker: Speaker, config: LinkConfig):
        self.receiver = receiver
        self.speaker = speaker
        self.config = config
        self._player_id = PlayerIdCell()
        self._running = False
        self.watchers: dict[str, PollWatcher] = {}

        timing = config.timing
        self._set_sonos_volume = DebouncedCall(
            self._write_sonos_volume, timing.volume_debounce, "sonos volume")
        self._set_denon_volume = DebouncedCall(
            self._write_denon_volume, timing.volume_debounce, "denon volume")
        self._set_sonos_mute = DebouncedCall(
            self._write_sonos_mute, timing.mute_debounce, "sonos mute")
        self._set_denon_mute = DebouncedCall(
            self._write_denon_mute, timing.mute_debounce, "denon mute")

        self._lifecycle = {
            "connecting": self._on_connecting,
            "connected": self._on_connected,
            "disconnected": self._on_disconnected,
            "event": self._on_receiver_event,
        }

    @property
    def running(self) -> bool:
        return self._running

    @property
    def player_id(self) -> int | None:
        return self._player_id.get()

    @player_id.setter
    def player_id(self, value: int | None) -> None:
        self._player_id.set(value)

    # ── Lifecycle ──

    async def start(self) -> None:
        if self._running:
            logger.warning("Link already running — ignoring start()")
            return
        self._running = True

        logger.info("Registering Denon events")
        for event, handler in self._lifecycle.items():
            self.receiver.on(event, handler)
        try:
            await self.receiver.connect()
        except Exception:
            self._running = False
            for event, handler in self._lifecycle.items():
                self.receiver.off(event, handler)
            raise

        self._register_sonos_watchers()
        logger.info("Link started (%s ⇄ %s)",
                    getattr(self.receiver, "friendly_name", "receiver"),
                    getattr(self.speaker, "host", "speaker"))

    async def stop(self) -> None:
        if not self._running:
            logger.warning("Link not running — ignoring stop()")
            return
        self._running = False

        self._unregister_sonos_watchers()
        for debounced in (self._set_sonos_volume, self._set_denon_volume,
                          self._set_sonos_mute, self._set_denon_mute):
            debounced.cancel()
        for event, handler in self._lifecycle.items():
            self.receiver.off(event, handler)
        await self.receiver.disconnect()
        logger.info("Link stopped")

    # ── Receiver side ──

    def _on_connecting(self) -> None:
        logger.info("Denon device connecting")

    def _on_disconnected(self) -> None:
        logger.error("Denon device disconnected")

    async def _on_connected(self) -> None:
        logger.info("Denon device connected")
        try:
            pid = await self.receiver.get_player_id()
        except Exception as e:
            logger.error("Could not resolve Denon player id: %s", e)
            return
        self.player_id = pid
        logger.info("Denon player id: %s", pid)

    def _on_receiver_event(self, event: HeosEvent) -> None:
        logger.debug("Denon event: %s %s", event.event, event.message)
        pid = self.player_id
        if event.event != VOLUME_EVENT or pid is None:
            return

        message = event.message
        event_pid = message.get("pid")
        if event_pid is not None and str(event_pid) != str(pid):
            logger.debug("Ignoring volume event for player %s", event_pid)
            return

        level = message.get("level")
        mute = message.get("mute")
        logger.debug("Denon volume or mute changed. [Volume: %s; Mute: %s]", level, mute)

        # level 0 is a real value
        if level is not None:
            try:
                value = float(level)
            except (TypeError, ValueError):
                logger.warning("Bad Denon volume level: %r", level)
            else:
                logger.debug("Syncing Sonos volume to Denon")
                self._set_sonos_volume(value * self.config.sonos.volume_multiplier)

        if mute is not None:
            logger.debug("Syncing Sonos mute to Denon")
            self._set_sonos_mute(mute == "on")

    # ── Sonos side ──

    def _register_sonos_watchers(self) -> None:
        logger.info("Registering Sonos watchers")
        timing = self.config.timing
        self.watchers = {
            "volume": PollWatcher("volume", self.speaker.get_volume,
                                  self._on_sonos_volume, timing.volume_poll),
            "playback_state": PollWatcher("playback_state", self.speaker.get_playback_state,
                                          self._on_sonos_playback_state, timing.playback_poll),
            "mute": PollWatcher("mute", self.speaker.get_muted,
                                self._on_sonos_mute, timing.mute_poll),
        }
        for watcher in self.watchers.values():
            watcher.start()

    def _unregister_sonos_watchers(self) -> None:
        logger.info("Unregistering Sonos watchers")
        for watcher in self.watchers.values():
            watcher.stop()

    async def _on_sonos_volume(self, level) -> None:
        if self.player_id is None:
            return
        logger.debug("Syncing Denon volume to Sonos")
        self._set_denon_volume(level * self.config.denon.volume_multiplier)

    async def _on_sonos_mute(self, mute) -> None:
        if self.player_id is None:
            return
        logger.debug("Syncing Denon mute to Sonos")
        self._set_denon_mute(mute)

    async def _on_sonos_playback_state(self, state) -> None:
        # Only a start of playback wakes the receiver; pause/stop leave it alone
        if state != "playing" or self.player_id is None or not self._running:
            return
        source = self.config.denon.sonos_input_source
        logger.info("Sonos playing — switching Denon to %s", source)
        await self.receiver.set_power(True)
        await self.receiver.set_source(source)

    # ── Debounced writes ──

    async def _write_sonos_volume(self, level: float) -> None:
        if not self._running:
            return
        logger.info("Setting Sonos volume to %s", level)
        await self.speaker.set_volume(level)

    async def _write_denon_volume(self, level: float) -> None:
        if not self._running:
            return
        logger.info("Setting Denon volume to %s", level)
        await self.receiver.set_volume(level)

    async def _write_sonos_mute(self, mute: bool) -> None:
        if not self._running:
            return
        logger.info("Setting Sonos mute to %s", mute)
        await self.speaker.set_muted(mute)

    async def _write_denon_mute(self, mute: bool) -> None:
        if not self._running:
            return
        logger.info("Setting Denon mute to %s", mute)
        await self.receiver.set_mute(mute)
