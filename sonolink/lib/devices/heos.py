# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
HEOS CLI control channel (TCP port 1255).

Protocol:
  - Command:  ``heos://{group}/{command}?{k}={v}&...\\r\\n``
  - Response: one JSON object per line,
    ``{"heos": {"command": ..., "result": "success"|"fail", "message": ...}, "payload": ...}``
  - Event:    ``{"heos": {"command": "event/{name}", "message": "pid=1&level=40&mute=off"}}``

Some commands first answer with an interim ``command under process``
message; the real response follows on a later line.

The connection emits ``connecting``, ``connected`` and ``disconnected``
lifecycle events plus ``event`` for every change event (a HeosEvent), and
reconnects on its own until disconnect() is called.
"""

import asyncio
import inspect
import json
import logging
from collections import deque
from dataclasses import dataclass, field
from urllib.parse import parse_qsl

logger = logging.getLogger("sonolink.heos")

HEOS_PORT = 1255
RECONNECT_DELAY = 5.0
COMMAND_TIMEOUT = 10.0


class HeosError(Exception):
    """A HEOS command failed or could not be sent."""


@dataclass
class HeosEvent:
    event: str
    message: dict = field(default_factory=dict)


def parse_message(message: str) -> dict:
    """Decode a HEOS message string: ``"pid=1&level=40"`` → ``{"pid": "1", "level": "40"}``."""
    if not message:
        return {}
    return dict(parse_qsl(message, keep_blank_values=True))


def _escape(value) -> str:
    # only these three are reserved inside HEOS values
    return str(value).replace("%", "%25").replace("&", "%26").replace("=", "%3D")


def build_command(command: str, **params) -> str:
    """Encode one command line, e.g. ``heos://player/get_players\\r\\n``."""
    line = f"heos://{command}"
    if params:
        line += "?" + "&".join(f"{k}={_escape(v)}" for k, v in params.items())
    return line + "\r\n"


class HeosConnection:
    """Persistent HEOS CLI connection with a small event emitter."""

    def __init__(self, host: str, port: int = HEOS_PORT,
                 reconnect_delay: float = RECONNECT_DELAY,
                 command_timeout: float = COMMAND_TIMEOUT):
        self.host = host
        self.port = port
        self._reconnect_delay = reconnect_delay
        self._command_timeout = command_timeout
        self._listeners: dict[str, list] = {}
        self._pending: dict[str, deque[asyncio.Future]] = {}
        self._writer: asyncio.StreamWriter | None = None
        self._task: asyncio.Task | None = None
        self._callback_tasks: set[asyncio.Task] = set()
        self._closing = False
        self.connected = False

    # ── Emitter ──

    def on(self, event: str, callback) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def off(self, event: str, callback) -> None:
        callbacks = self._listeners.get(event, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _emit(self, event: str, *args) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                result = callback(*args)
            except Exception as e:
                logger.error("HEOS %s listener failed: %s", event, e)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_done)

    def _callback_done(self, task: asyncio.Task) -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("HEOS listener failed: %s", task.exception())

    # ── Lifecycle ──

    async def connect(self) -> None:
        """Start the connection task.  Returns immediately; listen for ``connected``."""
        if self._task is not None:
            return
        self._closing = False
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"heos-{self.host}")

    async def disconnect(self) -> None:
        self._closing = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self) -> None:
        while not self._closing:
            self._emit("connecting")
            logger.debug("Connecting to HEOS @ %s:%d", self.host, self.port)
            try:
                reader, writer = await asyncio.open_connection(
                    self.host, self.port, limit=2 ** 20)
            except OSError as e:
                logger.warning("HEOS @ %s unreachable: %s", self.host, e)
                await asyncio.sleep(self._reconnect_delay)
                continue

            self._writer = writer
            read_task = asyncio.get_running_loop().create_task(self._read_loop(reader))
            try:
                try:
                    await self.send("system/register_for_change_events", enable="on")
                except HeosError as e:
                    logger.warning("Could not register for HEOS change events: %s", e)
                self.connected = True
                self._emit("connected")
                await read_task
            finally:
                read_task.cancel()
                self._drop_connection()
                self._emit("disconnected")

            if not self._closing:
                await asyncio.sleep(self._reconnect_delay)

    def _drop_connection(self) -> None:
        self.connected = False
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        for queue in self._pending.values():
            for fut in queue:
                if not fut.done():
                    fut.set_exception(HeosError("connection closed"))
        self._pending.clear()

    # ── Commands ──

    async def send(self, command: str, **params) -> dict:
        """Send *command* and return its JSON response (raises HeosError on fail)."""
        if self._writer is None:
            raise HeosError(f"{command}: not connected")
        fut = asyncio.get_running_loop().create_future()
        queue = self._pending.setdefault(command, deque())
        queue.append(fut)
        try:
            self._writer.write(build_command(command, **params).encode())
            await self._writer.drain()
            return await asyncio.wait_for(fut, self._command_timeout)
        except asyncio.TimeoutError:
            raise HeosError(f"{command}: no response") from None
        except OSError as e:
            raise HeosError(f"{command}: {e}") from e
        finally:
            if fut in queue:
                queue.remove(fut)

    async def get_players(self) -> list[dict]:
        response = await self.send("player/get_players")
        return response.get("payload") or []

    # ── Reader ──

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await reader.readline()
            except (OSError, asyncio.LimitOverrunError, ValueError) as e:
                logger.warning("HEOS read failed: %s", e)
                return
            if not line:
                logger.info("HEOS @ %s closed the connection", self.host)
                return
            self._handle_line(line)

    def _handle_line(self, line: bytes) -> None:
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON HEOS line: %r", line[:80])
            return

        heos = data.get("heos") or {}
        command = heos.get("command", "")
        message = heos.get("message", "")

        if command.startswith("event/"):
            self._emit("event", HeosEvent(command[len("event/"):], parse_message(message)))
            return
        if "command under process" in message:
            return

        queue = self._pending.get(command)
        if not queue:
            logger.debug("Unsolicited HEOS response: %s", command)
            return
        fut = queue.popleft()
        if fut.done():
            return
        if heos.get("result") == "fail":
            fut.set_exception(HeosError(f"{command} failed: {message}"))
        else:
            fut.set_result(data)
