import asyncio
import json

import pytest

from sonolink.lib.devices.heos import (
    HeosConnection,
    HeosError,
    HeosEvent,
    build_command,
    parse_message,
)


def _line(command, result="success", message="", payload=None) -> bytes:
    data = {"heos": {"command": command, "result": result, "message": message}}
    if payload is not None:
        data["payload"] = payload
    return (json.dumps(data) + "\r\n").encode()


class FakeHeosServer:
    """Tiny HEOS CLI endpoint on localhost."""

    def __init__(self, players=None, fail=(), interim=()):
        self.players = players or []
        self.fail = set(fail)
        self.interim = set(interim)
        self.received: list[str] = []
        self.writers: list[asyncio.StreamWriter] = []
        self.server = None

    async def __aenter__(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc):
        for writer in self.writers:
            writer.close()
        self.server.close()
        await self.server.wait_closed()

    async def push(self, line: bytes):
        for writer in self.writers:
            writer.write(line)
            await writer.drain()

    async def _handle(self, reader, writer):
        self.writers.append(writer)
        try:
            while line := await reader.readline():
                text = line.decode().strip()
                self.received.append(text)
                command = text[len("heos://"):].split("?")[0]
                if command in self.interim:
                    writer.write(_line(command, message="command under process"))
                if command in self.fail:
                    writer.write(_line(command, result="fail", message="eid=2&text=Invalid ID"))
                elif command == "player/get_players":
                    writer.write(_line(command, payload=self.players))
                else:
                    writer.write(_line(command, message=text.partition("?")[2]))
                await writer.drain()
        finally:
            writer.close()


def test_parse_message_decodes_pairs() -> None:
    assert parse_message("pid=-1234&level=0&mute=off") == {"pid": "-1234", "level": "0", "mute": "off"}
    assert parse_message("signed_in&un=me%40example.com") == {"signed_in": "", "un": "me@example.com"}
    assert parse_message("") == {}


def test_build_command_escapes_reserved_characters() -> None:
    assert build_command("player/get_players") == "heos://player/get_players\r\n"
    assert (build_command("player/set_volume", pid=1, level=40)
            == "heos://player/set_volume?pid=1&level=40\r\n")
    assert build_command("system/sign_in", un="a&b", pw="x=y%") == (
        "heos://system/sign_in?un=a%26b&pw=x%3Dy%25\r\n")


def test_connect_registers_for_events_and_lists_players() -> None:
    lifecycle = []

    async def scenario():
        async with FakeHeosServer(players=[{"name": "Living Room", "pid": -1234}]) as server:
            conn = HeosConnection("127.0.0.1", server.port, reconnect_delay=0.05, command_timeout=1)
            connected = asyncio.Event()
            conn.on("connecting", lambda: lifecycle.append("connecting"))
            conn.on("connected", lambda: lifecycle.append("connected"))
            conn.on("connected", connected.set)
            conn.on("disconnected", lambda: lifecycle.append("disconnected"))

            await conn.connect()
            await asyncio.wait_for(connected.wait(), 2)
            assert conn.connected
            players = await conn.get_players()
            await conn.disconnect()
            assert not conn.connected
            return server.received, players

    received, players = asyncio.run(scenario())
    assert received[0] == "heos://system/register_for_change_events?enable=on"
    assert "heos://player/get_players" in received
    assert players == [{"name": "Living Room", "pid": -1234}]
    assert lifecycle == ["connecting", "connected", "disconnected"]


def test_change_events_are_emitted_parsed() -> None:
    async def scenario():
        async with FakeHeosServer() as server:
            conn = HeosConnection("127.0.0.1", server.port, command_timeout=1)
            connected = asyncio.Event()
            got = asyncio.Queue()
            conn.on("connected", connected.set)
            conn.on("event", got.put_nowait)
            await conn.connect()
            await asyncio.wait_for(connected.wait(), 2)

            await server.push(b'{"heos": {"command": "event/player_volume_changed", '
                              b'"message": "pid=-1234&level=0&mute=on"}}\r\n')
            event = await asyncio.wait_for(got.get(), 2)
            await conn.disconnect()
            return event

    event = asyncio.run(scenario())
    assert event == HeosEvent("player_volume_changed", {"pid": "-1234", "level": "0", "mute": "on"})


def test_interim_response_is_skipped_and_failures_raise() -> None:
    async def scenario():
        async with FakeHeosServer(interim={"browse/play_input"}, fail={"player/get_volume"}) as server:
            conn = HeosConnection("127.0.0.1", server.port, command_timeout=1)
            connected = asyncio.Event()
            conn.on("connected", connected.set)
            await conn.connect()
            await asyncio.wait_for(connected.wait(), 2)

            response = await conn.send("browse/play_input", pid=1, input="inputs/aux_in_1")
            with pytest.raises(HeosError, match="Invalid ID"):
                await conn.send("player/get_volume", pid=1)
            await conn.disconnect()
            return response

    response = asyncio.run(scenario())
    assert response["heos"]["message"] == "pid=1&input=inputs/aux_in_1"


def test_send_without_connection_raises() -> None:
    async def scenario():
        conn = HeosConnection("127.0.0.1", 1)
        with pytest.raises(HeosError, match="not connected"):
            await conn.send("player/get_players")

    asyncio.run(scenario())


def test_reconnects_after_server_drops_connection() -> None:
    async def scenario():
        async with FakeHeosServer() as server:
            conn = HeosConnection("127.0.0.1", server.port, reconnect_delay=0.05, command_timeout=1)
            connects = []
            second = asyncio.Event()

            def on_connected():
                connects.append(1)
                if len(connects) == 2:
                    second.set()

            conn.on("connected", on_connected)
            await conn.connect()
            while not server.writers:
                await asyncio.sleep(0.01)
            server.writers[0].close()
            await asyncio.wait_for(second.wait(), 2)
            await conn.disconnect()
            return len(connects)

    assert asyncio.run(scenario()) == 2


def test_failing_listener_does_not_stop_the_reader(caplog) -> None:
    async def scenario():
        async with FakeHeosServer() as server:
            conn = HeosConnection("127.0.0.1", server.port, command_timeout=1)
            connected = asyncio.Event()
            got = asyncio.Queue()

            def broken(event):
                raise ValueError("bad listener")

            conn.on("connected", connected.set)
            conn.on("event", broken)
            conn.on("event", got.put_nowait)
            await conn.connect()
            await asyncio.wait_for(connected.wait(), 2)
            for level in (10, 20):
                await server.push(_line("event/player_volume_changed", message=f"pid=1&level={level}"))
            first = await asyncio.wait_for(got.get(), 2)
            second = await asyncio.wait_for(got.get(), 2)
            await conn.disconnect()
            return first, second

    first, second = asyncio.run(scenario())
    assert (first.message["level"], second.message["level"]) == ("10", "20")
    assert any("bad listener" in r.getMessage() for r in caplog.records)
