import asyncio

import pytest

from sonolink.lib.config import SonosConfig
from sonolink.lib.devices import sonos
from sonolink.lib.devices.sonos import SonosSpeaker, playback_state


class FakeSoCo:
    def __init__(self, ip="10.0.10.20", name="Port", volume=35, mute=False,
                 transport="PAUSED_PLAYBACK"):
        self.ip_address = ip
        self.player_name = name
        self.volume = volume
        self.mute = mute
        self.transport = transport

    def get_current_transport_info(self):
        return {"current_transport_state": self.transport,
                "current_transport_status": "OK",
                "current_transport_speed": "1"}


@pytest.mark.parametrize("transport, expected", [
    ("PLAYING", "playing"),
    ("TRANSITIONING", "playing"),
    ("PAUSED_PLAYBACK", "paused"),
    ("STOPPED", "stopped"),
    ("NO_MEDIA_PRESENT", "stopped"),
    (None, "stopped"),
])
def test_playback_state_mapping(transport, expected) -> None:
    assert playback_state(transport) == expected


def test_speaker_accessors() -> None:
    device = FakeSoCo()
    speaker = SonosSpeaker(device)

    async def scenario():
        before = (await speaker.get_volume(), await speaker.get_muted(),
                  await speaker.get_playback_state())
        await speaker.set_volume(59.6)
        await speaker.set_muted(True)
        device.transport = "PLAYING"
        return before, await speaker.get_playback_state()

    before, state = asyncio.run(scenario())
    assert before == (35, False, "paused")
    assert (device.volume, device.mute) == (60, True)
    assert state == "playing"
    assert speaker.host == "10.0.10.20"


@pytest.mark.parametrize("config", [
    SonosConfig(name="Port", search_timeout=1),
    SonosConfig(ip="10.0.10.20", search_timeout=1),
])
def test_discovery_matches_by_name_or_ip(monkeypatch, config) -> None:
    port = FakeSoCo()
    kitchen = FakeSoCo(ip="10.0.10.21", name="Kitchen")
    monkeypatch.setattr(sonos.soco, "discover", lambda timeout: {kitchen, port})
    device = asyncio.run(sonos.get_sonos_device(config))
    assert device is port


def test_discovery_without_devices_returns_none(monkeypatch) -> None:
    monkeypatch.setattr(sonos.soco, "discover", lambda timeout: None)
    assert asyncio.run(sonos.get_sonos_device(SonosConfig(name="Port"))) is None


def test_wait_for_sonos_device_retries(monkeypatch) -> None:
    port = FakeSoCo()
    results = iter([None, None, port])
    monkeypatch.setattr(sonos.soco, "discover", lambda timeout: {r for r in [next(results)] if r})
    monkeypatch.setattr(sonos, "RETRY_DELAY", 0)
    speaker = asyncio.run(sonos.wait_for_sonos_device(SonosConfig(name="Port")))
    assert isinstance(speaker, SonosSpeaker)
    assert speaker.host == "10.0.10.20"
