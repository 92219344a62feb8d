import asyncio
import socket

from sonolink.lib.watchdog import sd_notify, watchdog_interval, watchdog_loop


class _Link:
    def __init__(self, beats):
        self._beats = beats

    @property
    def running(self):
        self._beats -= 1
        return self._beats >= 0


def test_sd_notify_without_socket_is_noop(monkeypatch) -> None:
    monkeypatch.delenv("NOTIFY_SOCKET", raising=False)
    assert sd_notify("READY=1") is False


def test_watchdog_interval(monkeypatch) -> None:
    monkeypatch.delenv("WATCHDOG_USEC", raising=False)
    assert watchdog_interval() == 20
    monkeypatch.setenv("WATCHDOG_USEC", "30000000")
    assert watchdog_interval() == 15


def test_watchdog_loop_notifies_systemd(tmp_path, monkeypatch) -> None:
    path = str(tmp_path / "notify.sock")
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    sock.bind(path)
    sock.settimeout(1)
    monkeypatch.setenv("NOTIFY_SOCKET", path)
    try:
        asyncio.run(watchdog_loop(_Link(beats=2), interval=0.001))
        messages = [sock.recv(256).decode() for _ in range(3)]
    finally:
        sock.close()
    assert messages == ["READY=1\nSTATUS=Linked", "WATCHDOG=1", "WATCHDOG=1"]
