# sonolink
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later

"""
Shared configuration loader for the sonolink service.

Loads a single JSON config file.  Search order:
  1. /etc/sonolink/config.json     (deployed)
  2. config.json                   (CWD — handy for local dev)
  3. ../../config/default.json     (repo fallback)

Every value can be overridden from the environment as SECTION_KEY, so the
service runs without any file at all under systemd EnvironmentFile:

    DENON_NAME=Living\\ Room SONOS_IP=192.168.0.190 sonolink

Usage:
    from .config import cfg

    source = cfg("denon", "sonos_input_source", default="CD")
    level  = cfg("log", "level", default="info")
"""

import json
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

_config: dict | None = None

_SEARCH_PATHS = [
    "/etc/sonolink/config.json",
    "config.json",
    os.path.join(os.path.dirname(__file__), "..", "..", "config", "default.json"),
]


def _validate(config: dict, path: str) -> None:
    """Warn about missing or suspicious config values."""
    for section in ("denon", "sonos"):
        dev = config.get(section) or {}
        if not dev.get("name") and not dev.get("ip"):
            logger.warning("Config %s: %s has neither 'name' nor 'ip' — relying on environment",
                           path, section)


def load_config() -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config
    if _config is not None:
        return _config

    for path in _SEARCH_PATHS:
        try:
            with open(path) as f:
                _config = json.load(f)
                logger.info("Config loaded from %s", path)
                _validate(_config, path)
                return _config
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", path, e)
            continue

    logger.info("No config.json found — using environment and defaults")
    _config = {}
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value, environment first.

    cfg("log")                     → config["log"]
    cfg("denon", "ip")             → $DENON_IP or config["denon"]["ip"]
    cfg("sonos", "search_timeout", default=5000)
    """
    if key is not None:
        env = os.environ.get(f"{section}_{key}".upper())
        if env not in (None, ""):
            return env
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        found = val.get(key)
        return found if found is not None else default
    return default


def reload_config():
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config()


# ---------------------------------------------------------------------------
# Typed view handed to the link
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DenonConfig:
    name: str | None = None
    ip: str | None = None
    sonos_input_source: str = "CD"
    search_timeout: float = 100.0
    volume_multiplier: float = 1.0


@dataclass(frozen=True)
class SonosConfig:
    name: str | None = None
    ip: str | None = None
    search_timeout: float = 5.0
    volume_multiplier: float = 1.0


@dataclass(frozen=True)
class TimingConfig:
    """Poll intervals and debounce windows, in seconds."""
    volume_poll: float = 0.25
    mute_poll: float = 0.2
    playback_poll: float = 0.25
    volume_debounce: float = 0.1
    mute_debounce: float = 0.3


@dataclass(frozen=True)
class LinkConfig:
    denon: DenonConfig = field(default_factory=DenonConfig)
    sonos: SonosConfig = field(default_factory=SonosConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    log_level: str = "info"

    @classmethod
    def from_cfg(cls) -> "LinkConfig":
        """Build the link configuration from cfg() (file + environment).

        Durations are configured in milliseconds and held in seconds.
        """
        denon = DenonConfig(
            name=cfg("denon", "name"),
            ip=cfg("denon", "ip"),
            sonos_input_source=str(cfg("denon", "sonos_input_source", default="CD")).upper(),
            search_timeout=float(cfg("denon", "search_timeout", default=100000)) / 1000,
            volume_multiplier=float(cfg("denon", "volume_multiplier", default=1)),
        )
        sonos = SonosConfig(
            name=cfg("sonos", "name"),
            ip=cfg("sonos", "ip"),
            search_timeout=float(cfg("sonos", "search_timeout", default=5000)) / 1000,
            volume_multiplier=float(cfg("sonos", "volume_multiplier", default=1)),
        )
        timing = TimingConfig(
            volume_poll=float(cfg("timing", "volume_poll_ms", default=250)) / 1000,
            mute_poll=float(cfg("timing", "mute_poll_ms", default=200)) / 1000,
            playback_poll=float(cfg("timing", "playback_poll_ms", default=250)) / 1000,
            volume_debounce=float(cfg("timing", "volume_debounce_ms", default=100)) / 1000,
            mute_debounce=float(cfg("timing", "mute_debounce_ms", default=300)) / 1000,
        )
        for section, dev in (("denon", denon), ("sonos", sonos)):
            if not dev.name and not dev.ip:
                logger.error("No %s device configured — set %s_NAME or %s_IP",
                             section, section.upper(), section.upper())
        return cls(denon=denon, sonos=sonos, timing=timing,
                   log_level=str(cfg("log", "level", default="info")).lower())
