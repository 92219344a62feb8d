"""sonolink — keep a Denon AVR and a Sonos speaker in sync."""

__version__ = "1.0.0"
