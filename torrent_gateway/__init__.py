"""Torrent gateway: one normalized API over several torrent daemons."""

__version__ = "1.0.0"
