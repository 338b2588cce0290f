"""Dedicated game-server fleet manager."""

__version__ = "0.1.0"
