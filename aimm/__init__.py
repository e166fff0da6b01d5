"""AI Music Maker - generation backend."""

__version__ = "0.6.0"
